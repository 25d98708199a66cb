"""Exception hierarchy shared by the engine session, recorder and reader."""

from __future__ import annotations


class BadukError(Exception):
    """Base class for all errors raised by this package."""


# ---------------------------------------------------------------------------
# Engine session
# ---------------------------------------------------------------------------


class EngineError(BadukError):
    """Something went wrong talking to the GTP engine."""


class EngineIOError(EngineError):
    """The engine process is unreachable or its pipes are broken.

    Fatal to the session: the caller should close it.
    """


class GTPCommandError(EngineError):
    """The engine answered a command with a ``?`` error response."""

    def __init__(self, command: str, message: str) -> None:
        super().__init__(f"GTP error for '{command}': {message}")
        self.command = command
        self.message = message


class IllegalMoveError(GTPCommandError):
    """The engine refused a stone placement."""


class EngineProtocolError(EngineError):
    """The engine sent a reply this client can't make sense of."""


class PreconditionError(BadukError):
    """The call is not allowed in the current game state."""


class NotYourTurnError(PreconditionError):
    pass


class GameOverError(PreconditionError):
    pass


class UndoError(PreconditionError):
    """Not enough history (or wrong turn) to take back a move pair."""


# ---------------------------------------------------------------------------
# Records and codecs
# ---------------------------------------------------------------------------


class RecordError(BadukError):
    """Persisting a game record failed; the game itself can continue."""


class RecordClosedError(RecordError):
    pass


class VertexError(BadukError, ValueError):
    """A coordinate could not be encoded or decoded."""


class SGFParseError(BadukError, ValueError):
    """An SGF document is malformed."""


class ConfigError(BadukError, ValueError):
    """The configuration file holds invalid values."""
