"""GnuGo engine session over the Go Text Protocol (GTP).

Owns the GnuGo subprocess and the turn-taking state machine:

    connecting -> {human turn <-> engine turn} -> finished

All engine I/O and state changes happen under one lock, so exactly one
GTP request is in flight at a time. The engine's own moves are
generated on a background thread. Move and game-end callbacks are
delivered outside the lock, in game order, so a callback may safely
call back into the session.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import threading
from collections import deque
from pathlib import Path
from typing import Callable

from baduk.coords import VertexKind, from_vertex, to_vertex
from baduk.errors import (
    BadukError,
    EngineError,
    EngineIOError,
    EngineProtocolError,
    GameOverError,
    GTPCommandError,
    IllegalMoveError,
    NotYourTurnError,
    SGFParseError,
    UndoError,
    VertexError,
)
from baduk.models import (
    NO_MOVE,
    PHASE_FINISHED,
    PHASE_PLAYING,
    BoardState,
    GameConfig,
    Move,
    Stone,
)
from baduk.reader import make_board, replay_to_end

# GnuGo search paths in priority order
_GNUGO_PATHS = [
    "/opt/homebrew/bin/gnugo",
    "/usr/local/bin/gnugo",
    "/usr/games/gnugo",
    "/usr/bin/gnugo",
]

_CLOSE_TIMEOUT = 2.0

MoveCallback = Callable[[int, int, Stone, BoardState], None]
EndCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


def _find_gnugo() -> str:
    """Auto-detect the GnuGo binary.

    Checks known install paths, then falls back to PATH lookup.

    Returns:
        Path to the GnuGo binary.

    Raises:
        FileNotFoundError: If GnuGo is not found anywhere.
    """
    for path_str in _GNUGO_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("gnugo")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        "GnuGo not found. Install it (e.g. 'apt install gnugo') or set gnugo_path."
    )


def _move_vertex(move: Move, size: int) -> str:
    return "pass" if move.is_pass else to_vertex(move.x, move.y, size)


def _trailing_passes(history: list[Move]) -> int:
    count = 0
    for move in reversed(history):
        if not move.is_pass:
            break
        count += 1
    return min(count, 2)


def resignation_outcome(winner: Stone) -> str:
    return f"{winner.gtp_name.capitalize()} wins by resignation"


class GTPEngine:
    """One game against GnuGo.

    Args:
        config: Board size, komi, colors, engine level and path, and
            optionally an SGF file to load and continue.
        logger: Where protocol traffic and failures are logged. Defaults
            to this module's logger.
    """

    def __init__(self, config: GameConfig, logger: logging.Logger | None = None) -> None:
        self._config = config
        self._log = logger or logging.getLogger(__name__)
        self._size = config.board_size
        self._player_color = Stone(config.player_color)
        self._engine_color = self._player_color.opposite()

        self._process: subprocess.Popen | None = None
        self._state = BoardState.empty(self._size)
        self._history: list[Move] = []
        self._my_turn = False
        self._pass_count = 0
        self._game_over = False
        self._closed = False

        self._lock = threading.Lock()
        self._worker: threading.Thread | None = None

        self._move_callbacks: list[MoveCallback] = []
        self._end_callbacks: list[EndCallback] = []
        self._error_callbacks: list[ErrorCallback] = []
        self._events: deque[tuple[str, tuple]] = deque()
        self._events_lock = threading.Lock()
        self._draining = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Start GnuGo and set up the board.

        When the engine moves first, its move is requested on a
        background thread and this call returns immediately.

        Raises:
            FileNotFoundError: If no GnuGo binary can be found.
            EngineIOError: If the process can't be started or talked to.
            GTPCommandError: If GnuGo rejects the setup commands.
        """
        with self._lock:
            if self._process is not None:
                raise EngineError("Engine is already connected")

            path = self._config.engine_path or _find_gnugo()
            args = [path, "--mode", "gtp", "--level", str(self._config.engine_level), "--quiet"]
            self._log.info("Starting engine: %s", " ".join(args))
            try:
                self._process = subprocess.Popen(
                    args,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.DEVNULL,
                    text=True,
                    bufsize=1,
                )
            except OSError as exc:
                raise EngineIOError(f"Failed to start GnuGo: {exc}") from exc

            try:
                self._send_command(f"boardsize {self._size}")
                self._send_command("clear_board")
                self._send_command(f"komi {self._config.komi}")
                if self._config.load_sgf_path:
                    self._load_game_locked(self._config.load_sgf_path)
                else:
                    # Black always plays first
                    self._my_turn = self._player_color is Stone.BLACK
            except BadukError:
                self._terminate_locked()
                raise

            passed_out = self._finish_if_passed_out_locked()
            engine_first = not self._my_turn and not self._game_over

        if passed_out:
            self._request_final_score()
        elif engine_first:
            self._start_engine_turn()

    def _load_game_locked(self, sgf_path: str) -> None:
        """Load a saved record into GnuGo and adopt its position."""
        try:
            replay = replay_to_end(sgf_path)
        except OSError as exc:
            raise EngineError(f"Cannot read {sgf_path}: {exc}") from exc
        except SGFParseError as exc:
            raise EngineError(f"Cannot load {sgf_path}: {exc}") from exc

        reply = self._send_command(f"loadsgf {sgf_path}")
        try:
            to_move = Stone.from_gtp(reply.split()[0]) if reply else replay.next_color
        except ValueError:
            self._log.warning("Unexpected loadsgf reply %r, using the record's turn", reply)
            to_move = replay.next_color

        self._history = list(replay.moves)
        self._state.move_number = self._config.load_move_count or replay.move_count
        self._state.player_to_move = to_move
        self._state.last_move = self._last_move_from_history()
        self._pass_count = _trailing_passes(self._history)
        self._resync_locked()
        self._my_turn = to_move is self._player_color
        self._log.info("Loaded %s (%d moves, %s to move)", sgf_path, len(self._history), to_move.gtp_name)

    def close(self) -> None:
        """Quit GnuGo and reap the process. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        # An engine move in progress can't be cancelled; don't wait on it for long
        acquired = self._lock.acquire(timeout=_CLOSE_TIMEOUT)
        try:
            if acquired and self._process is not None:
                try:
                    self._send_command("quit")
                except EngineError as exc:
                    self._log.debug("quit failed: %s", exc)
            self._terminate_locked()
        finally:
            if acquired:
                self._lock.release()

    def _terminate_locked(self) -> None:
        proc = self._process
        if proc is None:
            return
        self._process = None
        try:
            if proc.stdin is not None:
                proc.stdin.close()
        except OSError:
            pass
        try:
            proc.wait(timeout=_CLOSE_TIMEOUT)
        except subprocess.TimeoutExpired:
            self._log.warning("GnuGo did not exit, killing it")
            proc.kill()
            proc.wait()

    def __enter__(self) -> GTPEngine:
        self.connect()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Protocol
    # ------------------------------------------------------------------

    def _send_command(self, command: str) -> str:
        """Send one GTP command and return the response payload.

        Must be called while holding the lock.

        Raises:
            EngineIOError: If the pipes are broken or the engine exited.
            GTPCommandError: If the engine answers with an error.
        """
        proc = self._process
        if proc is None or proc.stdin is None or proc.stdout is None:
            raise EngineIOError("Engine is not running")

        self._log.debug("gtp >> %s", command)
        try:
            proc.stdin.write(command + "\n")
            proc.stdin.flush()
        except (OSError, ValueError) as exc:
            raise EngineIOError(f"Failed to send command '{command}': {exc}") from exc

        lines: list[str] = []
        while True:
            try:
                line = proc.stdout.readline()
            except (OSError, ValueError) as exc:
                raise EngineIOError(f"Failed to read response to '{command}': {exc}") from exc
            if line == "":
                raise EngineIOError(f"Engine closed its output while answering '{command}'")
            line = line.rstrip("\r\n")
            if not line.strip():
                # A blank line ends the response; ignore stray ones before it
                if lines:
                    break
                continue
            lines.append(line)

        response = "\n".join(lines)
        self._log.debug("gtp << %s", response)

        if response.startswith("?"):
            raise GTPCommandError(command, response[1:].strip())
        if response.startswith("="):
            return response[1:].strip()

        self._log.warning("Unrecognised GTP response to '%s': %r", command, response)
        return response.strip()

    def _resync_locked(self) -> None:
        """Rebuild the board from GnuGo's stone lists (picks up captures)."""
        board = make_board(self._size)
        try:
            for color in (Stone.BLACK, Stone.WHITE):
                listing = self._send_command(f"list_stones {color.gtp_name}")
                for token in listing.split():
                    vertex = from_vertex(token, self._size)
                    if vertex.is_point:
                        board[vertex.y][vertex.x] = color
        except (GTPCommandError, VertexError) as exc:
            self._log.warning("Board resync failed, keeping local board: %s", exc)
            return
        self._state.board = board

    def _last_move_from_history(self) -> tuple[int, int]:
        if self._history and not self._history[-1].is_pass:
            last = self._history[-1]
            return (last.x, last.y)
        return NO_MOVE

    def _query_last_move_locked(self) -> tuple[int, int]:
        """Ask GnuGo for the last move, falling back to local history."""
        try:
            reply = self._send_command("last_move")
            tokens = reply.split()
            if len(tokens) == 2:
                vertex = from_vertex(tokens[1], self._size)
                return (vertex.x, vertex.y) if vertex.is_point else NO_MOVE
        except (GTPCommandError, VertexError) as exc:
            self._log.debug("last_move unavailable: %s", exc)
        return self._last_move_from_history()

    # ------------------------------------------------------------------
    # Human moves
    # ------------------------------------------------------------------

    def _check_human_turn_locked(self) -> None:
        if self._process is None:
            raise EngineIOError("Engine is not connected")
        if self._game_over:
            raise GameOverError("Game is over")
        if not self._my_turn:
            raise NotYourTurnError("Not your turn")

    def play_move(self, x: int, y: int) -> None:
        """Play the human's stone at (x, y).

        Raises:
            GameOverError: If the game has finished.
            NotYourTurnError: If the engine is to move.
            IllegalMoveError: If GnuGo rejects the placement.
            VertexError: If (x, y) is off the board.
            EngineIOError: If the engine can't be reached.
        """
        with self._lock:
            self._check_human_turn_locked()
            vertex = to_vertex(x, y, self._size)
            color = self._player_color
            try:
                self._send_command(f"play {color.gtp_name} {vertex}")
            except GTPCommandError as exc:
                raise IllegalMoveError(exc.command, exc.message) from exc

            self._apply_move_locked(Move(color, x, y))

        self._drain_events()
        self._start_engine_turn()

    def pass_move(self) -> None:
        """Pass the human's turn. A second consecutive pass ends the game."""
        with self._lock:
            self._check_human_turn_locked()
            self._send_command(f"play {self._player_color.gtp_name} pass")
            self._apply_move_locked(Move(self._player_color, -1, -1))
            finished = self._game_over

        self._drain_events()
        if finished:
            self._request_final_score()
        else:
            self._start_engine_turn()

    def resign(self) -> None:
        """Concede the game to the engine."""
        with self._lock:
            if self._game_over:
                raise GameOverError("Game is over")
            self._end_game_locked(resignation_outcome(self._engine_color))
        self._drain_events()

    def undo(self) -> None:
        """Take back the engine's last reply and the human move before it.

        Afterwards it is the human's turn again and the board is
        re-read from GnuGo, so captured stones come back.

        Raises:
            GameOverError: If the game has finished.
            NotYourTurnError: If the engine is still thinking.
            UndoError: With fewer than two moves played, or if GnuGo
                refuses to undo.
        """
        with self._lock:
            self._check_human_turn_locked()
            if len(self._history) < 2:
                raise UndoError("Need at least two moves to undo")

            try:
                self._send_command("undo")
            except GTPCommandError as exc:
                raise UndoError(f"Engine refused undo: {exc.message}") from exc
            try:
                self._send_command("undo")
            except GTPCommandError as exc:
                # Put the engine's reply back so the turn state stays as it was
                last = self._history[-1]
                self._send_command(f"play {last.color.gtp_name} {_move_vertex(last, self._size)}")
                raise UndoError(f"Engine refused undo: {exc.message}") from exc

            del self._history[-2:]
            self._state.move_number = max(0, self._state.move_number - 2)
            self._state.player_to_move = self._player_color
            self._pass_count = _trailing_passes(self._history)
            self._resync_locked()
            self._state.last_move = self._query_last_move_locked()
            self._log.info("Undid two moves, now at move %d", self._state.move_number)

    # ------------------------------------------------------------------
    # Engine moves
    # ------------------------------------------------------------------

    def request_engine_move(self) -> None:
        """Ask the engine to move now, e.g. to retry after a failed attempt."""
        with self._lock:
            pending = not self._my_turn and not self._game_over and self._process is not None
        if pending:
            self._start_engine_turn()

    def _start_engine_turn(self) -> None:
        worker = threading.Thread(target=self._engine_turn, name="gtp-genmove", daemon=True)
        self._worker = worker
        worker.start()

    def _engine_turn(self) -> None:
        try:
            self._play_engine_move()
        except BadukError as exc:
            if self._closed:
                self._log.debug("Engine move abandoned after close: %s", exc)
                return
            self._log.warning("Engine move failed: %s", exc)
            self._queue_event("error", (exc,))
            self._drain_events()

    def _play_engine_move(self) -> None:
        with self._lock:
            if self._game_over or self._my_turn:
                return
            color = self._engine_color
            reply = self._send_command(f"genmove {color.gtp_name}")
            try:
                vertex = from_vertex(reply, self._size)
            except VertexError as exc:
                raise EngineProtocolError(f"Unexpected genmove reply: {reply!r}") from exc

            if vertex.kind is VertexKind.RESIGN:
                self._end_game_locked(resignation_outcome(self._player_color))
                finished_by_passes = False
            else:
                self._apply_move_locked(Move(color, vertex.x, vertex.y))
                finished_by_passes = self._game_over

        self._drain_events()
        if finished_by_passes:
            self._request_final_score()

    # ------------------------------------------------------------------
    # Shared state transitions
    # ------------------------------------------------------------------

    def _apply_move_locked(self, move: Move) -> None:
        """Record a move both sides have agreed on and flip the turn."""
        state = self._state
        if move.is_pass:
            self._pass_count += 1
        else:
            # Optimistic placement, then the engine's authoritative board
            state.board[move.y][move.x] = move.color
            self._pass_count = 0
            self._resync_locked()

        state.last_move = NO_MOVE if move.is_pass else (move.x, move.y)
        state.move_number += 1
        state.player_to_move = move.color.opposite()
        self._history.append(move)
        self._my_turn = move.color is not self._player_color
        self._finish_if_passed_out_locked()
        self._queue_event("move", (move.x, move.y, move.color, state.copy()))

    def _finish_if_passed_out_locked(self) -> bool:
        """End play after two consecutive passes; the outcome comes from scoring."""
        if self._pass_count < 2:
            return False
        self._game_over = True
        self._my_turn = False
        self._state.phase = PHASE_FINISHED
        return True

    def _end_game_locked(self, outcome: str) -> None:
        self._game_over = True
        self._my_turn = False
        self._state.phase = PHASE_FINISHED
        self._state.outcome = outcome
        self._log.info("Game over: %s", outcome)
        self._queue_event("end", (outcome,))

    def _request_final_score(self) -> None:
        """Score a game ended by two passes and announce the outcome."""
        with self._lock:
            try:
                outcome = self._send_command("final_score") or "Game ended"
            except GTPCommandError as exc:
                self._log.warning("final_score failed: %s", exc)
                outcome = "Game ended"
            self._end_game_locked(outcome)
        self._drain_events()

    def reset_and_replay(self, moves: list[Move], start_engine: bool = True) -> None:
        """Clear the engine's board and replay ``moves`` in order.

        Used to commit a planning-mode line onto the live game. No move
        callbacks fire for the replayed moves. If the engine is to move
        afterwards, its move is requested in the background unless
        ``start_engine`` is False, in which case the caller follows up
        with ``request_engine_move``. A line ending in two passes ends
        the game and is scored.

        Raises:
            IllegalMoveError: If GnuGo rejects one of the moves; the
                session then reflects the moves accepted before it.
            EngineIOError: If the engine can't be reached.
        """
        error: IllegalMoveError | None = None
        with self._lock:
            if self._process is None:
                raise EngineIOError("Engine is not connected")
            self._send_command("clear_board")

            played: list[Move] = []
            for move in moves:
                try:
                    self._send_command(f"play {move.color.gtp_name} {_move_vertex(move, self._size)}")
                except GTPCommandError as exc:
                    error = IllegalMoveError(exc.command, exc.message)
                    break
                played.append(move)

            self._history = played
            self._game_over = False
            self._pass_count = _trailing_passes(played)
            to_move = played[-1].color.opposite() if played else Stone.BLACK
            self._my_turn = to_move is self._player_color

            state = self._state
            state.phase = PHASE_PLAYING
            state.outcome = ""
            state.move_number = len(played)
            state.player_to_move = to_move
            state.last_move = self._last_move_from_history()
            state.board = make_board(self._size)
            self._resync_locked()
            passed_out = self._finish_if_passed_out_locked()
            engine_next = not self._my_turn and not passed_out

        if passed_out:
            self._request_final_score()
        elif engine_next and start_engine:
            self._start_engine_turn()
        if error is not None:
            raise error

    # ------------------------------------------------------------------
    # Callbacks
    # ------------------------------------------------------------------

    def on_move(self, callback: MoveCallback) -> None:
        """Register ``callback(x, y, color, board_state)`` for every move.

        Passes report x == y == -1. ``board_state`` is a private copy.
        """
        self._move_callbacks.append(callback)

    def on_game_end(self, callback: EndCallback) -> None:
        self._end_callbacks.append(callback)

    def on_error(self, callback: ErrorCallback) -> None:
        """Register ``callback(exc)`` for failures on the engine's thread."""
        self._error_callbacks.append(callback)

    def _queue_event(self, kind: str, args: tuple) -> None:
        self._events.append((kind, args))

    def _drain_events(self) -> None:
        """Deliver queued events in order, outside the state lock.

        If another call is already delivering (including a callback
        re-entering the session on this thread), it picks up our events.
        """
        with self._events_lock:
            if self._draining:
                return
            self._draining = True
        try:
            while True:
                with self._events_lock:
                    if not self._events:
                        self._draining = False
                        return
                    kind, args = self._events.popleft()
                self._dispatch(kind, args)
        except BaseException:
            with self._events_lock:
                self._draining = False
            raise

    def _dispatch(self, kind: str, args: tuple) -> None:
        callbacks = {
            "move": self._move_callbacks,
            "end": self._end_callbacks,
            "error": self._error_callbacks,
        }[kind]
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception:
                self._log.exception("%s callback raised", kind)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_board_state(self) -> BoardState:
        """Return a deep copy of the current board state."""
        with self._lock:
            return self._state.copy()

    def is_my_turn(self) -> bool:
        with self._lock:
            return self._my_turn and not self._game_over

    def is_game_over(self) -> bool:
        with self._lock:
            return self._game_over

    def get_player_color(self) -> Stone:
        return self._player_color

    def move_history(self) -> list[Move]:
        with self._lock:
            return list(self._history)

    def wait_for_engine(self, timeout: float | None = None) -> bool:
        """Block until the background engine move (if any) is done.

        Returns:
            True if no engine move is still running.
        """
        worker = self._worker
        if worker is None:
            return True
        worker.join(timeout)
        return not worker.is_alive()
