"""Shared test fixtures with dual-mode support (fake vs real GnuGo).

Usage:
    pytest tests/                  # Fast, scripted GTP engine (no GnuGo)
    pytest tests/ --e2e            # Also run tests against a real GnuGo

Fixtures:
    fake_gtp     - A FakeGTPProcess ready to stand in for subprocess.Popen.
    make_engine  - Builds connected GTPEngine sessions on the fake process
                   and closes them after the test.
"""

from __future__ import annotations

import threading
from unittest.mock import patch

import pytest

from baduk.coords import from_vertex, to_vertex
from baduk.engine import GTPEngine
from baduk.models import GameConfig, Stone
from baduk.reader import has_liberty, make_board, remove_captures, replay_to_end


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real GnuGo tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with a real GnuGo engine (no fakes).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real GnuGo)"
    )


def pytest_collection_modifyitems(config, items):
    if config.getoption("--e2e"):
        return
    skip_e2e = pytest.mark.skip(reason="needs --e2e and a GnuGo install")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


# ---------------------------------------------------------------------------
# Fake GnuGo process
# ---------------------------------------------------------------------------


class _FakeStdin:
    def __init__(self, process: FakeGTPProcess) -> None:
        self._process = process
        self._buffer = ""
        self.closed = False

    def write(self, text: str) -> int:
        if self.closed:
            raise ValueError("write to closed file")
        self._buffer += text
        while "\n" in self._buffer:
            line, self._buffer = self._buffer.split("\n", 1)
            self._process.handle(line)
        return len(text)

    def flush(self) -> None:
        if self.closed:
            raise ValueError("flush of closed file")

    def close(self) -> None:
        self.closed = True


class _FakeStdout:
    def __init__(self) -> None:
        self.lines: list[str] = []

    def readline(self) -> str:
        if not self.lines:
            return ""
        return self.lines.pop(0)


class FakeGTPProcess:
    """A tiny GTP engine that behaves like ``gnugo --mode gtp``.

    Resolves captures, rejects occupied and suicide points, keeps an undo
    stack, and answers genmove from ``genmove_replies`` (popped in order)
    or with the first legal empty point. A reply starting with "?" is
    sent back as a GTP error.

    Attributes:
        commands: Every command received, in order.
        genmove_replies: Scripted genmove answers.
        undo_budget: Undos still allowed; None means unlimited.
        final_score: Answer to final_score.
    """

    def __init__(self) -> None:
        self.stdin = _FakeStdin(self)
        self.stdout = _FakeStdout()
        self.returncode: int | None = None
        self.commands: list[str] = []
        self.genmove_replies: list[str] = []
        self.undo_budget: int | None = None
        self.final_score = "W+6.5"
        self.size = 19
        self.komi = 0.0
        self.board = make_board(self.size)
        self.moves: list[tuple[Stone, str]] = []
        self._undo_stack: list[list[list[int]]] = []
        self._lock = threading.Lock()

    # -- subprocess.Popen surface -------------------------------------------

    def poll(self) -> int | None:
        return self.returncode

    def wait(self, timeout: float | None = None) -> int:
        if self.returncode is None:
            self.returncode = 0
        return self.returncode

    def terminate(self) -> None:
        self.returncode = -15

    def kill(self) -> None:
        self.returncode = -9

    # -- GTP ----------------------------------------------------------------

    def stones(self, color: Stone) -> set[tuple[int, int]]:
        return {
            (x, y)
            for y, row in enumerate(self.board)
            for x, value in enumerate(row)
            if value == color
        }

    def handle(self, line: str) -> None:
        line = line.strip()
        if not line:
            return
        with self._lock:
            self.commands.append(line)
            name, _, rest = line.partition(" ")
            handler = getattr(self, f"_cmd_{name}", None)
            if handler is None:
                self._reply("? unknown command")
                return
            self._reply(handler(rest.strip()))

    def _reply(self, text: str) -> None:
        if not text.startswith("?"):
            text = "= " + text if text else "="
        self.stdout.lines.extend([text + "\n", "\n"])

    def _cmd_boardsize(self, arg: str) -> str:
        self.size = int(arg)
        return self._cmd_clear_board("")

    def _cmd_clear_board(self, arg: str) -> str:
        self.board = make_board(self.size)
        self.moves = []
        self._undo_stack = []
        return ""

    def _cmd_komi(self, arg: str) -> str:
        self.komi = float(arg)
        return ""

    def _place(self, color: Stone, vertex: str) -> bool:
        point = from_vertex(vertex, self.size)
        snapshot = [row[:] for row in self.board]
        if point.is_point:
            if self.board[point.y][point.x] != Stone.EMPTY:
                return False
            self.board[point.y][point.x] = color
            remove_captures(self.board, point.x, point.y, color)
            if not has_liberty(self.board, point.x, point.y):
                self.board = snapshot
                return False
        self._undo_stack.append(snapshot)
        self.moves.append((color, vertex.upper()))
        return True

    def _cmd_play(self, arg: str) -> str:
        color_name, _, vertex = arg.partition(" ")
        try:
            color = Stone.from_gtp(color_name)
            ok = self._place(color, vertex)
        except ValueError:
            return "? invalid color or coordinate"
        return "" if ok else "? illegal move"

    def _first_legal(self, color: Stone) -> str:
        for y in range(self.size):
            for x in range(self.size):
                if self.board[y][x] != Stone.EMPTY:
                    continue
                vertex = to_vertex(x, y, self.size)
                if self._place(color, vertex):
                    return vertex
        self._place(color, "pass")
        return "PASS"

    def _cmd_genmove(self, arg: str) -> str:
        color = Stone.from_gtp(arg)
        if not self.genmove_replies:
            return self._first_legal(color)
        reply = self.genmove_replies.pop(0)
        if reply.startswith("?") or reply.lower() == "resign":
            return reply
        try:
            placed = self._place(color, reply)
        except ValueError:
            # Garbage replies are passed through unplayed
            return reply
        if not placed:
            return "? scripted move is illegal"
        return reply

    def _cmd_undo(self, arg: str) -> str:
        if not self._undo_stack:
            return "? cannot undo"
        if self.undo_budget is not None:
            if self.undo_budget <= 0:
                return "? cannot undo"
            self.undo_budget -= 1
        self.board = self._undo_stack.pop()
        self.moves.pop()
        return ""

    def _cmd_list_stones(self, arg: str) -> str:
        color = Stone.from_gtp(arg)
        return " ".join(to_vertex(x, y, self.size) for x, y in sorted(self.stones(color)))

    def _cmd_last_move(self, arg: str) -> str:
        if not self.moves:
            return "? no previous move known"
        color, vertex = self.moves[-1]
        return f"{color.gtp_name} {vertex}"

    def _cmd_final_score(self, arg: str) -> str:
        return self.final_score

    def _cmd_loadsgf(self, arg: str) -> str:
        try:
            replay = replay_to_end(arg)
        except (OSError, ValueError):
            return "? cannot open or parse file"
        self.size = replay.info.board_size
        self.board = [row[:] for row in replay.board]
        self.moves = []
        self._undo_stack = []
        return replay.next_color.gtp_name

    def _cmd_quit(self, arg: str) -> str:
        self.returncode = 0
        return ""


@pytest.fixture()
def fake_gtp() -> FakeGTPProcess:
    return FakeGTPProcess()


@pytest.fixture()
def make_engine(fake_gtp):
    """Build GTPEngine sessions wired to ``fake_gtp``.

    Keyword arguments override GameConfig fields (9x9 by default).
    The fixture waits for any opening engine move before returning.
    """
    engines: list[GTPEngine] = []

    def _make(**overrides) -> GTPEngine:
        fields = {"board_size": 9, "komi": 6.5, "engine_path": "gnugo"}
        fields.update(overrides)
        engine = GTPEngine(GameConfig(**fields))
        with patch("baduk.engine.subprocess.Popen", return_value=fake_gtp):
            engine.connect()
        assert engine.wait_for_engine(5)
        engines.append(engine)
        return engine

    yield _make

    for engine in engines:
        engine.close()
