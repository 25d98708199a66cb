"""SGF game recorder with crash-safe full rewrites.

Every mutation rebuilds the whole document from the in-memory header
and move list and atomically replaces the file on disk, so the record
is always a complete, closed SGF document even if the process is
killed between moves. Records stay small (a few hundred moves), so the
O(moves) rewrite per move is cheap.
"""

from __future__ import annotations

import logging
import os
import re
import tempfile
import threading
from datetime import datetime
from pathlib import Path

from baduk import __version__
from baduk.coords import to_sgf_point
from baduk.errors import RecordClosedError, RecordError, SGFParseError
from baduk.models import Move, Stone
from baduk.reader import Node, read_main_line, replay_nodes

logger = logging.getLogger(__name__)

HUMAN_NAME = "Player"
ENGINE_NAME_TEMPLATE = "GnuGo Level {level}"
UNKNOWN_RESULT = "?"

_CANONICAL_RESULT = re.compile(r"^[BW]\+(R|T|F|\?|\d+(\.\d+)?)$")
_SPECIAL_RESULTS = {"?", "0", "Jigo", "Void"}
_SCORE = re.compile(r"^\d+(\.\d+)?$")

# Root properties rebuilt from the record's own fields on every write
_MANAGED_ROOT = {"GM", "FF", "CA", "AP", "SZ", "KM", "PB", "PW", "DT", "RE", "AB", "AW"}
_MOVE_NODE_PROPERTIES = {"B", "W", "AB", "AW"}


def engine_player_name(level: int) -> str:
    return ENGINE_NAME_TEMPLATE.format(level=level)


def parse_result(outcome: str) -> str:
    """Normalise an outcome to an SGF RE value.

    Accepts canonical values ("W+5.5", "B+R", "Jigo", "?") unchanged
    and translates engine prose such as "White wins by 5.5 points" or
    "Black wins by resignation". Anything unrecognised becomes "?";
    a winner without a readable margin becomes "<color>+?".

    Args:
        outcome: Raw outcome text.

    Returns:
        The RE property value.
    """
    text = outcome.strip()
    if text in _SPECIAL_RESULTS or _CANONICAL_RESULT.match(text):
        return text

    low = text.lower()
    if low in ("draw", "jigo", "tie"):
        return "0"

    if low.startswith("white wins"):
        winner = "W"
    elif low.startswith("black wins"):
        winner = "B"
    else:
        return UNKNOWN_RESULT

    _, sep, rest = low.partition(" by ")
    if not sep:
        return f"{winner}+?"
    rest = rest.strip()

    if rest.startswith("resign"):
        return f"{winner}+R"
    if rest.startswith("time"):
        return f"{winner}+T"
    if rest.startswith("forfeit"):
        return f"{winner}+F"

    parts = rest.split()
    if parts and _SCORE.match(parts[0]):
        return f"{winner}+{parts[0]}"
    return f"{winner}+?"


def format_move_node(color: Stone, x: int, y: int, size: int) -> str:
    """Encode a move as an SGF node, e.g. ";B[dd]"; x == y == -1 is a pass."""
    point = "" if (x, y) == (-1, -1) else to_sgf_point(x, y, size)
    return f";{Stone(color).sgf_letter}[{point}]"


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("]", "\\]")


def _unsupported_content(nodes: list[Node], branched: bool) -> str:
    """Describe what a rewrite would lose, or return "" if nothing."""
    if branched:
        return "it has variations"
    if "AE" in nodes[0]:
        return "it uses AE in the root node"
    for number, node in enumerate(nodes[1:], start=1):
        extra = sorted(set(node) - _MOVE_NODE_PROPERTIES)
        if extra:
            return f"node {number} has {', '.join(extra)}"
    return ""


def _unique_path(directory: Path, stem: str) -> Path:
    path = directory / f"{stem}.sgf"
    counter = 1
    while path.exists():
        path = directory / f"{stem}-{counter}.sgf"
        counter += 1
    return path


class GameRecord:
    """One game being recorded to an SGF file.

    Safe to share between threads: the engine's move callbacks and the
    interactive loop may both write to the same record.
    """

    def __init__(
        self,
        path: Path,
        board_size: int,
        komi: float,
        player_black: str,
        player_white: str,
        date: str,
        result: str = UNKNOWN_RESULT,
    ) -> None:
        self.path = Path(path)
        self.board_size = board_size
        self.komi = komi
        self.player_black = player_black
        self.player_white = player_white
        self.date = date
        self.result = result
        self._moves: list[Move] = []
        self._setup_black: list[tuple[int, int]] = []
        self._setup_white: list[tuple[int, int]] = []
        self._root_extra: Node = {}
        self._closed = False
        self._lock = threading.Lock()

    # -- construction -------------------------------------------------------

    @classmethod
    def create(
        cls,
        directory: str | Path,
        board_size: int,
        komi: float,
        player_color: Stone,
        engine_level: int,
        now: datetime | None = None,
    ) -> GameRecord:
        """Start a new record in ``directory`` and write its header.

        Args:
            directory: History directory, created if missing.
            board_size: Board size.
            komi: Komi.
            player_color: The human's color.
            engine_level: GnuGo level, used for the engine's player name.
            now: Timestamp for the file name and DT property.

        Returns:
            The open record.

        Raises:
            RecordError: If the directory or file can't be created.
        """
        now = now or datetime.now()
        directory = Path(directory)
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise RecordError(f"Cannot create history directory {directory}: {exc}") from exc

        stem = f"{now.strftime('%Y-%m-%d_%H%M%S')}_{board_size}x{board_size}"
        path = _unique_path(directory, stem)

        engine = engine_player_name(engine_level)
        if Stone(player_color) is Stone.BLACK:
            black, white = HUMAN_NAME, engine
        else:
            black, white = engine, HUMAN_NAME

        record = cls(path, board_size, komi, black, white, now.strftime("%Y-%m-%d"))
        record._flush()
        logger.info("Recording game to %s", path)
        return record

    @classmethod
    def open(cls, path: str | Path) -> GameRecord:
        """Reopen an existing record to continue recording a loaded game.

        Root properties the recorder doesn't manage (EV, PC, GC, ...)
        are kept. Records that a rewrite would damage, those with
        variations or with comments and markup on later nodes, are
        refused rather than silently truncated.

        Raises:
            RecordError: If the file can't be read or parsed, or can't
                be rewritten without losing content.
        """
        path = Path(path)
        try:
            nodes, branched = read_main_line(path)
            replay = replay_nodes(path, nodes)
        except (OSError, SGFParseError) as exc:
            raise RecordError(f"Cannot reopen record {path}: {exc}") from exc

        lost = _unsupported_content(nodes, branched)
        if lost:
            raise RecordError(f"Won't rewrite {path}: {lost}")

        info = replay.info
        record = cls(
            path,
            info.board_size,
            info.komi,
            info.player_black,
            info.player_white,
            info.date,
            info.result or UNKNOWN_RESULT,
        )
        record._moves = list(replay.moves)
        record._setup_black = list(replay.setup_black)
        record._setup_white = list(replay.setup_white)
        record._root_extra = {
            key: values for key, values in nodes[0].items() if key not in _MANAGED_ROOT
        }
        return record

    # -- mutations ----------------------------------------------------------

    @property
    def moves(self) -> tuple[Move, ...]:
        with self._lock:
            return tuple(self._moves)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_move(self, x: int, y: int, color: Stone) -> None:
        """Append a move; x == y == -1 records a pass."""
        if (x, y) != (-1, -1):
            # Validates the point before it reaches the file
            to_sgf_point(x, y, self.board_size)
        with self._lock:
            self._ensure_open()
            self._moves.append(Move(Stone(color), x, y))
            self._flush()

    def add_setup_position(self, board: list[list[int]]) -> None:
        """Record the current board as AB/AW setup stones.

        Used when recording starts mid-game, so viewers can rebuild the
        position even though the earlier moves were never recorded.
        """
        black: list[tuple[int, int]] = []
        white: list[tuple[int, int]] = []
        for y, row in enumerate(board):
            for x, value in enumerate(row):
                if value == Stone.BLACK:
                    black.append((x, y))
                elif value == Stone.WHITE:
                    white.append((x, y))
        with self._lock:
            self._ensure_open()
            self._setup_black = black
            self._setup_white = white
            self._flush()

    def set_result(self, outcome: str) -> None:
        with self._lock:
            self._ensure_open()
            self.result = parse_result(outcome)
            self._flush()

    def undo_moves(self, n: int) -> None:
        """Drop the last ``n`` moves (fewer if the record is shorter)."""
        with self._lock:
            self._ensure_open()
            n = max(0, min(n, len(self._moves)))
            if n:
                del self._moves[-n:]
            self._flush()

    def close(self) -> None:
        """Write a final copy and stop recording. Safe to call twice."""
        with self._lock:
            if self._closed:
                return
            try:
                self._flush()
            finally:
                self._closed = True

    # -- serialisation ------------------------------------------------------

    def to_sgf(self) -> str:
        """Render the full document."""
        with self._lock:
            return self._render()

    def _render(self) -> str:
        size = self.board_size
        parts = [
            "(;GM[1]FF[4]CA[UTF-8]",
            f"AP[baduk:{__version__}]",
            f"SZ[{size}]",
            f"KM[{self.komi:.1f}]",
            f"PB[{_escape(self.player_black)}]",
            f"PW[{_escape(self.player_white)}]",
            f"DT[{_escape(self.date)}]",
            f"RE[{_escape(self.result)}]",
        ]
        for key, values in self._root_extra.items():
            parts.append(key + "".join(f"[{_escape(value)}]" for value in values))
        parts.append("\n")

        if self._setup_black or self._setup_white:
            parts.append(";")
            if self._setup_black:
                parts.append("AB" + "".join(f"[{to_sgf_point(x, y, size)}]" for x, y in self._setup_black))
            if self._setup_white:
                parts.append("AW" + "".join(f"[{to_sgf_point(x, y, size)}]" for x, y in self._setup_white))
            parts.append("\n")

        for move in self._moves:
            parts.append(format_move_node(move.color, move.x, move.y, size))

        parts.append(")\n")
        return "".join(parts)

    def _ensure_open(self) -> None:
        if self._closed:
            raise RecordClosedError(f"Record {self.path} is closed")

    def _flush(self) -> None:
        """Atomically replace the file with the current document.

        Each write goes through its own temp file in the record's
        directory, so concurrent writers never rename each other's file.
        """
        tmp_path: Path | None = None
        try:
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=self.path.parent,
                prefix=f".{self.path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_path = Path(f.name)
                f.write(self._render())
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except OSError as exc:
            if tmp_path is not None:
                tmp_path.unlink(missing_ok=True)
            raise RecordError(f"Failed to write {self.path}: {exc}") from exc

    def __enter__(self) -> GameRecord:
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
