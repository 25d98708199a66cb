"""SGF game record reading: fast header listing and full board replay.

The parser follows the main line of a record (the first variation at
every branch). Replay trusts the file: moves are applied with capture
resolution but never re-judged for legality, so a suicide in a foreign
record stays on the board as written.
"""

from __future__ import annotations

import logging
import re
from collections import deque
from dataclasses import dataclass, field
from pathlib import Path

from baduk.coords import from_sgf_point
from baduk.errors import SGFParseError, VertexError
from baduk.models import NO_MOVE, PHASE_FINISHED, BoardState, GameInfo, Move, Stone

logger = logging.getLogger(__name__)

Node = dict[str, list[str]]

_DEFAULT_SIZE = 19
_NEIGHBOURS = ((0, -1), (0, 1), (-1, 0), (1, 0))
_WHITESPACE = " \t\r\n"
_CHARSET = re.compile(rb"(?<![A-Z])CA\s*\[([^\]]*)\]")


# ---------------------------------------------------------------------------
# Tokenizer
# ---------------------------------------------------------------------------


@dataclass
class _TreeFrame:
    on_main_line: bool
    node_count: int = 0
    has_subtrees: bool = False


class _SGFParser:
    """Single-pass SGF parser collecting the main line of the first game tree.

    Nesting is tracked with an explicit stack so deeply nested
    variations can't exhaust the interpreter's recursion limit.
    """

    def __init__(self, text: str) -> None:
        self._text = text
        self._pos = 0
        self.branched = False

    def parse(self) -> list[Node]:
        text = self._text
        stack: list[_TreeFrame] = []
        main_line: list[Node] = []

        self._skip_whitespace()
        if self._pos >= len(text) or text[self._pos] != "(":
            raise SGFParseError("SGF must start with '('")

        while self._pos < len(text):
            ch = text[self._pos]
            if ch in _WHITESPACE:
                self._pos += 1
            elif ch == "(":
                if stack:
                    parent = stack[-1]
                    if parent.node_count == 0:
                        raise SGFParseError(f"Variation before any node at offset {self._pos}")
                    on_main = parent.on_main_line and not parent.has_subtrees
                    if parent.has_subtrees:
                        self.branched = True
                    parent.has_subtrees = True
                else:
                    on_main = True
                stack.append(_TreeFrame(on_main_line=on_main))
                self._pos += 1
            elif ch == ";":
                if not stack:
                    raise SGFParseError(f"Node outside a game tree at offset {self._pos}")
                frame = stack[-1]
                if frame.has_subtrees:
                    raise SGFParseError(f"Node after variations at offset {self._pos}")
                self._pos += 1
                node = self._parse_node()
                frame.node_count += 1
                if frame.on_main_line:
                    main_line.append(node)
            elif ch == ")":
                if not stack:
                    raise SGFParseError(f"Unbalanced ')' at offset {self._pos}")
                if stack[-1].node_count == 0:
                    raise SGFParseError(f"Empty game tree at offset {self._pos}")
                stack.pop()
                self._pos += 1
                if not stack:
                    # Only the first game tree of a collection is used
                    return main_line
            else:
                raise SGFParseError(f"Unexpected {ch!r} at offset {self._pos}")

        raise SGFParseError("Unterminated game tree")

    def _parse_node(self) -> Node:
        text = self._text
        node: Node = {}
        while True:
            self._skip_whitespace()
            start = self._pos
            while self._pos < len(text) and text[self._pos].isalpha():
                self._pos += 1
            if self._pos == start:
                return node

            # FF[3] allowed lowercase letters inside property names
            ident = "".join(c for c in text[start:self._pos] if c.isupper())
            if not ident:
                raise SGFParseError(f"Invalid property name at offset {start}")

            self._skip_whitespace()
            if self._pos >= len(text) or text[self._pos] != "[":
                raise SGFParseError(f"Property {ident} has no value at offset {self._pos}")

            values = node.setdefault(ident, [])
            while self._pos < len(text) and text[self._pos] == "[":
                values.append(self._parse_value())
                self._skip_whitespace()

    def _parse_value(self) -> str:
        text = self._text
        self._pos += 1  # '['
        chars: list[str] = []
        while self._pos < len(text):
            ch = text[self._pos]
            if ch == "\\":
                self._pos += 1
                if self._pos >= len(text):
                    break
                escaped = text[self._pos]
                # Escaped newline is a soft line break
                if escaped not in "\r\n":
                    chars.append(escaped)
            elif ch == "]":
                self._pos += 1
                return "".join(chars)
            else:
                chars.append(ch)
            self._pos += 1
        raise SGFParseError("Unterminated property value")

    def _skip_whitespace(self) -> None:
        while self._pos < len(self._text) and self._text[self._pos] in _WHITESPACE:
            self._pos += 1


def parse_sgf(text: str) -> list[Node]:
    """Parse SGF text and return the nodes of its main line.

    Args:
        text: Complete SGF document.

    Returns:
        List of nodes (property name -> list of values), root first.

    Raises:
        SGFParseError: If the document is malformed.
    """
    return _SGFParser(text).parse()


def decode_sgf(data: bytes) -> str:
    """Decode raw SGF bytes using the record's CA[] charset (UTF-8 if absent).

    Raises:
        SGFParseError: If the charset is unknown or the bytes don't decode.
    """
    match = _CHARSET.search(data)
    charset = match.group(1).decode("ascii", "replace").strip() if match else ""
    charset = charset or "utf-8"
    try:
        return data.decode(charset)
    except LookupError as exc:
        raise SGFParseError(f"Unknown charset: CA[{charset}]") from exc
    except UnicodeDecodeError as exc:
        raise SGFParseError(f"Record is not valid {charset}: {exc}") from exc


def read_main_line(path: str | Path) -> tuple[list[Node], bool]:
    """Read an SGF file.

    Returns:
        The main-line nodes and whether the tree has any variations.

    Raises:
        OSError: If the file can't be read.
        SGFParseError: If the file is malformed or can't be decoded.
    """
    parser = _SGFParser(decode_sgf(Path(path).read_bytes()))
    nodes = parser.parse()
    return nodes, parser.branched


def read_sgf(path: str | Path) -> list[Node]:
    """Read and parse an SGF file. OSError propagates to the caller."""
    nodes, _ = read_main_line(path)
    return nodes


# ---------------------------------------------------------------------------
# Header
# ---------------------------------------------------------------------------


def _first(node: Node, key: str, default: str = "") -> str:
    values = node.get(key)
    return values[0] if values else default


def _board_size(root: Node) -> int:
    raw = _first(root, "SZ")
    if not raw:
        return _DEFAULT_SIZE
    # "19:19" is the FF[4] rectangular form; only square boards are supported
    head, _, tail = raw.partition(":")
    try:
        size = int(head.strip())
        height = int(tail.strip()) if tail else size
    except ValueError as exc:
        raise SGFParseError(f"Invalid board size: SZ[{raw}]") from exc
    if height != size:
        raise SGFParseError(f"Rectangular boards are not supported: SZ[{raw}]")
    if not 1 <= size <= 25:
        raise SGFParseError(f"Unsupported board size: SZ[{raw}]")
    return size


def _komi(root: Node) -> float:
    raw = _first(root, "KM").strip()
    if not raw:
        return 0.0
    try:
        return float(raw)
    except ValueError as exc:
        raise SGFParseError(f"Invalid komi: KM[{raw}]") from exc


def _is_move_node(node: Node) -> bool:
    return "B" in node or "W" in node


def _info_from_nodes(path: Path, nodes: list[Node]) -> GameInfo:
    root = nodes[0]
    extra = {key: values[0] for key, values in root.items() if values and key in ("EV", "PC", "AP", "RU")}
    return GameInfo(
        file_path=str(path),
        file_name=path.name,
        board_size=_board_size(root),
        komi=_komi(root),
        player_black=_first(root, "PB"),
        player_white=_first(root, "PW"),
        date=_first(root, "DT"),
        result=_first(root, "RE"),
        move_count=sum(1 for node in nodes if _is_move_node(node)),
        extra=extra,
    )


def parse_header(path: str | Path) -> GameInfo:
    """Read the metadata of a record without simulating the board.

    Args:
        path: Path to the SGF file.

    Returns:
        GameInfo with missing optional fields defaulted.

    Raises:
        OSError: If the file can't be read.
        SGFParseError: If the file is malformed.
    """
    path = Path(path)
    return _info_from_nodes(path, read_sgf(path))


# ---------------------------------------------------------------------------
# Board helpers
# ---------------------------------------------------------------------------


def make_board(size: int) -> list[list[int]]:
    """Create an empty ``size`` x ``size`` board indexed ``board[y][x]``."""
    return [[Stone.EMPTY] * size for _ in range(size)]


def _neighbours(x: int, y: int, size: int):
    for dx, dy in _NEIGHBOURS:
        nx, ny = x + dx, y + dy
        if 0 <= nx < size and 0 <= ny < size:
            yield nx, ny


def group_at(board: list[list[int]], x: int, y: int) -> tuple[set[tuple[int, int]], set[tuple[int, int]]]:
    """Flood-fill the group containing (x, y).

    Returns:
        (stones, liberties) as sets of (x, y). Both are empty when the
        point itself is empty.
    """
    color = board[y][x]
    if color == Stone.EMPTY:
        return set(), set()

    size = len(board)
    stones = {(x, y)}
    liberties: set[tuple[int, int]] = set()
    queue = deque([(x, y)])
    while queue:
        cx, cy = queue.popleft()
        for nx, ny in _neighbours(cx, cy, size):
            value = board[ny][nx]
            if value == Stone.EMPTY:
                liberties.add((nx, ny))
            elif value == color and (nx, ny) not in stones:
                stones.add((nx, ny))
                queue.append((nx, ny))
    return stones, liberties


def has_liberty(board: list[list[int]], x: int, y: int) -> bool:
    """True if the group at (x, y) has at least one liberty."""
    _, liberties = group_at(board, x, y)
    return bool(liberties)


def remove_captures(board: list[list[int]], x: int, y: int, color: int) -> list[tuple[int, int]]:
    """Remove opposing groups next to (x, y) that have no liberties left.

    Args:
        board: Board to modify in place.
        x: Column of the stone just placed.
        y: Row of the stone just placed.
        color: Color of the stone just placed.

    Returns:
        The captured points.
    """
    opponent = Stone(color).opposite()
    size = len(board)
    captured: list[tuple[int, int]] = []
    for nx, ny in _neighbours(x, y, size):
        if board[ny][nx] != opponent:
            continue
        stones, liberties = group_at(board, nx, ny)
        if liberties:
            continue
        for sx, sy in stones:
            board[sy][sx] = Stone.EMPTY
        captured.extend(stones)
    return captured


# ---------------------------------------------------------------------------
# Replay
# ---------------------------------------------------------------------------


@dataclass
class Replay:
    """Final position of a record plus what it took to get there."""

    info: GameInfo
    board: list[list[int]]
    move_count: int
    moves: list[Move] = field(default_factory=list)
    setup_black: list[tuple[int, int]] = field(default_factory=list)
    setup_white: list[tuple[int, int]] = field(default_factory=list)

    @property
    def next_color(self) -> Stone:
        if self.moves:
            return self.moves[-1].color.opposite()
        return Stone.BLACK

    def to_board_state(self) -> BoardState:
        last = NO_MOVE
        if self.moves and not self.moves[-1].is_pass:
            last = (self.moves[-1].x, self.moves[-1].y)
        state = BoardState(
            board=[row[:] for row in self.board],
            move_number=self.move_count,
            player_to_move=self.next_color,
            last_move=last,
        )
        if self.info.result and self.info.result != "?":
            state.phase = PHASE_FINISHED
            state.outcome = self.info.result
        return state


def _expand_points(value: str, size: int) -> list[tuple[int, int]]:
    """Decode a point or an FF[4] compressed rectangle like "aa:cc"."""
    try:
        if ":" in value:
            first, _, second = value.partition(":")
            x1, y1 = from_sgf_point(first, size)
            x2, y2 = from_sgf_point(second, size)
            if -1 in (x1, y1, x2, y2):
                raise SGFParseError(f"Invalid point rectangle: {value!r}")
            return [
                (x, y)
                for y in range(min(y1, y2), max(y1, y2) + 1)
                for x in range(min(x1, x2), max(x1, x2) + 1)
            ]
        point = from_sgf_point(value, size)
    except VertexError as exc:
        raise SGFParseError(str(exc)) from exc
    if point == NO_MOVE:
        raise SGFParseError("Setup property with an empty point")
    return [point]


def _apply_setup(node: Node, board: list[list[int]], replay: Replay) -> None:
    size = len(board)
    for value in node.get("AE", []):
        for x, y in _expand_points(value, size):
            board[y][x] = Stone.EMPTY
    for key, color, collected in (
        ("AB", Stone.BLACK, replay.setup_black),
        ("AW", Stone.WHITE, replay.setup_white),
    ):
        for value in node.get(key, []):
            for x, y in _expand_points(value, size):
                board[y][x] = color
                collected.append((x, y))


def _apply_move(node: Node, board: list[list[int]], replay: Replay) -> None:
    if "B" in node and "W" in node:
        raise SGFParseError("Node holds both a black and a white move")
    key = "B" if "B" in node else "W"
    color = Stone.from_sgf(key)
    values = node[key]
    if len(values) != 1:
        raise SGFParseError(f"Move property {key} must have exactly one value")

    try:
        x, y = from_sgf_point(values[0], len(board))
    except VertexError as exc:
        raise SGFParseError(str(exc)) from exc

    replay.move_count += 1
    replay.moves.append(Move(color, x, y))
    if (x, y) == NO_MOVE:
        return
    board[y][x] = color
    remove_captures(board, x, y, color)


def replay_nodes(path: Path, nodes: list[Node]) -> Replay:
    """Apply setup stones and moves of an already-parsed main line."""
    info = _info_from_nodes(path, nodes)
    board = make_board(info.board_size)
    replay = Replay(info=info, board=board, move_count=0)
    for node in nodes:
        _apply_setup(node, board, replay)
        if _is_move_node(node):
            _apply_move(node, board, replay)
    return replay


def replay_to_end(path: str | Path) -> Replay:
    """Replay a record to its final position.

    Setup stones (AB/AW/AE) are honoured in the root node or any later
    node. Every move is followed by capture resolution.

    Raises:
        OSError: If the file can't be read.
        SGFParseError: If the file is malformed; no partial board is returned.
    """
    path = Path(path)
    return replay_nodes(path, read_sgf(path))


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


def list_games(directory: str | Path) -> list[GameInfo]:
    """List the records in a directory, newest first.

    Files that can't be read or parsed are skipped. A missing directory
    gives an empty list.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return []

    found: list[tuple[float, str, GameInfo]] = []
    for path in directory.iterdir():
        if path.suffix.lower() != ".sgf" or not path.is_file():
            continue
        try:
            info = parse_header(path)
            mtime = path.stat().st_mtime
        except (OSError, SGFParseError) as exc:
            logger.warning("Skipping unreadable record %s: %s", path.name, exc)
            continue
        found.append((mtime, path.name, info))

    found.sort(key=lambda item: (item[0], item[1]), reverse=True)
    return [info for _, _, info in found]


def parse_move_node(text: str, size: int) -> Move:
    """Decode a single SGF move node such as ";B[dd]" or ";W[]"."""
    nodes = parse_sgf(f"({text})")
    if len(nodes) != 1 or not _is_move_node(nodes[0]):
        raise SGFParseError(f"Not a move node: {text!r}")
    replay = Replay(info=GameInfo(file_path="", file_name=""), board=make_board(size), move_count=0)
    _apply_move(nodes[0], replay.board, replay)
    return replay.moves[0]
