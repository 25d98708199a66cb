"""Coordinate conversion between board (x, y) and the two text notations.

Board coordinates are zero-indexed with the origin at the top-left.

GTP vertices use column letters A..Z without I and row numbers counted
from the bottom edge, e.g. on 19x19: (0, 18) -> "A1", (3, 15) -> "D4",
(15, 3) -> "Q16".

SGF points are two lowercase letters, column then row, counted from
the top-left: (0, 0) -> "aa", (3, 4) -> "de".
"""

from __future__ import annotations

from enum import Enum
from typing import NamedTuple

from baduk.errors import VertexError

# GTP skips "I" so it can't be mistaken for "1"
_GTP_COLUMNS = "ABCDEFGHJKLMNOPQRSTUVWXYZ"
_SGF_LETTERS = "abcdefghijklmnopqrstuvwxyz"

MAX_BOARD_SIZE = len(_GTP_COLUMNS)


class VertexKind(Enum):
    POINT = "point"
    PASS = "pass"
    RESIGN = "resign"


class Vertex(NamedTuple):
    """Decoded GTP vertex. Pass and resign carry x == y == -1."""

    x: int
    y: int
    kind: VertexKind = VertexKind.POINT

    @property
    def is_point(self) -> bool:
        return self.kind is VertexKind.POINT


PASS = Vertex(-1, -1, VertexKind.PASS)
RESIGN = Vertex(-1, -1, VertexKind.RESIGN)


def _check_size(size: int) -> None:
    if not 1 <= size <= MAX_BOARD_SIZE:
        raise VertexError(f"Unsupported board size: {size}")


def _check_point(x: int, y: int, size: int) -> None:
    _check_size(size)
    if not (0 <= x < size and 0 <= y < size):
        raise VertexError(f"Point ({x}, {y}) is off a {size}x{size} board")


def to_vertex(x: int, y: int, size: int) -> str:
    """Convert board coordinates to a GTP vertex.

    Args:
        x: Column, 0 at the left edge.
        y: Row, 0 at the top edge.
        size: Board size.

    Returns:
        Vertex string such as "D4".

    Raises:
        VertexError: If the point is not on the board.
    """
    _check_point(x, y, size)
    return f"{_GTP_COLUMNS[x]}{size - y}"


def from_vertex(vertex: str, size: int) -> Vertex:
    """Convert a GTP vertex (or "pass"/"resign") to board coordinates.

    Args:
        vertex: Vertex as sent by the engine, any letter case.
        size: Board size.

    Returns:
        Vertex tuple; ``kind`` tells points, passes and resignations apart.

    Raises:
        VertexError: If the text is malformed or off the board.
    """
    _check_size(size)
    text = vertex.strip().upper()

    if text == "PASS":
        return PASS
    if text == "RESIGN":
        return RESIGN

    if len(text) < 2:
        raise VertexError(f"Invalid vertex: {vertex!r}")

    col = _GTP_COLUMNS.find(text[0])
    if col == -1:
        raise VertexError(f"Invalid column in vertex: {vertex!r}")

    digits = text[1:]
    if not (digits.isascii() and digits.isdigit()) or digits.startswith("0"):
        raise VertexError(f"Invalid row in vertex: {vertex!r}")
    row = int(digits)

    y = size - row
    if col >= size or not 0 <= y < size:
        raise VertexError(f"Vertex out of bounds: {vertex!r}")

    return Vertex(col, y)


def to_sgf_point(x: int, y: int, size: int) -> str:
    """Convert board coordinates to an SGF point ("aa" is top-left)."""
    _check_point(x, y, size)
    return _SGF_LETTERS[x] + _SGF_LETTERS[y]


def from_sgf_point(text: str, size: int) -> tuple[int, int]:
    """Convert an SGF point to board coordinates.

    An empty value is a pass, and so is "tt" on boards up to 19x19
    (the FF[3] convention still written by older programs).

    Returns:
        (x, y), or (-1, -1) for a pass.

    Raises:
        VertexError: If the value is malformed or off the board.
    """
    _check_size(size)
    if text == "" or (text == "tt" and size <= 19):
        return (-1, -1)
    if len(text) != 2:
        raise VertexError(f"Invalid SGF point: {text!r}")

    x = _SGF_LETTERS.find(text[0])
    y = _SGF_LETTERS.find(text[1])
    if x == -1 or y == -1:
        raise VertexError(f"Invalid SGF point: {text!r}")
    if x >= size or y >= size:
        raise VertexError(f"SGF point {text!r} is off a {size}x{size} board")
    return (x, y)
