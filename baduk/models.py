"""Shared data models for the Baduk engine session and game records.

BoardState is the contract between the engine session and whatever
displays the game: a fresh deep copy is handed out on every change.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from enum import IntEnum
from typing import NamedTuple

PHASE_PLAYING = "playing"
PHASE_FINISHED = "finished"

NO_MOVE = (-1, -1)


class Stone(IntEnum):
    """Intersection contents, also used as player colors."""

    EMPTY = 0
    BLACK = 1
    WHITE = 2

    def opposite(self) -> Stone:
        if self is Stone.BLACK:
            return Stone.WHITE
        if self is Stone.WHITE:
            return Stone.BLACK
        raise ValueError("EMPTY has no opposite color")

    @property
    def gtp_name(self) -> str:
        return {Stone.BLACK: "black", Stone.WHITE: "white"}[self]

    @property
    def sgf_letter(self) -> str:
        return {Stone.BLACK: "B", Stone.WHITE: "W"}[self]

    @classmethod
    def from_gtp(cls, name: str) -> Stone:
        """Parse a GTP color ("black", "b", "WHITE", ...)."""
        value = name.strip().lower()
        if value in ("black", "b"):
            return cls.BLACK
        if value in ("white", "w"):
            return cls.WHITE
        raise ValueError(f"Unknown GTP color: {name!r}")

    @classmethod
    def from_sgf(cls, letter: str) -> Stone:
        if letter == "B":
            return cls.BLACK
        if letter == "W":
            return cls.WHITE
        raise ValueError(f"Unknown SGF color: {letter!r}")


class Move(NamedTuple):
    """A single played move. Passes use x == y == -1."""

    color: Stone
    x: int
    y: int

    @property
    def is_pass(self) -> bool:
        return self.x == -1 and self.y == -1


@dataclass
class BoardState:
    """Snapshot of a Go board.

    ``board`` is indexed ``board[y][x]`` with values from Stone.
    Snapshots are immutable by convention once handed to a consumer.
    """

    board: list[list[int]]
    move_number: int = 0
    player_to_move: Stone = Stone.BLACK
    phase: str = PHASE_PLAYING
    outcome: str = ""
    last_move: tuple[int, int] = NO_MOVE

    @classmethod
    def empty(cls, size: int) -> BoardState:
        return cls(board=[[Stone.EMPTY] * size for _ in range(size)])

    @property
    def size(self) -> int:
        return len(self.board)

    @property
    def finished(self) -> bool:
        return self.phase == PHASE_FINISHED

    def stone_at(self, x: int, y: int) -> Stone:
        return Stone(self.board[y][x])

    def copy(self) -> BoardState:
        """Return an independent deep copy."""
        return copy.deepcopy(self)


@dataclass
class GameConfig:
    """Settings for starting (or resuming) one game against the engine."""

    board_size: int = 19
    komi: float = 6.5
    player_color: Stone = Stone.BLACK
    engine_level: int = 5
    engine_path: str | None = None
    load_sgf_path: str | None = None
    load_move_count: int = 0

    @property
    def engine_color(self) -> Stone:
        return Stone(self.player_color).opposite()


@dataclass
class GameInfo:
    """Header metadata of one SGF record on disk."""

    file_path: str
    file_name: str
    board_size: int = 19
    komi: float = 0.0
    player_black: str = ""
    player_white: str = ""
    date: str = ""
    result: str = ""
    move_count: int = 0
    extra: dict[str, str] = field(default_factory=dict)
