"""Planning mode: explore what-if lines without touching the live game.

A Planner works on a private copy of the board. Moves go into a
GameTree as SGF move nodes; navigating the tree rebuilds the board by
replaying the path from the snapshot. Nothing reaches the engine until
``commit``, which replays the game so far plus the explored path in one
``reset_and_replay`` call.
"""

from __future__ import annotations

import logging

from baduk.coords import to_sgf_point
from baduk.engine import GTPEngine
from baduk.errors import GameOverError, IllegalMoveError
from baduk.gametree import GameTree
from baduk.models import NO_MOVE, BoardState, Move, Stone
from baduk.reader import has_liberty, parse_move_node, remove_captures
from baduk.record import GameRecord, format_move_node

logger = logging.getLogger(__name__)


class Planner:
    """What-if exploration over a board snapshot.

    Args:
        state: Position to explore from; copied, never modified.
        history: Moves that led to ``state``, replayed again on commit.
        color_to_move: Who plays the first planned move. Defaults to
            ``state.player_to_move``.
    """

    def __init__(
        self,
        state: BoardState,
        history: list[Move] | None = None,
        color_to_move: Stone | None = None,
    ) -> None:
        if state.finished:
            raise GameOverError("Can't plan from a finished game")
        self._base = state.copy()
        self._history = list(history or [])
        self._start_color = Stone(color_to_move or state.player_to_move)
        self.tree = GameTree()

        self._board = [row[:] for row in self._base.board]
        self._color = self._start_color
        self._last_move = self._base.last_move

    @classmethod
    def from_engine(cls, engine: GTPEngine) -> Planner:
        """Snapshot a live session. The side to move follows the session's turn."""
        state = engine.get_board_state()
        player = engine.get_player_color()
        color = player if engine.is_my_turn() else player.opposite()
        return cls(state, engine.move_history(), color)

    @property
    def size(self) -> int:
        return self._base.size

    @property
    def color_to_move(self) -> Stone:
        return self._color

    # -- moves --------------------------------------------------------------

    def play(self, x: int, y: int) -> bool:
        """Place a stone for the side to move.

        Returns:
            False if the point is occupied or the move would be suicide.

        Raises:
            VertexError: If (x, y) is off the board.
        """
        to_sgf_point(x, y, self.size)
        if self._board[y][x] != Stone.EMPTY:
            return False

        color = self._color
        self._board[y][x] = color
        remove_captures(self._board, x, y, color)
        if not has_liberty(self._board, x, y):
            self._board[y][x] = Stone.EMPTY
            return False

        self.tree.add_move(format_move_node(color, x, y, self.size))
        self._last_move = (x, y)
        self._color = color.opposite()
        return True

    def pass_move(self) -> None:
        self.tree.add_move(format_move_node(self._color, -1, -1, self.size))
        self._last_move = NO_MOVE
        self._color = self._color.opposite()

    # -- navigation ---------------------------------------------------------

    def back(self) -> bool:
        return self._navigate(self.tree.back())

    def forward(self, idx: int = 0) -> bool:
        return self._navigate(self.tree.forward(idx))

    def next_variation(self) -> bool:
        return self._navigate(self.tree.next_variation())

    def prev_variation(self) -> bool:
        return self._navigate(self.tree.prev_variation())

    def _navigate(self, moved: bool) -> bool:
        if moved:
            self._rebuild()
        return moved

    def _rebuild(self) -> None:
        """Replay the tree path from the snapshot onto a fresh board."""
        self._board = [row[:] for row in self._base.board]
        self._last_move = self._base.last_move
        self._color = self._start_color
        for move in self.moves():
            if move.is_pass:
                self._last_move = NO_MOVE
            else:
                self._board[move.y][move.x] = move.color
                remove_captures(self._board, move.x, move.y, move.color)
                self._last_move = (move.x, move.y)
            self._color = move.color.opposite()

    # -- results ------------------------------------------------------------

    def moves(self) -> list[Move]:
        """The explored path, root to cursor."""
        return [parse_move_node(text, self.size) for text in self.tree.path_from_root()]

    def board_state(self) -> BoardState:
        return BoardState(
            board=[row[:] for row in self._board],
            move_number=self._base.move_number + self.tree.depth(),
            player_to_move=self._color,
            last_move=self._last_move,
        )

    def commit(self, engine: GTPEngine, record: GameRecord | None = None) -> list[Move]:
        """Make the explored line the live game.

        The engine is reset and replays the pre-plan history followed by
        the planned moves. The moves it accepted are appended to
        ``record``, if one is given, before the engine is asked for its
        reply, so the reply is always recorded after them.

        Returns:
            The planned moves that were committed (empty if none).

        Raises:
            IllegalMoveError: If the engine rejected a planned move; the
                moves before it are committed and recorded.
            RecordError: If the record can't be written; the engine
                still gets to reply.
        """
        planned = self.moves()
        if not planned:
            return []

        error: IllegalMoveError | None = None
        try:
            engine.reset_and_replay(self._history + planned, start_engine=False)
        except IllegalMoveError as exc:
            error = exc
        committed = engine.move_history()[len(self._history):]
        logger.info("Committed %d of %d planned moves", len(committed), len(planned))

        try:
            if record is not None:
                for move in committed:
                    record.add_move(move.x, move.y, move.color)
        finally:
            engine.request_engine_move()
        if error is not None:
            raise error
        return committed
