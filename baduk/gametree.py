"""In-memory move tree for planning mode.

Nodes live in an arena (a flat list) and refer to each other by index.
The first child of a node is its main line; later children are
variations. Moves are opaque strings, in practice SGF move nodes such
as ";B[dd]" or ";W[]".
"""

from __future__ import annotations

from dataclasses import dataclass, field

ROOT = 0


@dataclass
class ExplorationNode:
    index: int
    move: str = ""
    parent: int | None = None
    children: list[int] = field(default_factory=list)


class GameTree:
    """A rooted move tree with a cursor.

    The cursor (``current``) always denotes a node reachable from the
    root. Adding a move that already exists under the cursor moves to
    that child instead of creating a duplicate.
    """

    def __init__(self) -> None:
        self.nodes: list[ExplorationNode] = [ExplorationNode(index=ROOT)]
        self._current = ROOT

    def __len__(self) -> int:
        return len(self.nodes)

    @property
    def root(self) -> ExplorationNode:
        return self.nodes[ROOT]

    @property
    def current(self) -> ExplorationNode:
        return self.nodes[self._current]

    def node(self, index: int) -> ExplorationNode:
        return self.nodes[index]

    def add_move(self, move: str) -> ExplorationNode:
        """Add ``move`` below the cursor and advance to it.

        Returns:
            The new node, or the existing child holding the same move.
        """
        current = self.current
        for child_index in current.children:
            child = self.nodes[child_index]
            if child.move == move:
                self._current = child.index
                return child

        node = ExplorationNode(index=len(self.nodes), move=move, parent=current.index)
        self.nodes.append(node)
        current.children.append(node.index)
        self._current = node.index
        return node

    def back(self) -> bool:
        """Move to the parent. False at the root."""
        parent = self.current.parent
        if parent is None:
            return False
        self._current = parent
        return True

    def forward(self, idx: int = 0) -> bool:
        """Move to child ``idx`` (0 is the main line). False if there is none."""
        children = self.current.children
        if not 0 <= idx < len(children):
            return False
        self._current = children[idx]
        return True

    def next_variation(self) -> bool:
        return self._step_variation(1)

    def prev_variation(self) -> bool:
        return self._step_variation(-1)

    def _step_variation(self, step: int) -> bool:
        parent = self.current.parent
        if parent is None:
            return False
        siblings = self.nodes[parent].children
        if len(siblings) < 2:
            return False
        idx = siblings.index(self._current)
        self._current = siblings[(idx + step) % len(siblings)]
        return True

    def path_from_root(self) -> list[str]:
        """Moves from the root to the cursor, root excluded."""
        path: list[str] = []
        node = self.current
        while node.parent is not None:
            path.append(node.move)
            node = self.nodes[node.parent]
        path.reverse()
        return path

    def depth(self) -> int:
        return len(self.path_from_root())

    def num_variations(self) -> int:
        """Number of siblings at the cursor's level (0 at the root)."""
        parent = self.current.parent
        if parent is None:
            return 0
        return len(self.nodes[parent].children)

    def variation_index(self) -> int:
        """Position of the cursor among its siblings (-1 at the root)."""
        parent = self.current.parent
        if parent is None:
            return -1
        return self.nodes[parent].children.index(self._current)

    def has_children(self) -> bool:
        return bool(self.current.children)
