"""Tests for GTP vertex and SGF point conversion."""

from __future__ import annotations

import pytest

from baduk.coords import (
    MAX_BOARD_SIZE,
    PASS,
    RESIGN,
    Vertex,
    VertexKind,
    from_sgf_point,
    from_vertex,
    to_sgf_point,
    to_vertex,
)
from baduk.errors import VertexError


# ---------------------------------------------------------------------------
# GTP vertices
# ---------------------------------------------------------------------------


class TestToVertex:

    @pytest.mark.parametrize("x, y, size, expected", [
        (0, 18, 19, "A1"),
        (3, 15, 19, "D4"),
        (15, 3, 19, "Q16"),
        (8, 0, 19, "J19"),
        (0, 0, 9, "A9"),
        (8, 8, 9, "J1"),
        (24, 0, 25, "Z25"),
    ])
    def test_known_points(self, x, y, size, expected):
        assert to_vertex(x, y, size) == expected

    def test_column_i_is_skipped(self):
        columns = {to_vertex(x, 0, 19)[0] for x in range(19)}
        assert "I" not in columns
        assert to_vertex(7, 0, 19)[0] == "H"
        assert to_vertex(8, 0, 19)[0] == "J"

    @pytest.mark.parametrize("x, y", [(-1, 0), (0, -1), (9, 0), (0, 9)])
    def test_off_board(self, x, y):
        with pytest.raises(VertexError):
            to_vertex(x, y, 9)

    def test_unsupported_size(self):
        with pytest.raises(VertexError):
            to_vertex(0, 0, MAX_BOARD_SIZE + 1)


class TestFromVertex:

    def test_point(self):
        assert from_vertex("D4", 19) == Vertex(3, 15, VertexKind.POINT)

    def test_lowercase(self):
        assert from_vertex("q16", 19) == Vertex(15, 3)

    @pytest.mark.parametrize("text", ["pass", "PASS", "Pass"])
    def test_pass(self, text):
        assert from_vertex(text, 19) is PASS
        assert not PASS.is_point

    @pytest.mark.parametrize("text", ["resign", "RESIGN"])
    def test_resign(self, text):
        assert from_vertex(text, 19).kind is VertexKind.RESIGN
        assert from_vertex(text, 19) == RESIGN

    @pytest.mark.parametrize("text", [
        "I5", "D", "", "44", "Dx", "D-1", "D0", "D20", "U1",
        "A01", "D04", "D\uff14", "D\u0664", "D+4", "D 4",
    ])
    def test_invalid(self, text):
        with pytest.raises(VertexError):
            from_vertex(text, 19)

    def test_column_beyond_small_board(self):
        with pytest.raises(VertexError, match="out of bounds"):
            from_vertex("K1", 9)

    def test_every_point_round_trips(self):
        size = 13
        for y in range(size):
            for x in range(size):
                assert from_vertex(to_vertex(x, y, size), size) == Vertex(x, y)


# ---------------------------------------------------------------------------
# SGF points
# ---------------------------------------------------------------------------


class TestSgfPoints:

    @pytest.mark.parametrize("x, y, expected", [
        (0, 0, "aa"),
        (3, 4, "de"),
        (18, 18, "ss"),
    ])
    def test_to_sgf(self, x, y, expected):
        assert to_sgf_point(x, y, 19) == expected

    def test_from_sgf(self):
        assert from_sgf_point("de", 19) == (3, 4)

    def test_empty_is_pass(self):
        assert from_sgf_point("", 19) == (-1, -1)

    def test_tt_is_pass_on_small_boards(self):
        assert from_sgf_point("tt", 19) == (-1, -1)
        assert from_sgf_point("tt", 9) == (-1, -1)

    def test_tt_is_a_point_on_large_boards(self):
        assert from_sgf_point("tt", 21) == (19, 19)

    @pytest.mark.parametrize("text", ["a", "abc", "A1", "zz", "jj"])
    def test_invalid(self, text):
        with pytest.raises(VertexError):
            from_sgf_point(text, 9)

    def test_off_board(self):
        with pytest.raises(VertexError):
            to_sgf_point(9, 0, 9)
