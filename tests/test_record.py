"""Tests for the crash-safe SGF game recorder."""

from __future__ import annotations

import threading
from datetime import datetime
from unittest.mock import patch

import pytest

from baduk import __version__
from baduk.errors import RecordClosedError, RecordError, VertexError
from baduk.models import Move, Stone
from baduk.reader import make_board, parse_header, replay_to_end
from baduk.record import (
    GameRecord,
    engine_player_name,
    format_move_node,
    parse_result,
)

_NOW = datetime(2026, 10, 18, 14, 30, 5)


def _record(tmp_path, **kwargs) -> GameRecord:
    fields = {
        "board_size": 9,
        "komi": 6.5,
        "player_color": Stone.BLACK,
        "engine_level": 5,
        "now": _NOW,
    }
    fields.update(kwargs)
    return GameRecord.create(tmp_path, **fields)


# ---------------------------------------------------------------------------
# Result normalisation
# ---------------------------------------------------------------------------


class TestParseResult:

    @pytest.mark.parametrize("outcome, expected", [
        ("W+5.5", "W+5.5"),
        ("B+R", "B+R"),
        ("B+T", "B+T"),
        ("W+F", "W+F"),
        ("B+12", "B+12"),
        ("W+?", "W+?"),
        ("?", "?"),
        ("0", "0"),
        ("Jigo", "Jigo"),
        ("Void", "Void"),
        ("  B+3.5\n", "B+3.5"),
        ("White wins by 5.5 points", "W+5.5"),
        ("Black wins by 12 points", "B+12"),
        ("White wins by resignation", "W+R"),
        ("Black wins by resignation", "B+R"),
        ("black wins by time", "B+T"),
        ("White wins by forfeit", "W+F"),
        ("White wins", "W+?"),
        ("Black wins by a lot", "B+?"),
        ("Draw", "0"),
        ("jigo", "0"),
        ("tie", "0"),
        ("Game ended", "?"),
        ("", "?"),
    ])
    def test_outcomes(self, outcome, expected):
        assert parse_result(outcome) == expected


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreate:

    def test_file_name_and_header(self, tmp_path):
        record = _record(tmp_path)
        assert record.path == tmp_path / "2026-10-18_143005_9x9.sgf"

        text = record.path.read_text(encoding="utf-8")
        assert text.startswith("(;GM[1]FF[4]CA[UTF-8]")
        assert f"AP[baduk:{__version__}]" in text
        assert "SZ[9]KM[6.5]PB[Player]PW[GnuGo Level 5]DT[2026-10-18]RE[?]" in text
        assert text.endswith(")\n")

    def test_human_as_white(self, tmp_path):
        record = _record(tmp_path, player_color=Stone.WHITE, engine_level=9)
        assert record.player_black == engine_player_name(9) == "GnuGo Level 9"
        assert record.player_white == "Player"

    def test_name_collision_gets_suffix(self, tmp_path):
        first = _record(tmp_path)
        second = _record(tmp_path)
        third = _record(tmp_path)
        assert first.path.name == "2026-10-18_143005_9x9.sgf"
        assert second.path.name == "2026-10-18_143005_9x9-1.sgf"
        assert third.path.name == "2026-10-18_143005_9x9-2.sgf"

    def test_creates_directory(self, tmp_path):
        record = _record(tmp_path / "a" / "b")
        assert record.path.exists()

    def test_unwritable_directory(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(RecordError):
            _record(blocker)

    def test_komi_written_with_one_decimal(self, tmp_path):
        record = _record(tmp_path, komi=0)
        assert "KM[0.0]" in record.to_sgf()


# ---------------------------------------------------------------------------
# Moves
# ---------------------------------------------------------------------------


class TestMoves:

    def test_format_move_node(self):
        assert format_move_node(Stone.BLACK, 3, 3, 19) == ";B[dd]"
        assert format_move_node(Stone.WHITE, -1, -1, 19) == ";W[]"

    def test_file_is_complete_after_every_move(self, tmp_path):
        record = _record(tmp_path)
        moves = [(Stone.BLACK, 4, 4), (Stone.WHITE, 2, 2), (Stone.BLACK, -1, -1)]
        for count, (color, x, y) in enumerate(moves, start=1):
            record.add_move(x, y, color)
            replay = replay_to_end(record.path)
            assert replay.move_count == count
            assert replay.moves[-1] == Move(color, x, y)

    def test_moves_property(self, tmp_path):
        record = _record(tmp_path)
        record.add_move(4, 4, Stone.BLACK)
        assert record.moves == (Move(Stone.BLACK, 4, 4),)

    def test_off_board_move_rejected(self, tmp_path):
        record = _record(tmp_path)
        with pytest.raises(VertexError):
            record.add_move(9, 9, Stone.BLACK)
        assert record.moves == ()
        assert replay_to_end(record.path).move_count == 0

    def test_undo_moves(self, tmp_path):
        record = _record(tmp_path)
        for color, x in ((Stone.BLACK, 0), (Stone.WHITE, 1), (Stone.BLACK, 2)):
            record.add_move(x, 0, color)

        record.undo_moves(2)
        assert record.moves == (Move(Stone.BLACK, 0, 0),)
        assert replay_to_end(record.path).move_count == 1

        record.undo_moves(5)
        assert record.moves == ()
        assert replay_to_end(record.path).move_count == 0

    def test_set_result(self, tmp_path):
        record = _record(tmp_path)
        record.set_result("White wins by 7.5 points")
        assert parse_header(record.path).result == "W+7.5"


# ---------------------------------------------------------------------------
# Setup position and reopening
# ---------------------------------------------------------------------------


class TestSetupAndReopen:

    def test_setup_position_round_trip(self, tmp_path):
        record = _record(tmp_path)
        board = make_board(9)
        board[2][3] = Stone.BLACK
        board[4][5] = Stone.WHITE

        record.add_setup_position(board)
        record.add_move(0, 0, Stone.BLACK)

        text = record.path.read_text(encoding="utf-8")
        assert ";AB[dc]AW[fe]" in text
        replay = replay_to_end(record.path)
        assert replay.board[2][3] == Stone.BLACK
        assert replay.board[4][5] == Stone.WHITE
        assert replay.board[0][0] == Stone.BLACK
        assert replay.move_count == 1

    def test_open_continues_record(self, tmp_path):
        record = _record(tmp_path)
        record.add_move(4, 4, Stone.BLACK)
        record.add_move(2, 2, Stone.WHITE)
        record.close()

        reopened = GameRecord.open(record.path)
        assert reopened.moves == record.moves
        assert reopened.player_black == "Player"
        assert reopened.komi == 6.5
        reopened.add_move(6, 6, Stone.BLACK)

        assert replay_to_end(record.path).move_count == 3

    def test_open_keeps_unmanaged_root_properties(self, tmp_path):
        path = tmp_path / "club.sgf"
        path.write_text(
            "(;GM[1]FF[4]SZ[9]KM[6.5]PB[Player]PW[Ann]EV[Club night]PC[Room \\] 2]GC[friendly];B[ee])",
            encoding="utf-8",
        )

        record = GameRecord.open(path)
        record.add_move(2, 2, Stone.WHITE)

        info = parse_header(path)
        assert info.extra["EV"] == "Club night"
        assert info.extra["PC"] == "Room ] 2"
        assert "GC[friendly]" in path.read_text(encoding="utf-8")
        assert info.move_count == 2

    def test_open_latin1_record_is_rewritten_as_utf8(self, tmp_path):
        path = tmp_path / "old.sgf"
        path.write_bytes(b"(;CA[ISO-8859-1]SZ[9]PB[Jos\xe9]PW[Player];B[ee])")

        GameRecord.open(path).add_move(2, 2, Stone.WHITE)

        text = path.read_text(encoding="utf-8")
        assert "CA[UTF-8]" in text
        assert parse_header(path).player_black == "José"

    def test_open_refuses_invalid_utf8(self, tmp_path):
        path = tmp_path / "bad.sgf"
        original = b"(;SZ[9]PB[Jos\xe9];B[ee])"
        path.write_bytes(original)

        with pytest.raises(RecordError, match="utf-8"):
            GameRecord.open(path)
        assert path.read_bytes() == original

    @pytest.mark.parametrize("text, reason", [
        ("(;SZ[9];B[ee](;W[cc])(;W[gg]))", "variations"),
        ("(;SZ[9];B[ee]C[good shape];W[cc])", "C"),
        ("(;SZ[9];B[ee];W[cc]LB[dd:A])", "LB"),
        ("(;SZ[9]AE[aa];B[ee])", "AE"),
    ])
    def test_open_refuses_what_a_rewrite_would_lose(self, tmp_path, text, reason):
        path = tmp_path / "annotated.sgf"
        path.write_text(text, encoding="utf-8")

        with pytest.raises(RecordError, match=reason):
            GameRecord.open(path)
        assert path.read_text(encoding="utf-8") == text

    def test_open_broken_file(self, tmp_path):
        path = tmp_path / "broken.sgf"
        path.write_text("(;SZ[9];B[aa]", encoding="utf-8")
        with pytest.raises(RecordError):
            GameRecord.open(path)

    def test_names_are_escaped(self, tmp_path):
        record = GameRecord(tmp_path / "g.sgf", 9, 6.5, "Ann [5k]", "Bo\\b", "2026-10-18")
        record.add_move(0, 0, Stone.BLACK)
        info = parse_header(record.path)
        assert info.player_black == "Ann [5k]"
        assert info.player_white == "Bo\\b"


# ---------------------------------------------------------------------------
# Closing and write failures
# ---------------------------------------------------------------------------


class TestClose:

    def test_close_is_idempotent(self, tmp_path):
        record = _record(tmp_path)
        record.close()
        record.close()
        assert record.closed

    def test_mutations_after_close(self, tmp_path):
        record = _record(tmp_path)
        record.close()
        with pytest.raises(RecordClosedError):
            record.add_move(0, 0, Stone.BLACK)
        with pytest.raises(RecordClosedError):
            record.set_result("B+R")

    def test_context_manager_closes(self, tmp_path):
        with _record(tmp_path) as record:
            record.add_move(0, 0, Stone.BLACK)
        assert record.closed

    def test_write_failure_leaves_previous_file(self, tmp_path):
        record = _record(tmp_path)
        record.add_move(4, 4, Stone.BLACK)

        with patch("baduk.record.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(RecordError, match="disk full"):
                record.add_move(2, 2, Stone.WHITE)

        assert replay_to_end(record.path).move_count == 1
        assert not list(tmp_path.glob("*.tmp"))


# ---------------------------------------------------------------------------
# Shared between threads
# ---------------------------------------------------------------------------


class TestConcurrentWrites:

    def test_writers_on_two_threads(self, tmp_path):
        record = _record(tmp_path)

        def _fill_row(color, y):
            for x in range(9):
                record.add_move(x, y, color)

        threads = [
            threading.Thread(target=_fill_row, args=(Stone.BLACK, 0)),
            threading.Thread(target=_fill_row, args=(Stone.WHITE, 8)),
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert len(record.moves) == 18
        assert replay_to_end(record.path).moves == list(record.moves)
        assert not list(tmp_path.glob("*.tmp"))
