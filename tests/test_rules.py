"""Tests for move validation, application and terminal detection.

Covers: move application, promotion policy, malformed input, check and
mate detection, draws (stalemate, material, fifty-move, repetition),
captured pieces and move text parsing.
"""

from __future__ import annotations

import pytest

from chess_arena import rules
from chess_arena.codec import INITIAL_POSITION, decode
from chess_arena.errors import IllegalMoveError, MalformedInputError
from chess_arena.models import COMPLETED, DRAW, MoveRecord, Position


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _play(moves: list[str], start: Position = INITIAL_POSITION) -> list[MoveRecord]:
    """Apply compact moves in order and return the move records."""
    records = []
    position = start
    for index, uci in enumerate(moves, 1):
        applied = rules.apply_uci(position, uci)
        records.append(MoveRecord(index, applied.move, position, applied.position))
        position = applied.position
    return records


# ---------------------------------------------------------------------------
# Move application
# ---------------------------------------------------------------------------


class TestApplyMove:

    def test_pawn_push(self):
        applied = rules.apply_move(INITIAL_POSITION, "e2", "e4")
        assert applied.move.san == "e4"
        assert applied.move.uci == "e2e4"
        assert applied.move.promotion is None
        assert applied.position.turn == "black"
        assert applied.position.fen.startswith("rnbqkbnr/pppppppp/8/8/4P3/8/PPPP1PPP/RNBQKBNR b")

    def test_input_position_unchanged(self):
        before = INITIAL_POSITION.fen
        rules.apply_move(INITIAL_POSITION, "g1", "f3")
        assert INITIAL_POSITION.fen == before

    def test_uppercase_squares(self):
        assert rules.apply_move(INITIAL_POSITION, "G1", "F3").move.san == "Nf3"

    def test_illegal_move(self):
        with pytest.raises(IllegalMoveError) as exc_info:
            rules.apply_move(INITIAL_POSITION, "e2", "e5")
        assert exc_info.value.move == "e2e5"
        assert exc_info.value.reason == "illegal move"

    def test_wrong_side(self):
        with pytest.raises(IllegalMoveError):
            rules.apply_move(INITIAL_POSITION, "e7", "e5")

    def test_castling(self):
        position = decode("r3k2r/8/8/8/8/8/8/R3K2R w KQkq - 0 1")
        applied = rules.apply_move(position, "e1", "g1")
        assert applied.move.san == "O-O"

    def test_en_passant(self):
        records = _play(["e2e4", "a7a6", "e4e5", "d7d5"])
        applied = rules.apply_move(records[-1].after, "e5", "d6")
        assert applied.move.san == "exd6"

    @pytest.mark.parametrize("origin, destination", [
        ("e9", "e4"), ("z2", "e4"), ("e2", ""), ("", "e4"), ("e2e", "e4"),
    ])
    def test_malformed_squares(self, origin, destination):
        with pytest.raises(MalformedInputError):
            rules.apply_move(INITIAL_POSITION, origin, destination)

    def test_malformed_promotion(self):
        position = decode("8/4P3/8/8/8/8/k7/4K3 w - - 0 1")
        with pytest.raises(MalformedInputError, match="promotion"):
            rules.apply_move(position, "e7", "e8", "x")

    def test_apply_uci_bad_length(self):
        with pytest.raises(MalformedInputError):
            rules.apply_uci(INITIAL_POSITION, "e2e")


class TestPromotion:

    _FEN = "8/4P3/8/8/8/8/k7/4K3 w - - 0 1"

    def test_promotion_required(self):
        with pytest.raises(IllegalMoveError) as exc_info:
            rules.apply_move(decode(self._FEN), "e7", "e8")
        assert exc_info.value.reason == "promotion required"

    @pytest.mark.parametrize("piece, san", [
        ("q", "e8=Q"), ("N", "e8=N"), ("rook", "e8=R"), ("Bishop", "e8=B"),
    ])
    def test_promotion_pieces(self, piece, san):
        applied = rules.apply_move(decode(self._FEN), "e7", "e8", piece)
        assert applied.move.san.startswith(san)
        assert applied.move.promotion == san[-1].lower()

    def test_promotion_on_non_promoting_move(self):
        with pytest.raises(IllegalMoveError):
            rules.apply_move(INITIAL_POSITION, "e2", "e4", "q")


# ---------------------------------------------------------------------------
# Terminal detection
# ---------------------------------------------------------------------------


class TestTerminal:

    def test_fools_mate(self):
        records = _play(["f2f3", "e7e5", "g2g4", "d8h4"])
        final = records[-1].after
        assert rules.is_check(final)
        assert rules.is_checkmate(final)
        assert rules.outcome(final) == (COMPLETED, "black_wins")
        assert records[-1].move.san == "Qh4#"

    def test_check_is_not_mate(self):
        position = decode("4k3/8/8/8/8/8/8/4K2R w K - 0 1")
        applied = rules.apply_move(position, "h1", "h8")
        assert rules.is_check(applied.position)
        assert not rules.is_checkmate(applied.position)
        assert rules.outcome(applied.position) is None
        assert rules.king_square_in_check(applied.position) == "e8"

    def test_stalemate_is_draw_outcome(self):
        position = decode("7k/5Q2/6K1/8/8/8/8/8 b - - 0 1")
        assert rules.is_stalemate(position)
        assert not rules.is_draw(position)
        assert rules.outcome(position) == (COMPLETED, DRAW)

    def test_insufficient_material(self):
        position = decode("4k3/8/8/8/8/8/8/4K3 w - - 0 1")
        assert rules.is_insufficient_material(position)
        assert rules.is_draw(position)

    def test_fifty_move_rule(self):
        position = decode("4k3/8/8/8/8/8/8/4K2R w - - 100 80")
        assert rules.is_draw(position)
        assert not rules.is_draw(decode("4k3/8/8/8/8/8/8/4K2R w - - 99 80"))

    def test_threefold_repetition(self):
        shuffle = ["g1f3", "g8f6", "f3g1", "f6g8"]
        records = _play(shuffle * 2)
        final = records[-1].after
        history = rules.history_positions(records)
        assert final.repetition_key == INITIAL_POSITION.repetition_key
        assert rules.repetition_count(final, history) == 3
        assert rules.outcome(final, history) == (COMPLETED, DRAW)

    def test_twofold_is_not_draw(self):
        records = _play(["g1f3", "g8f6", "f3g1", "f6g8"])
        final = records[-1].after
        assert not rules.is_draw(final, rules.history_positions(records))

    def test_initial_position_not_terminal(self):
        assert rules.outcome(INITIAL_POSITION) is None


# ---------------------------------------------------------------------------
# Helpers for display
# ---------------------------------------------------------------------------


class TestDisplayHelpers:

    def test_legal_moves(self):
        assert len(rules.legal_moves(INITIAL_POSITION)) == 20
        assert sorted(rules.legal_moves(INITIAL_POSITION, "g1")) == ["g1f3", "g1h3"]

    def test_san_for_move(self):
        assert rules.san_for_move(INITIAL_POSITION, "b1", "c3") == "Nc3"
        assert rules.san_for_move(INITIAL_POSITION, "b1", "b3") is None

    def test_captured_pieces(self):
        records = _play(["e2e4", "d7d5", "e4d5", "d8d5", "b1c3", "d5a2", "a1a2"])
        captured = rules.captured_pieces(records)
        assert captured == {"white": ["p", "q"], "black": ["P", "P"]}
        assert rules.captured_symbols(captured["white"]) == ["♟", "♛"]

    def test_captured_en_passant(self):
        records = _play(["e2e4", "a7a6", "e4e5", "d7d5", "e5d6"])
        assert rules.captured_pieces(records)["white"] == ["p"]


class TestParseMoveText:

    def test_compact(self):
        assert rules.parse_move_text(INITIAL_POSITION, "e2e4") == ("e2", "e4", None)

    def test_san(self):
        assert rules.parse_move_text(INITIAL_POSITION, "Nf3") == ("g1", "f3", None)

    def test_san_promotion(self):
        position = decode("8/4P3/8/8/8/8/k7/4K3 w - - 0 1")
        assert rules.parse_move_text(position, "e8=Q") == ("e7", "e8", "q")

    def test_illegal_san(self):
        with pytest.raises(IllegalMoveError):
            rules.parse_move_text(INITIAL_POSITION, "Nf6")

    def test_garbage(self):
        with pytest.raises(MalformedInputError):
            rules.parse_move_text(INITIAL_POSITION, "hello world")
