"""Rules engine: move validation, application and terminal detection.

Pure functions over immutable ``Position`` values, backed by python-chess.
Nothing here touches a session; the controller decides what to do with
the results.

Promotion is never guessed: a pawn move onto the last rank without an
explicit promotion piece is rejected.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

import chess

from chess_arena.codec import from_board
from chess_arena.errors import IllegalMoveError, MalformedInputError
from chess_arena.models import (
    COMPLETED,
    DRAW,
    Move,
    MoveRecord,
    Position,
    opposite,
    winner_result,
)

_PROMOTION_NAMES = {
    "q": chess.QUEEN,
    "r": chess.ROOK,
    "b": chess.BISHOP,
    "n": chess.KNIGHT,
    "queen": chess.QUEEN,
    "rook": chess.ROOK,
    "bishop": chess.BISHOP,
    "knight": chess.KNIGHT,
}

# Unicode piece symbols
PIECE_SYMBOLS = {
    "K": "♔", "Q": "♕", "R": "♖", "B": "♗",
    "N": "♘", "P": "♙",
    "k": "♚", "q": "♛", "r": "♜", "b": "♝",
    "n": "♞", "p": "♟",
}

_FIFTY_MOVE_PLIES = 100
_REPETITION_COUNT = 3


@dataclass(frozen=True)
class AppliedMove:
    """Result of a successful ``apply_move``."""

    move: Move
    position: Position


def parse_square(text: str) -> chess.Square:
    """Parse a square name such as ``"e4"``.

    Raises:
        MalformedInputError: If the text is not a square on the board.
    """
    if not isinstance(text, str):
        raise MalformedInputError(f"Invalid square: {text!r}")
    try:
        return chess.parse_square(text.strip().lower())
    except ValueError:
        raise MalformedInputError(f"Invalid square: {text!r}") from None


def parse_promotion(text: str | None) -> chess.PieceType | None:
    """Parse a promotion piece letter or name.

    Raises:
        MalformedInputError: For anything other than q/r/b/n or their names.
    """
    if text is None or text == "":
        return None
    piece = _PROMOTION_NAMES.get(str(text).strip().lower())
    if piece is None:
        raise MalformedInputError(f"Invalid promotion piece: {text!r}")
    return piece


def _is_promotion_attempt(board: chess.Board, from_sq: chess.Square, to_sq: chess.Square) -> bool:
    return any(
        m.from_square == from_sq and m.to_square == to_sq and m.promotion is not None
        for m in board.legal_moves
    )


def apply_move(
    position: Position,
    origin: str,
    destination: str,
    promotion: str | None = None,
) -> AppliedMove:
    """Validate a move and apply it to a position.

    Args:
        position: Position before the move.
        origin: Origin square name.
        destination: Destination square name.
        promotion: Promotion piece (q/r/b/n) for promoting pawn moves.

    Returns:
        AppliedMove with the recorded move and the new position.

    Raises:
        MalformedInputError: For bad square or promotion text.
        IllegalMoveError: If the move is not legal for the side to move.
    """
    from_sq = parse_square(origin)
    to_sq = parse_square(destination)
    piece_type = parse_promotion(promotion)

    board = position.board()
    candidate = chess.Move(from_sq, to_sq, promotion=piece_type)
    label = candidate.uci()

    if piece_type is None and _is_promotion_attempt(board, from_sq, to_sq):
        raise IllegalMoveError(label, "promotion required")

    if candidate not in board.legal_moves:
        raise IllegalMoveError(label)

    san = board.san(candidate)
    board.push(candidate)

    move = Move(
        origin=chess.square_name(from_sq),
        destination=chess.square_name(to_sq),
        promotion=chess.piece_symbol(piece_type) if piece_type else None,
        san=san,
        uci=label,
    )
    return AppliedMove(move=move, position=from_board(board))


def apply_uci(position: Position, uci: str) -> AppliedMove:
    """Apply a compact ``e2e4``/``e7e8q`` move string."""
    text = (uci or "").strip().lower()
    if len(text) not in (4, 5):
        raise MalformedInputError(f"Invalid move code: {uci!r}")
    return apply_move(position, text[:2], text[2:4], text[4:] or None)


def is_check(position: Position) -> bool:
    return position.board().is_check()


def is_checkmate(position: Position) -> bool:
    return position.board().is_checkmate()


def is_stalemate(position: Position) -> bool:
    return position.board().is_stalemate()


def is_insufficient_material(position: Position) -> bool:
    return position.board().is_insufficient_material()


def repetition_count(position: Position, history: Iterable[Position]) -> int:
    """Occurrences of ``position`` among ``history`` plus itself."""
    key = position.repetition_key
    seen = sum(1 for p in history if p.repetition_key == key)
    return seen + 1


def is_draw(position: Position, history: Iterable[Position] = ()) -> bool:
    """Insufficient material, fifty-move rule or threefold repetition.

    Stalemate is reported separately by ``is_stalemate``.

    Args:
        position: Position to test.
        history: Earlier positions of the same game, not including
            ``position`` itself.
    """
    if is_insufficient_material(position):
        return True
    if position.halfmove_clock >= _FIFTY_MOVE_PLIES:
        return True
    return repetition_count(position, history) >= _REPETITION_COUNT


def outcome(
    position: Position,
    history: Iterable[Position] = (),
) -> tuple[str, str] | None:
    """Terminal ``(status, result)`` for a position, or None if play goes on."""
    if is_checkmate(position):
        # The side to move is mated; the previous mover wins.
        return COMPLETED, winner_result(opposite(position.turn))
    if is_stalemate(position) or is_draw(position, history):
        return COMPLETED, DRAW
    return None


def history_positions(records: Sequence[MoveRecord]) -> list[Position]:
    """Positions that preceded the latest one, for repetition checks."""
    if not records:
        return []
    return [records[0].before] + [r.after for r in records[:-1]]


def san_for_move(
    position: Position,
    origin: str,
    destination: str,
    promotion: str | None = None,
) -> str | None:
    """Display notation for a move, or None if it is not legal here."""
    try:
        return apply_move(position, origin, destination, promotion).move.san
    except (IllegalMoveError, MalformedInputError):
        return None


def legal_moves(position: Position, square: str | None = None) -> list[str]:
    """Legal moves in compact notation, optionally from one square."""
    board = position.board()
    if square is None:
        return [m.uci() for m in board.legal_moves]
    from_sq = parse_square(square)
    return [m.uci() for m in board.legal_moves if m.from_square == from_sq]


def king_square_in_check(position: Position) -> str | None:
    """Square of the side-to-move king when it is in check."""
    board = position.board()
    if not board.is_check():
        return None
    king = board.king(board.turn)
    return chess.square_name(king) if king is not None else None


def captured_pieces(records: Iterable[MoveRecord]) -> dict[str, list[str]]:
    """Pieces captured by each side, read from the stored ``before`` boards.

    Returns:
        ``{"white": [...], "black": [...]}``. White's list holds black
        piece letters (lowercase); Black's list holds white piece letters
        (uppercase).
    """
    result: dict[str, list[str]] = {"white": [], "black": []}
    for record in records:
        board = record.before.board()
        move = chess.Move.from_uci(record.move.uci)
        if not board.is_capture(move):
            continue
        if board.is_en_passant(move):
            captured = chess.Piece(chess.PAWN, not board.turn)
        else:
            captured = board.piece_at(move.to_square)
        if captured is None:
            continue
        result[record.mover].append(captured.symbol())
    return result


def captured_symbols(piece_codes: Iterable[str]) -> list[str]:
    return [PIECE_SYMBOLS.get(code, code) for code in piece_codes]


def parse_move_text(position: Position, text: str) -> tuple[str, str, str | None]:
    """Split SAN (``Nf3``) or compact (``g1f3``) text into move parts.

    Returns:
        ``(origin, destination, promotion)``.

    Raises:
        MalformedInputError: If the text is neither notation.
        IllegalMoveError: If SAN text names no legal or an ambiguous move.
    """
    cleaned = (text or "").strip()
    lowered = cleaned.lower()
    if len(lowered) in (4, 5) and lowered[:2] in chess.SQUARE_NAMES and lowered[2:4] in chess.SQUARE_NAMES:
        return lowered[:2], lowered[2:4], lowered[4:] or None

    board = position.board()
    try:
        move = board.parse_san(cleaned)
    except chess.InvalidMoveError:
        raise MalformedInputError(f"Invalid move text: {text!r}") from None
    except (chess.IllegalMoveError, chess.AmbiguousMoveError):
        raise IllegalMoveError(cleaned) from None

    promotion = chess.piece_symbol(move.promotion) if move.promotion else None
    return chess.square_name(move.from_square), chess.square_name(move.to_square), promotion
