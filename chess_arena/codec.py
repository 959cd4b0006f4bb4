"""Position codec: canonical FEN text <-> ``Position``.

``decode`` is strict and never substitutes defaults. Display code that
edits positions by hand opts into ``decode_or_initial`` explicitly.
"""

from __future__ import annotations

import logging

import chess

from chess_arena.errors import FormatError
from chess_arena.models import Position

logger = logging.getLogger(__name__)

INITIAL_FEN = chess.STARTING_FEN
INITIAL_POSITION = Position(INITIAL_FEN)

_FIELD_COUNT = 6


def encode(position: Position) -> str:
    """Serialize a position to its canonical FEN string."""
    return position.fen


def from_board(board: chess.Board) -> Position:
    """Snapshot a python-chess board as an immutable position."""
    return Position(board.fen())


def _parse_counter(raw: str, name: str, minimum: int) -> int:
    if not raw.isdigit():
        raise FormatError(f"Invalid {name}: {raw!r}")
    value = int(raw)
    if value < minimum:
        raise FormatError(f"{name} out of range: {value}")
    return value


def decode(text: str) -> Position:
    """Parse a FEN string into a position.

    Args:
        text: Six-field FEN string.

    Returns:
        Position in canonical form.

    Raises:
        FormatError: On a wrong field count, out-of-range counters, a bad
            placement or an impossible board.
    """
    if not isinstance(text, str):
        raise FormatError(f"Position must be a string, got {type(text).__name__}")

    fields = text.split()
    if len(fields) != _FIELD_COUNT:
        raise FormatError(
            f"Expected {_FIELD_COUNT} FEN fields, got {len(fields)}: {text!r}"
        )
    if fields[1] not in ("w", "b"):
        raise FormatError(f"Invalid side to move: {fields[1]!r}")
    _parse_counter(fields[4], "half-move clock", 0)
    _parse_counter(fields[5], "full-move number", 1)

    try:
        board = chess.Board(" ".join(fields))
    except ValueError as exc:
        raise FormatError(f"Invalid FEN: {exc}") from exc

    if not board.is_valid():
        raise FormatError(f"Invalid position: {board.status()!r} in {text!r}")

    return from_board(board)


def decode_or_initial(text: str | None) -> Position:
    """Decode user-edited text, resetting to the initial position on failure.

    Only for display fields the user can type into. Everything else must
    call ``decode`` and handle ``FormatError``.
    """
    if not text:
        return INITIAL_POSITION
    try:
        return decode(text)
    except FormatError as exc:
        logger.info("Resetting display position: %s", exc)
        return INITIAL_POSITION
