"""Replay reconstruction and move-history display helpers.

Every ``MoveRecord`` stores both endpoint positions, so any historical
position is a constant-time lookup; nothing is replayed.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from chess_arena.codec import INITIAL_POSITION
from chess_arena.models import (
    WHITE,
    GameAnalysis,
    MoveAnnotation,
    MoveRecord,
    Position,
)


@dataclass(frozen=True)
class HistoryRow:
    """One half-move as shown in the move list.

    ``display_number`` is set only on the first mover's half of a
    full-move row.
    """

    index: int
    san: str
    uci: str
    is_white_move: bool
    display_number: int | None


def sort_by_index(records: Iterable[MoveRecord]) -> list[MoveRecord]:
    """Return records in ascending sequence order (stable)."""
    return sorted(records, key=lambda r: r.index)


def position_at(
    records: Sequence[MoveRecord],
    cursor: int,
    live: Position | None = None,
    initial: Position | None = None,
) -> Position:
    """Position after ``cursor`` moves.

    Args:
        records: Move records sorted by index.
        cursor: 0 for the starting position, ``len(records)`` for live.
        live: Authoritative current position; defaults to the last
            record's ``after``.
        initial: Starting position used when there are no records.

    Raises:
        ValueError: If ``cursor`` is outside ``[0, len(records)]``.
    """
    count = len(records)
    if cursor < 0 or cursor > count:
        raise ValueError(f"Replay cursor {cursor} out of range [0, {count}]")

    if cursor == count:
        if live is not None:
            return live
        if count:
            return records[-1].after
        return initial or INITIAL_POSITION
    if cursor == 0:
        return records[0].before
    return records[cursor - 1].after


def format_for_display(records: Sequence[MoveRecord]) -> list[HistoryRow]:
    """Tag each half-move with its full-move number and side.

    Side comes from the ``before`` position, so games starting from a
    custom position with Black to move number correctly.
    """
    rows: list[HistoryRow] = []
    for record in records:
        is_white = record.mover == WHITE
        number = record.before.fullmove_number
        first_in_row = is_white or not rows
        rows.append(HistoryRow(
            index=record.index,
            san=record.move.san,
            uci=record.move.uci,
            is_white_move=is_white,
            display_number=number if first_in_row else None,
        ))
    return rows


def pair_rows(rows: Sequence[HistoryRow]) -> list[tuple[int, HistoryRow | None, HistoryRow | None]]:
    """Group half-move rows into ``(number, white, black)`` triples."""
    paired: list[tuple[int, HistoryRow | None, HistoryRow | None]] = []
    for row in rows:
        if row.is_white_move or not paired:
            number = row.display_number or 1
            if row.is_white_move:
                paired.append((number, row, None))
            else:
                paired.append((number, None, row))
        else:
            number, white, _ = paired[-1]
            paired[-1] = (number, white, row)
    return paired


def pgn_move_text(records: Sequence[MoveRecord]) -> str:
    """Compact move text, e.g. ``1.e4 e5 2.Nf3``."""
    parts: list[str] = []
    for row in format_for_display(records):
        if row.is_white_move:
            parts.append(f"{row.display_number}.{row.san}")
        elif row.display_number is not None:
            parts.append(f"{row.display_number}...{row.san}")
        else:
            parts.append(row.san)
    return " ".join(parts)


def annotation_for(
    analysis: GameAnalysis | None,
    index: int,
) -> MoveAnnotation | None:
    """Annotation lookup by move sequence index."""
    if analysis is None:
        return None
    return analysis.annotation_for(index)


@dataclass(frozen=True)
class ReplayCursor:
    """Client-local cursor in ``[0, move_count]``."""

    value: int
    move_count: int

    def __post_init__(self) -> None:
        if self.move_count < 0:
            raise ValueError("move_count must be non-negative")
        clamped = max(0, min(self.value, self.move_count))
        object.__setattr__(self, "value", clamped)

    @classmethod
    def live(cls, move_count: int) -> ReplayCursor:
        return cls(move_count, move_count)

    @property
    def is_live(self) -> bool:
        return self.value == self.move_count

    def step(self, delta: int) -> ReplayCursor:
        return ReplayCursor(self.value + delta, self.move_count)

    def first(self) -> ReplayCursor:
        return ReplayCursor(0, self.move_count)

    def last(self) -> ReplayCursor:
        return ReplayCursor(self.move_count, self.move_count)

    def resize(self, move_count: int) -> ReplayCursor:
        """Follow a growing log; a live cursor stays live."""
        if self.is_live:
            return ReplayCursor.live(move_count)
        return ReplayCursor(self.value, move_count)
