"""Shared data models for the game session and analysis core.

Positions, moves and move records are immutable values. ``GameSession``
is the one mutable aggregate and is only changed by the session
controller through the game store.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone

import chess

# Lifecycle statuses
WAITING = "waiting"
IN_PROGRESS = "in_progress"
COMPLETED = "completed"
ABANDONED = "abandoned"

STATUSES = (WAITING, IN_PROGRESS, COMPLETED, ABANDONED)
TERMINAL_STATUSES = frozenset({COMPLETED, ABANDONED})

# Terminal results
WHITE_WINS = "white_wins"
BLACK_WINS = "black_wins"
DRAW = "draw"

RESULTS = (WHITE_WINS, BLACK_WINS, DRAW)

WHITE = "white"
BLACK = "black"
RANDOM = "random"

# Annotation tags, weakest last
BEST = "best"
GOOD = "good"
MISTAKE = "mistake"
BLUNDER = "blunder"

ANNOTATION_TAGS = (BEST, GOOD, MISTAKE, BLUNDER)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def opposite(color: str) -> str:
    """Return the other side's color name."""
    return BLACK if color == WHITE else WHITE


def winner_result(color: str) -> str:
    """Result value for a win by ``color``."""
    return WHITE_WINS if color == WHITE else BLACK_WINS


@dataclass(frozen=True)
class Position:
    """Immutable board position in canonical FEN form.

    Use ``chess_arena.codec.decode`` to build one from untrusted text; the
    constructor assumes ``fen`` is already canonical.
    """

    fen: str

    def board(self) -> chess.Board:
        """Return a fresh python-chess board for this position."""
        return chess.Board(self.fen)

    @property
    def turn(self) -> str:
        """Side to move, ``"white"`` or ``"black"``."""
        return WHITE if self.fen.split()[1] == "w" else BLACK

    @property
    def repetition_key(self) -> str:
        """Placement, side to move, castling and en passant fields."""
        return " ".join(self.fen.split()[:4])

    @property
    def halfmove_clock(self) -> int:
        return int(self.fen.split()[4])

    @property
    def fullmove_number(self) -> int:
        return int(self.fen.split()[5])

    def __str__(self) -> str:
        return self.fen


@dataclass(frozen=True)
class Move:
    """A legality-checked move. Only ``rules.apply_move`` creates these."""

    origin: str
    destination: str
    promotion: str | None
    san: str
    uci: str


@dataclass(frozen=True)
class MoveRecord:
    """One committed move with both endpoint positions."""

    index: int
    move: Move
    before: Position
    after: Position
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def mover(self) -> str:
        """Color of the side that played this move."""
        return self.before.turn


@dataclass(frozen=True)
class OracleMove:
    """Move proposed by the search oracle, not yet legality-checked."""

    origin: str
    destination: str
    promotion: str | None
    uci: str


@dataclass(frozen=True)
class Evaluation:
    """Oracle evaluation, White-positive.

    ``kind`` is ``"cp"`` for a centipawn score or ``"mate"`` for a mate
    count whose sign names the favored side.
    """

    kind: str
    value: int

    def to_cp(self, mate_cp: int) -> int:
        """Collapse to a single signed centipawn scale."""
        if self.kind == "cp":
            return self.value
        return mate_cp if self.value > 0 else -mate_cp


@dataclass(frozen=True)
class MoveAnnotation:
    """Quality tag for one played move."""

    index: int
    tag: str
    best_move_san: str | None = None


@dataclass(frozen=True)
class GameAnalysis:
    """Complete annotation set for one game, replaced as a whole."""

    game_id: str
    summary: str
    key_moments: tuple[str, ...]
    suggestions: tuple[str, ...]
    annotations: tuple[MoveAnnotation, ...]
    created_at: datetime = field(default_factory=_utcnow, compare=False)

    def annotation_for(self, index: int) -> MoveAnnotation | None:
        for annotation in self.annotations:
            if annotation.index == index:
                return annotation
        return None


@dataclass
class GameSession:
    """Mutable game aggregate owned by the session controller."""

    game_id: str
    initial_position: Position
    position: Position
    human_color: str = WHITE
    difficulty: str | None = None
    status: str = IN_PROGRESS
    result: str | None = None
    records: list[MoveRecord] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_oracle_game(self) -> bool:
        return self.difficulty is not None

    @property
    def oracle_color(self) -> str | None:
        if not self.is_oracle_game:
            return None
        return opposite(self.human_color)

    @property
    def move_count(self) -> int:
        return len(self.records)


@dataclass(frozen=True)
class TurnState:
    """Turn information derived on demand from a session."""

    side_to_move: str
    is_oracle_game: bool
    is_oracle_turn: bool
    is_terminal: bool
    is_check: bool
    status_text: str
