"""Tunable constants for the game session and analysis core.

Values can be overridden from the environment so the MCP server and the
tests can shorten timeouts without touching code.
"""

from __future__ import annotations

import os

# Stockfish search paths in priority order
STOCKFISH_PATHS = [
    "/opt/homebrew/bin/stockfish",
    "/usr/local/bin/stockfish",
    "/usr/bin/stockfish",
]

STOCKFISH_ENV = "CHESS_ARENA_STOCKFISH"

# Difficulty tier -> search depth (plies). Monotonic in strength.
DIFFICULTY_DEPTH = {
    "easy": 12,
    "medium": 18,
    "hard": 22,
}

# Quick static evaluation depth
EVALUATION_DEPTH = 5

# Fixed tier used for every post-game analysis run
ANALYSIS_TIER = "medium"

# Move classification thresholds (centipawn drop for the side that moved)
MISTAKE_THRESHOLD = 100
BLUNDER_THRESHOLD = 300

# Centipawn equivalent of a forced mate
MATE_CP = 10000

# Stored review limits
MAX_KEY_MOMENTS = 20
MAX_SUGGESTIONS = 10
MAX_MOVE_ANNOTATIONS = 500
MAX_SUMMARY_LENGTH = 10_000

# Suggestions emitted by a single analysis run
MAX_RUN_SUGGESTIONS = 4

# Game list page size and its cap
GAME_LIST_LIMIT = 50
GAME_LIST_MAX = 100


def _env_float(name: str, default: float) -> float:
    """Read a float from the environment, falling back on parse errors."""
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def move_timeout() -> float:
    """Ceiling in seconds for a best-move search."""
    return _env_float("CHESS_ARENA_MOVE_TIMEOUT", 30.0)


def evaluation_timeout() -> float:
    """Ceiling in seconds for an evaluation-only search."""
    return _env_float("CHESS_ARENA_EVAL_TIMEOUT", 10.0)


def debounce_delay() -> float:
    """Delay before a scheduled oracle move is requested."""
    return _env_float("CHESS_ARENA_DEBOUNCE", 0.5)


def validation_enabled() -> bool:
    """True when MCP responses should be checked against their schemas."""
    return os.environ.get("CHESS_ARENA_VALIDATE") == "1"


def depth_for(difficulty: str) -> int:
    """Map a difficulty tier to its search depth.

    Raises:
        ValueError: If the tier is unknown.
    """
    try:
        return DIFFICULTY_DEPTH[difficulty]
    except KeyError:
        raise ValueError(
            f"Unknown difficulty: {difficulty!r}. "
            f"Expected one of {sorted(DIFFICULTY_DEPTH)}"
        ) from None
