"""Exception hierarchy for the game session and analysis core.

Every error a caller can recover from derives from ``ArenaError`` so the
MCP layer can turn any of them into an ``{"error": ...}`` response.
"""

from __future__ import annotations


class ArenaError(Exception):
    """Base class for all game session and analysis errors."""


class MalformedInputError(ArenaError, ValueError):
    """Square, promotion or position text that cannot be parsed."""


class FormatError(MalformedInputError):
    """Position string rejected by the codec."""


class IllegalMoveError(ArenaError):
    """Well-formed move that is not legal in the given position."""

    def __init__(self, move: str, reason: str = "illegal move") -> None:
        super().__init__(f"{reason}: {move}")
        self.move = move
        self.reason = reason


class GameNotFoundError(ArenaError, KeyError):
    """No session stored under the requested game id."""

    def __str__(self) -> str:
        return f"Game not found: {self.args[0]}"


class NotInProgressError(ArenaError):
    """Operation requires an in-progress session."""

    def __init__(self, game_id: str, status: str) -> None:
        super().__init__(f"Game {game_id} is not in progress (status: {status})")
        self.game_id = game_id
        self.status = status


class UnauthorizedError(ArenaError):
    """Caller does not own the game. Raised by the access layer only."""


class InvalidTransitionError(ArenaError):
    """Lifecycle transition that would leave a terminal status."""


class OracleError(ArenaError):
    """Base class for search oracle failures."""


class OracleBusyError(OracleError):
    """The oracle client already has a request in flight."""


class OracleTimeoutError(OracleError):
    """The oracle did not answer within the request ceiling."""


class NoLegalMovesError(OracleError):
    """The oracle answered ``bestmove none``."""


class EvaluationUnavailableError(OracleError):
    """The search finished without ever reporting a score."""


class OracleUnavailableError(OracleError):
    """The oracle process is not running or its channel is closed."""


class NotAnalyzableError(ArenaError):
    """Analysis requested for a game that is not completed or has no moves."""
