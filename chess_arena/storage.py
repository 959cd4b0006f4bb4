"""Storage boundary for sessions, move records and annotation sets.

The core only talks to storage through ``GameStore``. ``InMemoryGameStore``
keeps everything in a dict keyed by game id, like the MCP server's game
table, and enforces the move-log and lifecycle invariants on write.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Protocol

from chess_arena import config
from chess_arena.errors import GameNotFoundError, InvalidTransitionError
from chess_arena.models import (
    ABANDONED,
    COMPLETED,
    IN_PROGRESS,
    RESULTS,
    STATUSES,
    WAITING,
    GameAnalysis,
    GameSession,
    MoveRecord,
)

logger = logging.getLogger(__name__)

# Allowed lifecycle transitions
_TRANSITIONS = {
    WAITING: {IN_PROGRESS, ABANDONED},
    IN_PROGRESS: {COMPLETED, ABANDONED},
}


class GameStore(Protocol):
    """Persistence collaborator used by the controller and the pipeline."""

    def create_session(self, session: GameSession) -> None: ...

    def load_session(self, game_id: str) -> GameSession: ...

    def list_sessions(self) -> list[GameSession]: ...

    def append_move(self, game_id: str, record: MoveRecord) -> None: ...

    def update_session_status(
        self, game_id: str, status: str, result: str | None = None,
    ) -> None: ...

    def upsert_annotations(self, game_id: str, analysis: GameAnalysis) -> None: ...

    def load_annotations(self, game_id: str) -> GameAnalysis | None: ...


def check_transition(current: str, status: str, result: str | None) -> None:
    """Validate a lifecycle change.

    Raises:
        InvalidTransitionError: For a move out of a terminal status or a
            transition that skips the lifecycle order.
        ValueError: If ``result`` is not present exactly for ``completed``.
    """
    if status not in STATUSES:
        raise ValueError(f"Unknown status: {status!r}")
    if status == COMPLETED:
        if result not in RESULTS:
            raise ValueError(f"Completed games need a result, got {result!r}")
    elif result is not None:
        raise ValueError(f"Result {result!r} only allowed for completed games")
    if status not in _TRANSITIONS.get(current, set()):
        raise InvalidTransitionError(f"Cannot move game from {current} to {status}")


class InMemoryGameStore:
    """Dict-backed store. Sessions are returned by reference."""

    def __init__(self) -> None:
        self._sessions: dict[str, GameSession] = {}
        self._annotations: dict[str, GameAnalysis] = {}

    def create_session(self, session: GameSession) -> None:
        if session.game_id in self._sessions:
            raise ValueError(f"Game already exists: {session.game_id}")
        self._sessions[session.game_id] = session

    def load_session(self, game_id: str) -> GameSession:
        try:
            return self._sessions[game_id]
        except KeyError:
            raise GameNotFoundError(game_id) from None

    def list_sessions(self) -> list[GameSession]:
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def append_move(self, game_id: str, record: MoveRecord) -> None:
        """Append the next record and advance the session position.

        Raises:
            ValueError: If the index is not the next one or the record does
                not start from the current position.
        """
        session = self.load_session(game_id)
        expected = len(session.records) + 1
        if record.index != expected:
            raise ValueError(
                f"Move index {record.index} out of sequence, expected {expected}"
            )
        if record.before != session.position:
            raise ValueError("Move record does not start from the current position")
        session.records.append(record)
        session.position = record.after
        session.updated_at = datetime.now(timezone.utc)

    def update_session_status(
        self, game_id: str, status: str, result: str | None = None,
    ) -> None:
        session = self.load_session(game_id)
        check_transition(session.status, status, result)
        session.status = status
        session.result = result
        session.updated_at = datetime.now(timezone.utc)
        logger.info("Game %s is now %s (%s)", game_id, status, result)

    def upsert_annotations(self, game_id: str, analysis: GameAnalysis) -> None:
        """Replace the whole annotation set for a game in one assignment."""
        self.load_session(game_id)
        if len(analysis.annotations) > config.MAX_MOVE_ANNOTATIONS:
            raise ValueError(
                f"Too many move annotations: {len(analysis.annotations)}"
            )
        if len(analysis.suggestions) > config.MAX_SUGGESTIONS:
            raise ValueError(f"Too many suggestions: {len(analysis.suggestions)}")
        if len(analysis.key_moments) > config.MAX_KEY_MOMENTS:
            raise ValueError(f"Too many key moments: {len(analysis.key_moments)}")
        if len(analysis.summary) > config.MAX_SUMMARY_LENGTH:
            raise ValueError("Summary too long")
        self._annotations[game_id] = analysis

    def load_annotations(self, game_id: str) -> GameAnalysis | None:
        self.load_session(game_id)
        return self._annotations.get(game_id)
