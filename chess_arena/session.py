"""Game session controller: turn-taking, oracle scheduling and submissions.

The controller is the only writer of sessions. Every move, whether typed
by a person or proposed by the oracle, goes through ``rules.apply_move``
and is appended to the store under a per-game lock so the staleness check
and the append happen as one step.

Oracle moves are scheduled with a short debounce. When the timer fires the
controller re-checks that the position is still the one it scheduled for
and that no other oracle submission is in flight for the game; if either
check fails the work is dropped without an error. Busy and timeout
failures from the oracle are absorbed the same way: the next ``tick``
schedules a fresh attempt.
"""

from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass

from chess_arena import config, rules
from chess_arena.codec import INITIAL_POSITION
from chess_arena.errors import (
    ArenaError,
    IllegalMoveError,
    NoLegalMovesError,
    NotInProgressError,
    OracleBusyError,
    OracleError,
    OracleTimeoutError,
    OracleUnavailableError,
)
from chess_arena.models import (
    ABANDONED,
    BLACK,
    BLACK_WINS,
    COMPLETED,
    IN_PROGRESS,
    RANDOM,
    WAITING,
    WHITE,
    WHITE_WINS,
    GameSession,
    MoveRecord,
    OracleMove,
    Position,
    TurnState,
    opposite,
    winner_result,
)
from chess_arena.oracle import SearchOracleClient
from chess_arena.scheduling import CancellableTimer
from chess_arena.storage import GameStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Hint:
    """Oracle suggestion for the side to move."""

    origin: str
    destination: str
    promotion: str | None
    uci: str
    san: str | None


@dataclass
class _ScheduledOracleMove:
    scheduled_for: Position
    timer: CancellableTimer


def resolve_color(color: str, rng: random.Random | None = None) -> str:
    """Turn ``"random"`` into a concrete color at session creation."""
    if color == RANDOM:
        return (rng or random).choice((WHITE, BLACK))
    if color not in (WHITE, BLACK):
        raise ValueError(f"Invalid color: {color!r}")
    return color


def derive_turn_state(session: GameSession, is_calculating: bool = False) -> TurnState:
    """Compute whose turn it is and the status line for a session."""
    side = session.position.turn
    oracle_turn = (
        session.is_oracle_game
        and session.status == IN_PROGRESS
        and side == session.oracle_color
    )

    if session.status == WAITING:
        text = "Waiting to start"
    elif session.is_terminal:
        text = "Game ended"
    elif is_calculating:
        text = "Engine thinking"
    elif oracle_turn:
        text = "Engine's turn"
    elif session.is_oracle_game:
        text = "Your turn"
    else:
        text = f"{side.capitalize()} to move"

    return TurnState(
        side_to_move=side,
        is_oracle_game=session.is_oracle_game,
        is_oracle_turn=oracle_turn,
        is_terminal=session.is_terminal,
        is_check=rules.is_check(session.position),
        status_text=text,
    )


def game_over_message(result: str | None) -> str:
    if result == WHITE_WINS:
        return "White wins"
    if result == BLACK_WINS:
        return "Black wins"
    if result is None:
        return "Game over"
    return "Draw"


class GameSessionController:
    """Owns all writes to game sessions."""

    def __init__(
        self,
        store: GameStore,
        oracle: SearchOracleClient | None = None,
        debounce: float | None = None,
        rng: random.Random | None = None,
    ) -> None:
        """Wire the controller to its collaborators.

        Args:
            store: Session persistence.
            oracle: Search oracle client; required only for oracle games
                and hints.
            debounce: Delay before a scheduled oracle request; defaults to
                ``config.debounce_delay()``.
            rng: Random source for resolving ``"random"`` colors.
        """
        self._store = store
        self._oracle = oracle
        self._debounce = config.debounce_delay() if debounce is None else debounce
        self._rng = rng or random.Random()
        self._locks: dict[str, asyncio.Lock] = {}
        self._scheduled: dict[str, _ScheduledOracleMove] = {}
        self._submitting: set[str] = set()

    # -----------------------------------------------------------------------
    # Lifecycle
    # -----------------------------------------------------------------------

    def _lock(self, game_id: str) -> asyncio.Lock:
        lock = self._locks.get(game_id)
        if lock is None:
            lock = self._locks[game_id] = asyncio.Lock()
        return lock

    def create_session(
        self,
        human_color: str = WHITE,
        difficulty: str | None = None,
        game_id: str | None = None,
        initial_position: Position | None = None,
        start: bool = True,
    ) -> GameSession:
        """Create and store a new session.

        Args:
            human_color: ``"white"``, ``"black"`` or ``"random"``.
            difficulty: Oracle tier; None for a game between two people.
            game_id: Explicit id, otherwise a new UUID.
            initial_position: Starting position, standard by default.
            start: Start ``in_progress`` instead of ``waiting``.

        Raises:
            ValueError: For an unknown color or difficulty.
        """
        if difficulty is not None:
            config.depth_for(difficulty)
        start_position = initial_position or INITIAL_POSITION
        session = GameSession(
            game_id=game_id or str(uuid.uuid4()),
            initial_position=start_position,
            position=start_position,
            human_color=resolve_color(human_color, self._rng),
            difficulty=difficulty,
            status=IN_PROGRESS if start else WAITING,
        )
        self._store.create_session(session)
        logger.info(
            "Created game %s (human %s, difficulty %s)",
            session.game_id, session.human_color, difficulty,
        )
        return session

    def attach_oracle(self, oracle: SearchOracleClient) -> None:
        """Use an oracle client opened after the controller was built."""
        self._oracle = oracle

    def load(self, game_id: str) -> GameSession:
        return self._store.load_session(game_id)

    def list_sessions(self, limit: int = config.GAME_LIST_LIMIT) -> list[GameSession]:
        """Most recently updated sessions first, at most ``GAME_LIST_MAX``."""
        limit = max(0, min(limit, config.GAME_LIST_MAX))
        return self._store.list_sessions()[:limit]

    def turn_state(self, game_id: str) -> TurnState:
        session = self.load(game_id)
        calculating = game_id in self._submitting or game_id in self._scheduled
        return derive_turn_state(session, is_calculating=calculating)

    def start_session(self, game_id: str) -> GameSession:
        """Move a waiting session to ``in_progress``."""
        self._store.update_session_status(game_id, IN_PROGRESS)
        self.tick(game_id)
        return self.load(game_id)

    def resign(self, game_id: str, color: str | None = None) -> GameSession:
        """End an in-progress game with a win for the resigning side's opponent.

        Args:
            game_id: Game to resign.
            color: Resigning side. Defaults to the human's color against
                the oracle and to the side to move in a two-player game.

        Raises:
            NotInProgressError: If the game is not in progress.
            ValueError: For a color other than white or black.
        """
        session = self.load(game_id)
        if session.status != IN_PROGRESS:
            raise NotInProgressError(game_id, session.status)
        if color is None:
            resigning = session.human_color if session.is_oracle_game else session.position.turn
        elif color in (WHITE, BLACK):
            resigning = color
        else:
            raise ValueError(f"Invalid color: {color!r}")
        self.cancel_scheduled(game_id)
        self._store.update_session_status(
            game_id, COMPLETED, winner_result(opposite(resigning)),
        )
        return session

    def abandon(self, game_id: str) -> GameSession:
        session = self.load(game_id)
        if session.is_terminal:
            raise NotInProgressError(game_id, session.status)
        self.cancel_scheduled(game_id)
        self._store.update_session_status(game_id, ABANDONED)
        return session

    # -----------------------------------------------------------------------
    # Move submission
    # -----------------------------------------------------------------------

    def _apply_locked(
        self,
        session: GameSession,
        origin: str,
        destination: str,
        promotion: str | None,
    ) -> MoveRecord:
        if session.status != IN_PROGRESS:
            raise NotInProgressError(session.game_id, session.status)

        applied = rules.apply_move(session.position, origin, destination, promotion)
        record = MoveRecord(
            index=session.move_count + 1,
            move=applied.move,
            before=session.position,
            after=applied.position,
        )
        self._store.append_move(session.game_id, record)

        finished = rules.outcome(record.after, rules.history_positions(session.records))
        if finished is not None:
            status, result = finished
            self._store.update_session_status(session.game_id, status, result)
        logger.debug("Game %s move %d: %s", session.game_id, record.index, record.move.san)
        return record

    async def submit_move(
        self,
        game_id: str,
        origin: str,
        destination: str,
        promotion: str | None = None,
    ) -> MoveRecord:
        """Apply a player's move.

        Raises:
            NotInProgressError: If the game is not in progress.
            IllegalMoveError: If the move is illegal or it is the oracle's turn.
            MalformedInputError: For bad square or promotion text.
        """
        async with self._lock(game_id):
            session = self.load(game_id)
            if session.status != IN_PROGRESS:
                raise NotInProgressError(game_id, session.status)
            if derive_turn_state(session).is_oracle_turn:
                raise IllegalMoveError(f"{origin}{destination}", "not your turn")
            record = self._apply_locked(session, origin, destination, promotion)
        self.cancel_scheduled(game_id)
        self.tick(game_id)
        return record

    # -----------------------------------------------------------------------
    # Oracle scheduling
    # -----------------------------------------------------------------------

    def tick(self, game_id: str) -> bool:
        """Schedule an oracle move if it is the oracle's turn.

        Returns:
            True if a new request was scheduled.
        """
        session = self.load(game_id)
        if not derive_turn_state(session).is_oracle_turn or self._oracle is None:
            return False
        pending = self._scheduled.get(game_id)
        if pending is not None and pending.scheduled_for == session.position:
            return False
        if game_id in self._submitting:
            return False
        self.schedule_oracle_move(game_id)
        return True

    def schedule_oracle_move(self, game_id: str) -> CancellableTimer:
        """Request an oracle move for the current position after the debounce."""
        session = self.load(game_id)
        self.cancel_scheduled(game_id)
        target = session.position

        async def fire() -> MoveRecord | None:
            return await self._run_scheduled(game_id, target)

        timer = CancellableTimer(self._debounce, fire)
        self._scheduled[game_id] = _ScheduledOracleMove(target, timer)
        timer.start()
        return timer

    def cancel_scheduled(self, game_id: str) -> bool:
        """Cancel a scheduled oracle move that has not fired yet."""
        pending = self._scheduled.get(game_id)
        if pending is not None and pending.timer.cancel():
            del self._scheduled[game_id]
            return True
        return False

    def _is_current(self, game_id: str, position: Position) -> bool:
        session = self.load(game_id)
        return session.status == IN_PROGRESS and session.position == position

    async def _run_scheduled(self, game_id: str, target: Position) -> MoveRecord | None:
        try:
            if not self._is_current(game_id, target):
                logger.debug("Game %s: position changed before request, dropped", game_id)
                return None
            if game_id in self._submitting:
                logger.debug("Game %s: oracle submission already in flight", game_id)
                return None

            self._submitting.add(game_id)
            try:
                return await self._request_and_apply(game_id, target)
            finally:
                self._submitting.discard(game_id)
        finally:
            pending = self._scheduled.get(game_id)
            if pending is not None and pending.scheduled_for == target and pending.timer.fired:
                del self._scheduled[game_id]

    async def _request_and_apply(self, game_id: str, target: Position) -> MoveRecord | None:
        session = self.load(game_id)
        try:
            if self._oracle is None:
                raise OracleUnavailableError("No oracle configured")
            proposal = await self._oracle.best_move(target, session.difficulty or config.ANALYSIS_TIER)
        except NoLegalMovesError:
            logger.info("Game %s: oracle reports no legal moves", game_id)
            return None
        except OracleError as exc:
            logger.warning("Game %s: oracle move skipped: %s", game_id, exc)
            return None

        async with self._lock(game_id):
            if not self._is_current(game_id, target):
                logger.debug("Game %s: stale oracle move %s dropped", game_id, proposal.uci)
                return None
            try:
                return self._apply_locked(
                    self.load(game_id),
                    proposal.origin,
                    proposal.destination,
                    proposal.promotion,
                )
            except ArenaError as exc:
                logger.warning("Game %s: oracle move %s rejected: %s", game_id, proposal.uci, exc)
                return None

    async def wait_for_oracle(self, game_id: str) -> MoveRecord | None:
        """Await the pending scheduled oracle move, if any."""
        pending = self._scheduled.get(game_id)
        if pending is None:
            return None
        return await pending.timer.wait()

    # -----------------------------------------------------------------------
    # Hints
    # -----------------------------------------------------------------------

    async def request_hint(self, game_id: str, difficulty: str | None = None) -> Hint | None:
        """Ask the oracle for a move suggestion for the side to move.

        Returns:
            The hint, or None if the position moved on while the oracle
            was thinking or the oracle could not answer.

        Raises:
            NotInProgressError: If the game is not in progress.
        """
        session = self.load(game_id)
        if session.status != IN_PROGRESS:
            raise NotInProgressError(game_id, session.status)
        if self._oracle is None:
            raise OracleUnavailableError("No oracle configured")

        position = session.position
        tier = difficulty or session.difficulty or config.ANALYSIS_TIER
        try:
            proposal: OracleMove = await self._oracle.best_move(position, tier)
        except (OracleBusyError, OracleTimeoutError, NoLegalMovesError) as exc:
            logger.info("Game %s: hint unavailable: %s", game_id, exc)
            return None

        if not self._is_current(game_id, position):
            logger.debug("Game %s: hint for an old position dropped", game_id)
            return None

        return Hint(
            origin=proposal.origin,
            destination=proposal.destination,
            promotion=proposal.promotion,
            uci=proposal.uci,
            san=rules.san_for_move(
                position, proposal.origin, proposal.destination, proposal.promotion,
            ),
        )

    async def close(self) -> None:
        """Cancel every timer that has not fired yet."""
        for game_id in list(self._scheduled):
            self.cancel_scheduled(game_id)
