"""Tests for the game session controller.

Covers: session creation and turn state, move submission, terminal
detection, resign/abandon, debounced oracle scheduling with staleness
checks, the single-submission guard, and hints.
"""

from __future__ import annotations

import asyncio
import random

import pytest

from chess_arena.codec import INITIAL_POSITION
from chess_arena.errors import (
    IllegalMoveError,
    InvalidTransitionError,
    NotInProgressError,
)
from chess_arena.models import (
    ABANDONED,
    BLACK,
    BLACK_WINS,
    COMPLETED,
    DRAW,
    IN_PROGRESS,
    WAITING,
    WHITE,
    WHITE_WINS,
    Position,
)
from chess_arena.session import (
    GameSessionController,
    derive_turn_state,
    game_over_message,
    resolve_color,
)

from conftest import hold_responder, wait_until


async def _play(controller, game_id, moves):
    for uci in moves:
        await controller.submit_move(game_id, uci[:2], uci[2:4], uci[4:] or None)


# ---------------------------------------------------------------------------
# Creation and turn state
# ---------------------------------------------------------------------------


class TestCreation:

    def test_defaults(self, store):
        controller = GameSessionController(store, debounce=0)
        session = controller.create_session()
        assert session.status == IN_PROGRESS
        assert session.human_color == WHITE
        assert session.position == INITIAL_POSITION
        assert not session.is_oracle_game

    def test_waiting_then_start(self, store):
        controller = GameSessionController(store, debounce=0)
        session = controller.create_session(start=False)
        assert session.status == WAITING
        assert controller.turn_state(session.game_id).status_text == "Waiting to start"

    def test_random_color_resolved(self):
        rng = random.Random(7)
        assert resolve_color("random", rng) in (WHITE, BLACK)
        with pytest.raises(ValueError):
            resolve_color("green")

    def test_unknown_difficulty(self, store):
        controller = GameSessionController(store, debounce=0)
        with pytest.raises(ValueError):
            controller.create_session(difficulty="impossible")

    def test_turn_state_texts(self, store):
        controller = GameSessionController(store, debounce=0)
        hotseat = controller.create_session()
        assert derive_turn_state(hotseat).status_text == "White to move"

        vs_oracle = controller.create_session(human_color=BLACK, difficulty="easy")
        turn = derive_turn_state(vs_oracle)
        assert turn.is_oracle_turn
        assert turn.status_text == "Engine's turn"
        assert derive_turn_state(vs_oracle, is_calculating=True).status_text == "Engine thinking"

        mine = controller.create_session(human_color=WHITE, difficulty="easy")
        assert derive_turn_state(mine).status_text == "Your turn"

    async def test_list_sessions_newest_first(self, controller):
        first = controller.create_session()
        controller.create_session()
        controller.create_session()
        await _play(controller, first.game_id, ["e2e4"])

        listed = controller.list_sessions()
        assert len(listed) == 3
        assert listed[0] is first
        assert len(controller.list_sessions(limit=2)) == 2
        assert controller.list_sessions(limit=-1) == []

    def test_list_sessions_capped(self, store):
        controller = GameSessionController(store, debounce=0)
        for _ in range(105):
            controller.create_session()
        assert len(controller.list_sessions(limit=500)) == 100

    def test_game_over_messages(self):
        assert game_over_message(WHITE_WINS) == "White wins"
        assert game_over_message(BLACK_WINS) == "Black wins"
        assert game_over_message(DRAW) == "Draw"


# ---------------------------------------------------------------------------
# Submissions
# ---------------------------------------------------------------------------


class TestSubmitMove:

    async def test_records_move(self, controller):
        session = controller.create_session()
        record = await controller.submit_move(session.game_id, "e2", "e4")
        assert record.index == 1
        assert record.move.san == "e4"
        assert record.before == INITIAL_POSITION
        assert controller.load(session.game_id).position == record.after

    async def test_illegal_move_leaves_session_unchanged(self, controller):
        session = controller.create_session()
        with pytest.raises(IllegalMoveError):
            await controller.submit_move(session.game_id, "e2", "e5")
        assert session.move_count == 0
        assert session.position == INITIAL_POSITION

    async def test_not_your_turn(self, controller, fake_channel):
        fake_channel.responder = hold_responder
        session = controller.create_session(human_color=BLACK, difficulty="easy")
        with pytest.raises(IllegalMoveError) as exc_info:
            await controller.submit_move(session.game_id, "e2", "e4")
        assert exc_info.value.reason == "not your turn"

    async def test_waiting_session_rejects_moves(self, controller):
        session = controller.create_session(start=False)
        with pytest.raises(NotInProgressError):
            await controller.submit_move(session.game_id, "e2", "e4")

    async def test_checkmate_completes_game(self, controller):
        session = controller.create_session()
        await _play(controller, session.game_id, ["f2f3", "e7e5", "g2g4", "d8h4"])
        assert session.status == COMPLETED
        assert session.result == BLACK_WINS
        assert controller.turn_state(session.game_id).status_text == "Game ended"
        with pytest.raises(NotInProgressError):
            await controller.submit_move(session.game_id, "a2", "a3")

    async def test_threefold_repetition_draws(self, controller):
        session = controller.create_session()
        await _play(controller, session.game_id, ["g1f3", "g8f6", "f3g1", "f6g8"] * 2)
        assert session.status == COMPLETED
        assert session.result == DRAW


class TestResignAbandon:

    async def test_resign(self, controller):
        session = controller.create_session()
        controller.resign(session.game_id)
        assert session.status == COMPLETED
        assert session.result == BLACK_WINS
        with pytest.raises(NotInProgressError):
            controller.resign(session.game_id)

    async def test_resign_as_black(self, controller):
        session = controller.create_session()
        controller.resign(session.game_id, color=BLACK)
        assert session.result == WHITE_WINS

    async def test_two_player_resign_defaults_to_side_to_move(self, controller):
        session = controller.create_session()
        await _play(controller, session.game_id, ["e2e4"])
        controller.resign(session.game_id)
        assert session.result == WHITE_WINS

    async def test_oracle_game_resign_defaults_to_human(self, store):
        controller = GameSessionController(store, debounce=0)
        session = controller.create_session(human_color=BLACK, difficulty="easy")
        controller.resign(session.game_id)
        assert session.result == WHITE_WINS

    async def test_resign_bad_color(self, controller):
        session = controller.create_session()
        with pytest.raises(ValueError):
            controller.resign(session.game_id, color="random")
        assert session.status == IN_PROGRESS

    async def test_abandon_waiting(self, controller):
        session = controller.create_session(start=False)
        controller.abandon(session.game_id)
        assert session.status == ABANDONED
        assert session.result is None

    async def test_abandon_terminal_rejected(self, controller):
        session = controller.create_session()
        controller.abandon(session.game_id)
        with pytest.raises(NotInProgressError):
            controller.abandon(session.game_id)

    async def test_start_after_abandon_rejected(self, controller):
        session = controller.create_session(start=False)
        controller.abandon(session.game_id)
        with pytest.raises(InvalidTransitionError):
            controller.start_session(session.game_id)


# ---------------------------------------------------------------------------
# Oracle scheduling
# ---------------------------------------------------------------------------


class TestOracleScheduling:

    async def test_oracle_replies_after_human_move(self, controller, fake_channel):
        session = controller.create_session(human_color=WHITE, difficulty="easy")
        await controller.submit_move(session.game_id, "e2", "e4")
        reply = await controller.wait_for_oracle(session.game_id)
        assert reply is not None
        assert reply.index == 2
        assert reply.mover == BLACK
        assert session.move_count == 2
        assert fake_channel.searches == ["go depth 12"]

    async def test_start_session_schedules_oracle_first_move(self, controller):
        session = controller.create_session(human_color=BLACK, difficulty="easy", start=False)
        assert not controller.tick(session.game_id)
        controller.start_session(session.game_id)
        reply = await controller.wait_for_oracle(session.game_id)
        assert reply.mover == WHITE

    async def test_tick_is_idempotent(self, controller, fake_channel):
        fake_channel.responder = hold_responder
        session = controller.create_session(human_color=BLACK, difficulty="easy")
        assert controller.tick(session.game_id) is True
        assert controller.tick(session.game_id) is False
        await wait_until(lambda: fake_channel.searches)
        assert controller.tick(session.game_id) is False
        assert len(fake_channel.searches) == 1
        fake_channel.emit("bestmove e2e4")
        await controller.wait_for_oracle(session.game_id)
        assert session.move_count == 1

    async def test_no_oracle_for_hotseat(self, controller):
        session = controller.create_session()
        assert controller.tick(session.game_id) is False

    async def test_scheduled_move_without_oracle_is_skipped(self, store):
        controller = GameSessionController(store, debounce=0)
        session = controller.create_session(human_color=BLACK, difficulty="easy")
        controller.schedule_oracle_move(session.game_id)
        assert await controller.wait_for_oracle(session.game_id) is None
        assert session.move_count == 0

    async def test_cancel_before_fire(self, store, oracle, fake_channel):
        controller = GameSessionController(store, oracle, debounce=0.05)
        session = controller.create_session(human_color=BLACK, difficulty="easy")
        controller.tick(session.game_id)
        controller.resign(session.game_id)
        assert await controller.wait_for_oracle(session.game_id) is None
        await asyncio.sleep(0.1)
        assert fake_channel.sent == []
        await controller.close()

    async def test_stale_result_dropped(self, controller, fake_channel):
        fake_channel.responder = hold_responder
        session = controller.create_session(human_color=BLACK, difficulty="easy")
        controller.tick(session.game_id)
        await wait_until(lambda: fake_channel.searches)

        controller.abandon(session.game_id)
        fake_channel.emit("bestmove e2e4")
        assert await controller.wait_for_oracle(session.game_id) is None
        assert session.move_count == 0
        assert session.status == ABANDONED

    async def test_stale_target_never_sent(self, controller, fake_channel):
        session = controller.create_session(human_color=BLACK, difficulty="easy")
        record = await controller._run_scheduled(
            session.game_id,
            Position("8/8/8/8/8/8/8/K1k5 w - - 0 1"),
        )
        assert record is None
        assert fake_channel.sent == []

    async def test_guard_released_after_rejected_oracle_move(self, controller, fake_channel):
        fake_channel.responder = lambda fen, depth: ["bestmove e2e5"]
        session = controller.create_session(human_color=BLACK, difficulty="easy")
        controller.tick(session.game_id)
        assert await controller.wait_for_oracle(session.game_id) is None
        assert session.move_count == 0
        assert session.game_id not in controller._submitting

        fake_channel.responder = lambda fen, depth: ["bestmove d2d4"]
        assert controller.tick(session.game_id) is True
        reply = await controller.wait_for_oracle(session.game_id)
        assert reply.move.san == "d4"

    async def test_busy_oracle_absorbed(self, controller, oracle, fake_channel):
        fake_channel.responder = hold_responder
        hint = asyncio.create_task(oracle.evaluate(INITIAL_POSITION))
        await wait_until(lambda: fake_channel.searches)

        session = controller.create_session(human_color=BLACK, difficulty="easy")
        controller.tick(session.game_id)
        assert await controller.wait_for_oracle(session.game_id) is None
        assert session.game_id not in controller._submitting

        fake_channel.emit("info depth 5 score cp 0")
        fake_channel.emit("bestmove e2e4")
        await hint


# ---------------------------------------------------------------------------
# Hints
# ---------------------------------------------------------------------------


class TestHints:

    async def test_hint(self, controller, fake_channel):
        fake_channel.responder = lambda fen, depth: ["bestmove g1f3"]
        session = controller.create_session()
        hint = await controller.request_hint(session.game_id)
        assert hint.uci == "g1f3"
        assert hint.san == "Nf3"
        assert fake_channel.searches == ["go depth 18"]

    async def test_hint_discarded_when_position_changes(self, controller, fake_channel):
        fake_channel.responder = hold_responder
        session = controller.create_session()
        pending = asyncio.create_task(controller.request_hint(session.game_id))
        await wait_until(lambda: fake_channel.searches)

        await controller.submit_move(session.game_id, "e2", "e4")
        fake_channel.emit("bestmove e2e4")
        assert await pending is None

    async def test_hint_needs_in_progress(self, controller):
        session = controller.create_session(start=False)
        with pytest.raises(NotInProgressError):
            await controller.request_hint(session.game_id)
