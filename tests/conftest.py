"""Shared test fixtures with dual-mode support (scripted vs real Stockfish).

Usage:
    pytest tests/                  # Fast, scripted oracle (no Stockfish)
    pytest tests/ --e2e            # Also run tests against real Stockfish

Fixtures:
    fake_channel       - Scripted in-process UCI channel. Answers ``go depth``
                         with the first legal move unless a test installs
                         its own responder or holds the reply.
    oracle             - SearchOracleClient over ``fake_channel``.
    store              - Fresh InMemoryGameStore.
    controller         - GameSessionController with zero debounce.
    enable_validation  - Sets CHESS_ARENA_VALIDATE=1 for schema validation.
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable

import chess
import pytest

from chess_arena.errors import OracleUnavailableError
from chess_arena.oracle import SearchOracleClient
from chess_arena.session import GameSessionController
from chess_arena.storage import InMemoryGameStore


# ---------------------------------------------------------------------------
# CLI option and marker registration
# ---------------------------------------------------------------------------


def pytest_addoption(parser):
    """Register --e2e CLI flag for real Stockfish tests."""
    parser.addoption(
        "--e2e",
        action="store_true",
        default=False,
        help="Run with real Stockfish engine (no scripted oracle).",
    )


def pytest_configure(config):
    """Register the e2e marker."""
    config.addinivalue_line(
        "markers", "e2e: mark test as end-to-end (requires real Stockfish)"
    )


def pytest_collection_modifyitems(config, items):
    """Skip e2e tests unless --e2e is passed."""
    if config.getoption("--e2e"):
        return
    skip = pytest.mark.skip(reason="needs --e2e and a Stockfish binary")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip)


# ---------------------------------------------------------------------------
# Scripted oracle channel
# ---------------------------------------------------------------------------

Responder = Callable[[str, int], "list[str] | None"]


def first_legal_responder(fen: str, depth: int) -> list[str]:
    """Answer with a flat score and the first legal move of the position."""
    board = chess.Board(fen)
    legal = list(board.legal_moves)
    if not legal:
        return [f"info depth {depth} score mate 0", "bestmove (none)"]
    return [f"info depth {depth} score cp 0", f"bestmove {legal[0].uci()}"]


def hold_responder(fen: str, depth: int) -> None:
    """Never answer; the test emits lines itself."""
    return None


class FakeOracleChannel:
    """In-process stand-in for a UCI engine process.

    Records every line sent. On ``go depth N`` it asks ``responder`` for the
    reply lines of the last ``position fen`` and delivers them on the next
    loop iterations, like a real engine writing to stdout.
    """

    def __init__(self, responder: Responder | None = None) -> None:
        self.responder = responder or first_legal_responder
        self.sent: list[str] = []
        self.listeners: list[Callable[[str], None]] = []
        self.close_listeners: list[Callable[[], None]] = []
        self.closed = False
        self.fen: str | None = None

    async def send(self, line: str) -> None:
        if self.closed:
            raise OracleUnavailableError("Engine channel is closed")
        self.sent.append(line)
        if line.startswith("position fen "):
            self.fen = line[len("position fen "):]
        elif line.startswith("go depth "):
            depth = int(line.split()[2])
            replies = self.responder(self.fen, depth)
            if replies is not None:
                loop = asyncio.get_running_loop()
                for reply in replies:
                    loop.call_soon(self.emit, reply)

    def emit(self, line: str) -> None:
        for listener in list(self.listeners):
            listener(line)

    def add_listener(self, listener) -> None:
        self.listeners.append(listener)

    def remove_listener(self, listener) -> None:
        if listener in self.listeners:
            self.listeners.remove(listener)

    def add_close_listener(self, listener) -> None:
        self.close_listeners.append(listener)

    def terminate(self) -> None:
        """Simulate the engine process exiting: output ends, sends fail."""
        self.closed = True
        listeners, self.close_listeners = self.close_listeners, []
        for listener in listeners:
            listener()

    async def close(self) -> None:
        self.terminate()

    @property
    def searches(self) -> list[str]:
        """``go`` commands sent so far."""
        return [line for line in self.sent if line.startswith("go ")]


async def wait_until(predicate: Callable[[], bool], attempts: int = 100) -> None:
    """Yield to the loop until ``predicate`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0.01)
    raise AssertionError("condition not reached")


@pytest.fixture()
def fake_channel():
    return FakeOracleChannel()


@pytest.fixture()
def oracle(fake_channel):
    return SearchOracleClient(fake_channel, move_timeout=1.0, evaluation_timeout=1.0)


@pytest.fixture()
def store():
    return InMemoryGameStore()


@pytest.fixture()
async def controller(store, oracle):
    ctl = GameSessionController(store, oracle, debounce=0)
    yield ctl
    await ctl.close()


# ---------------------------------------------------------------------------
# Schema validation fixture
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def enable_validation():
    """Set CHESS_ARENA_VALIDATE=1 for the test session.

    Restores the original env var value after the test.
    """
    original = os.environ.get("CHESS_ARENA_VALIDATE")
    os.environ["CHESS_ARENA_VALIDATE"] = "1"
    yield
    if original is None:
        os.environ.pop("CHESS_ARENA_VALIDATE", None)
    else:
        os.environ["CHESS_ARENA_VALIDATE"] = original
