"""Search oracle client: best moves and evaluations from a UCI engine.

The client owns one line-oriented channel to an external engine process
and allows exactly one outstanding request at a time for its whole
lifetime. A second caller gets ``OracleBusyError`` immediately instead of
queueing. Each request registers a listener under its request id; the
listener is always detached when the request settles, times out or fails.

Protocol (outbound): ``position fen <fen>`` then ``go depth <n>``.
Protocol (inbound): ``info ... score cp|mate <n> ...`` lines are buffered;
``bestmove <move|(none)>`` terminates the request.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import re
import shutil
from collections.abc import Callable
from pathlib import Path
from typing import Any, Protocol

from chess_arena import config
from chess_arena.errors import (
    EvaluationUnavailableError,
    NoLegalMovesError,
    OracleBusyError,
    OracleError,
    OracleTimeoutError,
    OracleUnavailableError,
)
from chess_arena.models import WHITE, Evaluation, OracleMove, Position

logger = logging.getLogger(__name__)

LineListener = Callable[[str], None]
CloseListener = Callable[[], None]

_MOVE_RE = re.compile(r"^[a-h][1-8][a-h][1-8][qrbn]?$")
_SCORE_RE = re.compile(r"\bscore (cp|mate) (-?\d+)")
_NO_MOVE_TOKENS = ("none", "(none)")


def find_stockfish() -> str:
    """Auto-detect the Stockfish binary path.

    Checks ``CHESS_ARENA_STOCKFISH``, then known install paths, then PATH.

    Raises:
        FileNotFoundError: If Stockfish is not found anywhere.
    """
    override = os.environ.get(config.STOCKFISH_ENV)
    if override:
        return override

    for path_str in config.STOCKFISH_PATHS:
        if Path(path_str).is_file():
            return path_str

    which_result = shutil.which("stockfish")
    if which_result is not None:
        return which_result

    raise FileNotFoundError(
        f"Stockfish not found. Install it or set {config.STOCKFISH_ENV}."
    )


# ---------------------------------------------------------------------------
# Protocol parsing
# ---------------------------------------------------------------------------


def is_bestmove_line(line: str) -> bool:
    return line.split(maxsplit=1)[:1] == ["bestmove"]


def parse_bestmove(line: str) -> OracleMove:
    """Parse a terminal ``bestmove`` line.

    Raises:
        NoLegalMovesError: For ``bestmove none`` / ``bestmove (none)``.
        OracleError: If the move code is not four or five characters of
            square and promotion text.
    """
    parts = line.split()
    if len(parts) < 2 or parts[0] != "bestmove":
        raise OracleError(f"Not a bestmove line: {line!r}")

    code = parts[1].lower()
    if code in _NO_MOVE_TOKENS:
        raise NoLegalMovesError("No legal moves available")
    if not _MOVE_RE.match(code):
        raise OracleError(f"Unexpected move code from oracle: {parts[1]!r}")

    return OracleMove(
        origin=code[:2],
        destination=code[2:4],
        promotion=code[4:] or None,
        uci=code,
    )


def parse_score(line: str) -> Evaluation | None:
    """Extract a side-to-move-relative score from an ``info`` line."""
    match = _SCORE_RE.search(line)
    if match is None:
        return None
    return Evaluation(kind=match.group(1), value=int(match.group(2)))


def orient(score: Evaluation, turn: str) -> Evaluation:
    """Turn a side-to-move-relative score into a White-positive one."""
    if score.kind == "mate" and score.value == 0:
        # Side to move is already mated.
        return Evaluation("mate", -1 if turn == WHITE else 1)
    if turn == WHITE:
        return score
    return Evaluation(score.kind, -score.value)


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------


class OracleChannel(Protocol):
    """Line-oriented duplex channel to an engine process."""

    async def send(self, line: str) -> None: ...

    def add_listener(self, listener: LineListener) -> None: ...

    def remove_listener(self, listener: LineListener) -> None: ...

    def add_close_listener(self, listener: CloseListener) -> None: ...

    @property
    def closed(self) -> bool: ...

    async def close(self) -> None: ...


class UciProcessChannel:
    """Channel backed by an engine subprocess speaking UCI on stdio."""

    def __init__(self, process: asyncio.subprocess.Process) -> None:
        self._process = process
        self._listeners: list[LineListener] = []
        self._close_listeners: list[CloseListener] = []
        self._reader: asyncio.Task | None = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        path: str | None = None,
        handshake_timeout: float = 10.0,
    ) -> UciProcessChannel:
        """Spawn the engine and complete the ``uci``/``isready`` handshake.

        Args:
            path: Engine binary. Auto-detected when None.
            handshake_timeout: Seconds to wait for ``uciok`` and ``readyok``.

        Raises:
            FileNotFoundError: If no engine binary can be found.
            OracleUnavailableError: If the handshake does not complete.
        """
        binary = path or find_stockfish()
        process = await asyncio.create_subprocess_exec(
            binary,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.DEVNULL,
        )
        channel = cls(process)
        channel._reader = asyncio.create_task(channel._read_loop())
        try:
            await channel._expect("uci", "uciok", handshake_timeout)
            await channel._expect("isready", "readyok", handshake_timeout)
        except (asyncio.TimeoutError, OracleUnavailableError) as exc:
            await channel.close()
            raise OracleUnavailableError(f"Engine handshake failed: {binary}") from exc
        logger.info("Engine ready: %s", binary)
        return channel

    async def _expect(self, command: str, reply: str, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        done: asyncio.Future = loop.create_future()

        def listener(line: str) -> None:
            if line == reply and not done.done():
                done.set_result(None)

        self.add_listener(listener)
        try:
            await self.send(command)
            await asyncio.wait_for(done, timeout)
        finally:
            self.remove_listener(listener)

    async def _read_loop(self) -> None:
        stdout = self._process.stdout
        try:
            if stdout is None:
                raise OracleUnavailableError("Engine process has no stdout pipe")
            while True:
                raw = await stdout.readline()
                if not raw:
                    logger.warning("Engine process stdout closed")
                    break
                line = raw.decode("utf-8", errors="replace").strip()
                if not line:
                    continue
                for listener in list(self._listeners):
                    listener(line)
        finally:
            self._mark_closed()

    def _mark_closed(self) -> None:
        self._closed = True
        listeners, self._close_listeners = self._close_listeners, []
        for listener in listeners:
            listener()

    @property
    def closed(self) -> bool:
        return self._closed

    def add_close_listener(self, listener: CloseListener) -> None:
        """Call ``listener`` once when the engine's output ends."""
        if self._closed:
            listener()
        else:
            self._close_listeners.append(listener)

    async def send(self, line: str) -> None:
        stdin = self._process.stdin
        if self._closed or stdin is None:
            raise OracleUnavailableError("Engine channel is closed")
        try:
            stdin.write((line + "\n").encode("utf-8"))
            await stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as exc:
            self._mark_closed()
            raise OracleUnavailableError("Engine process terminated") from exc

    def add_listener(self, listener: LineListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: LineListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    async def close(self) -> None:
        """Ask the engine to quit, killing it if it lingers."""
        if not self._closed:
            try:
                await self.send("quit")
            except OracleUnavailableError:
                pass
        self._closed = True
        try:
            await asyncio.wait_for(self._process.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            self._process.kill()
            await self._process.wait()
        if self._reader is not None:
            self._reader.cancel()
            try:
                await self._reader
            except asyncio.CancelledError:
                pass


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class SearchOracleClient:
    """Single-flight client for best-move and evaluation requests."""

    def __init__(
        self,
        channel: OracleChannel,
        move_timeout: float | None = None,
        evaluation_timeout: float | None = None,
        evaluation_depth: int = config.EVALUATION_DEPTH,
    ) -> None:
        """Attach to an open channel.

        Args:
            channel: Open engine channel. The client registers one
                dispatcher on it and owns it from here on.
            move_timeout: Ceiling for ``best_move`` in seconds.
            evaluation_timeout: Ceiling for ``evaluate`` in seconds.
            evaluation_depth: Search depth for evaluations.
        """
        self._channel = channel
        self._move_timeout = move_timeout if move_timeout is not None else config.move_timeout()
        self._evaluation_timeout = (
            evaluation_timeout if evaluation_timeout is not None
            else config.evaluation_timeout()
        )
        self._evaluation_depth = evaluation_depth
        self._request_ids = itertools.count(1)
        self._listeners: dict[int, LineListener] = {}
        self._futures: dict[int, asyncio.Future] = {}
        self._in_flight: int | None = None
        self._pending_drains = 0
        self.metrics = {
            "total_requests": 0,
            "failed_requests": 0,
            "busy_rejections": 0,
            "timeouts": 0,
        }
        channel.add_listener(self._dispatch)
        channel.add_close_listener(self._on_channel_closed)

    @classmethod
    async def open(cls, path: str | None = None, **kwargs: Any) -> SearchOracleClient:
        """Spawn an engine process and wrap it in a client."""
        channel = await UciProcessChannel.open(path)
        return cls(channel, **kwargs)

    @property
    def is_busy(self) -> bool:
        return self._in_flight is not None

    @property
    def closed(self) -> bool:
        """True once the engine channel has closed; the client is then dead."""
        return self._channel.closed

    def _on_channel_closed(self) -> None:
        self._pending_drains = 0
        for future in self._futures.values():
            if not future.done():
                future.set_exception(OracleUnavailableError("Engine process terminated"))

    def _dispatch(self, line: str) -> None:
        # Lines of a timed-out search end with its own bestmove; drop them.
        if self._pending_drains:
            if is_bestmove_line(line):
                self._pending_drains -= 1
            return
        for listener in list(self._listeners.values()):
            listener(line)

    def _acquire(self) -> int:
        if self._in_flight is not None:
            self.metrics["busy_rejections"] += 1
            raise OracleBusyError(
                f"Oracle is already calculating (request {self._in_flight})"
            )
        request_id = next(self._request_ids)
        self._in_flight = request_id
        self.metrics["total_requests"] += 1
        return request_id

    async def _run(
        self,
        request_id: int,
        position: Position,
        depth: int,
        listener_factory: Callable[[asyncio.Future], LineListener],
        timeout: float,
    ) -> Any:
        loop = asyncio.get_running_loop()
        future: asyncio.Future = loop.create_future()
        handle = listener_factory(future)
        search_ended = False

        def listener(line: str) -> None:
            nonlocal search_ended
            if is_bestmove_line(line):
                search_ended = True
            handle(line)

        try:
            self._listeners[request_id] = listener
            self._futures[request_id] = future
            await self._channel.send(f"position fen {position.fen}")
            await self._channel.send(f"go depth {depth}")
            try:
                return await asyncio.wait_for(future, timeout)
            except asyncio.TimeoutError:
                self.metrics["timeouts"] += 1
                # The bestmove may have landed after the deadline but before
                # this coroutine resumed; then nothing is left to drain.
                if not search_ended:
                    self._pending_drains += 1
                logger.warning(
                    "Oracle request %d timed out after %.1fs", request_id, timeout
                )
                try:
                    await self._channel.send("stop")
                except OracleUnavailableError:
                    pass
                raise OracleTimeoutError(
                    f"Engine calculation timeout after {timeout}s"
                ) from None
        except Exception:
            self.metrics["failed_requests"] += 1
            raise
        finally:
            self._listeners.pop(request_id, None)
            self._futures.pop(request_id, None)
            self._in_flight = None

    async def best_move(self, position: Position, difficulty: str) -> OracleMove:
        """Ask the oracle for its move at a difficulty tier.

        Raises:
            ValueError: For an unknown difficulty tier.
            OracleBusyError: If another request is in flight.
            OracleTimeoutError: If no answer arrives within the ceiling.
            NoLegalMovesError: If the position has no legal moves.
        """
        depth = config.depth_for(difficulty)
        request_id = self._acquire()

        def factory(future: asyncio.Future) -> LineListener:
            def listener(line: str) -> None:
                if future.done() or not is_bestmove_line(line):
                    return
                try:
                    future.set_result(parse_bestmove(line))
                except OracleError as exc:
                    future.set_exception(exc)
            return listener

        logger.debug("Request %d: best move at depth %d", request_id, depth)
        return await self._run(request_id, position, depth, factory, self._move_timeout)

    async def evaluate(self, position: Position) -> Evaluation:
        """Static evaluation of a position, White-positive.

        Raises:
            OracleBusyError: If another request is in flight.
            OracleTimeoutError: If no answer arrives within the ceiling.
            EvaluationUnavailableError: If the search ended without a score.
        """
        request_id = self._acquire()
        turn = position.turn

        def factory(future: asyncio.Future) -> LineListener:
            buffered: Evaluation | None = None

            def listener(line: str) -> None:
                nonlocal buffered
                if future.done():
                    return
                score = parse_score(line)
                if score is not None:
                    buffered = score
                if not is_bestmove_line(line):
                    return
                if buffered is None:
                    future.set_exception(
                        EvaluationUnavailableError("Could not get evaluation")
                    )
                else:
                    future.set_result(orient(buffered, turn))
            return listener

        logger.debug("Request %d: evaluation", request_id)
        return await self._run(
            request_id, position, self._evaluation_depth, factory,
            self._evaluation_timeout,
        )

    def get_metrics(self) -> dict[str, Any]:
        return {**self.metrics, "busy": self.is_busy}

    async def close(self) -> None:
        """Detach from and close the channel."""
        self._channel.remove_listener(self._dispatch)
        await self._channel.close()
