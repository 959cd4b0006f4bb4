"""MCP server for Chess Arena.

Exposes the game session controller and the post-game analysis pipeline
to MCP clients via FastMCP. Games live in an in-memory store keyed by
UUID. The Stockfish oracle is started on first use and shared by every
game. Finished games are saved as PGN under data/games/.
"""

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Add project root and mcp-server dir to path for imports
_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_MCP_SERVER_DIR = Path(__file__).resolve().parent
sys.path.insert(0, str(_PROJECT_ROOT))
sys.path.insert(0, str(_MCP_SERVER_DIR))

from mcp.server.fastmcp import FastMCP

from chess_arena import rules
from chess_arena.analysis import GameAnalysisPipeline
from chess_arena.errors import ArenaError, OracleUnavailableError
from chess_arena.export import export_pgn, save_pgn
from chess_arena.models import COMPLETED, GameSession
from chess_arena.oracle import SearchOracleClient
from chess_arena.replay import ReplayCursor, pgn_move_text, position_at
from chess_arena.session import GameSessionController
from chess_arena.storage import InMemoryGameStore

from response_schemas import (  # noqa: E402
    game_state,
    game_summary,
    history_rows,
    minify_analysis,
    minify_game_state,
)

logger = logging.getLogger(__name__)

mcp = FastMCP("chess-arena")

_DATA_DIR = _PROJECT_ROOT / "data"

_store = InMemoryGameStore()
_controller = GameSessionController(_store)
_oracle: SearchOracleClient | None = None

# Games whose PGN has already been written
_saved: set[str] = set()


async def _open_oracle() -> SearchOracleClient:
    """Start the Stockfish oracle. Tests replace this with a scripted client."""
    return await SearchOracleClient.open()


async def _get_oracle() -> SearchOracleClient:
    """Return the shared oracle, starting it on first use.

    A client whose engine process has exited is replaced by a fresh one.

    Raises:
        OracleUnavailableError: If Stockfish cannot be started.
    """
    global _oracle
    if _oracle is not None and _oracle.closed:
        logger.warning("Stockfish exited, restarting it")
        _oracle = None
    if _oracle is None:
        try:
            _oracle = await _open_oracle()
        except FileNotFoundError as exc:
            raise OracleUnavailableError(str(exc)) from exc
        _controller.attach_oracle(_oracle)
    return _oracle


def _state(session: GameSession) -> dict:
    calculating = _controller.turn_state(session.game_id).status_text == "Engine thinking"
    return minify_game_state(game_state(session, is_calculating=calculating))


def _auto_save_pgn(session: GameSession) -> None:
    """Save a finished game's PGN once. Failures are logged, not raised."""
    if session.status != COMPLETED or session.game_id in _saved:
        return
    try:
        path = save_pgn(session, _DATA_DIR / "games", _store.load_annotations(session.game_id))
    except OSError as exc:
        logger.warning("Could not save PGN for %s: %s", session.game_id, exc)
        return
    _saved.add(session.game_id)
    logger.info("Saved PGN to %s", path)


# ---------------------------------------------------------------------------
# Game tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def new_game(
    difficulty: str = "medium",
    player_color: str = "white",
    vs_engine: bool = True,
) -> dict:
    """Start a new game, against Stockfish by default.

    When the engine has the first move it is scheduled right away; call
    engine_move to wait for it.

    Args:
        difficulty: Engine tier: 'easy', 'medium' or 'hard'. Default 'medium'.
        player_color: 'white', 'black' or 'random'. Default 'white'.
        vs_engine: False for a game between two people on one board.

    Returns:
        Game state dict with the initial position.
    """
    try:
        if vs_engine:
            await _get_oracle()
        session = _controller.create_session(
            human_color=player_color,
            difficulty=difficulty if vs_engine else None,
        )
    except (ArenaError, ValueError) as exc:
        return {"error": str(exc)}

    _controller.tick(session.game_id)
    return _state(session)


@mcp.tool()
async def get_board(game_id: str) -> dict:
    """Get the current board state for a game.

    Args:
        game_id: UUID of the game.

    Returns:
        Game state dict with position, turn information and legal move count.
    """
    try:
        session = _controller.load(game_id)
    except ArenaError as exc:
        return {"error": str(exc)}
    return _state(session)


@mcp.tool()
async def make_move(game_id: str, move: str) -> dict:
    """Make a player move.

    Args:
        game_id: UUID of the game.
        move: SAN ('e4', 'Nf3', 'O-O', 'e8=Q') or compact ('e2e4', 'e7e8q').

    Returns:
        Updated game state dict after the move.
    """
    try:
        session = _controller.load(game_id)
        origin, destination, promotion = rules.parse_move_text(session.position, move)
        await _controller.submit_move(game_id, origin, destination, promotion)
    except ArenaError as exc:
        return {"error": str(exc)}

    _auto_save_pgn(session)
    return _state(session)


@mcp.tool()
async def engine_move(game_id: str) -> dict:
    """Wait for the engine's move when it is the engine's turn.

    Schedules a request if none is pending, then waits for it to land.

    Args:
        game_id: UUID of the game.

    Returns:
        Updated game state dict after the engine's move.
    """
    try:
        session = _controller.load(game_id)
        if not _controller.turn_state(game_id).is_oracle_turn:
            return {"error": f"Not the engine's turn in game {game_id}"}
        await _get_oracle()
        _controller.tick(game_id)
        record = await _controller.wait_for_oracle(game_id)
    except ArenaError as exc:
        return {"error": str(exc)}

    if record is None and _controller.turn_state(game_id).is_oracle_turn:
        return {"error": "Engine could not produce a move, try again"}

    _auto_save_pgn(session)
    return _state(session)


@mcp.tool()
async def request_hint(game_id: str, difficulty: str | None = None) -> dict:
    """Ask the engine for a suggested move for the side to move.

    Args:
        game_id: UUID of the game.
        difficulty: Optional tier for the hint search.

    Returns:
        Dict with game_id and hint (origin, destination, promotion, uci, san),
        or hint None if the engine was busy or the position changed.
    """
    try:
        await _get_oracle()
        hint = await _controller.request_hint(game_id, difficulty)
    except (ArenaError, ValueError) as exc:
        return {"error": str(exc)}

    if hint is None:
        return {"game_id": game_id, "hint": None}
    return {
        "game_id": game_id,
        "hint": {
            "origin": hint.origin,
            "destination": hint.destination,
            "promotion": hint.promotion,
            "uci": hint.uci,
            "san": hint.san,
        },
    }


@mcp.tool()
async def resign(game_id: str, color: str | None = None) -> dict:
    """Resign the game.

    Args:
        game_id: UUID of the game.
        color: Resigning side, 'white' or 'black'. Defaults to the player's
            color against the engine and to the side to move in a game
            between two people.

    Returns:
        Final game state dict.
    """
    try:
        session = _controller.resign(game_id, color)
    except (ArenaError, ValueError) as exc:
        return {"error": str(exc)}

    _auto_save_pgn(session)
    return _state(session)


@mcp.tool()
async def list_games(limit: int = 50) -> dict:
    """List games, most recently updated first.

    Args:
        limit: Maximum number of games to return, capped at 100.

    Returns:
        Dict with one summary per game and their count.
    """
    games = [game_summary(s) for s in _controller.list_sessions(limit)]
    return {"games": games, "count": len(games)}


# ---------------------------------------------------------------------------
# Review tools
# ---------------------------------------------------------------------------


@mcp.tool()
async def analyze_game(game_id: str) -> dict:
    """Analyze every move of a completed game and store the annotations.

    Runs one evaluation before, one best-move search and one evaluation
    after each move. Re-running replaces the previous annotation set.

    Args:
        game_id: UUID of a completed game.

    Returns:
        Analysis dict with summary, key moments, suggestions and the
        non-trivial move annotations.
    """
    try:
        oracle = await _get_oracle()
        pipeline = GameAnalysisPipeline(_store, oracle)
        analysis = await pipeline.run(
            game_id,
            on_progress=lambda done, total: logger.info(
                "Analyzing %s: %d/%d", game_id, done, total,
            ),
        )
    except ArenaError as exc:
        return {"error": str(exc)}
    return minify_analysis(analysis)


@mcp.tool()
async def get_replay(game_id: str, cursor: int | None = None) -> dict:
    """Get the position after the first ``cursor`` moves of a game.

    Args:
        game_id: UUID of the game.
        cursor: Number of moves from the start; clamped to the game length.
            Defaults to the live position.

    Returns:
        Dict with cursor, move_count, fen, is_live, the move that led to the
        position and its annotation if the game was analyzed.
    """
    try:
        session = _controller.load(game_id)
        analysis = _store.load_annotations(game_id)
    except ArenaError as exc:
        return {"error": str(exc)}

    if cursor is None:
        view = ReplayCursor.live(session.move_count)
    else:
        view = ReplayCursor(cursor, session.move_count)
    position = position_at(
        session.records, view.value, session.position, session.initial_position,
    )

    move_san = None
    annotation = None
    if view.value > 0:
        record = session.records[view.value - 1]
        move_san = record.move.san
        found = analysis.annotation_for(record.index) if analysis else None
        if found is not None:
            annotation = {"tag": found.tag, "best_move_san": found.best_move_san}

    return {
        "game_id": game_id,
        "cursor": view.value,
        "move_count": view.move_count,
        "fen": position.fen,
        "is_live": view.is_live,
        "move_san": move_san,
        "annotation": annotation,
    }


@mcp.tool()
async def get_move_history(game_id: str) -> dict:
    """Get the move history with analysis tags where available.

    Args:
        game_id: UUID of the game.

    Returns:
        Dict with pgn move text and one row per move.
    """
    try:
        session = _controller.load(game_id)
        analysis = _store.load_annotations(game_id)
    except ArenaError as exc:
        return {"error": str(exc)}

    return {
        "game_id": game_id,
        "pgn": pgn_move_text(session.records),
        "moves": history_rows(session, analysis),
        "analyzed": analysis is not None,
    }


@mcp.tool()
async def get_annotation(game_id: str, move_index: int) -> dict:
    """Get the analysis tag for one move.

    Args:
        game_id: UUID of the game.
        move_index: 1-based move index.

    Returns:
        Dict with index, san, tag and best_move_san.
    """
    try:
        session = _controller.load(game_id)
        analysis = _store.load_annotations(game_id)
    except ArenaError as exc:
        return {"error": str(exc)}

    if analysis is None:
        return {"error": f"Game {game_id} has not been analyzed"}
    if not 1 <= move_index <= session.move_count:
        return {"error": f"Move index out of range: {move_index}"}

    annotation = analysis.annotation_for(move_index)
    if annotation is None:
        return {"error": f"No annotation for move {move_index}"}
    return {
        "game_id": game_id,
        "index": move_index,
        "san": session.records[move_index - 1].move.san,
        "tag": annotation.tag,
        "best_move_san": annotation.best_move_san,
    }


@mcp.tool()
async def get_game_pgn(game_id: str) -> dict:
    """Export the game as PGN, with analysis comments when available.

    Args:
        game_id: UUID of the game.

    Returns:
        Dict with the PGN text.
    """
    try:
        session = _controller.load(game_id)
        analysis = _store.load_annotations(game_id)
    except ArenaError as exc:
        return {"error": str(exc)}
    return {"game_id": game_id, "pgn": export_pgn(session, analysis)}


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    mcp.run()
