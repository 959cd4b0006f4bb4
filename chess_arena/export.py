"""PGN export for game sessions."""

from __future__ import annotations

import os
from datetime import datetime, timezone
from pathlib import Path

import chess
import chess.pgn

from chess_arena.models import (
    BLACK_WINS,
    DRAW,
    WHITE,
    WHITE_WINS,
    GameAnalysis,
    GameSession,
)
from chess_arena.replay import sort_by_index

_PGN_RESULTS = {WHITE_WINS: "1-0", BLACK_WINS: "0-1", DRAW: "1/2-1/2"}


def pgn_result(session: GameSession) -> str:
    return _PGN_RESULTS.get(session.result or "", "*")


def export_pgn(session: GameSession, analysis: GameAnalysis | None = None) -> str:
    """Render a session as PGN text.

    Moves come from the stored records. When an analysis is given, mistake
    and blunder annotations become move comments.
    """
    game = chess.pgn.Game()
    if session.initial_position.fen != chess.STARTING_FEN:
        game.setup(session.initial_position.board())

    engine_name = f"Stockfish ({session.difficulty})" if session.is_oracle_game else "Opponent"
    game.headers["Event"] = "Chess Arena"
    game.headers["Site"] = "Chess Arena"
    game.headers["Date"] = session.created_at.strftime("%Y.%m.%d")
    game.headers["White"] = "Player" if session.human_color == WHITE else engine_name
    game.headers["Black"] = engine_name if session.human_color == WHITE else "Player"
    game.headers["Result"] = pgn_result(session)

    node: chess.pgn.GameNode = game
    for record in sort_by_index(session.records):
        node = node.add_variation(chess.Move.from_uci(record.move.uci))
        annotation = analysis.annotation_for(record.index) if analysis else None
        if annotation is not None and annotation.best_move_san:
            node.comment = f"{annotation.tag}; best was {annotation.best_move_san}"

    return str(game)


def save_pgn(
    session: GameSession,
    directory: Path,
    analysis: GameAnalysis | None = None,
) -> Path:
    """Write a session's PGN atomically into ``directory``.

    Returns:
        Path of the written file.
    """
    directory.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
    filename = f"game_{timestamp}_{session.game_id[:8]}.pgn"
    target = directory / filename
    tmp = directory / f"{filename}.tmp"
    tmp.write_text(export_pgn(session, analysis) + "\n", encoding="utf-8")
    os.replace(tmp, target)
    return target
