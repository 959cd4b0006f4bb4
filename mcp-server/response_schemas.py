"""Response shapes and minification for MCP tool responses.

Tool results are kept small for the LLM context: move lists become a PGN
string, legal moves become a count, and analysis keeps only tags that
carry information.
"""

from __future__ import annotations

from chess_arena import config, rules
from chess_arena.models import GOOD, GameAnalysis, GameSession
from chess_arena.replay import format_for_display, pgn_move_text
from chess_arena.session import derive_turn_state


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def game_state(session: GameSession, is_calculating: bool = False) -> dict:
    """Full game state dict for a session."""
    turn = derive_turn_state(session, is_calculating=is_calculating)
    last = session.records[-1] if session.records else None
    return {
        "game_id": session.game_id,
        "fen": session.position.fen,
        "status": session.status,
        "result": session.result,
        "player_color": session.human_color,
        "difficulty": session.difficulty,
        "side_to_move": turn.side_to_move,
        "is_engine_turn": turn.is_oracle_turn,
        "is_check": turn.is_check,
        "status_text": turn.status_text,
        "last_move": last.move.uci if last else None,
        "last_move_san": last.move.san if last else None,
        "move_list": pgn_move_text(session.records),
        "legal_moves": rules.legal_moves(session.position),
    }


def history_rows(session: GameSession, analysis: GameAnalysis | None) -> list[dict]:
    """Move history rows with annotation tags attached."""
    rows = []
    for row in format_for_display(session.records):
        entry = {
            "index": row.index,
            "number": row.display_number,
            "san": row.san,
            "white": row.is_white_move,
        }
        annotation = analysis.annotation_for(row.index) if analysis else None
        if annotation is not None:
            entry["tag"] = annotation.tag
            if annotation.best_move_san:
                entry["best_move_san"] = annotation.best_move_san
        rows.append(entry)
    return rows


def game_summary(session: GameSession) -> dict:
    """One row of the game list."""
    last = session.records[-1] if session.records else None
    return {
        "game_id": session.game_id,
        "status": session.status,
        "result": session.result,
        "player_color": session.human_color,
        "difficulty": session.difficulty,
        "move_count": session.move_count,
        "last_move_san": last.move.san if last else None,
        "updated_at": session.updated_at.isoformat(),
    }


# ---------------------------------------------------------------------------
# Minification functions
# ---------------------------------------------------------------------------


def minify_game_state(state: dict) -> dict:
    """Minify a game state dict for MCP response.

    Replaces legal_moves with a count; move_list is already PGN move text.
    """
    result = {}

    for key in (
        "game_id", "fen", "status", "result", "player_color", "difficulty",
        "side_to_move", "is_engine_turn", "is_check", "status_text",
        "last_move", "last_move_san",
    ):
        if key in state:
            result[key] = state[key]

    result["move_list"] = state.get("move_list", "")

    legal_moves = state.get("legal_moves", [])
    result["legal_moves_count"] = len(legal_moves) if isinstance(legal_moves, list) else 0

    return result


def minify_analysis(analysis: GameAnalysis) -> dict:
    """Minify an analysis for MCP response.

    Drops ``good`` annotations, which carry no extra information.
    """
    return {
        "game_id": analysis.game_id,
        "summary": analysis.summary,
        "key_moments": list(analysis.key_moments),
        "suggestions": list(analysis.suggestions),
        "annotations": [
            {
                "index": a.index,
                "tag": a.tag,
                **({"best_move_san": a.best_move_san} if a.best_move_san else {}),
            }
            for a in analysis.annotations
            if a.tag != GOOD
        ],
        "annotated_moves": len(analysis.annotations),
    }


# ---------------------------------------------------------------------------
# Validation schemas (dict-based)
# ---------------------------------------------------------------------------

GAME_STATE_SCHEMA = {
    "game_id": str,
    "fen": str,
    "status": str,
    "result": (str, type(None)),
    "player_color": str,
    "difficulty": (str, type(None)),
    "side_to_move": str,
    "is_engine_turn": bool,
    "is_check": bool,
    "status_text": str,
    "last_move": (str, type(None)),
    "last_move_san": (str, type(None)),
    "move_list": str,
    "legal_moves_count": int,
}

ANALYSIS_SCHEMA = {
    "game_id": str,
    "summary": str,
    "key_moments": list,
    "suggestions": list,
    "annotations": list,
    "annotated_moves": int,
}

REPLAY_SCHEMA = {
    "game_id": str,
    "cursor": int,
    "move_count": int,
    "fen": str,
    "is_live": bool,
    "move_san": (str, type(None)),
    "annotation": (dict, type(None)),
}

HINT_SCHEMA = {
    "game_id": str,
    "hint": (dict, type(None)),
}

GAME_LIST_SCHEMA = {
    "games": list,
    "count": int,
}

ERROR_SCHEMA = {
    "error": str,
}


def validate_response(response: dict, schema: dict) -> list[str]:
    """Validate a response dict against a schema.

    Only runs when CHESS_ARENA_VALIDATE=1 env var is set.

    Returns:
        List of validation error strings (empty = valid).
    """
    if not config.validation_enabled():
        return []

    errors = []

    if not isinstance(response, dict):
        errors.append(f"Response is not a dict: {type(response).__name__}")
        return errors

    for key, expected_types in schema.items():
        if key not in response:
            errors.append(f"Missing key: {key}")
            continue

        value = response[key]
        if isinstance(expected_types, tuple):
            if not isinstance(value, expected_types):
                type_names = ", ".join(t.__name__ for t in expected_types)
                errors.append(
                    f"Key '{key}': expected ({type_names}), "
                    f"got {type(value).__name__}"
                )
        elif not isinstance(value, expected_types):
            errors.append(
                f"Key '{key}': expected {expected_types.__name__}, "
                f"got {type(value).__name__}"
            )

    return errors
