"""Post-game analysis: classify every move of a completed game.

The pipeline walks the move log in order and, for each move, asks the
oracle for the evaluation before the move, its preferred move, and the
evaluation after the move. Requests are strictly sequential because the
oracle client is single-flight. Any oracle failure aborts the run and
nothing is stored; a successful run replaces the game's annotation set
in one upsert.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from chess_arena import config, rules
from chess_arena.errors import NotAnalyzableError
from chess_arena.models import (
    BEST,
    BLUNDER,
    COMPLETED,
    GOOD,
    MISTAKE,
    WHITE,
    Evaluation,
    GameAnalysis,
    MoveAnnotation,
)
from chess_arena.oracle import SearchOracleClient
from chess_arena.replay import sort_by_index
from chess_arena.storage import GameStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def eval_to_cp(evaluation: Evaluation, mate_cp: int = config.MATE_CP) -> int:
    """Centipawn equivalent of an evaluation (mates map to +/- ``mate_cp``)."""
    return evaluation.to_cp(mate_cp)


def normalize_uci(uci: str) -> str:
    return uci.strip().lower()


def compute_drop(cp_before: int, cp_after: int, mover: str) -> int:
    """Evaluation loss for the side that moved. Positive means worse."""
    if mover == WHITE:
        return cp_before - cp_after
    return cp_after - cp_before


def classify_move(
    drop: int,
    played_uci: str,
    best_uci: str,
    mistake_threshold: int = config.MISTAKE_THRESHOLD,
    blunder_threshold: int = config.BLUNDER_THRESHOLD,
) -> str:
    """Tag a played move as best, good, mistake or blunder.

    A move matching the oracle's choice is ``best`` whatever the drop.
    """
    if normalize_uci(played_uci) == normalize_uci(best_uci):
        return BEST
    if drop >= blunder_threshold:
        return BLUNDER
    if drop >= mistake_threshold:
        return MISTAKE
    return GOOD


def _plural(count: int, word: str) -> str:
    return f"{count} {word}{'' if count == 1 else 's'}"


def build_summary(move_count: int, blunders: int, mistakes: int, best: int) -> str:
    """One-paragraph summary of the counts."""
    parts = [f"Game had {_plural(move_count, 'move')}."]
    if blunders > 0 or mistakes > 0:
        items = []
        if blunders > 0:
            items.append(_plural(blunders, "blunder"))
        if mistakes > 0:
            items.append(_plural(mistakes, "mistake"))
        parts.append(f"You had {' and '.join(items)}.")
    if best > 0:
        parts.append(f"{best} of your moves matched the engine's best.")
    return " ".join(parts)[: config.MAX_SUMMARY_LENGTH]


def build_suggestions(blunders: int, mistakes: int) -> list[str]:
    """Short improvement tips chosen from the aggregate counts."""
    tips: list[str] = []
    if blunders > 0:
        tips.append("Take more time on critical moves to avoid blunders.")
    if mistakes > 0:
        tips.append(
            "Review key positions: consider the engine's best move and why it's stronger."
        )
    if blunders + mistakes > 3:
        tips.append("Try to reduce tactical errors by checking your moves before playing.")
    if not tips:
        tips.append("Keep reviewing your games to spot small improvements.")
    return tips[: config.MAX_RUN_SUGGESTIONS]


class GameAnalysisPipeline:
    """Sequential per-move review of completed games."""

    def __init__(
        self,
        store: GameStore,
        oracle: SearchOracleClient,
        tier: str = config.ANALYSIS_TIER,
        mistake_threshold: int = config.MISTAKE_THRESHOLD,
        blunder_threshold: int = config.BLUNDER_THRESHOLD,
        mate_cp: int = config.MATE_CP,
    ) -> None:
        config.depth_for(tier)
        if mistake_threshold > blunder_threshold:
            raise ValueError("Mistake threshold must not exceed blunder threshold")
        self._store = store
        self._oracle = oracle
        self.tier = tier
        self.mistake_threshold = mistake_threshold
        self.blunder_threshold = blunder_threshold
        self.mate_cp = mate_cp

    async def run(
        self,
        game_id: str,
        on_progress: ProgressCallback | None = None,
    ) -> GameAnalysis:
        """Analyze a completed game and store its annotation set.

        Args:
            game_id: Game to analyze.
            on_progress: Called with ``(moves_done, total)``; starts at
                ``(0, total)`` and ends with ``(total, total)``.

        Returns:
            The stored GameAnalysis.

        Raises:
            NotAnalyzableError: If the game is not completed or has no moves.
            OracleError: Any oracle failure aborts the run; nothing is stored.
        """
        session = self._store.load_session(game_id)
        if session.status != COMPLETED:
            raise NotAnalyzableError(f"Game {game_id} is not completed ({session.status})")
        if not session.records:
            raise NotAnalyzableError(f"Game {game_id} has no moves")

        records = sort_by_index(session.records)
        total = len(records)
        annotations: list[MoveAnnotation] = []
        key_moments: list[str] = []
        counts = {BEST: 0, GOOD: 0, MISTAKE: 0, BLUNDER: 0}

        def report(done: int) -> None:
            if on_progress is not None:
                on_progress(done, total)

        report(0)
        for done, record in enumerate(records, 1):
            eval_before = await self._oracle.evaluate(record.before)
            best = await self._oracle.best_move(record.before, self.tier)
            eval_after = await self._oracle.evaluate(record.after)

            drop = compute_drop(
                eval_to_cp(eval_before, self.mate_cp),
                eval_to_cp(eval_after, self.mate_cp),
                record.mover,
            )
            tag = classify_move(
                drop, record.move.uci, best.uci,
                self.mistake_threshold, self.blunder_threshold,
            )
            counts[tag] += 1

            best_san = None
            if tag in (MISTAKE, BLUNDER):
                best_san = rules.san_for_move(
                    record.before, best.origin, best.destination, best.promotion,
                )
                moment = f"Move {record.index}: {record.move.san} was a {tag}"
                if best_san:
                    moment += f"; best was {best_san}"
                key_moments.append(moment + ".")

            annotations.append(MoveAnnotation(record.index, tag, best_san))
            logger.debug(
                "Game %s move %d: %s (drop %d, best %s)",
                game_id, record.index, tag, drop, best.uci,
            )
            report(done)

        analysis = GameAnalysis(
            game_id=game_id,
            summary=build_summary(total, counts[BLUNDER], counts[MISTAKE], counts[BEST]),
            key_moments=tuple(key_moments[: config.MAX_KEY_MOMENTS]),
            suggestions=tuple(build_suggestions(counts[BLUNDER], counts[MISTAKE])),
            annotations=tuple(annotations),
        )
        self._store.upsert_annotations(game_id, analysis)
        logger.info(
            "Analyzed game %s: %d blunders, %d mistakes, %d best",
            game_id, counts[BLUNDER], counts[MISTAKE], counts[BEST],
        )
        return analysis
