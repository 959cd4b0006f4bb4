"""Terminal replay viewer for finished and ongoing games.

Renders a Rich board at any replay cursor next to the move history and
the analysis tags. ``--sample`` plays a short scripted game and prints it;
``--fen`` prints a single position typed by the user.
"""

from __future__ import annotations

import argparse
import asyncio

import chess
from rich.console import Console
from rich.layout import Layout
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from chess_arena import rules
from chess_arena.codec import decode_or_initial
from chess_arena.models import BLACK, GameAnalysis, GameSession
from chess_arena.replay import (
    ReplayCursor,
    annotation_for,
    format_for_display,
    pair_rows,
    position_at,
)
from chess_arena.session import GameSessionController, derive_turn_state, game_over_message
from chess_arena.storage import InMemoryGameStore

_LIGHT_SQ = "grey85"
_DARK_SQ = "grey50"
_HIGHLIGHT = "yellow"
_CHECK = "red3"

_TAG_STYLES = {
    "best": "green",
    "good": "white",
    "mistake": "yellow",
    "blunder": "bold red",
}

# Scholar's mate
_SAMPLE_MOVES = ["e2e4", "e7e5", "f1c4", "b8c6", "d1h5", "g8f6", "h5f7"]


def render_replay(
    session: GameSession,
    cursor: ReplayCursor | None = None,
    analysis: GameAnalysis | None = None,
) -> Layout:
    """Render the board at ``cursor`` with a history sidebar.

    Args:
        session: Game to show.
        cursor: Replay cursor; live position when None.
        analysis: Optional annotation set for move tags.

    Returns:
        Rich Layout with board and sidebar.
    """
    cursor = cursor or ReplayCursor.live(session.move_count)
    layout = Layout()
    layout.split_row(
        Layout(name="board", ratio=2),
        Layout(name="sidebar", ratio=1),
    )
    layout["board"].update(_render_board_panel(session, cursor))
    layout["sidebar"].update(_render_sidebar(session, cursor, analysis))
    return layout


def _render_board_panel(session: GameSession, cursor: ReplayCursor) -> Panel:
    position = position_at(
        session.records, cursor.value, session.position, session.initial_position,
    )
    board = position.board()
    is_flipped = session.human_color == BLACK

    highlight_squares: set[int] = set()
    if cursor.value > 0:
        last = chess.Move.from_uci(session.records[cursor.value - 1].move.uci)
        highlight_squares.update((last.from_square, last.to_square))

    check_square = rules.king_square_in_check(position)
    check_sq = chess.parse_square(check_square) if check_square else None

    table = Table(show_header=False, show_edge=False, pad_edge=False,
                  box=None, padding=(0, 1))
    table.add_column(width=2, justify="right")
    for _ in range(8):
        table.add_column(width=3, justify="center")

    ranks = range(8) if is_flipped else range(7, -1, -1)
    files = list(range(7, -1, -1)) if is_flipped else list(range(8))

    for rank in ranks:
        row: list[Text] = [Text(str(rank + 1), style="bold")]
        for file in files:
            sq = chess.square(file, rank)
            piece = board.piece_at(sq)

            is_light = (rank + file) % 2 == 1
            bg = _LIGHT_SQ if is_light else _DARK_SQ
            if sq in highlight_squares:
                bg = _HIGHLIGHT
            if sq == check_sq:
                bg = _CHECK

            if piece is not None:
                symbol = rules.PIECE_SYMBOLS.get(piece.symbol(), "?")
                row.append(Text(f" {symbol} ", style=f"on {bg}"))
            else:
                row.append(Text("   ", style=f"on {bg}"))
        table.add_row(*row)

    file_labels = [Text("  ")]
    for f in files:
        file_labels.append(Text(f" {chr(ord('a') + f)} ", style="bold"))
    table.add_row(*file_labels)

    title = f"Move {cursor.value}/{cursor.move_count}"
    if session.is_terminal and cursor.is_live:
        title = f"Game Over: {game_over_message(session.result)}"
    return Panel(table, title=title, border_style="blue")


def _move_text(row, analysis: GameAnalysis | None, current: int) -> Text:
    if row is None:
        return Text("")
    text = Text(row.san, style="reverse" if row.index == current else "")
    annotation = annotation_for(analysis, row.index)
    if annotation is not None and annotation.tag != "good":
        text.append(f" {annotation.tag}", style=_TAG_STYLES[annotation.tag])
    return text


def _render_sidebar(
    session: GameSession,
    cursor: ReplayCursor,
    analysis: GameAnalysis | None,
) -> Panel:
    turn = derive_turn_state(session)
    status = Text(turn.status_text, style="bold")

    history = Table(show_header=False, box=None, padding=(0, 1))
    history.add_column(justify="right", style="dim")
    history.add_column()
    history.add_column()
    for number, white, black in pair_rows(format_for_display(session.records)):
        history.add_row(
            f"{number}.",
            _move_text(white, analysis, cursor.value),
            _move_text(black, analysis, cursor.value),
        )

    captured = rules.captured_pieces(session.records[: cursor.value])
    lines = Text()
    lines.append("White took: " + " ".join(rules.captured_symbols(captured["white"])) + "\n")
    lines.append("Black took: " + " ".join(rules.captured_symbols(captured["black"])))

    content = Table.grid()
    content.add_row(status)
    content.add_row(history)
    content.add_row(lines)
    if analysis is not None:
        content.add_row(Text(analysis.summary, style="italic"))
    return Panel(content, title="Moves", border_style="green")


async def _play_sample() -> GameSession:
    controller = GameSessionController(InMemoryGameStore(), debounce=0)
    session = controller.create_session(game_id="sample")
    for uci in _SAMPLE_MOVES:
        await controller.submit_move(session.game_id, uci[:2], uci[2:4], uci[4:] or None)
    return controller.load(session.game_id)


def _session_from_fen(text: str | None) -> GameSession:
    """Wrap typed FEN text in a session; unreadable text shows the start."""
    controller = GameSessionController(InMemoryGameStore(), debounce=0)
    return controller.create_session(game_id="position", initial_position=decode_or_initial(text))


def main() -> None:
    """CLI entry point for tui.py."""
    parser = argparse.ArgumentParser(description="Chess Arena replay viewer")
    parser.add_argument(
        "--sample", action="store_true",
        help="Render a scripted sample game and exit",
    )
    parser.add_argument(
        "--fen", default=None,
        help="Render a position given as FEN text and exit",
    )
    parser.add_argument(
        "--cursor", type=int, default=None,
        help="Replay cursor (moves from the start); live position by default",
    )
    args = parser.parse_args()

    console = Console()
    if args.fen is not None:
        console.print(render_replay(_session_from_fen(args.fen)))
        return
    if not args.sample:
        parser.print_help()
        return

    session = asyncio.run(_play_sample())
    cursor = ReplayCursor.live(session.move_count)
    if args.cursor is not None:
        cursor = ReplayCursor(args.cursor, session.move_count)
    console.print(render_replay(session, cursor))


if __name__ == "__main__":
    main()
