"""Terminal rendering of Go boards and game records.

Renders a Rich-based board from a BoardState, lists the history
directory, and can follow a record while it is being written (the
recorder rewrites the file on every move) by watching it via watchdog.
"""

from __future__ import annotations

import argparse
import sys
import time
from pathlib import Path

from rich.console import Console
from rich.layout import Layout
from rich.live import Live
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from baduk.config import load_config
from baduk.coords import MAX_BOARD_SIZE
from baduk.errors import SGFParseError
from baduk.models import BoardState, GameInfo, Stone
from baduk.reader import Replay, list_games, replay_to_end

_GTP_COLUMNS = "ABCDEFGHJKLMNOPQRSTUVWXYZ"[:MAX_BOARD_SIZE]

_STONE_SYMBOLS = {
    Stone.BLACK: ("●", "black"),
    Stone.WHITE: ("●", "bright_white"),
}

_BOARD_BG = "tan"
_LINE_STYLE = "grey30"
_HIGHLIGHT = "green"


def _star_points(size: int) -> set[tuple[int, int]]:
    if size < 9:
        return set()
    edge = 2 if size < 13 else 3
    far = size - 1 - edge
    points = {(edge, edge), (edge, far), (far, edge), (far, far)}
    if size % 2 == 1:
        mid = size // 2
        points.add((mid, mid))
        if size >= 13:
            points |= {(edge, mid), (far, mid), (mid, edge), (mid, far)}
    return points


def _render_board_table(state: BoardState) -> Table:
    size = state.size
    stars = _star_points(size)

    table = Table(show_header=False, show_edge=False, pad_edge=False,
                  box=None, padding=(0, 0))
    table.add_column(width=3)
    for _ in range(size):
        table.add_column(width=2, justify="center")

    for y in range(size):
        row: list[Text] = [Text(f"{size - y:>2} ", style="bold")]
        for x in range(size):
            bg = _HIGHLIGHT if (x, y) == state.last_move else _BOARD_BG
            stone = state.stone_at(x, y)
            if stone is Stone.EMPTY:
                symbol = "+" if (x, y) in stars else "·"
                row.append(Text(f"{symbol} ", style=f"{_LINE_STYLE} on {bg}"))
            else:
                symbol, color = _STONE_SYMBOLS[stone]
                row.append(Text(f"{symbol} ", style=f"{color} on {bg}"))
        table.add_row(*row)

    labels = [Text("   ")]
    labels.extend(Text(f"{_GTP_COLUMNS[x]} ", style="bold") for x in range(size))
    table.add_row(*labels)
    return table


def render_board(state: BoardState, title: str = "Baduk") -> Panel:
    """Render a board snapshot as a Rich Panel.

    Args:
        state: Board snapshot.
        title: Panel title; replaced by the outcome once the game ends.

    Returns:
        Panel containing the board.
    """
    if state.finished:
        title = f"Game Over: {escape(state.outcome or '?')}"
    return Panel(_render_board_table(state), title=title, border_style="blue", expand=False)


def _render_sidebar(info: GameInfo, state: BoardState) -> Panel:
    parts: list[str] = []
    parts.append(f"[bold]{escape(info.player_black or '?')}[/bold] (B)")
    parts.append(f"[bold]{escape(info.player_white or '?')}[/bold] (W)")
    parts.append("")
    parts.append(f"Board: {info.board_size}x{info.board_size}")
    parts.append(f"Komi: {info.komi:.1f}")
    if info.date:
        parts.append(f"Date: {escape(info.date)}")
    parts.append(f"Moves: {info.move_count}")
    parts.append("")
    if state.finished:
        parts.append(f"[bold]Result:[/bold] {escape(state.outcome)}")
    else:
        parts.append(f"To move: {state.player_to_move.gtp_name}")
    return Panel("\n".join(parts), title="Info", border_style="green")


def render_game(replay: Replay) -> Layout:
    """Render a replayed record: board plus an info sidebar."""
    state = replay.to_board_state()
    layout = Layout()
    layout.split_row(
        Layout(name="board", ratio=2),
        Layout(name="sidebar", ratio=1),
    )
    layout["board"].update(render_board(state, title=escape(replay.info.file_name)))
    layout["sidebar"].update(_render_sidebar(replay.info, state))
    return layout


def render_history(games: list[GameInfo]) -> Table:
    """Render a listing of saved games, newest first."""
    table = Table(title="Game history")
    table.add_column("Date")
    table.add_column("Size", justify="right")
    table.add_column("Black")
    table.add_column("White")
    table.add_column("Moves", justify="right")
    table.add_column("Result")
    table.add_column("File", style="dim")
    for game in games:
        result = game.result if game.result and game.result != "?" else "..."
        table.add_row(
            escape(game.date),
            f"{game.board_size}x{game.board_size}",
            escape(game.player_black),
            escape(game.player_white),
            str(game.move_count),
            escape(result),
            escape(game.file_name),
        )
    return table


def _render_waiting(path: Path) -> Panel:
    return Panel(
        Text(f"Waiting for {path.name}...", justify="center"),
        title="Baduk",
        border_style="dim",
    )


def _load_replay(path: Path) -> Replay | None:
    try:
        return replay_to_end(path)
    except (OSError, SGFParseError):
        return None


def _watch_loop(console: Console, path: Path) -> None:
    """Re-render ``path`` whenever the recorder rewrites it.

    Args:
        console: Rich Console instance.
        path: Record to follow.
    """
    from watchdog.events import FileSystemEventHandler
    from watchdog.observers import Observer

    state_changed = True

    class _Handler(FileSystemEventHandler):
        def on_any_event(self, event):
            nonlocal state_changed
            # Records are replaced by rename, so watch the destination too
            targets = {getattr(event, "src_path", ""), getattr(event, "dest_path", "")}
            if str(path) in targets:
                state_changed = True

    observer = Observer()
    path.parent.mkdir(parents=True, exist_ok=True)
    observer.schedule(_Handler(), str(path.parent), recursive=False)
    observer.start()

    try:
        with Live(console=console, refresh_per_second=4) as live:
            shown = False
            while True:
                if state_changed:
                    state_changed = False
                    replay = _load_replay(path)
                    if replay is not None:
                        live.update(render_game(replay))
                        shown = True
                    elif not shown:
                        live.update(_render_waiting(path))
                time.sleep(0.25)
    except KeyboardInterrupt:
        pass
    finally:
        observer.stop()
        observer.join()


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for tui.py."""
    parser = argparse.ArgumentParser(description="Baduk record viewer")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    show_parser = subparsers.add_parser("show", help="Show the final position of a record")
    show_parser.add_argument("path", type=Path)

    history_parser = subparsers.add_parser("history", help="List saved games")
    history_parser.add_argument("directory", type=Path, nargs="?")

    watch_parser = subparsers.add_parser("watch", help="Follow a record as it is written")
    watch_parser.add_argument("path", type=Path)

    args = parser.parse_args(argv)
    console = Console()

    if args.command == "show":
        replay = _load_replay(args.path)
        if replay is None:
            console.print(f"[red]Could not read {args.path}[/red]")
            return 1
        console.print(render_game(replay))
        return 0

    if args.command == "history":
        directory = args.directory or load_config().resolved_history_dir()
        games = list_games(directory)
        if not games:
            console.print("No games found.")
            return 0
        console.print(render_history(games))
        return 0

    if args.command == "watch":
        _watch_loop(console, args.path.resolve())
        return 0

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
