"""Play Go against GnuGo in the terminal.

Usage:
    python -m baduk play [--size 9] [--komi 6.5] [--color white] [--level 5]
    python -m baduk resume FILE
    python -m baduk show FILE | history [DIR] | watch FILE

Games are recorded as SGF under the history directory unless
--no-record is given or recording is disabled in the config file.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Callable

from rich.console import Console
from rich.markup import escape

from baduk import tui
from baduk.config import load_config
from baduk.coords import VertexKind, from_vertex
from baduk.engine import GTPEngine
from baduk.errors import (
    BadukError,
    IllegalMoveError,
    PreconditionError,
    RecordError,
    VertexError,
)
from baduk.models import BoardState, GameConfig, Stone
from baduk.planning import Planner
from baduk.reader import parse_header
from baduk.record import HUMAN_NAME, GameRecord

logger = logging.getLogger(__name__)

_HELP = (
    "Commands: a vertex such as D4, 'pass', 'undo', 'resign', "
    "'plan', 'record' to start or stop recording, 'help', 'q' to quit"
)
_PLAN_HELP = (
    "Planning: a vertex or 'pass' to explore, 'b'/'f' back and forward, "
    "'n'/'p' next and previous variation, 'commit', 'q' to leave"
)


class _Recorder:
    """Mirrors session events into a GameRecord; stops after a write failure.

    Args:
        record: Record to write to, or None when not recording.
        console: Where status messages go.
        new_record: Creates a fresh record when recording is switched on
            mid-game.
    """

    def __init__(
        self,
        record: GameRecord | None,
        console: Console,
        new_record: Callable[[], GameRecord] | None = None,
    ) -> None:
        self.record = record
        self._console = console
        self._new_record = new_record

    def _guard(self, action, *args) -> None:
        if self.record is None:
            return
        try:
            action(*args)
        except RecordError as exc:
            logger.warning("Recording disabled: %s", exc)
            self._console.print(f"[yellow]Recording stopped: {escape(str(exc))}[/yellow]")
            self.record = None

    def on_move(self, x: int, y: int, color: Stone, state: BoardState) -> None:
        if self.record is not None:
            self._guard(self.record.add_move, x, y, color)

    def on_game_end(self, outcome: str) -> None:
        if self.record is not None:
            self._guard(self.record.set_result, outcome)

    def undo(self) -> None:
        if self.record is not None:
            self._guard(self.record.undo_moves, 2)

    def toggle(self, state: BoardState) -> None:
        """Stop recording, or start a new record from the current position.

        A record started mid-game opens with the board as setup stones.
        """
        if self.record is not None:
            path = self.record.path
            self._guard(self.record.close)
            self.record = None
            self._console.print(f"Recording stopped. Saved to {escape(str(path))}")
            return

        if self._new_record is None:
            self._console.print("[yellow]Recording is not available.[/yellow]")
            return
        try:
            record = self._new_record()
            if state.move_number > 0:
                record.add_setup_position(state.board)
        except RecordError as exc:
            self._console.print(f"[yellow]Not recording: {escape(str(exc))}[/yellow]")
            return
        self.record = record
        self._console.print(f"Recording to {escape(str(record.path))}")

    def close(self) -> None:
        if self.record is not None:
            self._guard(self.record.close)


def _show(console: Console, engine: GTPEngine) -> None:
    console.print(tui.render_board(engine.get_board_state()))


def _plan_loop(console: Console, engine: GTPEngine, recorder: _Recorder) -> None:
    """Explore variations; 'commit' makes the current line the live game."""
    planner = Planner.from_engine(engine)
    console.print(_PLAN_HELP)

    while True:
        console.print(tui.render_board(planner.board_state(), title="Planning"))
        command = input(f"plan ({planner.color_to_move.gtp_name})> ").strip().lower()
        if command in ("q", "quit", "cancel"):
            console.print("Left planning mode; the game is unchanged.")
            return
        if command == "b":
            planner.back()
        elif command == "f":
            planner.forward()
        elif command == "n":
            planner.next_variation()
        elif command == "p":
            planner.prev_variation()
        elif command == "pass":
            planner.pass_move()
        elif command == "commit":
            try:
                committed = planner.commit(engine, recorder.record)
            except IllegalMoveError as exc:
                console.print(f"[red]Engine rejected the plan: {escape(exc.message)}[/red]")
                return
            except RecordError as exc:
                logger.warning("Recording disabled: %s", exc)
                console.print(f"[yellow]Recording stopped: {escape(str(exc))}[/yellow]")
                recorder.record = None
                return
            console.print(f"Committed {len(committed)} moves.")
            return
        elif command == "help":
            console.print(_PLAN_HELP)
        else:
            try:
                vertex = from_vertex(command, planner.size)
            except VertexError as exc:
                console.print(f"[red]{escape(str(exc))}[/red]")
                continue
            if not vertex.is_point:
                console.print(_PLAN_HELP)
            elif not planner.play(vertex.x, vertex.y):
                console.print("[red]Illegal move.[/red]")


def _game_loop(console: Console, engine: GTPEngine, recorder: _Recorder) -> None:
    size = engine.get_board_state().size
    console.print(_HELP)

    while True:
        engine.wait_for_engine()
        _show(console, engine)
        if engine.is_game_over():
            console.print(f"Game over: {engine.get_board_state().outcome}")
            return
        if not engine.is_my_turn():
            # Engine move failed; ask again
            if input("Engine did not move. Retry? [Y/n] ").strip().lower() in ("n", "no", "q"):
                return
            engine.request_engine_move()
            continue

        command = input(f"{engine.get_player_color().gtp_name}> ").strip().lower()
        if not command:
            continue
        try:
            if command in ("q", "quit"):
                console.print("Game ended by user.")
                return
            if command == "help":
                console.print(_HELP)
            elif command == "undo":
                engine.undo()
                recorder.undo()
            elif command == "plan":
                _plan_loop(console, engine, recorder)
            elif command == "record":
                recorder.toggle(engine.get_board_state())
            else:
                vertex = from_vertex(command, size)
                if vertex.kind is VertexKind.PASS:
                    engine.pass_move()
                elif vertex.kind is VertexKind.RESIGN:
                    engine.resign()
                else:
                    engine.play_move(vertex.x, vertex.y)
        except IllegalMoveError:
            console.print("[red]Illegal move. Try again.[/red]")
        except (PreconditionError, VertexError) as exc:
            console.print(f"[red]{escape(str(exc))}[/red]")


def _create_record(game_config: GameConfig, history_dir: Path) -> GameRecord:
    return GameRecord.create(
        history_dir,
        game_config.board_size,
        game_config.komi,
        game_config.player_color,
        game_config.engine_level,
    )


def _run(
    console: Console,
    game_config: GameConfig,
    record: GameRecord | None,
    history_dir: Path,
) -> int:
    engine = GTPEngine(game_config)
    recorder = _Recorder(record, console, lambda: _create_record(game_config, history_dir))
    engine.on_move(recorder.on_move)
    engine.on_game_end(recorder.on_game_end)
    engine.on_error(lambda exc: console.print(f"[red]Engine error: {escape(str(exc))}[/red]"))

    try:
        engine.connect()
        _game_loop(console, engine, recorder)
    except (EOFError, KeyboardInterrupt):
        console.print()
    except (BadukError, FileNotFoundError) as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1
    finally:
        engine.close()
        recorder.close()
        if recorder.record is not None:
            console.print(f"Saved to {recorder.record.path}")
    return 0


def _cmd_play(args: argparse.Namespace, console: Console) -> int:
    config = load_config(args.config)
    color = Stone.WHITE if args.color == "white" else Stone.BLACK
    game_config = config.game_config(args.size, args.komi, color, args.level)

    history_dir = config.resolved_history_dir()

    record = None
    if config.enable_recording and not args.no_record:
        try:
            record = _create_record(game_config, history_dir)
        except RecordError as exc:
            console.print(f"[yellow]Not recording: {escape(str(exc))}[/yellow]")

    return _run(console, game_config, record, history_dir)


def _cmd_resume(args: argparse.Namespace, console: Console) -> int:
    config = load_config(args.config)
    path = Path(args.path)
    try:
        info = parse_header(path)
    except (OSError, ValueError) as exc:
        console.print(f"[red]Cannot open {path}: {escape(str(exc))}[/red]")
        return 1

    # The human plays whichever side the recorder named after them
    color = Stone.WHITE if info.player_white == HUMAN_NAME else Stone.BLACK
    game_config = config.game_config(info.board_size, info.komi, color, args.level)
    game_config.load_sgf_path = str(path)
    game_config.load_move_count = info.move_count

    record = None
    if config.enable_recording and not args.no_record:
        try:
            record = GameRecord.open(path)
        except RecordError as exc:
            console.print(f"[yellow]Not recording: {escape(str(exc))}[/yellow]")

    return _run(console, game_config, record, config.resolved_history_dir())


def main(argv: list[str] | None = None) -> int:
    """CLI entry point for cli.py."""
    parser = argparse.ArgumentParser(description="Play Go against GnuGo")
    parser.add_argument("--config", type=Path, help="Config file (default: XDG config dir)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log GTP traffic")
    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    play_parser = subparsers.add_parser("play", help="Start a new game")
    play_parser.add_argument("--size", type=int, choices=(9, 13, 19))
    play_parser.add_argument("--komi", type=float)
    play_parser.add_argument("--color", choices=("black", "white"), default="black")
    play_parser.add_argument("--level", type=int, choices=range(1, 11), metavar="1-10")
    play_parser.add_argument("--no-record", action="store_true", help="Don't write an SGF record")

    resume_parser = subparsers.add_parser("resume", help="Continue a saved game")
    resume_parser.add_argument("path", type=Path)
    resume_parser.add_argument("--level", type=int, choices=range(1, 11), metavar="1-10")
    resume_parser.add_argument("--no-record", action="store_true", help="Don't append to the record")

    for name in ("show", "history", "watch"):
        subparsers.add_parser(name, help=f"Record viewer: {name}", add_help=False)

    args, rest = parser.parse_known_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command in ("show", "history", "watch"):
        return tui.main([args.command, *rest])
    if rest:
        parser.error(f"unrecognized arguments: {' '.join(rest)}")

    console = Console()
    try:
        if args.command == "play":
            return _cmd_play(args, console)
        if args.command == "resume":
            return _cmd_resume(args, console)
    except BadukError as exc:
        console.print(f"[red]{escape(str(exc))}[/red]")
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
