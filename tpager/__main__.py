"""CLI entry point for tpager."""
from __future__ import annotations

import argparse
import sys

from rich.console import Console
from rich.markup import escape

from tpager.config import FILTERS, ViewConfig, setup_logging
from tpager.session import TranscriptError

__version__ = "0.1.0"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="tpager",
        description="Interactive viewer for agent session and evaluation transcripts",
    )
    parser.add_argument("--version", action="version", version=f"tpager {__version__}")
    parser.add_argument("path", help="Transcript file (.jsonl session/eval log or .json outcome)")
    parser.add_argument("--tail", type=int, metavar="N", help="Only the last N turns")
    parser.add_argument("--expand-tools", action="store_true",
                        help="Show tool arguments, results and thinking")
    parser.add_argument("--full", action="store_true", help="Do not truncate long values")
    parser.add_argument("--filter", choices=FILTERS, help="Show only one kind of turn")
    parser.add_argument("--no-color", action="store_true", help="Disable colors")
    parser.add_argument("--no-follow", action="store_true",
                        help="Do not tail the file for new events")
    parser.add_argument("--stream", action="store_true",
                        help="Print everything and exit instead of paging")
    parser.add_argument("--format", "-f", choices=["human", "json"], default="human",
                        help="Output format for non-interactive use (json = one turn per line)")
    parser.add_argument("--stats", action="store_true",
                        help="Print per-file counts as JSON and exit")
    parser.add_argument("--log-file", metavar="PATH",
                        help="Write debug logs to PATH (default: $TPAGER_LOG)")
    return parser


def _config(args) -> ViewConfig:
    return ViewConfig(
        tail=args.tail,
        expand_tools=args.expand_tools,
        filter=args.filter,
        full=args.full,
        no_follow=args.no_follow,
        no_color=args.no_color,
    )


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    setup_logging(args.log_file)
    config = _config(args)
    console = Console(no_color=config.no_color or None, highlight=False)

    if args.stats:
        from tpager.commands.stats import file_stats
        from tpager.formatters.json import format_json
        data = file_stats(args.path)
        if data is None:
            console.print(f"[red]Cannot read transcript: {escape(args.path)}[/]")
            return 1
        format_json(data)
        return 0

    from tpager.commands.read import open_transcript
    try:
        transcript = open_transcript(args.path, tail=config.tail)
    except TranscriptError as e:
        console.print(f"[red]{escape(str(e))}[/]")
        return 1
    if transcript is None:
        console.print("[yellow]No events found[/]")
        return 0

    if args.format == "json":
        from tpager.commands.read import turn_records
        from tpager.formatters.json import format_jsonl
        format_jsonl(turn_records(transcript, config.filter, config.expand_tools, config.full))
        return 0

    if args.stream or not sys.stdout.isatty():
        from tpager.formatters.human import format_stream
        format_stream(transcript, console, config.filter, config.expand_tools, config.full)
        return 0

    from tpager.pager import Pager, PagerAction
    from tpager.session import SessionLog
    from tpager.terminal import Screen
    with Screen(console) as screen:
        action = Pager(transcript, config, screen, path=args.path).run()

    if action is PagerAction.RESUME:
        if isinstance(transcript, SessionLog) and transcript.session_id:
            console.print(f"Resume session: [bold]{escape(transcript.session_id)}[/]")
        else:
            console.print("[yellow]No session id to resume[/]")
    elif action is PagerAction.BROWSE:
        console.print("[dim]Session browser is not available from a single file[/]")
    return 0


if __name__ == "__main__":
    sys.exit(main())
