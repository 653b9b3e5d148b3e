"""
PeerLink - Command-line entry point.

Subcommands:
  demo         Run two paired sessions over the in-process loopback transport
  init-config  Write an example configuration file
"""

import argparse
import asyncio
import sys
from pathlib import Path
from typing import Callable, Optional

from rich.console import Console
from rich.table import Table

from . import __version__
from .calls import CallPhase
from .client import PeerSession
from .config import Config
from .errors import PeerLinkError
from .loopback import LoopbackBroker, LoopbackMediaProvider
from .utils import format_size, format_timestamp, get_default_log_file, setup_logging, truncate_string

console = Console()


async def _wait_for(predicate: Callable[[], bool], timeout: float, interval: float = 0.05) -> bool:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(interval)
    return True


def _print_log(session: PeerSession) -> None:
    table = Table(title=f"Messages seen by {session.user_id}")
    table.add_column("Time", style="dim")
    table.add_column("From", style="cyan")
    table.add_column("Text")
    table.add_column("Attachments", justify="right")
    for message in session.messages:
        attachments = ", ".join(
            f"{a.name} ({format_size(a.size)})" for a in message.attachments
        )
        table.add_row(
            format_timestamp(message.timestamp),
            message.sender_id,
            truncate_string(message.text, 60),
            attachments or "-",
        )
    console.print(table)


async def run_demo(config: Config, user: str, late_start: float, timeout: float) -> int:
    """Pair ``user`` with its configured peer on a loopback broker and exercise the session."""
    broker = LoopbackBroker()
    first = PeerSession.from_config(user, config, broker.factory(), LoopbackMediaProvider())
    peer_user = next(
        (u for u in first.directory.users() if first.directory.identity_for(u) == first.target_id),
        None,
    )
    if peer_user is None:
        console.print(f"[red]No local user maps to {first.target_id}[/red]")
        return 1
    second = PeerSession.from_config(peer_user, config, broker.factory(), LoopbackMediaProvider())

    for session in (first, second):
        session.on_connection_change_callback = lambda up, s=session: console.print(
            f"[bold]{s.user_id}[/bold] {'[green]connected[/green]' if up else '[yellow]disconnected[/yellow]'}"
        )
        session.on_call_state_callback = lambda phase, status, s=session: console.print(
            f"[bold]{s.user_id}[/bold] call: {status}"
        )

    first.start()
    if late_start:
        console.print(f"{peer_user} joins in {late_start:.1f}s")
        await asyncio.sleep(late_start)
    second.start()

    try:
        if not await _wait_for(lambda: first.connected and second.connected, timeout):
            console.print("[red]Sessions did not connect in time[/red]")
            return 1

        first.send(f"Hello {peer_user}, this is {user}")
        await _wait_for(lambda: len(second.messages) >= 1, timeout)
        second.send(f"Hi {user}!")
        await _wait_for(lambda: len(first.messages) >= 2, timeout)

        if await first.place_call():
            await _wait_for(lambda: second.calls.phase == CallPhase.RINGING, timeout)
            await second.answer_call()
            await _wait_for(lambda: first.calls.remote_stream is not None, timeout)
            first.end_call()
            await _wait_for(lambda: second.calls.phase == CallPhase.ENDED, timeout)

        _print_log(first)
        return 0
    finally:
        first.stop()
        second.stop()
        await first.calls.aclose()
        await second.calls.aclose()


def _cmd_demo(args: argparse.Namespace, config: Config) -> int:
    return asyncio.run(run_demo(config, args.user, args.late_start, args.timeout))


def _cmd_init_config(args: argparse.Namespace, config: Config) -> int:
    path = Path(args.path).expanduser()
    if path.exists() and not args.force:
        console.print(f"[red]{path} already exists (use --force to overwrite)[/red]")
        return 1
    Config.create_example(path)
    console.print(f"Wrote example configuration to {path}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="peerlink",
        description="PeerLink - Point-to-point messaging and calling session core",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  peerlink demo                      # aryaveer and guest over loopback
  peerlink demo --late-start 4       # second user joins late, exercising retries
  peerlink init-config config.toml   # write an example configuration
        """,
    )
    parser.add_argument("--version", action="version", version=f"PeerLink {__version__}")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument(
        "--config", default=None, help="Configuration file (default: ~/.peerlink/config.toml)"
    )
    parser.add_argument(
        "--log-file",
        nargs="?",
        const=str(get_default_log_file()),
        default=None,
        help="Also log to a rotating file (default location if no path is given)",
    )

    subparsers = parser.add_subparsers(dest="command")

    demo = subparsers.add_parser("demo", help="Run two paired sessions in-process")
    demo.add_argument("--user", default="aryaveer", help="Local user (default: aryaveer)")
    demo.add_argument(
        "--late-start", type=float, default=0.0, help="Seconds before the peer starts (default: 0)"
    )
    demo.add_argument(
        "--timeout", type=float, default=15.0, help="Seconds to wait for each step (default: 15)"
    )
    demo.set_defaults(func=_cmd_demo)

    init_config = subparsers.add_parser("init-config", help="Write an example configuration file")
    init_config.add_argument("path", help="Where to write the file")
    init_config.add_argument("--force", action="store_true", help="Overwrite an existing file")
    init_config.set_defaults(func=_cmd_init_config)

    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point for the peerlink command."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if not getattr(args, "func", None):
        parser.print_help()
        return 1

    try:
        config = Config(Path(args.config).expanduser()) if args.config else Config()

        log_file = args.log_file
        if log_file is None and config.get("logging", "file_logging", False):
            log_file = str(get_default_log_file())
        setup_logging(
            level="DEBUG" if args.debug else config.get("logging", "level", "INFO"),
            log_file=Path(log_file) if log_file else None,
            console=config.get("logging", "console_logging", True),
        )

        return args.func(args, config)
    except PeerLinkError as e:
        console.print(f"[red]{e}[/red]")
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
