#!/usr/bin/env python3
"""
mailsweep - delete old Gmail conversations in paced, retrying batches
"""

import argparse
import os
import sys
from typing import Dict, List, Optional

from dotenv import load_dotenv
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from mailsweep.cleaner import BatchCleaner, RetriesExhaustedError
from mailsweep.gmail_service import GmailService
from mailsweep.models import Action, RunConfig, RunStats, RunStatus
from mailsweep.query import compute_cutoff
from mailsweep.reporting import describe_count, setup_logging


console = Console()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value else default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    return float(value) if value else default


def build_parser() -> argparse.ArgumentParser:
    """Build argument parser; defaults come from the environment"""
    parser = argparse.ArgumentParser(
        description='Delete old Gmail conversations in paced batches'
    )

    # Age threshold
    age_group = parser.add_mutually_exclusive_group(required=True)
    age_group.add_argument('--older-than-years', type=int, metavar='N',
                           help='Match threads holding any message older than N years')
    age_group.add_argument('--older-than-days', type=int, metavar='N',
                           help='Match threads holding any message older than N days')

    # Action selection
    action_group = parser.add_mutually_exclusive_group()
    action_group.add_argument('--preview', dest='action', action='store_const', const=Action.PREVIEW,
                              help='Show a sample and count matches without changing anything (default)')
    action_group.add_argument('--trash', dest='action', action='store_const', const=Action.TRASH,
                              help='Move matching threads to Trash (recoverable for ~30 days); '
                                   'whole threads move, recent replies included')
    action_group.add_argument('--delete-forever', dest='action', action='store_const',
                              const=Action.PERMANENT_DELETE,
                              help='Permanently delete matching threads that are already in Trash')
    parser.set_defaults(action=Action.PREVIEW)
    parser.add_argument('--yes-delete-forever', action='store_true',
                        help='Required together with --delete-forever')

    # Pacing and limits
    parser.add_argument('--batch-size', type=int, default=_env_int('BATCH_SIZE', 100),
                        help='Threads per batch (default: 100, env BATCH_SIZE)')
    parser.add_argument('--delay', type=float, default=_env_float('BATCH_DELAY', 3.0),
                        help='Seconds to wait after a full batch; also the backoff base (default: 3, env BATCH_DELAY)')
    parser.add_argument('--safety-limit', type=int, default=_env_int('SAFETY_LIMIT', 10000),
                        help='Stop after this many threads, 0 for no limit (default: 10000, env SAFETY_LIMIT)')
    parser.add_argument('--max-retries', type=int, default=_env_int('MAX_RETRIES', 3),
                        help='Consecutive failures tolerated before aborting (default: 3, env MAX_RETRIES)')

    # Protection
    parser.add_argument('--protect-starred', action='store_true', help='Skip starred threads')
    parser.add_argument('--protect-important', action='store_true', help='Skip threads marked important')

    # Output and credentials
    parser.add_argument('-q', '--quiet', action='store_true', help='Only log important lines and errors')
    parser.add_argument('--credentials', default=os.getenv('GMAIL_CREDENTIALS_PATH', 'credentials.json'),
                        help='OAuth client secrets file (env GMAIL_CREDENTIALS_PATH)')
    parser.add_argument('--token', default=os.getenv('GMAIL_TOKEN_PATH', 'token.json'),
                        help='Where the OAuth token is cached (env GMAIL_TOKEN_PATH)')

    return parser


def config_from_args(args: argparse.Namespace) -> RunConfig:
    """Turn parsed arguments into a validated RunConfig"""
    cutoff = compute_cutoff(years=args.older_than_years, days=args.older_than_days)
    return RunConfig(
        cutoff=cutoff,
        action=args.action,
        batch_size=args.batch_size,
        batch_delay=args.delay,
        safety_limit=args.safety_limit or None,
        max_retries=args.max_retries,
        protect_starred=args.protect_starred,
        protect_important=args.protect_important
    )


def print_summary(stats: RunStats, action: Action) -> None:
    """Print final summary table"""
    table = Table(title="mailsweep Results", show_header=True, header_style="bold cyan")
    table.add_column("Metric", style="cyan", width=25)
    table.add_column("Value", justify="right", style="green", width=22)

    table.add_row("Action", action.value)
    table.add_row("Status", stats.status.value)
    table.add_row("Threads Processed", f"{stats.total_processed:,}")
    table.add_row("Batches Processed", f"{stats.batches_processed:,}")
    if stats.matches_counted is not None:
        table.add_row("Matching Threads", describe_count(stats))
    table.add_row("Elapsed", f"{stats.elapsed:.1f}s")

    console.print(table)

    if action is Action.TRASH and stats.total_processed:
        console.print(f"  - {stats.total_processed:,} threads moved to Trash")
        console.print("  - You can restore them from the Trash folder for about 30 days")
    elif action is Action.PREVIEW:
        console.print("\n[bold yellow]PREVIEW MODE:[/bold yellow] nothing was changed")
        console.print("  - Run with --trash to move these threads to Trash")
    if stats.status is RunStatus.SAFETY_LIMIT_REACHED:
        console.print("[yellow]Safety limit reached - run again to continue[/yellow]")


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point"""
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    if args.action is Action.PERMANENT_DELETE and not args.yes_delete_forever:
        parser.error("--delete-forever also needs --yes-delete-forever; this cannot be undone")

    try:
        config = config_from_args(args)
    except ValueError as error:
        parser.error(str(error))

    setup_logging(quiet=args.quiet, console=console)

    if not os.path.exists(args.credentials) and not os.path.exists(args.token):
        console.print("[red]Error: Gmail credentials file not found[/red]")
        console.print("Please download your credentials.json from Google Cloud Console")
        console.print("and place it in the project directory")
        return 1

    gmail = GmailService(
        credentials_path=args.credentials,
        token_path=args.token,
        permanent_delete=config.action is Action.PERMANENT_DELETE
    )
    if not gmail.authenticate():
        console.print("[red]Error: could not authenticate with Gmail[/red]")
        return 1

    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True
    ) as progress:
        task = progress.add_task("Searching...", total=None)

        def on_progress(event: str, data: Dict) -> None:
            if event == "batch_completed":
                progress.update(task, description=f"Processed {data['total_processed']:,} threads...")
            elif event == "retry_scheduled":
                progress.update(task, description=f"Retrying in {data['delay']:g}s...")

        cleaner = BatchCleaner(gmail, config, progress_callback=on_progress)
        try:
            stats = cleaner.run()
        except RetriesExhaustedError as error:
            progress.stop()
            console.print(f"[red]Aborted: {error.cause}[/red]")
            print_summary(error.stats, config.action)
            return 1

    print_summary(stats, config.action)
    return 0


if __name__ == "__main__":
    sys.exit(main())
