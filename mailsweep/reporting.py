"""
Logging setup and run summary output
"""

import logging
import os
from datetime import datetime
from typing import Optional

from rich.console import Console

from mailsweep.models import Action, RunStats, RunStatus


# Between INFO and WARNING: always shown, even with --quiet
IMPORTANT = 25
logging.addLevelName(IMPORTANT, "IMPORTANT")

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

STATUS_MESSAGES = {
    RunStatus.EXHAUSTED: "No more matching threads",
    RunStatus.SAFETY_LIMIT_REACHED: "Stopped at safety limit",
    RunStatus.RETRIES_EXHAUSTED: "Aborted: retries exhausted",
    RunStatus.COUNT_CAP_REACHED: "Preview count reached its cap",
    RunStatus.INTERRUPTED: "Interrupted",
    RunStatus.RUNNING: "Still running",
}


class IsoFormatter(logging.Formatter):
    """Formatter that stamps records with a local ISO-8601 timestamp"""

    def formatTime(self, record, datefmt=None):
        return datetime.fromtimestamp(record.created).astimezone().isoformat(timespec='seconds')


class ConsoleHandler(logging.Handler):
    """Handler that prints through a rich Console so live spinners stay intact"""

    def __init__(self, console, level=logging.NOTSET):
        super().__init__(level)
        self.console = console

    def emit(self, record):
        try:
            self.console.print(self.format(record), markup=False, highlight=False, soft_wrap=True)
        except Exception:
            self.handleError(record)


def setup_logging(
    quiet: bool = False,
    level_name: Optional[str] = None,
    console: Optional[Console] = None
) -> None:
    """Configure the root logger for a CLI run.

    `level_name` falls back to the LOG_LEVEL environment variable, but the
    threshold never goes above IMPORTANT so summaries and errors always show.
    `quiet` raises it to exactly IMPORTANT, dropping INFO lines. When a rich
    `console` is given, records are printed through it instead of stderr.
    """
    level_name = (level_name or os.getenv("LOG_LEVEL", "INFO")).upper()
    level = min(getattr(logging, level_name, logging.INFO), IMPORTANT)
    if quiet:
        level = IMPORTANT

    handler = ConsoleHandler(console) if console is not None else logging.StreamHandler()
    handler.setFormatter(IsoFormatter(LOG_FORMAT))
    logging.basicConfig(level=level, handlers=[handler], force=True)

    # googleapiclient is chatty at INFO about discovery caching
    logging.getLogger('googleapiclient').setLevel(max(level, logging.WARNING))


def log_summary(log: logging.Logger, stats: RunStats, action: Action) -> None:
    """Emit the end-of-run summary block"""
    log.log(IMPORTANT, "=" * 60)
    log.log(IMPORTANT, "SUMMARY")
    log.log(IMPORTANT, "=" * 60)
    log.log(IMPORTANT, "Status:            %s (%s)", stats.status.value, STATUS_MESSAGES[stats.status])
    log.log(IMPORTANT, "Action:            %s", action.value)
    log.log(IMPORTANT, "Threads processed: %d", stats.total_processed)
    log.log(IMPORTANT, "Batches processed: %d", stats.batches_processed)
    if stats.matches_counted is not None:
        log.log(IMPORTANT, "Matching threads:  %s", describe_count(stats))
    log.log(IMPORTANT, "Time elapsed:      %.1fs", stats.elapsed)
    log.log(IMPORTANT, "=" * 60)


def describe_count(stats: RunStats) -> str:
    """Human wording for a preview count, flagging when the cap cut it short"""
    if stats.matches_counted is None:
        return "n/a"
    if stats.status is RunStatus.COUNT_CAP_REACHED:
        return f"at least {stats.matches_counted:,}"
    return f"{stats.matches_counted:,}"
