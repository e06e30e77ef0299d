"""
Batch Cleaner - pages through old threads and trashes, deletes or previews them
"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from mailsweep.backoff import BackoffController
from mailsweep.models import (
    Action, Page, RetryableFailure, RunConfig, RunStats, RunStatus, TerminalFailure
)
from mailsweep.query import build_query
from mailsweep.reporting import IMPORTANT, log_summary


logger = logging.getLogger(__name__)

PREVIEW_SAMPLE_SIZE = 10
PREVIEW_COUNT_CAP = 1000


class RetriesExhaustedError(Exception):
    """A page kept failing until the retry budget ran out"""

    def __init__(self, cause: Exception, stats: RunStats):
        super().__init__(f"Retries exhausted: {cause}")
        self.cause = cause
        self.stats = stats


class BatchCleaner:
    """Runs one cleanup pass over every thread matching the age query.

    `provider` must offer search(query, offset, limit), bulk_trash(refs) and
    delete_permanently(ref); see GmailService.
    """

    def __init__(
        self,
        provider,
        config: RunConfig,
        progress_callback: Optional[Callable[[str, Dict], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Optional[Callable[[], datetime]] = None
    ):
        self.provider = provider
        self.config = config
        self.progress_callback = progress_callback
        self.sleep = sleep
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.backoff = BackoffController(config.max_retries, config.batch_delay, sleep=sleep)

        self.query = build_query(
            config.cutoff,
            in_trash=config.action is Action.PERMANENT_DELETE,
            protect_starred=config.protect_starred,
            protect_important=config.protect_important
        )

    # === Main Entry Point ===

    def run(self) -> RunStats:
        """Process pages until the query is exhausted or a limit stops the run"""
        stats = RunStats(started_at=self.clock())

        logger.log(IMPORTANT, f"Starting {self.config.action.value} run with query {self.query!r}")
        logger.info(
            f"Batch size {self.config.batch_size}, delay {self.config.batch_delay:g}s, "
            f"safety limit {self.config.safety_limit or 'none'}, max retries {self.config.max_retries}"
        )
        self._report_progress("run_started", {
            "action": self.config.action.value,
            "query": self.query,
        })

        try:
            if self.config.action is Action.PREVIEW:
                self._preview(stats)
            else:
                self._purge(stats)
        except KeyboardInterrupt:
            stats.status = RunStatus.INTERRUPTED
            raise
        finally:
            stats.finished_at = self.clock()
            log_summary(logger, stats, self.config.action)
            self._report_progress("run_completed", {
                "status": stats.status.value,
                "total_processed": stats.total_processed,
                "batches_processed": stats.batches_processed,
            })

        return stats

    # === Trash / Permanent Delete ===

    def _purge(self, stats: RunStats) -> None:
        """Offset-0 loop: every processed page drops out of the next search"""
        while True:
            outcome = self.backoff.attempt(self._process_next_page)

            if isinstance(outcome, RetryableFailure):
                self._report_progress("retry_scheduled", {
                    "retry": self.backoff.retry_count,
                    "delay": outcome.delay,
                    "error": str(outcome.cause),
                })
                continue

            if isinstance(outcome, TerminalFailure):
                stats.status = RunStatus.RETRIES_EXHAUSTED
                logger.error(
                    f"Stopping after {outcome.attempts} consecutive failures; "
                    f"{stats.total_processed:,} threads were processed before the abort"
                )
                raise RetriesExhaustedError(outcome.cause, stats) from outcome.cause

            page = outcome.page
            if not page:
                stats.status = RunStatus.EXHAUSTED
                logger.log(IMPORTANT, "No more matching threads")
                return

            stats.record_batch(len(page))
            logger.info(
                f"Batch {stats.batches_processed}: {self._verb()} {len(page)} threads "
                f"({stats.total_processed:,} total)"
            )
            self._report_progress("batch_completed", {
                "batch": stats.batches_processed,
                "batch_size": len(page),
                "total_processed": stats.total_processed,
            })

            # A short page means the next search should come back empty
            if len(page) == self.config.batch_size:
                self.sleep(self.config.batch_delay)

            if self.config.safety_limit is not None and stats.total_processed >= self.config.safety_limit:
                stats.status = RunStatus.SAFETY_LIMIT_REACHED
                logger.log(
                    IMPORTANT,
                    f"Safety limit of {self.config.safety_limit:,} reached; stopping with matches possibly left"
                )
                return

    def _process_next_page(self) -> Page:
        """Search from the top and apply the action to whatever comes back"""
        page = self.provider.search(self.query, 0, self.config.batch_size)
        if not page:
            return page

        if self.config.action is Action.TRASH:
            self.provider.bulk_trash(page)
        else:
            # Gmail has no bulk form of the permanent delete
            for ref in page:
                self.provider.delete_permanently(ref)
        return page

    def _verb(self) -> str:
        if self.config.action is Action.TRASH:
            return "trashed"
        return "permanently deleted"

    # === Preview ===

    def _preview(self, stats: RunStats) -> None:
        """Log a sample and count matches without changing the mailbox"""
        sample = self._attempt_until_done(self._fetch_sample, stats)
        if not sample:
            logger.log(IMPORTANT, "No threads match the query")
        else:
            logger.log(IMPORTANT, f"Sample of {len(sample)} matching threads:")
            for ref in sample:
                last_activity = ref.last_activity()
                logger.info(
                    f"  {last_activity.date().isoformat()}  [{ref.message_count()} msgs]  "
                    f"{self._truncate(ref.subject())}"
                )
                self._report_progress("sample_item", {
                    "thread_id": ref.thread_id,
                    "subject": self._truncate(ref.subject()),
                    "message_count": ref.message_count(),
                    "last_activity": last_activity.isoformat(),
                })

        self._count_matches(stats)

    def _fetch_sample(self) -> Page:
        """First few matches with their metadata loaded, so failures retry together"""
        sample = self.provider.search(self.query, 0, PREVIEW_SAMPLE_SIZE)
        for ref in sample:
            ref.last_activity()
        return sample

    def _count_matches(self, stats: RunStats) -> None:
        """Walk an advancing offset, since nothing is removed between searches"""
        count = 0
        while True:
            limit = min(self.config.batch_size, PREVIEW_COUNT_CAP - count)
            page = self._attempt_until_done(lambda: self.provider.search(self.query, count, limit), stats)
            count += len(page)

            if count >= PREVIEW_COUNT_CAP:
                stats.status = RunStatus.COUNT_CAP_REACHED
                break
            if len(page) < limit:
                stats.status = RunStatus.EXHAUSTED
                break

            if len(page) == self.config.batch_size:
                self.sleep(self.config.batch_delay)

        stats.matches_counted = count
        if stats.status is RunStatus.COUNT_CAP_REACHED:
            logger.log(IMPORTANT, f"At least {count:,} threads match (count capped at {PREVIEW_COUNT_CAP:,})")
        else:
            logger.log(IMPORTANT, f"{count:,} threads match")

    def _attempt_until_done(self, operation: Callable[[], Page], stats: RunStats) -> Page:
        """Retry `operation` under the backoff policy; raise once the budget is spent"""
        while True:
            outcome = self.backoff.attempt(operation)
            if isinstance(outcome, RetryableFailure):
                self._report_progress("retry_scheduled", {
                    "retry": self.backoff.retry_count,
                    "delay": outcome.delay,
                    "error": str(outcome.cause),
                })
                continue
            if isinstance(outcome, TerminalFailure):
                stats.status = RunStatus.RETRIES_EXHAUSTED
                raise RetriesExhaustedError(outcome.cause, stats) from outcome.cause
            return outcome.page

    # === Progress ===

    def _report_progress(self, event: str, data: Dict) -> None:
        """Send progress update if callback is set"""
        if self.progress_callback:
            self.progress_callback(event, data)

    @staticmethod
    def _truncate(text: str, width: int = 60) -> str:
        return text[:width - 3] + "..." if len(text) > width else text
