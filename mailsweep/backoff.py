"""
Retry/Backoff Controller - wraps page attempts with exponential backoff
"""

import logging
import time
from typing import Callable, Optional

from mailsweep.models import Outcome, Page, RetryableFailure, Success, TerminalFailure


logger = logging.getLogger(__name__)


class BackoffController:
    """Counts consecutive failures across attempts and paces retries.

    The counter resets only when an attempt succeeds, so a run of failures
    spanning several batches draws on the same budget.
    """

    def __init__(
        self,
        max_retries: int,
        base_delay: float,
        sleep: Callable[[float], None] = time.sleep
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.sleep = sleep

        self.retry_count = 0
        self.last_error: Optional[Exception] = None

    def delay_for(self, retry_number: int) -> float:
        """Backoff before the given retry (1-based)"""
        return self.base_delay * 2 ** retry_number

    def attempt(self, operation: Callable[[], Page]) -> Outcome:
        """Run `operation` once and classify the result"""
        try:
            page = operation()
        except Exception as error:
            self.retry_count += 1
            self.last_error = error

            if self.retry_count > self.max_retries:
                logger.error(f"Giving up after {self.retry_count} consecutive failures: {error}")
                return TerminalFailure(cause=error, attempts=self.retry_count)

            delay = self.delay_for(self.retry_count)
            logger.warning(
                f"Attempt failed ({error}); retry {self.retry_count}/{self.max_retries} in {delay:g}s"
            )
            self.sleep(delay)
            return RetryableFailure(cause=error, delay=delay)

        self.retry_count = 0
        self.last_error = None
        return Success(page=page)
