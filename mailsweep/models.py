"""
Shared data models for mailsweep
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional, Union


# Gmail's threads.list rejects maxResults above this
MAX_PAGE_SIZE = 500


class Action(Enum):
    """What a run does to each page of matching threads"""
    TRASH = "trash"
    PERMANENT_DELETE = "permanent_delete"
    PREVIEW = "preview"


class RunStatus(Enum):
    """How a run ended"""
    RUNNING = "running"
    EXHAUSTED = "exhausted"
    SAFETY_LIMIT_REACHED = "safety-limit-reached"
    RETRIES_EXHAUSTED = "retries-exhausted"
    COUNT_CAP_REACHED = "count-cap-reached"
    INTERRUPTED = "interrupted"


@dataclass(frozen=True)
class RunConfig:
    """Configuration for one cleanup run, built once and never mutated"""
    cutoff: datetime
    action: Action = Action.PREVIEW
    batch_size: int = 100
    batch_delay: float = 3.0  # seconds; also the backoff base
    safety_limit: Optional[int] = 10000  # None means unbounded
    max_retries: int = 3
    protect_starred: bool = False
    protect_important: bool = False

    def __post_init__(self):
        if self.batch_size < 1:
            raise ValueError(f"batch_size must be at least 1, got {self.batch_size}")
        if self.batch_size > MAX_PAGE_SIZE:
            raise ValueError(f"batch_size must be at most {MAX_PAGE_SIZE}, got {self.batch_size}")
        if self.max_retries < 0:
            raise ValueError(f"max_retries must not be negative, got {self.max_retries}")
        if self.batch_delay < 0:
            raise ValueError(f"batch_delay must not be negative, got {self.batch_delay}")
        if self.safety_limit is not None and self.safety_limit < 1:
            raise ValueError(f"safety_limit must be at least 1 or None, got {self.safety_limit}")


@dataclass
class ThreadMetadata:
    """Metadata for a single email thread"""
    thread_id: str
    subject: str
    message_count: int
    last_activity: datetime


class ConversationRef:
    """Opaque handle to a provider thread.

    Metadata is fetched on first access through the loader the provider
    attaches, then cached. Refs are never mutated by the cleaner; they are only
    handed back to the provider's mutation calls.
    """

    def __init__(self, thread_id: str, loader: Optional[Callable[[str], ThreadMetadata]] = None):
        self.thread_id = thread_id
        self._loader = loader
        self._metadata: Optional[ThreadMetadata] = None

    def __repr__(self):
        return f"ConversationRef({self.thread_id!r})"

    def __eq__(self, other):
        if not isinstance(other, ConversationRef):
            return NotImplemented
        return self.thread_id == other.thread_id

    def __hash__(self):
        return hash(self.thread_id)

    def _load(self) -> ThreadMetadata:
        if self._metadata is None:
            if self._loader is None:
                raise LookupError(f"No metadata loader for thread {self.thread_id}")
            self._metadata = self._loader(self.thread_id)
        return self._metadata

    def last_activity(self) -> datetime:
        return self._load().last_activity

    def subject(self) -> str:
        return self._load().subject

    def message_count(self) -> int:
        return self._load().message_count


Page = List[ConversationRef]


@dataclass
class RunStats:
    """Counters for a single run, flushed to the summary at run end"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    total_processed: int = 0
    batches_processed: int = 0
    status: RunStatus = RunStatus.RUNNING
    matches_counted: Optional[int] = None  # preview only

    def record_batch(self, size: int) -> None:
        self.total_processed += size
        self.batches_processed += 1

    @property
    def elapsed(self) -> float:
        """Seconds between start and finish (0 while still running)"""
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()


# === Attempt outcomes ===

@dataclass
class Success:
    """Attempt completed; carries the page it produced"""
    page: Page = field(default_factory=list)


@dataclass
class RetryableFailure:
    """Attempt failed, backoff already waited; the caller should try again"""
    cause: Exception
    delay: float


@dataclass
class TerminalFailure:
    """Attempt failed and the retry budget is spent"""
    cause: Exception
    attempts: int


Outcome = Union[Success, RetryableFailure, TerminalFailure]
