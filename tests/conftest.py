"""
Shared test fixtures for mailsweep tests
"""

import pytest
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Set

from googleapiclient.errors import HttpError

from mailsweep.models import Action, ConversationRef, RunConfig, ThreadMetadata


NOW = datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc)
CUTOFF = NOW - timedelta(days=730)


# === In-memory provider for cleaner tests ===

def make_metadata(thread_id: str) -> ThreadMetadata:
    """Deterministic metadata derived from the thread id"""
    index = int(thread_id.split('_')[1])
    return ThreadMetadata(
        thread_id=thread_id,
        subject=f"Old newsletter #{index}",
        message_count=index % 4 + 1,
        last_activity=CUTOFF - timedelta(days=index + 1)
    )


class FakeMailbox:
    """Provider double that mimics Gmail's search/trash/delete semantics.

    `search_failures` and `trash_failures` are queues consumed one entry per
    call; an exception entry is raised, None lets the call through. With
    `removes=False` mutations leave the result set untouched.
    """

    def __init__(
        self,
        count: int = 0,
        removes: bool = True,
        search_failures: Optional[List] = None,
        trash_failures: Optional[List] = None
    ):
        self.threads = [ConversationRef(f"thread_{i:04d}", loader=self._load) for i in range(count)]
        self.removes = removes
        self.search_failures = list(search_failures or [])
        self.trash_failures = list(trash_failures or [])

        self.search_calls: List[tuple] = []
        self.trash_calls: List[List[str]] = []
        self.deleted: List[str] = []
        self.metadata_loads: List[str] = []

    def _load(self, thread_id: str) -> ThreadMetadata:
        self.metadata_loads.append(thread_id)
        return make_metadata(thread_id)

    @staticmethod
    def _next_failure(queue: List):
        if queue:
            error = queue.pop(0)
            if error is not None:
                raise error

    def search(self, query: str, offset: int, limit: int) -> List[ConversationRef]:
        self.search_calls.append((query, offset, limit))
        self._next_failure(self.search_failures)
        return list(self.threads[offset:offset + limit])

    def bulk_trash(self, refs) -> None:
        self._next_failure(self.trash_failures)
        ids = [ref.thread_id for ref in refs]
        self.trash_calls.append(ids)
        if self.removes:
            self.threads = [t for t in self.threads if t.thread_id not in ids]

    def delete_permanently(self, ref: ConversationRef) -> None:
        self.deleted.append(ref.thread_id)
        if self.removes:
            self.threads = [t for t in self.threads if t.thread_id != ref.thread_id]

    @property
    def remaining(self) -> int:
        return len(self.threads)


class RecordingSleep:
    """Stands in for time.sleep and remembers every requested delay"""

    def __init__(self):
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


# === Mock Gmail API Service ===

class MockHttpResponse:
    """Mock HTTP response for HttpError"""
    def __init__(self, status: int, reason: str):
        self.status = status
        self.reason = reason


def make_http_error(status: int = 429, reason: str = 'Too Many Requests') -> HttpError:
    return HttpError(resp=MockHttpResponse(status, reason), content=reason.encode())


class MockRequest:
    """Mock for a lazily executed API request"""
    def __init__(self, action):
        self._action = action

    def execute(self):
        return self._action()


class MockBatch:
    """Mock for new_batch_http_request()"""
    def __init__(self, service, callback):
        self._service = service
        self._callback = callback
        self._requests: List[MockRequest] = []

    def add(self, request: MockRequest):
        self._requests.append(request)

    def execute(self):
        self._service.batches_executed.append(len(self._requests))
        for i, request in enumerate(self._requests):
            try:
                response = request.execute()
            except HttpError as error:
                self._callback(str(i), None, error)
            else:
                self._callback(str(i), response, None)


class MockThreads:
    """Mock for users().threads()"""
    def __init__(self, service):
        self._service = service

    def list(self, userId: str, q: str = None, maxResults: int = 100, pageToken: Optional[str] = None,
             includeSpamTrash: bool = False, fields: str = None):
        service = self._service
        service.list_calls.append({
            'q': q, 'maxResults': maxResults, 'pageToken': pageToken, 'includeSpamTrash': includeSpamTrash
        })

        visible = [
            t for t in service.threads
            if t['id'] not in service.deleted_threads
            and (includeSpamTrash or t['id'] not in service.trashed_threads)
        ]
        start_idx = int(pageToken) if pageToken else 0
        end_idx = min(start_idx + maxResults, len(visible))

        result = {'resultSizeEstimate': len(visible)}
        if end_idx > start_idx:
            result['threads'] = [{'id': t['id']} for t in visible[start_idx:end_idx]]
        if end_idx < len(visible):
            result['nextPageToken'] = str(end_idx)
        return MockRequest(lambda: result)

    def get(self, userId: str, id: str, format: str = None, metadataHeaders: List[str] = None):
        self._service.get_calls.append(id)
        thread = self._service.threads_by_id.get(id, {'id': id, 'messages': []})
        return MockRequest(lambda: thread)

    def trash(self, userId: str, id: str):
        def _trash():
            if id in self._service.fail_threads:
                raise make_http_error(404, 'Not Found')
            self._service.trashed_threads.add(id)
            return {'id': id, 'labelIds': ['TRASH']}
        return MockRequest(_trash)

    def delete(self, userId: str, id: str):
        def _delete():
            if id in self._service.fail_threads:
                raise make_http_error(404, 'Not Found')
            self._service.deleted_threads.add(id)
            return ''
        return MockRequest(_delete)


class MockUsers:
    """Mock for service.users()"""
    def __init__(self, service):
        self._threads = MockThreads(service)

    def threads(self):
        return self._threads


class MockGmailService:
    """Mock Gmail API service that simulates a mailbox of old threads"""

    def __init__(self, threads: List[Dict], fail_threads: Set[str] = None, trashed: Set[str] = None):
        self.threads = threads
        self.threads_by_id = {t['id']: t for t in threads}
        self.fail_threads = fail_threads or set()
        self.trashed_threads: Set[str] = set(trashed or ())
        self.deleted_threads: Set[str] = set()

        self.list_calls: List[Dict] = []
        self.get_calls: List[str] = []
        self.batches_executed: List[int] = []

    def users(self):
        return MockUsers(self)

    def new_batch_http_request(self, callback=None):
        return MockBatch(self, callback)


def make_thread(thread_id: str, subject: str, internal_dates: List[int]) -> dict:
    """Helper to create a thread dict matching Gmail API metadata structure"""
    messages = []
    for i, internal_date in enumerate(internal_dates):
        messages.append({
            'id': f'{thread_id}_msg_{i}',
            'internalDate': str(internal_date),
            'payload': {
                'headers': [{'name': 'Subject', 'value': subject}]
            }
        })
    return {'id': thread_id, 'messages': messages}


# === Fixtures ===

@pytest.fixture
def recording_sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def make_config():
    """Factory for RunConfig with test-friendly defaults"""
    def _make(**overrides) -> RunConfig:
        values = dict(
            cutoff=CUTOFF,
            action=Action.TRASH,
            batch_size=50,
            batch_delay=3.0,
            safety_limit=None,
            max_retries=3,
        )
        values.update(overrides)
        return RunConfig(**values)
    return _make


@pytest.fixture
def sample_threads() -> List[dict]:
    """Twelve old threads; thread_i was last active at i seconds past 2020-01-01"""
    base_ms = 1577836800000
    return [
        make_thread(f'thread_{i:03d}', f'Subject {i}', [base_ms + i * 1000 - 5000, base_ms + i * 1000])
        for i in range(12)
    ]


@pytest.fixture
def mock_gmail_api(sample_threads) -> MockGmailService:
    return MockGmailService(sample_threads)
