"""
Gmail Service - Gmail API provider for the batch cleaner
Handles authentication and the search / trash / delete calls
"""

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_oauthlib.flow import InstalledAppFlow
from googleapiclient.discovery import build

from mailsweep.models import ConversationRef, ThreadMetadata


logger = logging.getLogger(__name__)

# Trash and read access
MODIFY_SCOPES = ['https://www.googleapis.com/auth/gmail.modify']
# threads.delete needs the full mail scope
FULL_SCOPES = ['https://mail.google.com/']

# Gmail caps a batch HTTP request at 100 calls
BATCH_REQUEST_LIMIT = 100
MAX_LIST_RESULTS = 500


def chunks(items: Sequence, size: int):
    for i in range(0, len(items), size):
        yield items[i:i + size]


class GmailService:
    """Gmail API provider: offset search, bulk trash and permanent delete over threads"""

    def __init__(
        self,
        credentials_path: str = 'credentials.json',
        token_path: str = 'token.json',
        permanent_delete: bool = False,
        service=None  # Gmail API service object, built by authenticate() if omitted
    ):
        self.credentials_path = credentials_path
        self.token_path = token_path
        self.scopes = FULL_SCOPES if permanent_delete else MODIFY_SCOPES
        # The permanent pass searches inside Trash, which list() hides by default
        self.include_spam_trash = permanent_delete
        self.service = service

        # (query, offset) -> page token that resumes the listing at that offset
        self._page_tokens: Dict[Tuple[str, int], str] = {}

    # === Authentication ===

    def authenticate(self) -> bool:
        """Load, refresh or obtain credentials and build the API client"""
        creds = None
        token_path = Path(self.token_path)

        if token_path.exists():
            creds = Credentials.from_authorized_user_file(str(token_path), self.scopes)
            if creds and not creds.has_scopes(self.scopes):
                logger.info("Stored token lacks the required scopes - requesting consent again")
                creds = None

        if not creds or not creds.valid:
            if creds and creds.expired and creds.refresh_token:
                logger.info("Refreshing expired credentials")
                creds.refresh(Request())
            else:
                if not Path(self.credentials_path).exists():
                    logger.error(f"Credentials file not found: {self.credentials_path}")
                    return False
                flow = InstalledAppFlow.from_client_secrets_file(self.credentials_path, self.scopes)
                creds = flow.run_local_server(port=0)

            token_path.parent.mkdir(parents=True, exist_ok=True)
            token_path.write_text(creds.to_json())

        self.service = build('gmail', 'v1', credentials=creds)
        logger.info("Successfully authenticated with Gmail")
        return True

    def _require_service(self):
        if not self.service:
            raise Exception("Not authenticated. Call authenticate() first.")
        return self.service

    # === Search ===

    def search(self, query: str, offset: int, limit: int) -> List[ConversationRef]:
        """Return up to `limit` threads matching `query`, skipping the first `offset`"""
        service = self._require_service()
        page_token = self._seek(query, offset)
        if page_token is None and offset > 0:
            return []

        results = service.users().threads().list(
            userId='me',
            q=query,
            maxResults=limit,
            pageToken=page_token,
            includeSpamTrash=self.include_spam_trash
        ).execute()

        threads = results.get('threads', [])
        next_page_token = results.get('nextPageToken')
        if next_page_token:
            self._page_tokens[(query, offset + len(threads))] = next_page_token

        logger.debug(f"Search {query!r} offset={offset} limit={limit} returned {len(threads)} threads")
        return [ConversationRef(t['id'], loader=self.get_metadata) for t in threads]

    def _seek(self, query: str, offset: int) -> Optional[str]:
        """Page token positioned at `offset`; None means the start (or past the end)"""
        if offset == 0:
            return None
        if (query, offset) in self._page_tokens:
            return self._page_tokens[(query, offset)]

        # Unknown offset: walk the listing from the top, keeping only ids
        service = self._require_service()
        position = 0
        page_token = None
        while position < offset:
            results = service.users().threads().list(
                userId='me',
                q=query,
                maxResults=min(MAX_LIST_RESULTS, offset - position),
                pageToken=page_token,
                includeSpamTrash=self.include_spam_trash,
                fields='threads/id,nextPageToken'
            ).execute()
            position += len(results.get('threads', []))
            page_token = results.get('nextPageToken')
            if not page_token:
                return None
            self._page_tokens[(query, position)] = page_token

        return page_token

    # === Mutations ===

    def bulk_trash(self, refs: Sequence[ConversationRef]) -> None:
        """Move threads to Trash using batched HTTP requests"""
        service = self._require_service()
        errors = []

        def _collect(request_id, response, exception):
            if exception is not None:
                errors.append(exception)

        for chunk in chunks(list(refs), BATCH_REQUEST_LIMIT):
            batch = service.new_batch_http_request(callback=_collect)
            for ref in chunk:
                batch.add(service.users().threads().trash(userId='me', id=ref.thread_id))
            batch.execute()

        if errors:
            logger.error(f"{len(errors)} of {len(refs)} trash calls failed")
            raise errors[0]

    def delete_permanently(self, ref: ConversationRef) -> None:
        """Irreversibly delete a thread that is already in Trash.

        Gmail's trash() on a trashed thread is a no-op, so unlike providers that
        purge on a second trash move, this needs the explicit threads.delete call.
        """
        service = self._require_service()
        service.users().threads().delete(userId='me', id=ref.thread_id).execute()

    # === Metadata ===

    def get_metadata(self, thread_id: str) -> ThreadMetadata:
        """Fetch subject, message count and last activity for one thread"""
        service = self._require_service()
        thread_data = service.users().threads().get(
            userId='me',
            id=thread_id,
            format='metadata',
            metadataHeaders=['Subject']
        ).execute()

        messages = thread_data.get('messages', [])
        subject = '(No Subject)'
        if messages:
            headers = {h['name']: h['value'] for h in messages[0].get('payload', {}).get('headers', [])}
            subject = headers.get('Subject', subject)

        timestamps = [int(m['internalDate']) for m in messages if 'internalDate' in m]
        last_activity = datetime.fromtimestamp(max(timestamps) / 1000, tz=timezone.utc) if timestamps \
            else datetime.fromtimestamp(0, tz=timezone.utc)

        return ThreadMetadata(
            thread_id=thread_id,
            subject=subject,
            message_count=len(messages),
            last_activity=last_activity
        )
