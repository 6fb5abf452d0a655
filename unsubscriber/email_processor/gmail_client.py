"""
Gmail API client used as the mailbox provider.

Every call fetches a fresh access token from the token provider, waits for
the minimum spacing between requests, and retries 429/5xx responses with
exponential backoff (or the server's Retry-After when given).
"""

import base64
import logging
import threading
import time
from email.mime.text import MIMEText
from typing import Any, Callable, Dict, List, Optional

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from ..config import Config
from ..exceptions import HistoryExpiredError, MailboxProviderError

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (429, 500, 502, 503, 504)

_backoff = wait_exponential_jitter(initial=1, max=30)


def _is_retryable_http_error(exc: BaseException) -> bool:
    return isinstance(exc, HttpError) and exc.resp.status in RETRYABLE_STATUSES


def _retry_after_seconds(exc: BaseException) -> Optional[float]:
    if not isinstance(exc, HttpError):
        return None
    value = exc.resp.get('retry-after')
    if value is None:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


def _retry_wait(retry_state) -> float:
    retry_after = _retry_after_seconds(retry_state.outcome.exception())
    if retry_after is not None:
        return retry_after
    return _backoff(retry_state)


def build_gmail_service(access_token: str):
    """Gmail v1 service authorized with a bare access token."""
    credentials = Credentials(token=access_token)
    return build('gmail', 'v1', credentials=credentials, cache_discovery=False)


class GmailClient:
    """Mailbox provider operations scoped by owner."""

    def __init__(
        self,
        token_provider,
        min_request_interval: float = None,
        max_retries: int = None,
        service_factory: Callable[[str], Any] = build_gmail_service,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            token_provider: object with get_valid_access_token(owner_id)
            min_request_interval: seconds between consecutive requests
            max_retries: attempts per request for retryable responses
            service_factory: builds a Gmail service from an access token
            sleep: sleep function (injected in tests)
        """
        self.token_provider = token_provider
        self.min_request_interval = (min_request_interval if min_request_interval is not None
                                     else Config.GMAIL_MIN_REQUEST_INTERVAL)
        self.max_retries = max_retries if max_retries is not None else Config.GMAIL_MAX_RETRIES
        self.service_factory = service_factory
        self.sleep = sleep
        self._last_request_time: Optional[float] = None
        self._pace_lock = threading.Lock()
        self._services: Dict[str, Any] = {}

    def _service(self, owner_id: str):
        token = self.token_provider.get_valid_access_token(owner_id)
        cached = self._services.get(owner_id)
        if cached is not None and cached[0] == token:
            return cached[1]
        service = self.service_factory(token)
        self._services[owner_id] = (token, service)
        return service

    def _apply_rate_limit(self):
        """Enforce the minimum spacing between requests."""
        with self._pace_lock:
            if self._last_request_time is not None:
                elapsed = time.monotonic() - self._last_request_time
                if elapsed < self.min_request_interval:
                    self.sleep(self.min_request_interval - elapsed)
            self._last_request_time = time.monotonic()

    def _execute(self, request, operation: str):
        retrying = Retrying(
            retry=retry_if_exception(_is_retryable_http_error),
            wait=_retry_wait,
            stop=stop_after_attempt(self.max_retries),
            sleep=self.sleep,
            before_sleep=lambda state: logger.warning(
                "Gmail %s failed (attempt %d), retrying: %s",
                operation, state.attempt_number, state.outcome.exception()
            ),
            reraise=True,
        )
        try:
            for attempt in retrying:
                with attempt:
                    self._apply_rate_limit()
                    return request.execute()
        except HttpError as e:
            raise MailboxProviderError(f"Gmail {operation} failed", status=e.resp.status,
                                       context={'reason': e.reason}) from e

    # Messages

    def list_messages(self, owner_id: str, query: Optional[str] = None, max_results: int = 50,
                      page_token: Optional[str] = None) -> Dict[str, Any]:
        """One page of message ids: {'messages': [{'id': ...}], 'nextPageToken': ...}."""
        kwargs: Dict[str, Any] = {'userId': 'me', 'maxResults': max_results}
        if query:
            kwargs['q'] = query
        if page_token:
            kwargs['pageToken'] = page_token
        request = self._service(owner_id).users().messages().list(**kwargs)
        return self._execute(request, 'messages.list')

    def get_message(self, owner_id: str, message_id: str, format: str = 'full') -> Dict[str, Any]:
        request = self._service(owner_id).users().messages().get(
            userId='me', id=message_id, format=format
        )
        return self._execute(request, 'messages.get')

    def batch_get_messages(self, owner_id: str, message_ids: List[str], format: str = 'full',
                           batch_size: int = None) -> List[Dict[str, Any]]:
        """
        Fetch messages in sequential batches.

        Messages that fail individually are logged and left out of the
        result, which keeps the input order otherwise.
        """
        batch_size = batch_size or Config.FETCH_BATCH_SIZE
        service = self._service(owner_id)
        results: List[Dict[str, Any]] = []

        for start in range(0, len(message_ids), batch_size):
            chunk = message_ids[start:start + batch_size]
            fetched: Dict[str, Dict[str, Any]] = {}

            def _callback(request_id, response, exception):
                if exception is not None:
                    logger.warning("Failed to fetch message %s: %s", request_id, exception)
                    return
                fetched[request_id] = response

            batch = service.new_batch_http_request(callback=_callback)
            for message_id in chunk:
                batch.add(
                    service.users().messages().get(userId='me', id=message_id, format=format),
                    request_id=message_id,
                )
            self._execute(batch, 'messages.batchGet')

            results.extend(fetched[message_id] for message_id in chunk if message_id in fetched)

        return results

    # Labels

    def list_labels(self, owner_id: str) -> List[Dict[str, Any]]:
        request = self._service(owner_id).users().labels().list(userId='me')
        return self._execute(request, 'labels.list').get('labels', [])

    def create_label(self, owner_id: str, name: str) -> Dict[str, Any]:
        request = self._service(owner_id).users().labels().create(userId='me', body={
            'name': name,
            'labelListVisibility': 'labelShow',
            'messageListVisibility': 'show',
        })
        return self._execute(request, 'labels.create')

    def modify_message_labels(self, owner_id: str, message_id: str,
                              add_label_ids: Optional[List[str]] = None,
                              remove_label_ids: Optional[List[str]] = None):
        request = self._service(owner_id).users().messages().modify(userId='me', id=message_id, body={
            'addLabelIds': add_label_ids or [],
            'removeLabelIds': remove_label_ids or [],
        })
        self._execute(request, 'messages.modify')

    def archive_message(self, owner_id: str, message_id: str):
        """Archive by removing the INBOX label."""
        self.modify_message_labels(owner_id, message_id, [], ['INBOX'])

    # Send

    def send_message(self, owner_id: str, to: str, subject: str, body: str) -> Dict[str, Any]:
        """Send a plain-text email from the owner's mailbox. Returns {'id': ...}."""
        msg = MIMEText(body, 'plain', 'utf-8')
        msg['To'] = to
        msg['Subject'] = subject
        raw = base64.urlsafe_b64encode(msg.as_bytes()).decode('ascii').rstrip('=')

        request = self._service(owner_id).users().messages().send(userId='me', body={'raw': raw})
        return self._execute(request, 'messages.send')

    # History

    def get_history(self, owner_id: str, start_history_id: str,
                    page_token: Optional[str] = None) -> Dict[str, Any]:
        """
        One page of added-message history since ``start_history_id``.

        Raises:
            HistoryExpiredError: if the cursor is too old to use
        """
        kwargs: Dict[str, Any] = {
            'userId': 'me',
            'startHistoryId': start_history_id,
            'historyTypes': ['messageAdded'],
        }
        if page_token:
            kwargs['pageToken'] = page_token
        request = self._service(owner_id).users().history().list(**kwargs)
        try:
            return self._execute(request, 'history.list')
        except MailboxProviderError as e:
            if e.status == 404:
                raise HistoryExpiredError(start_history_id) from e
            raise

    def get_profile(self, owner_id: str) -> Dict[str, Any]:
        request = self._service(owner_id).users().getProfile(userId='me')
        return self._execute(request, 'users.getProfile')

    def get_current_history_id(self, owner_id: str) -> str:
        return str(self.get_profile(owner_id)['historyId'])
