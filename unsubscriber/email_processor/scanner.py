"""
Mailbox scanner: walks an owner's mailbox and unsubscribes from bulk senders.

The first scans page through the existing mailbox (the backlog) a bounded
number of messages at a time, each run resuming at the listing page where the
previous one stopped. Once the backlog is exhausted the provider's
sync cursor is stored and later scans only pull newly added messages. An
expired cursor drops the scanner back into backlog mode.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from ..config import Config
from ..database.attempts import AttemptInput
from ..database.models import utcnow
from ..exceptions import HistoryExpiredError, ScanInProgressError
from ..unsubscribe_executor.base_executor import UnsubscribeTarget
from .unsubscribe import (
    extract_domain, extract_unsubscribe_links, find_html_body, get_header,
    get_sender, parse_unsubscribe_header
)
from .unsubscribe.types import ExtractedLink, UnsubscribeInfo

logger = logging.getLogger(__name__)

MODE_BACKLOG = 'backlog'
MODE_INCREMENTAL = 'incremental'


@dataclass
class ScannedMessage:
    """What the scanner found in one message and what it did about it."""

    id: str
    sender: str
    sender_domain: str
    subject: Optional[str]
    is_allowed: bool
    unsubscribe_info: UnsubscribeInfo
    html_links: List[ExtractedLink] = field(default_factory=list)
    attempt_id: Optional[int] = None
    method: Optional[str] = None
    status: Optional[str] = None

    @property
    def acted_on(self) -> bool:
        return self.attempt_id is not None


@dataclass
class ScanResult:
    mode: str
    scanned: int = 0
    processed: int = 0
    skipped: int = 0
    errors: int = 0
    backlog_complete: bool = False
    messages: List[ScannedMessage] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'mode': self.mode,
            'scanned': self.scanned,
            'processed': self.processed,
            'skipped': self.skipped,
            'errors': self.errors,
            'backlog_complete': self.backlog_complete,
        }


def build_target(owner_id: str, message_id: str, info: UnsubscribeInfo,
                 html_links: List[ExtractedLink]) -> UnsubscribeTarget:
    """
    Unsubscribe target for a message.

    The browser gets the first HTTP URL from the header, or failing that the
    highest-confidence link from the body.
    """
    browser_url = None
    if info.http_urls:
        browser_url = info.http_urls[0]
    elif html_links:
        browser_url = html_links[0].url

    return UnsubscribeTarget(
        owner_id=owner_id,
        message_id=message_id,
        one_click_url=info.one_click_url,
        mailto_url=info.mailto_url,
        browser_url=browser_url,
        artifact_id=message_id,
    )


class MailboxScanner:
    """Scans mailboxes and drives unsubscribes, one scan per owner at a time."""

    def __init__(self, client, scan_state, sender_tracker, allow_list, attempt_tracker, chain,
                 audit=None, page_size: int = None, batch_size: int = None,
                 default_limit: int = None):
        """
        Args:
            client: mailbox provider (GmailClient)
            scan_state: ScanStateStore
            sender_tracker: SenderTracker
            allow_list: AllowList
            attempt_tracker: AttemptTracker
            chain: UnsubscribeChain
            audit: optional AuditLogger
            page_size: messages listed per backlog page
            batch_size: messages fetched per batch request
            default_limit: backlog messages per scan when no limit is given
        """
        self.client = client
        self.scan_state = scan_state
        self.sender_tracker = sender_tracker
        self.allow_list = allow_list
        self.attempts = attempt_tracker
        self.chain = chain
        self.audit = audit
        self.page_size = page_size or Config.SCAN_PAGE_SIZE
        self.batch_size = batch_size or Config.FETCH_BATCH_SIZE
        self.default_limit = default_limit or Config.SCAN_LIMIT

        self._lock = threading.Lock()
        self._in_progress = set()

    @contextmanager
    def _scan_guard(self, owner_id: str):
        with self._lock:
            if owner_id in self._in_progress:
                raise ScanInProgressError(owner_id)
            self._in_progress.add(owner_id)
        try:
            yield
        finally:
            with self._lock:
                self._in_progress.discard(owner_id)

    def is_scanning(self, owner_id: str) -> bool:
        with self._lock:
            return owner_id in self._in_progress

    def scan_mailbox(self, owner_id: str, limit: Optional[int] = None) -> ScanResult:
        """
        Run one scan for an owner.

        Raises:
            ScanInProgressError: another scan for this owner is running
        """
        limit = limit or self.default_limit

        with self._scan_guard(owner_id):
            state = self.scan_state.get_state(owner_id)
            if self.audit:
                self.audit.log(owner_id, 'scan_started', {
                    'backlog_complete': state.is_backlog_complete, 'limit': limit,
                })

            if state.is_backlog_complete and state.last_sync_cursor:
                result = self._incremental_scan(owner_id, state.last_sync_cursor, limit)
            else:
                result = self._backlog_scan(owner_id, limit, state.backlog_page_token)

            if self.audit:
                self.audit.log(owner_id, 'scan_completed', result.to_dict())
            return result

    # Backlog

    def _backlog_scan(self, owner_id: str, limit: int, page_token: Optional[str] = None) -> ScanResult:
        """Work through the mailbox listing, resuming at the page where the last run stopped."""
        logger.info("Starting backlog scan for %s (limit %d, resuming: %s)", owner_id, limit, bool(page_token))
        result = ScanResult(mode=MODE_BACKLOG)
        remaining = limit

        while remaining > 0:
            page = self.client.list_messages(owner_id, max_results=min(remaining, self.page_size),
                                             page_token=page_token)
            message_ids = [m['id'] for m in page.get('messages') or []]
            if not message_ids:
                self._complete_backlog(owner_id, result)
                break

            already_processed = self.scan_state.get_processed_ids(owner_id, message_ids)
            result.scanned += len(already_processed)
            result.skipped += len(already_processed)

            new_ids = [message_id for message_id in message_ids if message_id not in already_processed]
            if new_ids:
                messages = self.client.batch_get_messages(owner_id, new_ids, batch_size=self.batch_size)
                result.errors += len(new_ids) - len(messages)
                for message in messages:
                    self._process_and_count(owner_id, message, result)

            remaining -= len(message_ids)
            page_token = page.get('nextPageToken')
            self.scan_state.update_state(owner_id, {
                'last_message_id': message_ids[-1],
                'backlog_page_token': page_token,
            })

            if not page_token:
                self._complete_backlog(owner_id, result)
                break

        self.scan_state.increment_counters(owner_id, result.scanned, result.processed)
        logger.info("Backlog scan for %s: %d scanned, %d processed, %d skipped, %d errors",
                    owner_id, result.scanned, result.processed, result.skipped, result.errors)
        return result

    def _complete_backlog(self, owner_id: str, result: ScanResult):
        cursor = self.client.get_current_history_id(owner_id)
        self.scan_state.update_state(owner_id, {
            'is_backlog_complete': True,
            'last_sync_cursor': cursor,
            'backlog_page_token': None,
        })
        result.backlog_complete = True

    # Incremental

    def _incremental_scan(self, owner_id: str, cursor: str, limit: int) -> ScanResult:
        logger.info("Starting incremental scan for %s from cursor %s", owner_id, cursor)
        result = ScanResult(mode=MODE_INCREMENTAL, backlog_complete=True)
        new_cursor = cursor
        page_token = None

        try:
            while True:
                page = self.client.get_history(owner_id, cursor, page_token=page_token)
                if page.get('historyId'):
                    new_cursor = str(page['historyId'])

                for item in page.get('history') or []:
                    for added in item.get('messagesAdded') or []:
                        self._process_added(owner_id, added['message']['id'], result)

                page_token = page.get('nextPageToken')
                if not page_token:
                    break
        except HistoryExpiredError:
            logger.warning("Sync cursor for %s expired, falling back to backlog scan", owner_id)
            self.scan_state.update_state(owner_id, {
                'is_backlog_complete': False,
                'last_sync_cursor': None,
                'backlog_page_token': None,
            })
            return self._backlog_scan(owner_id, limit)

        self.scan_state.update_state(owner_id, {'last_sync_cursor': new_cursor, 'last_scan_at': utcnow()})
        self.scan_state.increment_counters(owner_id, result.scanned, result.processed)
        logger.info("Incremental scan for %s: %d scanned, %d processed",
                    owner_id, result.scanned, result.processed)
        return result

    def _process_added(self, owner_id: str, message_id: str, result: ScanResult):
        try:
            if self.scan_state.is_processed(owner_id, message_id):
                result.scanned += 1
                result.skipped += 1
                return
            message = self.client.get_message(owner_id, message_id)
        except Exception as e:
            logger.error("Error fetching message %s: %s", message_id, e)
            result.errors += 1
            return

        self._process_and_count(owner_id, message, result)

    # Per message

    def _process_and_count(self, owner_id: str, message: Dict[str, Any], result: ScanResult):
        try:
            scanned = self.process_message(owner_id, message)
        except Exception as e:
            logger.error("Error processing message %s: %s", message.get('id'), e)
            result.errors += 1
            return

        result.scanned += 1
        if scanned is None:
            result.skipped += 1
            return

        result.messages.append(scanned)
        if scanned.acted_on:
            result.processed += 1
        else:
            result.skipped += 1

    def process_message(self, owner_id: str, message: Dict[str, Any]) -> Optional[ScannedMessage]:
        """
        Track the sender and unsubscribe when the message allows it.

        Returns None for messages without a sender. Only a recorded attempt
        marks the message processed, so skipped mail is looked at again if
        the allow list changes.
        """
        message_id = message['id']
        payload = message.get('payload') or {}
        headers = payload.get('headers') or []

        sender = get_sender(headers)
        if not sender:
            logger.info("Skipping message %s: no sender", message_id)
            return None

        sender_domain = extract_domain(sender)
        self.sender_tracker.observe(owner_id, sender)
        allowed = self.allow_list.is_allowed(owner_id, sender)

        info = parse_unsubscribe_header(headers)
        html = find_html_body(payload)
        html_links = extract_unsubscribe_links(html) if html else []

        scanned = ScannedMessage(
            id=message_id,
            sender=sender,
            sender_domain=sender_domain,
            subject=get_header(headers, 'Subject'),
            is_allowed=allowed,
            unsubscribe_info=info,
            html_links=html_links,
        )

        if allowed:
            return scanned

        target = build_target(owner_id, message_id, info, html_links)
        execution = self.chain.run(target) if target.has_mechanism() else None
        if execution is None:
            return scanned

        details = execution.attempt_details()
        attempt = self.attempts.record(owner_id, AttemptInput(
            message_id=message_id,
            sender=sender,
            sender_domain=sender_domain,
            method=execution.method,
            status=execution.status,
            unsubscribe_url=execution.url or target.url_for(execution.method),
            **details,
        ))

        scanned.attempt_id = attempt.id
        scanned.method = execution.method
        scanned.status = execution.status
        return scanned
