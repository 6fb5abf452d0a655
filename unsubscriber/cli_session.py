"""
CLI session management: builds and shares the pipeline components.

Components are created on first use so commands that only touch the
database never start a browser or talk to the mailbox provider.
"""

from functools import cached_property

from .config import Config, StoredTokenProvider, get_token_store
from .database import DatabaseManager
from .database.allow_list import AllowList
from .database.attempts import AttemptTracker
from .database.audit import AuditLogger
from .database.patterns import PatternStore
from .database.scan_state import ScanStateStore
from .database.sender_tracking import SenderTracker
from .email_processor.gmail_client import GmailClient
from .email_processor.labels import LabelCache, LabelManager
from .email_processor.scanner import MailboxScanner
from .storage import get_trace_storage
from .unsubscribe_executor import (
    BrowserExecutor, BrowserManager, MailtoExecutor, OneClickExecutor,
    UnsubscribeChain, UnsubscribeService
)


class CLISessionManager:
    """Owns the database manager and every service built on it."""

    def __init__(self, database_url: str = None, token_store=None, mail_client=None):
        """
        Args:
            database_url: overrides the configured database
            token_store: overrides the configured access token store
            mail_client: overrides the Gmail client (tests pass a fake)
        """
        self.db = DatabaseManager(database_url)
        self._token_store = token_store
        self._mail_client = mail_client

    @cached_property
    def token_store(self):
        return self._token_store if self._token_store is not None else get_token_store()

    @cached_property
    def audit(self) -> AuditLogger:
        return AuditLogger(self.db)

    @cached_property
    def allow_list(self) -> AllowList:
        return AllowList(self.db, audit=self.audit)

    @cached_property
    def scan_state(self) -> ScanStateStore:
        return ScanStateStore(self.db)

    @cached_property
    def sender_tracker(self) -> SenderTracker:
        return SenderTracker(self.db, grace_period_hours=Config.GRACE_PERIOD_HOURS)

    @cached_property
    def patterns(self) -> PatternStore:
        return PatternStore(self.db, audit=self.audit)

    @cached_property
    def mail_client(self):
        if self._mail_client is not None:
            return self._mail_client
        return GmailClient(StoredTokenProvider(self.token_store))

    @cached_property
    def labels(self) -> LabelManager:
        return LabelManager(self.mail_client, LabelCache())

    @cached_property
    def attempts(self) -> AttemptTracker:
        return AttemptTracker(self.db, self.scan_state, self.sender_tracker,
                              labeler=self.labels, audit=self.audit)

    @cached_property
    def browser_manager(self) -> BrowserManager:
        return BrowserManager()

    @cached_property
    def chain(self) -> UnsubscribeChain:
        return UnsubscribeChain([
            OneClickExecutor(timeout=Config.REQUEST_TIMEOUT),
            MailtoExecutor(self.mail_client),
            BrowserExecutor(self.patterns, self.browser_manager, storage=get_trace_storage()),
        ])

    @cached_property
    def scanner(self) -> MailboxScanner:
        return MailboxScanner(self.mail_client, self.scan_state, self.sender_tracker,
                              self.allow_list, self.attempts, self.chain, audit=self.audit)

    @cached_property
    def unsubscribe_service(self) -> UnsubscribeService:
        return UnsubscribeService(self.chain, self.attempts)

    def close(self):
        """Shut down the browser if one was started."""
        if 'browser_manager' in self.__dict__:
            self.browser_manager.close()


# Global CLI session manager instance
_cli_session_manager = None


def get_cli_session_manager(database_url: str = None) -> CLISessionManager:
    """Get the global CLI session manager instance."""
    global _cli_session_manager
    if _cli_session_manager is None:
        _cli_session_manager = CLISessionManager(database_url)
    return _cli_session_manager


def set_cli_session_manager(manager):
    """Replace the global instance (None resets it)."""
    global _cli_session_manager
    _cli_session_manager = manager
