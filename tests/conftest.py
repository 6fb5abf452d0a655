"""
Shared fixtures: in-memory database, a fake mailbox provider and stub
unsubscribe strategies wired into the real pipeline components.
"""

import base64
from types import SimpleNamespace

import pytest

from unsubscriber.database import DatabaseManager
from unsubscriber.database.allow_list import AllowList
from unsubscriber.database.attempts import AttemptTracker
from unsubscriber.database.audit import AuditLogger
from unsubscriber.database.patterns import PatternStore
from unsubscriber.database.scan_state import ScanStateStore
from unsubscriber.database.sender_tracking import SenderTracker
from unsubscriber.email_processor.labels import LabelCache, LabelManager
from unsubscriber.email_processor.scanner import MailboxScanner
from unsubscriber.unsubscribe_executor.base_executor import ExecutionResult, UnsubscribeStrategy
from unsubscriber.unsubscribe_executor.chain import UnsubscribeChain, UnsubscribeService

OWNER = 'owner@example.com'


class FakeMailbox:
    """In-memory mailbox provider with the GmailClient interface."""

    def __init__(self, history_id='1000'):
        self.messages = {}
        self.order = []
        self.history_id = history_id
        self.history_pages = []
        self.history_error = None
        self.history_calls = []
        self.fetched = []
        self.sent = []
        self.labels = {}
        self.modified = []

    def add(self, *messages):
        for message in messages:
            self.messages[message['id']] = message
            self.order.append(message['id'])

    def list_messages(self, owner_id, query=None, max_results=50, page_token=None):
        start = int(page_token or 0)
        ids = self.order[start:start + max_results]
        page = {'messages': [{'id': message_id} for message_id in ids]} if ids else {}
        if start + max_results < len(self.order):
            page['nextPageToken'] = str(start + max_results)
        return page

    def batch_get_messages(self, owner_id, message_ids, format='full', batch_size=10):
        self.fetched.extend(message_ids)
        return [self.messages[m] for m in message_ids if m in self.messages]

    def get_message(self, owner_id, message_id, format='full'):
        self.fetched.append(message_id)
        return self.messages[message_id]

    def get_history(self, owner_id, start_history_id, page_token=None):
        self.history_calls.append(start_history_id)
        if self.history_error is not None:
            raise self.history_error
        index = int(page_token or 0)
        if not self.history_pages:
            return {'historyId': self.history_id}
        page = dict(self.history_pages[index])
        if index + 1 < len(self.history_pages):
            page['nextPageToken'] = str(index + 1)
        return page

    def get_current_history_id(self, owner_id):
        return self.history_id

    def send_message(self, owner_id, to, subject, body):
        self.sent.append({'to': to, 'subject': subject, 'body': body})
        return {'id': f'sent-{len(self.sent)}'}

    def list_labels(self, owner_id):
        return [{'id': label_id, 'name': name} for name, label_id in self.labels.items()]

    def create_label(self, owner_id, name):
        label_id = f'Label_{len(self.labels) + 1}'
        self.labels[name] = label_id
        return {'id': label_id, 'name': name}

    def modify_message_labels(self, owner_id, message_id, add_label_ids=None, remove_label_ids=None):
        self.modified.append((message_id, list(add_label_ids or []), list(remove_label_ids or [])))

    def archive_message(self, owner_id, message_id):
        self.modify_message_labels(owner_id, message_id, [], ['INBOX'])

    def label_changes(self, message_id):
        return [change for change in self.modified if change[0] == message_id]


class StubStrategy(UnsubscribeStrategy):
    """Strategy returning queued results (success once the queue is empty)."""

    def __init__(self, method, results=None):
        self._method = method
        super().__init__(rate_limit_delay=0)
        self.results = list(results or [])
        self.calls = []

    @property
    def method_name(self):
        return self._method

    def _perform_execution(self, target, url):
        self.calls.append(url)
        if self.results:
            return self.results.pop(0)
        return ExecutionResult(method=self._method, success=True, url=url)


def _encode(text):
    return base64.urlsafe_b64encode(text.encode('utf-8')).decode('ascii').rstrip('=')


def build_message(message_id, sender, list_unsubscribe=None, one_click=False, html=None,
                  subject='Weekly deals'):
    headers = [
        {'name': 'From', 'value': sender},
        {'name': 'Subject', 'value': subject},
    ]
    if list_unsubscribe:
        headers.append({'name': 'List-Unsubscribe', 'value': list_unsubscribe})
    if one_click:
        headers.append({'name': 'List-Unsubscribe-Post', 'value': 'List-Unsubscribe=One-Click'})

    payload = {'mimeType': 'multipart/alternative', 'headers': headers, 'parts': [
        {'mimeType': 'text/plain', 'body': {'data': _encode('plain text')}},
    ]}
    if html:
        payload['parts'].append({'mimeType': 'text/html', 'body': {'data': _encode(html)}})
    return {'id': message_id, 'payload': payload}


@pytest.fixture
def owner():
    return OWNER


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    manager = DatabaseManager("sqlite:///:memory:")
    manager.initialize_database()
    yield manager
    manager.engine.dispose()


@pytest.fixture
def mailbox():
    return FakeMailbox()


@pytest.fixture
def make_message():
    return build_message


@pytest.fixture
def stub_strategy():
    return StubStrategy


@pytest.fixture
def pipeline(db, mailbox):
    """Real stores and scanner, fake mailbox, stub strategies."""
    audit = AuditLogger(db)
    scan_state = ScanStateStore(db)
    sender_tracker = SenderTracker(db)
    allow_list = AllowList(db, audit=audit)
    labels = LabelManager(mailbox, LabelCache())
    attempts = AttemptTracker(db, scan_state, sender_tracker, labeler=labels, audit=audit)

    one_click = StubStrategy('one_click')
    mailto = StubStrategy('mailto')
    browser = StubStrategy('browser')
    chain = UnsubscribeChain([browser, mailto, one_click])

    scanner = MailboxScanner(mailbox, scan_state, sender_tracker, allow_list, attempts, chain,
                             audit=audit, page_size=50, batch_size=10, default_limit=1000)

    return SimpleNamespace(
        db=db,
        mailbox=mailbox,
        audit=audit,
        scan_state=scan_state,
        sender_tracker=sender_tracker,
        allow_list=allow_list,
        labels=labels,
        attempts=attempts,
        patterns=PatternStore(db, audit=audit),
        one_click=one_click,
        mailto=mailto,
        browser=browser,
        chain=chain,
        scanner=scanner,
        service=UnsubscribeService(chain, attempts),
    )
