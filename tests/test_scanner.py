"""
Tests for the mailbox scanner: backlog and incremental modes, idempotency
and per-message error isolation.
"""

import pytest

from unsubscriber.email_processor.scanner import (
    MODE_BACKLOG, MODE_INCREMENTAL, MailboxScanner, build_target
)
from unsubscriber.email_processor.unsubscribe.extractors import extract_domain, extract_email_address
from unsubscriber.email_processor.unsubscribe.types import ExtractedLink, UnsubscribeInfo
from unsubscriber.exceptions import HistoryExpiredError, ScanInProgressError
from unsubscriber.unsubscribe_executor.base_executor import ExecutionResult


def one_click_message(make_message, message_id, sender):
    domain = extract_domain(extract_email_address(sender))
    return make_message(message_id, sender, list_unsubscribe=f'<https://{domain}/one-click>',
                        one_click=True)


@pytest.fixture
def three_messages(pipeline, make_message, owner):
    """Allow-listed sender, bulk sender with one-click, personal mail without a mechanism."""
    pipeline.allow_list.add(owner, 'domain', 'bank.com')
    pipeline.mailbox.add(
        one_click_message(make_message, 'm1', 'Statements <alerts@bank.com>'),
        one_click_message(make_message, 'm2', 'Deals <deals@shop.com>'),
        make_message('m3', 'Friend <friend@mail.com>', subject='Lunch?'),
    )
    return pipeline


class TestBacklogScan:

    def test_first_scan(self, three_messages, owner):
        pipeline = three_messages

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.mode == MODE_BACKLOG
        assert (result.scanned, result.processed, result.skipped, result.errors) == (3, 1, 2, 0)
        assert result.backlog_complete is True
        assert pipeline.one_click.calls == ['https://shop.com/one-click']
        assert pipeline.mailto.calls == [] and pipeline.browser.calls == []

        attempts = pipeline.attempts.list_recent(owner)
        assert [(a.sender, a.method, a.status) for a in attempts] == [('deals@shop.com', 'one_click', 'success')]
        assert attempts[0].unsubscribe_url == 'https://shop.com/one-click'

        state = pipeline.scan_state.get_state(owner)
        assert state.is_backlog_complete is True
        assert state.last_sync_cursor == '1000'
        assert state.last_message_id == 'm3'
        assert state.messages_scanned == 3
        assert state.messages_processed == 1
        assert pipeline.scan_state.count_processed(owner) == 1
        assert pipeline.scan_state.is_processed(owner, 'm2')

    def test_every_sender_is_tracked(self, three_messages, owner):
        three_messages.scanner.scan_mailbox(owner)

        tracker = three_messages.sender_tracker
        assert tracker.get(owner, 'alerts@bank.com').message_count == 1
        assert tracker.get(owner, 'friend@mail.com').message_count == 1
        assert tracker.get(owner, 'deals@shop.com').unsubscribed_at is not None

    def test_scan_details(self, three_messages, owner):
        result = three_messages.scanner.scan_mailbox(owner)

        by_id = {message.id: message for message in result.messages}
        assert by_id['m1'].is_allowed is True
        assert by_id['m1'].acted_on is False
        assert by_id['m2'].status == 'success'
        assert by_id['m2'].unsubscribe_info.supports_one_click_post is True
        assert by_id['m3'].subject == 'Lunch?'
        assert by_id['m3'].unsubscribe_info.has_mechanism() is False

    def test_rescan_is_idempotent(self, three_messages, owner):
        pipeline = three_messages
        pipeline.scanner.scan_mailbox(owner)
        pipeline.scan_state.update_state(owner, {'is_backlog_complete': False})
        fetched = list(pipeline.mailbox.fetched)

        result = pipeline.scanner.scan_mailbox(owner)

        assert (result.scanned, result.processed, result.skipped) == (3, 0, 3)
        assert pipeline.mailbox.fetched[len(fetched):] == ['m1', 'm3']
        assert len(pipeline.one_click.calls) == 1
        assert len(pipeline.attempts.history_by_domain(owner, 'shop.com')) == 1

    def test_allow_listed_senders_are_never_unsubscribed(self, pipeline, make_message, owner):
        pipeline.allow_list.add(owner, 'address', 'news@shop.com')
        pipeline.mailbox.add(
            make_message('m1', 'news@shop.com', list_unsubscribe='<mailto:u@shop.com>, <https://shop.com/u>',
                         html='<a href="https://shop.com/unsubscribe">Unsubscribe</a>'),
        )

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.processed == 0
        assert pipeline.one_click.calls == []
        assert pipeline.mailto.calls == []
        assert pipeline.browser.calls == []
        assert pipeline.attempts.list_recent(owner) == []

    def test_empty_mailbox_completes_backlog(self, pipeline, owner):
        result = pipeline.scanner.scan_mailbox(owner)

        assert result.scanned == 0
        assert result.backlog_complete is True
        assert pipeline.scan_state.get_state(owner).last_sync_cursor == '1000'

    def test_message_without_sender_is_skipped(self, pipeline, make_message, owner):
        pipeline.mailbox.add(make_message('m1', ''))

        result = pipeline.scanner.scan_mailbox(owner)

        assert (result.scanned, result.skipped, result.errors) == (1, 1, 0)
        assert not pipeline.scan_state.is_processed(owner, 'm1')

    def test_html_link_goes_to_browser(self, pipeline, make_message, owner):
        pipeline.mailbox.add(make_message(
            'm1', 'news@shop.com',
            html='<p><a href="https://shop.com/unsubscribe?u=1">Unsubscribe</a></p>'
        ))

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.processed == 1
        assert pipeline.browser.calls == ['https://shop.com/unsubscribe?u=1']
        assert pipeline.attempts.list_recent(owner)[0].method == 'browser'

    def test_fetch_misses_are_errors(self, pipeline, make_message, owner):
        pipeline.mailbox.add(make_message('m1', 'friend@mail.com'))
        pipeline.mailbox.order.append('vanished')

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.scanned == 1
        assert result.errors == 1
        assert not pipeline.scan_state.is_processed(owner, 'vanished')

    def test_one_bad_message_does_not_stop_the_scan(self, pipeline, make_message, owner, monkeypatch):
        pipeline.mailbox.add(
            one_click_message(make_message, 'm1', 'bad@broken.com'),
            one_click_message(make_message, 'm2', 'deals@shop.com'),
        )
        observe = pipeline.sender_tracker.observe

        def flaky_observe(owner_id, sender):
            if sender == 'bad@broken.com':
                raise RuntimeError("tracking failed")
            return observe(owner_id, sender)

        monkeypatch.setattr(pipeline.sender_tracker, 'observe', flaky_observe)

        result = pipeline.scanner.scan_mailbox(owner)

        assert (result.scanned, result.processed, result.errors) == (1, 1, 1)
        assert not pipeline.scan_state.is_processed(owner, 'm1')
        assert pipeline.scan_state.is_processed(owner, 'm2')

    def test_limit_pages_through_backlog(self, pipeline, make_message, owner):
        for i in range(1, 6):
            pipeline.mailbox.add(one_click_message(make_message, f'm{i}', f'list{i}@news{i}.com'))
        scanner = MailboxScanner(pipeline.mailbox, pipeline.scan_state, pipeline.sender_tracker,
                                 pipeline.allow_list, pipeline.attempts, pipeline.chain,
                                 page_size=2, batch_size=2, default_limit=100)

        first = scanner.scan_mailbox(owner, limit=3)

        assert first.scanned == 3
        assert first.processed == 3
        assert first.backlog_complete is False
        state = pipeline.scan_state.get_state(owner)
        assert state.last_message_id == 'm3'
        assert state.backlog_page_token == '3'

        second = scanner.scan_mailbox(owner, limit=10)

        assert (second.scanned, second.processed, second.skipped) == (2, 2, 0)
        assert second.backlog_complete is True
        assert len(pipeline.one_click.calls) == 5
        assert pipeline.scan_state.get_state(owner).backlog_page_token is None

    def test_backlog_larger_than_limit_finishes(self, pipeline, make_message, owner):
        for i in range(1, 6):
            pipeline.mailbox.add(one_click_message(make_message, f'm{i}', f'list{i}@news{i}.com'))
        scanner = MailboxScanner(pipeline.mailbox, pipeline.scan_state, pipeline.sender_tracker,
                                 pipeline.allow_list, pipeline.attempts, pipeline.chain,
                                 page_size=2, batch_size=2, default_limit=3)

        results = [scanner.scan_mailbox(owner) for _ in range(3)]

        assert [r.mode for r in results] == [MODE_BACKLOG, MODE_BACKLOG, MODE_INCREMENTAL]
        assert [r.processed for r in results] == [3, 2, 0]
        assert pipeline.scan_state.get_state(owner).is_backlog_complete is True
        assert len(pipeline.one_click.calls) == 5

    def test_skipped_mail_is_revisited_after_allow_list_change(self, pipeline, make_message, owner):
        entry = pipeline.allow_list.add(owner, 'domain', 'news1.com')
        pipeline.mailbox.add(one_click_message(make_message, 'm1', 'list@news1.com'))

        pipeline.scanner.scan_mailbox(owner)

        assert pipeline.attempts.list_recent(owner) == []
        assert not pipeline.scan_state.is_processed(owner, 'm1')

        pipeline.allow_list.remove(owner, entry.id)
        pipeline.scan_state.update_state(owner, {'is_backlog_complete': False})
        result = pipeline.scanner.scan_mailbox(owner)

        assert result.processed == 1
        assert pipeline.one_click.calls == ['https://news1.com/one-click']
        assert pipeline.scan_state.is_processed(owner, 'm1')

    def test_failed_attempt_is_recorded(self, pipeline, make_message, owner):
        pipeline.mailbox.add(make_message('m1', 'news@shop.com', list_unsubscribe='<https://shop.com/u>'))
        pipeline.browser.results.append(
            ExecutionResult.failed('browser', 'captcha_detected', 'CAPTCHA detected on page',
                                   screenshot_path='/tmp/shot.png')
        )

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.messages[0].status == 'failed'
        attempt = pipeline.attempts.list_failed_or_uncertain(owner)[0]
        assert attempt.failure_reason == 'captcha_detected'
        assert attempt.failure_details == 'CAPTCHA detected on page'
        assert attempt.screenshot_path == '/tmp/shot.png'
        assert attempt.unsubscribe_url == 'https://shop.com/u'


class TestIncrementalScan:

    def _added(self, *message_ids):
        return [{'messagesAdded': [{'message': {'id': message_id}}]} for message_id in message_ids]

    def test_processes_only_new_messages(self, three_messages, make_message, owner):
        pipeline = three_messages
        pipeline.scanner.scan_mailbox(owner)
        pipeline.mailbox.add(one_click_message(make_message, 'm4', 'promo@store.com'))
        pipeline.mailbox.history_pages = [
            {'historyId': '1005', 'history': self._added('m4')},
            {'historyId': '1010', 'history': self._added('m2')},
        ]

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.mode == MODE_INCREMENTAL
        assert (result.scanned, result.processed, result.skipped) == (2, 1, 1)
        assert pipeline.mailbox.history_calls == ['1000', '1000']
        assert pipeline.scan_state.get_state(owner).last_sync_cursor == '1010'
        assert pipeline.one_click.calls[-1] == 'https://store.com/one-click'

    def test_quiet_mailbox(self, three_messages, owner):
        pipeline = three_messages
        pipeline.scanner.scan_mailbox(owner)

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.mode == MODE_INCREMENTAL
        assert result.scanned == 0
        assert pipeline.scan_state.get_state(owner).last_sync_cursor == '1000'

    def test_expired_cursor_falls_back_to_backlog(self, three_messages, make_message, owner):
        pipeline = three_messages
        pipeline.scanner.scan_mailbox(owner)
        pipeline.mailbox.add(one_click_message(make_message, 'm4', 'promo@store.com'))
        pipeline.mailbox.history_error = HistoryExpiredError('1000')
        pipeline.mailbox.history_id = '2000'

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.mode == MODE_BACKLOG
        assert (result.scanned, result.processed, result.skipped) == (4, 1, 3)
        state = pipeline.scan_state.get_state(owner)
        assert state.is_backlog_complete is True
        assert state.last_sync_cursor == '2000'

    def test_fetch_error_counts_and_continues(self, three_messages, make_message, owner):
        pipeline = three_messages
        pipeline.scanner.scan_mailbox(owner)
        pipeline.mailbox.add(one_click_message(make_message, 'm4', 'promo@store.com'))
        pipeline.mailbox.history_pages = [{'historyId': '1001', 'history': self._added('gone', 'm4')}]

        result = pipeline.scanner.scan_mailbox(owner)

        assert result.errors == 1
        assert result.processed == 1


class TestConcurrency:

    def test_second_scan_for_same_owner_is_rejected(self, pipeline, owner):
        scanner = pipeline.scanner

        with scanner._scan_guard(owner):
            assert scanner.is_scanning(owner)
            with pytest.raises(ScanInProgressError):
                scanner.scan_mailbox(owner)
            scanner.scan_mailbox('other@example.com')

        assert not scanner.is_scanning(owner)

    def test_guard_released_after_failure(self, pipeline, owner, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("provider down")

        monkeypatch.setattr(pipeline.mailbox, 'list_messages', broken)

        with pytest.raises(RuntimeError):
            pipeline.scanner.scan_mailbox(owner)

        assert not pipeline.scanner.is_scanning(owner)

    def test_scan_is_audited(self, three_messages, owner):
        three_messages.scanner.scan_mailbox(owner)

        completed = three_messages.audit.recent(owner, action='scan_completed')[0]['details']
        assert completed['scanned'] == 3
        assert three_messages.audit.recent(owner, action='scan_started')


class TestBuildTarget:

    def test_header_url_preferred_for_browser(self):
        info = UnsubscribeInfo(raw_directives=['https://a.com/h'], http_urls=['https://a.com/h'])
        links = [ExtractedLink(url='https://a.com/body', text='Unsubscribe', confidence=1.0)]

        target = build_target('o', 'm1', info, links)

        assert target.browser_url == 'https://a.com/h'
        assert target.artifact_id == 'm1'

    def test_body_link_fallback(self):
        links = [ExtractedLink(url='https://a.com/body', text='Unsubscribe', confidence=1.0)]

        target = build_target('o', 'm1', UnsubscribeInfo(), links)

        assert target.browser_url == 'https://a.com/body'
        assert target.one_click_url is None

    def test_no_mechanism(self):
        assert build_target('o', 'm1', UnsubscribeInfo(), []).has_mechanism() is False
