"""
Tests for owner data export and erasure, and the audit log.
"""

from unsubscriber.config.credentials import TokenStore
from unsubscriber.database.attempts import AttemptInput
from unsubscriber.database.user_data import delete_all_owner_data, export_owner_data

OTHER = 'other@example.com'


def _populate(pipeline, owner):
    pipeline.sender_tracker.observe(owner, 'news@shop.com')
    pipeline.allow_list.add(owner, 'domain', 'bank.com', notes='keep')
    pipeline.attempts.record(owner, AttemptInput(
        message_id='m1', sender='news@shop.com', sender_domain='shop.com',
        method='one_click', status='success', unsubscribe_url='https://shop.com/u'
    ))


class TestExport:

    def test_export(self, pipeline, owner):
        _populate(pipeline, owner)

        data = export_owner_data(pipeline.db, owner)

        assert [a['sender'] for a in data['unsubscribe_history']] == ['news@shop.com']
        assert data['unsubscribe_history'][0]['status'] == 'success'
        assert data['allow_list'][0]['value'] == 'bank.com'
        assert data['sender_tracking'][0]['message_count'] == 1
        assert data['processed_messages'] == 1

    def test_export_unknown_owner(self, pipeline):
        data = export_owner_data(pipeline.db, 'ghost@example.com')

        assert data == {
            'unsubscribe_history': [],
            'allow_list': [],
            'sender_tracking': [],
            'processed_messages': 0,
        }


class TestErase:

    def test_deletes_only_the_owners_rows(self, pipeline, owner, tmp_path):
        _populate(pipeline, owner)
        _populate(pipeline, OTHER)
        pipeline.scan_state.get_state(owner)
        tokens = TokenStore(tmp_path / 'tokens.json')
        tokens.set_token(owner, 'token')

        result = delete_all_owner_data(pipeline.db, owner, token_store=tokens)

        assert set(result['deleted_tables']) == {
            'scan_state', 'processed_messages', 'sender_tracking',
            'allow_list', 'unsubscribe_attempts', 'audit_log', 'access_tokens'
        }
        assert result['rows_deleted']['unsubscribe_attempts'] == 1
        assert tokens.get_token(owner) is None

        assert export_owner_data(pipeline.db, owner)['unsubscribe_history'] == []
        assert len(export_owner_data(pipeline.db, OTHER)['unsubscribe_history']) == 1
        assert pipeline.audit.recent(owner) == []

    def test_erase_nothing(self, pipeline):
        result = delete_all_owner_data(pipeline.db, 'ghost@example.com')

        assert result == {'deleted_tables': [], 'rows_deleted': {}}


class TestAudit:

    def test_recent_newest_first_and_filtered(self, pipeline, owner):
        pipeline.audit.log(owner, 'scan_started', {'mode': 'backlog'})
        pipeline.audit.log(owner, 'scan_completed', {'scanned': 3})

        events = pipeline.audit.recent(owner)

        assert [e['action'] for e in events] == ['scan_completed', 'scan_started']
        assert pipeline.audit.recent(owner, action='scan_started')[0]['details'] == {'mode': 'backlog'}

    def test_unknown_action_still_written(self, pipeline, owner):
        pipeline.audit.log(owner, 'custom_event')

        event = pipeline.audit.recent(owner)[0]
        assert event['action'] == 'custom_event'
        assert event['details'] is None

    def test_write_failure_is_swallowed(self, pipeline, owner, monkeypatch):
        from sqlalchemy.exc import OperationalError

        def broken(*args, **kwargs):
            raise OperationalError("INSERT", {}, Exception("disk I/O error"))

        monkeypatch.setattr(pipeline.db, 'run', broken)

        pipeline.audit.log(owner, 'scan_started')
