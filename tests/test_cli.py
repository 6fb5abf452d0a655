"""
Tests for the command line interface, run against an in-memory database
and a fake mailbox.
"""

import json

import pytest
from click.testing import CliRunner

from unsubscriber.cli.main import cli
from unsubscriber.cli_session import CLISessionManager, set_cli_session_manager
from unsubscriber.config import TokenStore
from unsubscriber.database.attempts import AttemptInput

OWNER = 'owner@example.com'


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def manager(tmp_path, monkeypatch, mailbox):
    monkeypatch.setenv('DATA_DIR', str(tmp_path))
    manager = CLISessionManager("sqlite:///:memory:",
                                token_store=TokenStore(tmp_path / 'tokens.json'),
                                mail_client=mailbox)
    manager.db.initialize_database()
    set_cli_session_manager(manager)
    yield manager
    set_cli_session_manager(None)
    manager.db.engine.dispose()


def record(manager, status, sender='news@shop.com', method='browser', message_id='m1'):
    return manager.attempts.record(OWNER, AttemptInput(
        message_id=message_id, sender=sender, sender_domain=sender.split('@')[1],
        method=method, status=status, unsubscribe_url='https://shop.com/u',
        failure_reason='timeout' if status == 'failed' else None,
    ))


class TestAdminCommands:

    def test_init(self, runner, manager):
        result = runner.invoke(cli, ['init'])

        assert result.exit_code == 0
        assert '✓ Database initialized successfully' in result.output
        assert 'sqlite:///:memory:' in result.output
        assert 'built-in patterns' in result.output

    def test_init_twice_does_not_reseed(self, runner, manager):
        runner.invoke(cli, ['init'])
        result = runner.invoke(cli, ['init'])

        assert result.exit_code == 0
        assert 'Seeded' not in result.output

    def test_export(self, runner, manager):
        manager.allow_list.add(OWNER, 'domain', 'bank.com')

        result = runner.invoke(cli, ['export', OWNER])

        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data['allow_list'][0]['value'] == 'bank.com'

    def test_erase_with_force(self, runner, manager):
        manager.allow_list.add(OWNER, 'domain', 'bank.com')
        manager.token_store.set_token(OWNER, 'secret')

        result = runner.invoke(cli, ['erase', OWNER, '--force'])

        assert result.exit_code == 0
        assert f'✓ Deleted data for {OWNER}' in result.output
        assert 'access_tokens: 1' in result.output
        assert manager.allow_list.list_entries(OWNER) == []
        assert manager.token_store.get_token(OWNER) is None

    def test_erase_nothing_stored(self, runner, manager):
        result = runner.invoke(cli, ['erase', 'nobody@example.com', '--force'])

        assert result.exit_code == 0
        assert 'No data stored for nobody@example.com.' in result.output

    def test_erase_cancelled(self, runner, manager):
        manager.allow_list.add(OWNER, 'domain', 'bank.com')

        result = runner.invoke(cli, ['erase', OWNER], input='n\n')

        assert result.exit_code != 0
        assert 'Cancelled.' in result.output
        assert len(manager.allow_list.list_entries(OWNER)) == 1


class TestTokenCommands:

    def test_store_and_list(self, runner, manager):
        result = runner.invoke(cli, ['token', 'store', OWNER], input='ya29.token\n')

        assert result.exit_code == 0
        assert f'✓ Token stored successfully for {OWNER}' in result.output
        assert manager.token_store.get_token(OWNER) == 'ya29.token'

        result = runner.invoke(cli, ['token', 'list'])
        assert 'Stored tokens for 1 owner:' in result.output
        assert f'  - {OWNER}' in result.output

    def test_list_empty(self, runner, manager):
        result = runner.invoke(cli, ['token', 'list'])

        assert 'No stored tokens.' in result.output

    def test_remove(self, runner, manager):
        manager.token_store.set_token(OWNER, 'secret')

        result = runner.invoke(cli, ['token', 'remove', OWNER, '--force'])
        assert f'✓ Token removed for {OWNER}' in result.output

        result = runner.invoke(cli, ['token', 'remove', OWNER, '--force'])
        assert f'No token stored for {OWNER}.' in result.output


class TestAllowCommands:

    def test_add_guesses_type(self, runner, manager):
        result = runner.invoke(cli, ['allow', 'add', OWNER, 'news@shop.com'])
        assert result.exit_code == 0
        assert '✓ Allowed address news@shop.com' in result.output

        result = runner.invoke(cli, ['allow', 'add', OWNER, 'bank.com', '--notes', 'statements'])
        assert '✓ Allowed domain bank.com' in result.output

        result = runner.invoke(cli, ['allow', 'list', OWNER])
        assert 'news@shop.com' in result.output
        assert 'statements' in result.output

    def test_add_invalid_value(self, runner, manager):
        result = runner.invoke(cli, ['allow', 'add', OWNER, 'not a domain', '--type', 'domain'])

        assert result.exit_code != 0
        assert '✗' in result.output

    def test_remove(self, runner, manager):
        entry = manager.allow_list.add(OWNER, 'domain', 'bank.com')

        result = runner.invoke(cli, ['allow', 'remove', OWNER, str(entry.id)])
        assert result.exit_code == 0

        result = runner.invoke(cli, ['allow', 'remove', OWNER, str(entry.id)])
        assert result.exit_code != 0
        assert f'Allow list entry {entry.id} not found' in result.output

    def test_list_empty(self, runner, manager):
        result = runner.invoke(cli, ['allow', 'list', OWNER])

        assert 'Allow list is empty.' in result.output


class TestSenderCommands:

    def test_flagged_report_and_clear(self, runner, manager):
        tracker = manager.sender_tracker
        tracker.observe(OWNER, 'news@shop.com')
        tracker.mark_unsubscribed(OWNER, 'news@shop.com')

        result = runner.invoke(cli, ['senders', 'flagged', OWNER])
        assert result.exit_code == 0

        result = runner.invoke(cli, ['senders', 'clear', OWNER, 'news@shop.com'])
        assert result.exit_code == 0
        assert '✓ Cleared flag for news@shop.com' in result.output

    def test_clear_unknown_sender(self, runner, manager):
        result = runner.invoke(cli, ['senders', 'clear', OWNER, 'ghost@nowhere.com'])

        assert result.exit_code != 0
        assert 'No tracking record for ghost@nowhere.com' in result.output


class TestAttemptCommands:

    def test_recent_empty(self, runner, manager):
        result = runner.invoke(cli, ['attempts', 'recent', OWNER])

        assert 'No unsubscribe attempts yet.' in result.output

    def test_recent_and_failed(self, runner, manager):
        record(manager, 'failed')
        record(manager, 'success', sender='hi@other.com', method='one_click', message_id='m2')

        result = runner.invoke(cli, ['attempts', 'recent', OWNER])
        assert 'news@shop.com' in result.output
        assert 'hi@other.com' in result.output
        assert 'reason: timeout' in result.output

        result = runner.invoke(cli, ['attempts', 'failed', OWNER])
        assert 'news@shop.com' in result.output
        assert 'hi@other.com' not in result.output

    def test_nothing_failed(self, runner, manager):
        result = runner.invoke(cli, ['attempts', 'failed', OWNER])

        assert '✓ Nothing needs attention' in result.output

    def test_stats(self, runner, manager):
        record(manager, 'success', sender='a@one.com', message_id='m1')
        record(manager, 'success', sender='b@two.com', message_id='m2')
        record(manager, 'failed', sender='c@two.com', message_id='m3')

        result = runner.invoke(cli, ['attempts', 'stats', OWNER, '--domains'])

        assert result.exit_code == 0
        assert 'Success rate: 66.67%' in result.output
        assert 'DOMAIN' in result.output
        assert 'two.com' in result.output

    def test_history(self, runner, manager):
        record(manager, 'failed')

        result = runner.invoke(cli, ['attempts', 'history', OWNER, 'shop.com'])
        assert 'news@shop.com' in result.output

        result = runner.invoke(cli, ['attempts', 'history', OWNER, 'none.com'])
        assert 'No attempts for none.com.' in result.output

    def test_resolve(self, runner, manager):
        row = record(manager, 'failed')

        result = runner.invoke(cli, ['attempts', 'resolve', OWNER, str(row.id)])

        assert result.exit_code == 0
        assert f'✓ Attempt {row.id} marked as resolved' in result.output
        assert manager.attempts.list_recent(OWNER)[0].status == 'success'

    def test_resolve_unknown(self, runner, manager):
        result = runner.invoke(cli, ['attempts', 'resolve', OWNER, '99'])

        assert result.exit_code != 0
        assert 'Attempt 99 not found' in result.output

    def test_retry_manual_attempt_is_refused(self, runner, manager):
        row = record(manager, 'failed', method='manual')

        result = runner.invoke(cli, ['attempts', 'retry', OWNER, str(row.id)])

        assert result.exit_code != 0
        assert 'cannot be retried' in result.output


class TestPatternCommands:

    def test_add_list_delete(self, runner, manager):
        result = runner.invoke(cli, ['patterns', 'add', 'Shop button', 'button_selector', '#unsub',
                                     '--priority', '90'])
        assert result.exit_code == 0
        assert '✓ Added pattern Shop button' in result.output
        pattern_id = next(p.id for p in manager.patterns.get_patterns() if p.name == 'Shop button')

        result = runner.invoke(cli, ['patterns', 'list', '--type', 'button_selector'])
        assert 'Shop button' in result.output
        assert '#unsub' in result.output

        result = runner.invoke(cli, ['patterns', 'delete', str(pattern_id)])
        assert result.exit_code == 0
        assert not any(p.name == 'Shop button' for p in manager.patterns.get_patterns())

    def test_list_empty(self, runner, manager):
        result = runner.invoke(cli, ['patterns', 'list'])

        assert "Run 'init'" in result.output

    def test_builtin_cannot_be_deleted(self, runner, manager):
        manager.patterns.seed_default_patterns()
        builtin = manager.patterns.get_patterns()[0]

        result = runner.invoke(cli, ['patterns', 'delete', str(builtin.id)])

        assert result.exit_code != 0
        assert f'Custom pattern {builtin.id} not found' in result.output

    def test_export_and_import(self, runner, manager, tmp_path):
        manager.patterns.add_pattern('Shop button', 'button_selector', '#unsub')
        path = tmp_path / 'patterns.json'

        result = runner.invoke(cli, ['patterns', 'export', '-o', str(path)])
        assert result.exit_code == 0
        document = json.loads(path.read_text())
        assert [p['name'] for p in document['patterns']] == ['Shop button']

        document['patterns'].append({'name': 'Done', 'type': 'success_text', 'selector': 'all done'})
        path.write_text(json.dumps(document))

        result = runner.invoke(cli, ['patterns', 'import', str(path), '--owner', OWNER])
        assert result.exit_code == 0
        assert '✓ Imported 1 patterns' in result.output
        assert 'Skipped 1' in result.output

    def test_import_rejects_bad_json(self, runner, manager, tmp_path):
        path = tmp_path / 'broken.json'
        path.write_text('{not json')

        result = runner.invoke(cli, ['patterns', 'import', str(path)])

        assert result.exit_code != 0
        assert 'Not valid JSON' in result.output


class TestScanCommand:

    def test_backlog_scan(self, runner, manager, mailbox, make_message):
        mailbox.add(
            make_message('m1', 'News <news@shop.com>', list_unsubscribe='<mailto:unsub@shop.com>'),
            make_message('m2', 'Friend <pal@home.org>'),
        )

        result = runner.invoke(cli, ['scan', OWNER, '-v'])

        assert result.exit_code == 0, result.output
        assert f'Scanning mailbox for {OWNER}...' in result.output
        assert '✓ Backlog scan complete' in result.output
        assert 'Scanned:   2' in result.output
        assert 'Processed: 1' in result.output
        assert 'Skipped:   1' in result.output
        assert 'Backlog:   complete' in result.output
        assert '[success] news@shop.com via mailto' in result.output
        assert mailbox.sent[0]['to'] == 'unsub@shop.com'

    def test_scan_already_running(self, runner, manager):
        with manager.scanner._scan_guard(OWNER):
            result = runner.invoke(cli, ['scan', OWNER])

        assert result.exit_code != 0
        assert 'A scan is already running' in result.output


def test_version(runner):
    result = runner.invoke(cli, ['--version'])

    assert result.exit_code == 0
    assert '1.0.0' in result.output
