"""
Tests for outcome labels.
"""

from unsubscriber.email_processor.labels import (
    LABEL_FAILED, LABEL_PENDING, LABEL_SUCCESS, PARENT_LABEL, LabelCache, LabelManager
)


class TestLabelManager:

    def test_creates_missing_labels_once(self, mailbox, owner):
        mailbox.labels['Unsubscribed'] = 'Label_existing'
        manager = LabelManager(mailbox, LabelCache())

        first = manager.ensure_labels(owner)
        created = dict(mailbox.labels)
        second = manager.ensure_labels(owner)

        assert first == second
        assert first[PARENT_LABEL] == 'Label_existing'
        assert set(created) == {PARENT_LABEL, LABEL_SUCCESS, LABEL_FAILED, LABEL_PENDING}
        assert mailbox.labels == created

    def test_label_pending(self, mailbox, owner):
        manager = LabelManager(mailbox)

        manager.label_pending(owner, 'm1')

        assert mailbox.modified == [('m1', [mailbox.labels[LABEL_PENDING]], [])]

    def test_label_deleted_behind_cache(self, mailbox, owner):
        cache = LabelCache()
        manager = LabelManager(mailbox, cache)
        manager.ensure_labels(owner)
        cache.store(owner, {PARENT_LABEL: 'x'})

        manager.label_failed(owner, 'm1')

        assert mailbox.modified[0][1] == [mailbox.labels[LABEL_FAILED]]


class TestLabelCache:

    def test_owner_scoped(self):
        cache = LabelCache()
        cache.store('a', {'x': '1'})

        assert cache.get('a') == {'x': '1'}
        assert cache.get('b') is None

        cache.invalidate('a')
        assert cache.get('a') is None

    def test_returns_copies(self):
        cache = LabelCache()
        cache.store('a', {'x': '1'})

        cache.get('a')['x'] = 'changed'

        assert cache.get('a') == {'x': '1'}
