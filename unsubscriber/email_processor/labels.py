"""
Mailbox labels that record unsubscribe outcomes on the source message.
"""

import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)

PARENT_LABEL = 'Unsubscribed'
LABEL_SUCCESS = 'Unsubscribed/Success'
LABEL_FAILED = 'Unsubscribed/Failed'
LABEL_PENDING = 'Unsubscribed/Pending'
OUTCOME_LABELS = (LABEL_SUCCESS, LABEL_FAILED, LABEL_PENDING)


class LabelCache:
    """Label name -> id per owner. Invalidated whenever labels are created."""

    def __init__(self):
        self._labels: Dict[str, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def get(self, owner_id: str) -> Optional[Dict[str, str]]:
        with self._lock:
            labels = self._labels.get(owner_id)
            return dict(labels) if labels is not None else None

    def store(self, owner_id: str, labels: Dict[str, str]):
        with self._lock:
            self._labels[owner_id] = dict(labels)

    def invalidate(self, owner_id: str):
        with self._lock:
            self._labels.pop(owner_id, None)

    def clear(self):
        with self._lock:
            self._labels.clear()


class LabelManager:
    """Applies outcome labels through the mailbox provider."""

    def __init__(self, client, cache: Optional[LabelCache] = None):
        self.client = client
        self.cache = cache if cache is not None else LabelCache()

    def ensure_labels(self, owner_id: str) -> Dict[str, str]:
        """Create any missing outcome labels and return name -> id."""
        cached = self.cache.get(owner_id)
        if cached is not None:
            return cached

        existing = {label['name']: label['id'] for label in self.client.list_labels(owner_id)}
        for name in (PARENT_LABEL,) + OUTCOME_LABELS:
            if name not in existing:
                created = self.client.create_label(owner_id, name)
                self.cache.invalidate(owner_id)
                existing[name] = created['id']
                logger.info("Created label %s for %s", name, owner_id)

        self.cache.store(owner_id, existing)
        return existing

    def _label_id(self, owner_id: str, name: str) -> str:
        labels = self.ensure_labels(owner_id)
        if name not in labels:
            # Label deleted behind our back
            self.cache.invalidate(owner_id)
            labels = self.ensure_labels(owner_id)
        return labels[name]

    def label_success(self, owner_id: str, message_id: str):
        self.client.modify_message_labels(
            owner_id, message_id,
            [self._label_id(owner_id, LABEL_SUCCESS)],
            [self._label_id(owner_id, LABEL_FAILED), self._label_id(owner_id, LABEL_PENDING)],
        )

    def label_failed(self, owner_id: str, message_id: str):
        self.client.modify_message_labels(
            owner_id, message_id,
            [self._label_id(owner_id, LABEL_FAILED)],
            [self._label_id(owner_id, LABEL_SUCCESS), self._label_id(owner_id, LABEL_PENDING)],
        )

    def label_pending(self, owner_id: str, message_id: str):
        self.client.modify_message_labels(owner_id, message_id,
                                          [self._label_id(owner_id, LABEL_PENDING)], [])

    def archive_and_label_success(self, owner_id: str, message_id: str):
        self.label_success(owner_id, message_id)
        self.client.archive_message(owner_id, message_id)
