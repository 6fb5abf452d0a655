"""
Scan state and processed-message bookkeeping.
"""

from typing import Any, Dict, Iterable, Set

from sqlalchemy.exc import IntegrityError

from .models import ProcessedMessage, ScanState, utcnow

UPDATABLE_FIELDS = (
    'last_sync_cursor',
    'last_message_id',
    'backlog_page_token',
    'last_scan_at',
    'messages_scanned',
    'messages_processed',
    'is_backlog_complete',
)


def _get_or_create(session, owner_id: str) -> ScanState:
    state = session.query(ScanState).filter_by(owner_id=owner_id).first()
    if state is None:
        state = ScanState(
            owner_id=owner_id,
            messages_scanned=0,
            messages_processed=0,
            is_backlog_complete=False,
        )
        session.add(state)
        session.flush()
    return state


class ScanStateStore:
    """Persists each owner's scan cursor and the set of finished messages."""

    def __init__(self, db):
        self.db = db

    def get_state(self, owner_id: str) -> ScanState:
        """Return the owner's state, creating a fresh row on first access."""
        return self.db.run(_get_or_create, owner_id)

    def update_state(self, owner_id: str, updates: Dict[str, Any]) -> ScanState:
        """
        Apply a partial update.

        Only keys present in ``updates`` are written; everything else keeps
        its stored value. Passing ``None`` for a present key clears it, which
        is how an expired sync cursor is dropped.
        """
        unknown = set(updates) - set(UPDATABLE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown scan state fields: {', '.join(sorted(unknown))}")

        def _update(session):
            state = _get_or_create(session, owner_id)
            for key, value in updates.items():
                setattr(state, key, value)
            state.updated_at = utcnow()
            return state

        return self.db.run(_update)

    def increment_counters(self, owner_id: str, scanned: int, processed: int) -> ScanState:
        """Add to the running totals and stamp ``last_scan_at``."""
        def _increment(session):
            state = _get_or_create(session, owner_id)
            session.query(ScanState).filter_by(id=state.id).update({
                ScanState.messages_scanned: ScanState.messages_scanned + scanned,
                ScanState.messages_processed: ScanState.messages_processed + processed,
                ScanState.last_scan_at: utcnow(),
                ScanState.updated_at: utcnow(),
            }, synchronize_session=False)
            session.refresh(state)
            return state

        return self.db.run(_increment)

    def is_processed(self, owner_id: str, message_id: str) -> bool:
        return self.db.run(lambda session: session.query(ProcessedMessage.id).filter_by(
            owner_id=owner_id, message_id=message_id
        ).first() is not None)

    def get_processed_ids(self, owner_id: str, message_ids: Iterable[str]) -> Set[str]:
        """Subset of ``message_ids`` already marked processed."""
        ids = list(message_ids)
        if not ids:
            return set()

        def _query(session):
            rows = session.query(ProcessedMessage.message_id).filter(
                ProcessedMessage.owner_id == owner_id,
                ProcessedMessage.message_id.in_(ids)
            ).all()
            return {row.message_id for row in rows}

        return self.db.run(_query)

    def mark_processed(self, owner_id: str, message_id: str):
        """Record a message as finished. Marking twice is a no-op."""
        def _insert(session):
            exists = session.query(ProcessedMessage.id).filter_by(
                owner_id=owner_id, message_id=message_id
            ).first()
            if exists is None:
                session.add(ProcessedMessage(owner_id=owner_id, message_id=message_id))
                session.flush()

        try:
            self.db.run(_insert)
        except IntegrityError:
            # Lost a race with a concurrent insert of the same pair
            pass

    def count_processed(self, owner_id: str) -> int:
        return self.db.run(lambda session: session.query(ProcessedMessage).filter_by(
            owner_id=owner_id
        ).count())
