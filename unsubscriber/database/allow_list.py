"""
Allow list: senders and domains that are never unsubscribed from.
"""

from typing import List, Optional

from sqlalchemy import and_, or_

from ..exceptions import AllowListValidationError
from .models import AllowListEntry, ALLOW_LIST_TYPES


def _normalize(value: str) -> str:
    return value.lower().strip()


class AllowList:
    """Owner-scoped allow list backed by the allow_list table."""

    def __init__(self, db, audit=None):
        self.db = db
        self.audit = audit

    def is_allowed(self, owner_id: str, address: str) -> bool:
        """True if the address or its domain is on the owner's allow list."""
        normalized = _normalize(address)
        domain = normalized.rsplit('@', 1)[1] if '@' in normalized else None

        def _query(session):
            conditions = [and_(AllowListEntry.type == 'address', AllowListEntry.value == normalized)]
            if domain:
                conditions.append(and_(AllowListEntry.type == 'domain', AllowListEntry.value == domain))
            entry = session.query(AllowListEntry.id).filter(
                AllowListEntry.owner_id == owner_id,
                or_(*conditions)
            ).first()
            return entry is not None

        return self.db.run(_query)

    def _validate(self, entry_type: str, value: str) -> str:
        if entry_type not in ALLOW_LIST_TYPES:
            raise AllowListValidationError(
                f"Type must be one of: {', '.join(ALLOW_LIST_TYPES)}",
                {'type': entry_type}
            )
        normalized = _normalize(value or '')
        if not normalized:
            raise AllowListValidationError("Value is required", {'type': entry_type})
        if entry_type == 'address' and '@' not in normalized:
            raise AllowListValidationError("Address entries need an @", {'value': normalized})
        if entry_type == 'domain':
            normalized = normalized.lstrip('@')
            if '@' in normalized or '.' not in normalized:
                raise AllowListValidationError("Invalid domain", {'value': normalized})
        return normalized

    def add(self, owner_id: str, entry_type: str, value: str,
            notes: Optional[str] = None) -> AllowListEntry:
        """
        Add an entry, or update an existing one.

        Existing notes are kept when ``notes`` is None.

        Raises:
            AllowListValidationError: if the type or value is malformed
        """
        normalized = self._validate(entry_type, value)

        def _upsert(session):
            entry = session.query(AllowListEntry).filter_by(
                owner_id=owner_id, type=entry_type, value=normalized
            ).first()
            if entry is None:
                entry = AllowListEntry(owner_id=owner_id, type=entry_type,
                                       value=normalized, notes=notes)
                session.add(entry)
            elif notes is not None:
                entry.notes = notes
            session.flush()
            return entry

        entry = self.db.run(_upsert)
        if self.audit:
            self.audit.log(owner_id, 'allowlist_add', {'type': entry_type, 'value': normalized})
        return entry

    def remove(self, owner_id: str, entry_id: int) -> bool:
        """Remove an entry by id. Returns False if it did not exist."""
        def _delete(session):
            entry = session.query(AllowListEntry).filter_by(id=entry_id, owner_id=owner_id).first()
            if entry is None:
                return None
            removed = {'type': entry.type, 'value': entry.value}
            session.delete(entry)
            return removed

        removed = self.db.run(_delete)
        if removed is None:
            return False
        if self.audit:
            self.audit.log(owner_id, 'allowlist_remove', removed)
        return True

    def remove_value(self, owner_id: str, entry_type: str, value: str) -> bool:
        """Remove an entry by type and value."""
        normalized = self._validate(entry_type, value)
        entry = self.db.run(lambda session: session.query(AllowListEntry.id).filter_by(
            owner_id=owner_id, type=entry_type, value=normalized
        ).scalar())
        if entry is None:
            return False
        return self.remove(owner_id, entry)

    def list_entries(self, owner_id: str) -> List[AllowListEntry]:
        """All entries for an owner ordered by type then value."""
        return self.db.run(lambda session: session.query(AllowListEntry).filter(
            AllowListEntry.owner_id == owner_id
        ).order_by(AllowListEntry.type, AllowListEntry.value).all())

    def find(self, owner_id: str, value: str) -> Optional[AllowListEntry]:
        """Look up an entry of either type by value."""
        normalized = _normalize(value)
        return self.db.run(lambda session: session.query(AllowListEntry).filter_by(
            owner_id=owner_id, value=normalized
        ).first())
