"""
Audit trail of domain events.

Writes are fire-and-forget: a failed insert is logged and never propagates
to the operation that triggered it.
"""

import json
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError

from .models import AuditLogEntry

logger = logging.getLogger(__name__)

AUDIT_ACTIONS = (
    'unsubscribe_attempt',
    'unsubscribe_success',
    'unsubscribe_failed',
    'allowlist_add',
    'allowlist_remove',
    'scan_started',
    'scan_completed',
    'pattern_imported',
    'pattern_exported',
)


class AuditLogger:
    """Records domain events for an owner."""

    def __init__(self, db):
        self.db = db

    def log(self, owner_id: str, action: str, details: Optional[Dict[str, Any]] = None):
        if action not in AUDIT_ACTIONS:
            logger.warning("Unknown audit action %s", action)

        def _insert(session):
            session.add(AuditLogEntry(
                owner_id=owner_id,
                action=action,
                details=json.dumps(details, default=str) if details else None,
            ))

        try:
            self.db.run(_insert)
        except SQLAlchemyError as e:
            logger.error("Failed to write audit event %s for %s: %s", action, owner_id, e)

    def recent(self, owner_id: str, action: Optional[str] = None,
               limit: int = 100, offset: int = 0) -> List[Dict[str, Any]]:
        """Newest audit events first, optionally filtered by action."""
        def _query(session):
            query = session.query(AuditLogEntry).filter(AuditLogEntry.owner_id == owner_id)
            if action:
                query = query.filter(AuditLogEntry.action == action)
            rows = query.order_by(desc(AuditLogEntry.created_at), desc(AuditLogEntry.id)) \
                .offset(offset).limit(limit).all()
            return [
                {
                    'id': row.id,
                    'action': row.action,
                    'details': json.loads(row.details) if row.details else None,
                    'created_at': row.created_at,
                }
                for row in rows
            ]

        return self.db.run(_query)
