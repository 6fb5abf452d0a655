"""
Erasure and export of everything stored for one owner.
"""

from typing import Any, Dict

from sqlalchemy import desc

from .models import (
    AllowListEntry, AuditLogEntry, ProcessedMessage, ScanState,
    SenderTracking, UnsubscribeAttempt
)

# Deletion order; patterns are shared and never owner data
OWNER_TABLES = (
    ScanState,
    ProcessedMessage,
    SenderTracking,
    AllowListEntry,
    UnsubscribeAttempt,
    AuditLogEntry,
)


def delete_all_owner_data(db, owner_id: str, token_store=None) -> Dict[str, Any]:
    """
    Delete every owner-scoped row.

    Returns:
        Dict with 'deleted_tables' (tables that had rows) and
        'rows_deleted' (table name -> count)
    """
    def _delete(session):
        rows_deleted = {}
        for model in OWNER_TABLES:
            count = session.query(model).filter(model.owner_id == owner_id).delete(
                synchronize_session=False
            )
            if count:
                rows_deleted[model.__tablename__] = count
        return rows_deleted

    rows_deleted = db.run(_delete)
    if token_store is not None and token_store.remove_token(owner_id):
        rows_deleted['access_tokens'] = 1

    return {
        'deleted_tables': list(rows_deleted.keys()),
        'rows_deleted': rows_deleted,
    }


def export_owner_data(db, owner_id: str) -> Dict[str, Any]:
    """Everything stored for an owner, in plain data structures."""
    def _export(session):
        history = session.query(UnsubscribeAttempt).filter(
            UnsubscribeAttempt.owner_id == owner_id
        ).order_by(desc(UnsubscribeAttempt.attempted_at)).all()
        allow_list = session.query(AllowListEntry).filter(
            AllowListEntry.owner_id == owner_id
        ).order_by(desc(AllowListEntry.created_at)).all()
        tracking = session.query(SenderTracking).filter(
            SenderTracking.owner_id == owner_id
        ).order_by(desc(SenderTracking.message_count)).all()
        processed = session.query(ProcessedMessage).filter(
            ProcessedMessage.owner_id == owner_id
        ).count()

        return {
            'unsubscribe_history': [
                {
                    'message_id': a.message_id,
                    'sender': a.sender,
                    'sender_domain': a.sender_domain,
                    'unsubscribe_url': a.unsubscribe_url,
                    'method': a.method,
                    'status': a.status,
                    'failure_reason': a.failure_reason,
                    'attempted_at': a.attempted_at,
                    'completed_at': a.completed_at,
                }
                for a in history
            ],
            'allow_list': [
                {'type': e.type, 'value': e.value, 'notes': e.notes, 'created_at': e.created_at}
                for e in allow_list
            ],
            'sender_tracking': [
                {
                    'sender': t.sender,
                    'sender_domain': t.sender_domain,
                    'message_count': t.message_count,
                    'unsubscribed_at': t.unsubscribed_at,
                }
                for t in tracking
            ],
            'processed_messages': processed,
        }

    return db.run(_export)
