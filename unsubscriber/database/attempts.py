"""
Attempt tracker: records unsubscribe attempts and aggregates outcomes.

Read views that summarize senders (recent, failed, stats) only consider the
latest attempt per sender, so a sender that failed once and later succeeded
counts as a success.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import case, desc, func

from ..exceptions import AttemptNotFoundError
from .models import UnsubscribeAttempt, ATTEMPT_METHODS, ATTEMPT_STATUSES, utcnow

logger = logging.getLogger(__name__)

FAILURE_REASONS = (
    'timeout',
    'no_button_found',
    'navigation_error',
    'form_error',
    'captcha_detected',
    'login_required',
    'network_error',
    'invalid_url',
    'unknown',
)

DETAIL_FIELDS = ('failure_reason', 'failure_details', 'screenshot_path', 'trace_path')


@dataclass(frozen=True)
class AttemptInput:
    """Data needed to record one unsubscribe attempt."""

    message_id: str
    sender: str
    sender_domain: str
    method: str
    status: str
    unsubscribe_url: Optional[str] = None
    failure_reason: Optional[str] = None
    failure_details: Optional[str] = None
    screenshot_path: Optional[str] = None
    trace_path: Optional[str] = None


def _check_status(status: str):
    if status not in ATTEMPT_STATUSES:
        raise ValueError(f"Invalid attempt status: {status}")


def _check_failure_reason(reason: Optional[str]):
    if reason is not None and reason not in FAILURE_REASONS:
        raise ValueError(f"Invalid failure reason: {reason}")


class AttemptTracker:
    """Owner-scoped unsubscribe attempt history."""

    def __init__(self, db, scan_state, sender_tracker, labeler=None, audit=None):
        """
        Args:
            db: DatabaseManager
            scan_state: ScanStateStore used to mark messages processed
            sender_tracker: SenderTracker notified on success
            labeler: optional mailbox labeler (archive on success, label on failure)
            audit: optional AuditLogger
        """
        self.db = db
        self.scan_state = scan_state
        self.sender_tracker = sender_tracker
        self.labeler = labeler
        self.audit = audit

    def record(self, owner_id: str, attempt: AttemptInput) -> UnsubscribeAttempt:
        """
        Insert an attempt and apply its side effects.

        Success marks the sender unsubscribed and archives the message;
        failure labels it. Labeling problems are logged, not raised. The
        message is marked processed whatever the outcome.
        """
        _check_status(attempt.status)
        _check_failure_reason(attempt.failure_reason)
        if attempt.method not in ATTEMPT_METHODS:
            raise ValueError(f"Invalid attempt method: {attempt.method}")

        def _insert(session):
            row = UnsubscribeAttempt(
                owner_id=owner_id,
                message_id=attempt.message_id,
                sender=attempt.sender,
                sender_domain=attempt.sender_domain,
                unsubscribe_url=attempt.unsubscribe_url,
                method=attempt.method,
                status=attempt.status,
                failure_reason=attempt.failure_reason,
                failure_details=attempt.failure_details,
                screenshot_path=attempt.screenshot_path,
                trace_path=attempt.trace_path,
                attempted_at=utcnow(),
                completed_at=utcnow() if attempt.status != 'pending' else None,
                retry_count=0,
            )
            session.add(row)
            session.flush()
            return row

        row = self.db.run(_insert)

        if self.audit:
            self.audit.log(owner_id, 'unsubscribe_attempt', {
                'attempt_id': row.id, 'sender': row.sender,
                'method': row.method, 'status': row.status,
            })

        self.apply_outcome(owner_id, attempt.message_id, attempt.sender, attempt.status,
                           attempt_id=row.id)
        self.scan_state.mark_processed(owner_id, attempt.message_id)
        return row

    def apply_outcome(self, owner_id: str, message_id: str, sender: str, status: str,
                      attempt_id: Optional[int] = None):
        """Sender tracking and labeling side effects for a terminal status."""
        if status == 'success':
            self.sender_tracker.mark_unsubscribed(owner_id, sender)
            if self.audit:
                self.audit.log(owner_id, 'unsubscribe_success',
                               {'attempt_id': attempt_id, 'sender': sender})
            if self.labeler is not None and message_id:
                try:
                    self.labeler.archive_and_label_success(owner_id, message_id)
                except Exception as e:
                    logger.error("Failed to label/archive message %s: %s", message_id, e)
        elif status == 'failed':
            if self.audit:
                self.audit.log(owner_id, 'unsubscribe_failed',
                               {'attempt_id': attempt_id, 'sender': sender})
            if self.labeler is not None and message_id:
                try:
                    self.labeler.label_failed(owner_id, message_id)
                except Exception as e:
                    logger.error("Failed to label message %s: %s", message_id, e)

    def get_by_id(self, owner_id: str, attempt_id: int) -> Optional[UnsubscribeAttempt]:
        return self.db.run(lambda session: session.query(UnsubscribeAttempt).filter_by(
            id=attempt_id, owner_id=owner_id
        ).first())

    def _latest_per_sender(self, session, owner_id: str):
        ranked = session.query(
            UnsubscribeAttempt.id.label('id'),
            func.row_number().over(
                partition_by=UnsubscribeAttempt.sender,
                order_by=(desc(UnsubscribeAttempt.attempted_at), desc(UnsubscribeAttempt.id)),
            ).label('rank'),
        ).filter(UnsubscribeAttempt.owner_id == owner_id).subquery()

        return session.query(UnsubscribeAttempt).join(
            ranked, UnsubscribeAttempt.id == ranked.c.id
        ).filter(ranked.c.rank == 1)

    def list_recent(self, owner_id: str, limit: int = 20) -> List[UnsubscribeAttempt]:
        """Latest attempt for each sender, newest first."""
        return self.db.run(lambda session: self._latest_per_sender(session, owner_id).order_by(
            desc(UnsubscribeAttempt.attempted_at), desc(UnsubscribeAttempt.id)
        ).limit(limit).all())

    def list_failed_or_uncertain(self, owner_id: str, limit: int = 50,
                                 offset: int = 0) -> List[UnsubscribeAttempt]:
        """Senders whose latest attempt failed or is uncertain, newest first."""
        return self.db.run(lambda session: self._latest_per_sender(session, owner_id).filter(
            UnsubscribeAttempt.status.in_(('failed', 'uncertain'))
        ).order_by(
            desc(UnsubscribeAttempt.attempted_at), desc(UnsubscribeAttempt.id)
        ).offset(offset).limit(limit).all())

    def _require(self, session, owner_id: str, attempt_id: int) -> UnsubscribeAttempt:
        row = session.query(UnsubscribeAttempt).filter_by(id=attempt_id, owner_id=owner_id).first()
        if row is None:
            raise AttemptNotFoundError(attempt_id)
        return row

    def mark_resolved(self, owner_id: str, attempt_id: int) -> UnsubscribeAttempt:
        """Force an attempt to success after manual confirmation."""
        def _resolve(session):
            row = self._require(session, owner_id, attempt_id)
            row.status = 'success'
            row.completed_at = utcnow()
            return row

        return self.db.run(_resolve)

    def increment_retry(self, owner_id: str, attempt_id: int) -> int:
        """Bump the retry counter and put the attempt back to pending."""
        def _increment(session):
            row = self._require(session, owner_id, attempt_id)
            row.retry_count = (row.retry_count or 0) + 1
            row.status = 'pending'
            row.completed_at = None
            return row.retry_count

        return self.db.run(_increment)

    def update_status(self, owner_id: str, attempt_id: int, status: str,
                      details: Optional[Dict[str, Any]] = None) -> UnsubscribeAttempt:
        """
        Set the status and overwrite only the detail fields that have a value.

        ``completed_at`` is stamped for any status other than pending.
        """
        _check_status(status)
        details = details or {}
        unknown = set(details) - set(DETAIL_FIELDS)
        if unknown:
            raise ValueError(f"Unknown attempt fields: {', '.join(sorted(unknown))}")
        _check_failure_reason(details.get('failure_reason'))

        def _update(session):
            row = self._require(session, owner_id, attempt_id)
            row.status = status
            for key, value in details.items():
                if value is not None:
                    setattr(row, key, value)
            row.completed_at = utcnow() if status != 'pending' else None
            return row

        return self.db.run(_update)

    def compute_stats(self, owner_id: str) -> Dict[str, Any]:
        """Status counts over each sender's latest attempt plus a success rate."""
        def _count(session):
            latest = self._latest_per_sender(session, owner_id).subquery()
            return session.query(latest.c.status, func.count()).group_by(latest.c.status).all()

        stats = {
            'total': 0,
            'success': 0,
            'failed': 0,
            'uncertain': 0,
            'pending': 0,
            'success_rate': 0.0,
        }
        for status, count in self.db.run(_count):
            stats['total'] += count
            if status in stats:
                stats[status] = count

        if stats['total'] > 0:
            stats['success_rate'] = round(stats['success'] / stats['total'] * 100, 2)
        return stats

    def history_by_domain(self, owner_id: str, domain: str) -> List[UnsubscribeAttempt]:
        """Every attempt against a sender domain, newest first."""
        return self.db.run(lambda session: session.query(UnsubscribeAttempt).filter(
            UnsubscribeAttempt.owner_id == owner_id,
            UnsubscribeAttempt.sender_domain == domain.lower()
        ).order_by(desc(UnsubscribeAttempt.attempted_at), desc(UnsubscribeAttempt.id)).all())

    def domain_stats(self, owner_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """Attempt counts per domain, busiest first. Uncertain counts as failed."""
        def _query(session):
            success = func.sum(case((UnsubscribeAttempt.status == 'success', 1), else_=0))
            failed = func.sum(case((UnsubscribeAttempt.status.in_(('failed', 'uncertain')), 1), else_=0))
            rows = session.query(
                UnsubscribeAttempt.sender_domain,
                func.count(UnsubscribeAttempt.id).label('total'),
                success.label('success'),
                failed.label('failed'),
            ).filter(
                UnsubscribeAttempt.owner_id == owner_id
            ).group_by(UnsubscribeAttempt.sender_domain).order_by(
                desc('total'), UnsubscribeAttempt.sender_domain
            ).limit(limit).all()
            return [
                {
                    'domain': row.sender_domain,
                    'total': row.total,
                    'success': int(row.success or 0),
                    'failed': int(row.failed or 0),
                }
                for row in rows
            ]

        return self.db.run(_query)
