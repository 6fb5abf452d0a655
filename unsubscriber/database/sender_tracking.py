"""
Sender tracking for detecting unsubscribes that did not take effect.

A sender moves through three states: tracking (never unsubscribed),
unsubscribed within the grace period, and unsubscribed past the grace
period. Mail observed in the last state flags the sender as ineffective.
"""

from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy import desc

from ..email_processor.unsubscribe.extractors import extract_domain, normalize_address
from .models import SenderTracking, utcnow

DEFAULT_GRACE_PERIOD_HOURS = 24


class SenderTracker:
    """Maintains per-sender tracking rows for an owner."""

    def __init__(self, db, grace_period_hours: int = DEFAULT_GRACE_PERIOD_HOURS,
                 clock: Callable[[], datetime] = utcnow):
        self.db = db
        self.grace_period = timedelta(hours=grace_period_hours)
        self.clock = clock

    def _get_or_create(self, session, owner_id: str, sender: str, now: datetime):
        record = session.query(SenderTracking).filter_by(owner_id=owner_id, sender=sender).first()
        created = record is None
        if created:
            record = SenderTracking(
                owner_id=owner_id,
                sender=sender,
                sender_domain=extract_domain(sender),
                first_seen_at=now,
                last_seen_at=now,
                message_count=0,
                emails_after_unsubscribe=0,
                flagged_ineffective=False,
            )
            session.add(record)
        return record, created

    def observe(self, owner_id: str, sender_address: str) -> SenderTracking:
        """
        Record one observed message from a sender.

        Raises:
            InvalidAddressError: if the address has no domain
        """
        sender = normalize_address(sender_address)
        now = self.clock()

        def _observe(session):
            record, _ = self._get_or_create(session, owner_id, sender, now)
            record.record_observation(now, self.grace_period)
            session.flush()
            return record

        return self.db.run(_observe)

    def mark_unsubscribed(self, owner_id: str, sender_address: str) -> SenderTracking:
        """Start (or restart) the grace period for a sender."""
        sender = normalize_address(sender_address)
        now = self.clock()

        def _mark(session):
            record, created = self._get_or_create(session, owner_id, sender, now)
            if created:
                record.message_count = 0
            record.mark_unsubscribed(now)
            session.flush()
            return record

        return self.db.run(_mark)

    def get(self, owner_id: str, sender_address: str) -> Optional[SenderTracking]:
        sender = normalize_address(sender_address)
        return self.db.run(lambda session: session.query(SenderTracking).filter_by(
            owner_id=owner_id, sender=sender
        ).first())

    def list_flagged(self, owner_id: str) -> List[SenderTracking]:
        """Senders flagged as ineffective, most recently flagged first."""
        return self.db.run(lambda session: session.query(SenderTracking).filter(
            SenderTracking.owner_id == owner_id,
            SenderTracking.flagged_ineffective.is_(True)
        ).order_by(desc(SenderTracking.flagged_at), desc(SenderTracking.id)).all())

    def clear_flag(self, owner_id: str, sender_address: str) -> bool:
        """
        Reset the ineffective flag and its counter.

        The unsubscribe timestamp is left alone. Returns False if the sender
        is not tracked.
        """
        sender = normalize_address(sender_address)

        def _clear(session):
            record = session.query(SenderTracking).filter_by(owner_id=owner_id, sender=sender).first()
            if record is None:
                return False
            record.clear_flag()
            return True

        return self.db.run(_clear)


def generate_flagged_report(tracker: SenderTracker, owner_id: str) -> str:
    """Generate a formatted report of senders that ignored an unsubscribe."""
    flagged = tracker.list_flagged(owner_id)

    report = []
    report.append("=== INEFFECTIVE UNSUBSCRIBE REPORT ===\n")

    report.append("Summary:")
    report.append(f"  Flagged senders: {len(flagged)}")
    report.append(f"  Emails after unsubscribe: {sum(r.emails_after_unsubscribe for r in flagged)}")

    if flagged:
        report.append("\nFlagged Senders:")
        for i, record in enumerate(flagged, 1):
            report.append(f"  {i}. {record.sender} ({record.sender_domain})")
            report.append(f"     Unsubscribed: {record.unsubscribed_at}")
            report.append(f"     First flagged: {record.flagged_at}")
            report.append(f"     Emails since unsubscribe: {record.emails_after_unsubscribe}")

    return "\n".join(report)
