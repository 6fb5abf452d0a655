"""
Database models for the unsubscribe pipeline.

All owner-scoped tables carry an ``owner_id`` column holding the mailbox
identity. Patterns are shared across owners. Timestamps are naive UTC.
"""

from datetime import datetime, timedelta, timezone
from sqlalchemy import (
    Column, Integer, String, DateTime, Text, Boolean,
    create_engine, Index, UniqueConstraint
)
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import StaticPool

Base = declarative_base()

ALLOW_LIST_TYPES = ('address', 'domain')
ATTEMPT_METHODS = ('one_click', 'mailto', 'browser', 'manual')
ATTEMPT_STATUSES = ('pending', 'success', 'failed', 'uncertain')
PATTERN_TYPES = ('button_selector', 'form_selector', 'success_text', 'error_text', 'preference_center')


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching the stored columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ScanState(Base):
    """Resumable scan cursor, one row per owner."""
    __tablename__ = 'scan_state'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(255), nullable=False, unique=True)
    last_sync_cursor = Column(String(255))  # provider history id
    last_message_id = Column(String(255))
    backlog_page_token = Column(String(255))  # listing page where the next backlog run resumes
    last_scan_at = Column(DateTime)
    messages_scanned = Column(Integer, default=0, nullable=False)
    messages_processed = Column(Integer, default=0, nullable=False)
    is_backlog_complete = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<ScanState(owner='{self.owner_id}', backlog_complete={self.is_backlog_complete})>"


class ProcessedMessage(Base):
    """Marks a mailbox message as finished so the scanner never revisits it."""
    __tablename__ = 'processed_messages'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(255), nullable=False)
    message_id = Column(String(255), nullable=False)
    processed_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('owner_id', 'message_id', name='uq_processed_owner_message'),
    )

    def __repr__(self):
        return f"<ProcessedMessage(owner='{self.owner_id}', message_id='{self.message_id}')>"


class AllowListEntry(Base):
    """Sender address or domain that must never be unsubscribed from."""
    __tablename__ = 'allow_list'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(255), nullable=False)
    type = Column(String(20), nullable=False)  # address, domain
    value = Column(String(255), nullable=False)
    notes = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('owner_id', 'type', 'value', name='uq_allow_list_owner_type_value'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'type': self.type,
            'value': self.value,
            'notes': self.notes,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<AllowListEntry(type='{self.type}', value='{self.value}')>"


class SenderTracking(Base):
    """Per-sender counters used to spot senders that ignore unsubscribes."""
    __tablename__ = 'sender_tracking'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(255), nullable=False)
    sender = Column(String(255), nullable=False)
    sender_domain = Column(String(255), nullable=False)
    first_seen_at = Column(DateTime, default=utcnow)
    last_seen_at = Column(DateTime, default=utcnow)
    message_count = Column(Integer, default=0, nullable=False)
    unsubscribed_at = Column(DateTime)
    emails_after_unsubscribe = Column(Integer, default=0, nullable=False)
    last_email_after_unsubscribe_at = Column(DateTime)
    flagged_ineffective = Column(Boolean, default=False, nullable=False)
    flagged_at = Column(DateTime)

    __table_args__ = (
        UniqueConstraint('owner_id', 'sender', name='uq_sender_tracking_owner_sender'),
        Index('idx_sender_tracking_flagged', 'owner_id', 'flagged_ineffective'),
    )

    def is_in_grace_period(self, now: datetime, grace_period: timedelta) -> bool:
        """True while an unsubscribed sender is still inside its grace window."""
        return (self.unsubscribed_at is not None and
                now <= self.unsubscribed_at + grace_period)

    def record_observation(self, now: datetime, grace_period: timedelta):
        """Apply one observed message to the tracking state."""
        self.message_count = (self.message_count or 0) + 1
        self.last_seen_at = now
        if self.unsubscribed_at is None or self.is_in_grace_period(now, grace_period):
            return

        # Grace period expired: the sender is still mailing after unsubscribe
        self.emails_after_unsubscribe = (self.emails_after_unsubscribe or 0) + 1
        self.last_email_after_unsubscribe_at = now
        self.flagged_ineffective = True
        if self.flagged_at is None:
            self.flagged_at = now

    def mark_unsubscribed(self, now: datetime):
        """Restart the grace period after a successful unsubscribe."""
        self.unsubscribed_at = now
        self.emails_after_unsubscribe = 0
        self.flagged_ineffective = False
        self.flagged_at = None

    def clear_flag(self):
        """Reset the ineffective flag, keeping the unsubscribe timestamp."""
        self.flagged_ineffective = False
        self.flagged_at = None
        self.emails_after_unsubscribe = 0

    def to_dict(self):
        return {
            'sender': self.sender,
            'sender_domain': self.sender_domain,
            'first_seen_at': self.first_seen_at,
            'last_seen_at': self.last_seen_at,
            'message_count': self.message_count,
            'unsubscribed_at': self.unsubscribed_at,
            'emails_after_unsubscribe': self.emails_after_unsubscribe,
            'last_email_after_unsubscribe_at': self.last_email_after_unsubscribe_at,
            'flagged_ineffective': self.flagged_ineffective,
            'flagged_at': self.flagged_at,
        }

    def __repr__(self):
        return f"<SenderTracking(sender='{self.sender}', flagged={self.flagged_ineffective})>"


class UnsubscribeAttempt(Base):
    """One unsubscribe execution and its outcome. Retries overwrite the same row."""
    __tablename__ = 'unsubscribe_attempts'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(255), nullable=False)
    message_id = Column(String(255))
    sender = Column(String(255), nullable=False)
    sender_domain = Column(String(255), nullable=False)
    unsubscribe_url = Column(Text)
    method = Column(String(20), nullable=False)  # one_click, mailto, browser, manual
    status = Column(String(20), nullable=False)  # pending, success, failed, uncertain
    failure_reason = Column(String(50))
    failure_details = Column(Text)
    screenshot_path = Column(Text)
    trace_path = Column(Text)
    attempted_at = Column(DateTime, default=utcnow)
    completed_at = Column(DateTime)
    retry_count = Column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index('idx_attempts_owner_sender', 'owner_id', 'sender', 'attempted_at'),
        Index('idx_attempts_owner_status', 'owner_id', 'status'),
        Index('idx_attempts_owner_domain', 'owner_id', 'sender_domain'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'message_id': self.message_id,
            'sender': self.sender,
            'sender_domain': self.sender_domain,
            'unsubscribe_url': self.unsubscribe_url,
            'method': self.method,
            'status': self.status,
            'failure_reason': self.failure_reason,
            'failure_details': self.failure_details,
            'screenshot_path': self.screenshot_path,
            'trace_path': self.trace_path,
            'attempted_at': self.attempted_at,
            'completed_at': self.completed_at,
            'retry_count': self.retry_count,
        }

    def __repr__(self):
        return f"<UnsubscribeAttempt(id={self.id}, sender='{self.sender}', status='{self.status}')>"


class Pattern(Base):
    """Browser automation rule: a selector or page text with a learned ranking."""
    __tablename__ = 'patterns'

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    type = Column(String(50), nullable=False)
    selector = Column(Text, nullable=False)
    priority = Column(Integer, default=0, nullable=False)
    match_count = Column(Integer, default=0, nullable=False)
    last_matched_at = Column(DateTime)
    is_builtin = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint('name', 'type', name='uq_pattern_name_type'),
        Index('idx_pattern_ranking', 'type', 'priority', 'match_count'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'type': self.type,
            'selector': self.selector,
            'priority': self.priority,
            'match_count': self.match_count,
            'last_matched_at': self.last_matched_at,
            'is_builtin': self.is_builtin,
        }

    def __repr__(self):
        return f"<Pattern(name='{self.name}', type='{self.type}', priority={self.priority})>"


class AuditLogEntry(Base):
    """Domain event written by the audit logger."""
    __tablename__ = 'audit_log'

    id = Column(Integer, primary_key=True)
    owner_id = Column(String(255), nullable=False)
    action = Column(String(50), nullable=False)
    details = Column(Text)  # JSON
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_audit_owner_created', 'owner_id', 'created_at'),
    )

    def __repr__(self):
        return f"<AuditLogEntry(owner='{self.owner_id}', action='{self.action}')>"


def create_database_engine(database_url: str = "sqlite:///unsubscriber.db"):
    """Create and return a database engine."""
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs['connect_args'] = {"check_same_thread": False}
        if ':memory:' in database_url or database_url == 'sqlite://':
            # One shared connection so every session sees the same in-memory database
            kwargs['poolclass'] = StaticPool
    engine = create_engine(
        database_url,
        echo=False,  # Set to True for SQL debugging
        pool_pre_ping=True,
        **kwargs
    )
    return engine


def create_tables(engine):
    """Create all tables in the database."""
    Base.metadata.create_all(engine)


def get_session_maker(engine):
    """Get a session maker for the database."""
    return sessionmaker(bind=engine, expire_on_commit=False)
