import enum
from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import declarative_base
from sqlalchemy.types import TypeDecorator

Base = declarative_base()


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC datetimes on every backend, SQLite included."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class JobStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"


class EmailStatus(str, enum.Enum):
    SENT = "email_sent"
    FAILED = "email_failed"


class EmailJob(Base):
    """One pending notification; ``job_id`` is the provider event id."""

    __tablename__ = "email_jobs"
    job_id = Column(String(255), primary_key=True)
    event_type = Column(String(255), nullable=False)
    status = Column(String(20), nullable=False, default=JobStatus.PENDING.value)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    next_attempt_at = Column(UTCDateTime, nullable=False, default=utc_now)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)
    updated_at = Column(UTCDateTime, nullable=False, default=utc_now)

    __table_args__ = (Index("ix_email_jobs_due", "status", "next_attempt_at"),)


class DeadLetterJob(Base):
    __tablename__ = "email_jobs_dlq"
    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String(255), nullable=False, index=True)
    event_type = Column(String(255), nullable=False)
    attempts = Column(Integer, nullable=False)
    max_attempts = Column(Integer, nullable=False)
    last_error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)


class EmailEvent(Base):
    """Audit row, one per terminal job outcome."""

    __tablename__ = "email_events"
    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String(255), nullable=False, index=True)
    payment_id = Column(String(64), nullable=True)
    email = Column(String(320), nullable=True)
    status = Column(String(20), nullable=False)
    error = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utc_now)


# The purchase flow owns the two tables below; the pipeline only reads them.


class Payment(Base):
    __tablename__ = "payments"
    id = Column(String(64), primary_key=True)
    provider = Column(String(32), nullable=False, default="stripe")
    provider_payment_id = Column(String(255), nullable=True, index=True)
    provider_checkout_session_id = Column(String(255), nullable=True, index=True)
    status = Column(String(32), nullable=False)
    access_code_id = Column(String(64), nullable=True)


class AccessCode(Base):
    __tablename__ = "access_codes"
    id = Column(String(64), primary_key=True)
    code_plaintext = Column(String(32), nullable=True)
    valid_until = Column(UTCDateTime, nullable=True)
