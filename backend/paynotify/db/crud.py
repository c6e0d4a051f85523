"""
Job store operations.

Every write commits its own transaction. SQLAlchemy failures are rolled back
and re-raised as ``StoreError`` so callers can treat them as transient.
"""
import logging
from datetime import datetime
from functools import wraps

from paynotify.core.exceptions import StoreError
from paynotify.db import models
from paynotify.db.models import EmailStatus, JobStatus, utc_now
from sqlalchemy import delete, exists, literal, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)


def _store_op(name: str):
    def decorator(func):
        @wraps(func)
        def wrapper(db: Session, *args, **kwargs):
            try:
                return func(db, *args, **kwargs)
            except SQLAlchemyError as exc:
                db.rollback()
                logger.error(
                    f"Store operation {name} failed",
                    extra={"extra_data": {"operation": name, "error": str(exc)}},
                )
                raise StoreError(name, exc) from exc

        return wrapper

    return decorator


def _already_handled(job_id: str):
    # Finished jobs are deleted; their audit row is what remembers the event id
    return exists().where(models.EmailEvent.event_id == job_id)


def _insert_ignoring_conflict(db: Session, values: dict) -> bool:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        from sqlalchemy.dialects.postgresql import insert
    elif dialect == "sqlite":
        from sqlalchemy.dialects.sqlite import insert
    else:
        if db.execute(select(_already_handled(values["job_id"]))).scalar():
            return False
        try:
            db.add(models.EmailJob(**values))
            db.commit()
            return True
        except IntegrityError:
            db.rollback()
            return False

    columns = models.EmailJob.__table__.c
    source = select(
        *[literal(value, columns[name].type).label(name) for name, value in values.items()]
    ).where(~_already_handled(values["job_id"]))
    stmt = (
        insert(models.EmailJob)
        .from_select(list(values), source)
        .on_conflict_do_nothing(index_elements=["job_id"])
    )
    result = db.execute(stmt)
    db.commit()
    return result.rowcount == 1


@_store_op("insert_job")
def insert_job_if_absent(
    db: Session, job_id: str, event_type: str, max_attempts: int
) -> bool:
    """
    Insert a pending job unless ``job_id`` is queued or was already handled.

    An event counts as handled once it has an ``email_events`` row, sent or
    dead-lettered. Returns True if a job was inserted.
    """
    now = utc_now()
    return _insert_ignoring_conflict(
        db,
        {
            "job_id": job_id,
            "event_type": event_type,
            "status": JobStatus.PENDING.value,
            "attempts": 0,
            "max_attempts": max_attempts,
            "next_attempt_at": now,
            "created_at": now,
            "updated_at": now,
        },
    )


@_store_op("list_due_jobs")
def list_due_jobs(db: Session, now: datetime, limit: int):
    return db.execute(
        select(
            models.EmailJob.job_id,
            models.EmailJob.event_type,
            models.EmailJob.attempts,
            models.EmailJob.max_attempts,
        )
        .where(
            models.EmailJob.status == JobStatus.PENDING.value,
            models.EmailJob.next_attempt_at <= now,
        )
        .order_by(models.EmailJob.next_attempt_at.asc())
        .limit(limit)
    ).all()


@_store_op("claim_job")
def claim_job(db: Session, job_id: str, now: datetime) -> bool:
    """Move a job from pending to processing; False if another worker got it first."""
    result = db.execute(
        update(models.EmailJob)
        .where(
            models.EmailJob.job_id == job_id,
            models.EmailJob.status == JobStatus.PENDING.value,
        )
        .values(status=JobStatus.PROCESSING.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


@_store_op("complete_job")
def complete_job(db: Session, job_id: str, payment_id: str, email: str) -> None:
    db.add(
        models.EmailEvent(
            event_id=job_id,
            payment_id=payment_id,
            email=email,
            status=EmailStatus.SENT.value,
        )
    )
    db.flush()
    db.execute(
        delete(models.EmailJob)
        .where(models.EmailJob.job_id == job_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()


@_store_op("reschedule_job")
def reschedule_job(
    db: Session, job_id: str, attempts: int, next_attempt_at: datetime, now: datetime
) -> None:
    db.execute(
        update(models.EmailJob)
        .where(models.EmailJob.job_id == job_id)
        .values(
            status=JobStatus.PENDING.value,
            attempts=attempts,
            next_attempt_at=next_attempt_at,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    db.commit()


@_store_op("dead_letter_job")
def dead_letter_job(
    db: Session,
    job_id: str,
    event_type: str,
    attempts: int,
    max_attempts: int,
    error: str,
    payment_id: str | None = None,
    email: str | None = None,
) -> None:
    """Record the failure and the dead letter, then drop the job, in one transaction."""
    db.add(
        models.EmailEvent(
            event_id=job_id,
            payment_id=payment_id,
            email=email,
            status=EmailStatus.FAILED.value,
            error=error,
        )
    )
    db.add(
        models.DeadLetterJob(
            job_id=job_id,
            event_type=event_type,
            attempts=attempts,
            max_attempts=max_attempts,
            last_error=error,
        )
    )
    db.flush()
    db.execute(
        delete(models.EmailJob)
        .where(models.EmailJob.job_id == job_id)
        .execution_options(synchronize_session=False)
    )
    db.commit()


@_store_op("release_stale_jobs")
def release_stale_jobs(db: Session, cutoff: datetime, now: datetime) -> int:
    result = db.execute(
        update(models.EmailJob)
        .where(
            models.EmailJob.status == JobStatus.PROCESSING.value,
            models.EmailJob.updated_at < cutoff,
        )
        .values(status=JobStatus.PENDING.value, next_attempt_at=now, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount


@_store_op("find_payment")
def find_payment(db: Session, provider_payment_id: str) -> models.Payment | None:
    return (
        db.execute(
            select(models.Payment).where(
                models.Payment.provider == "stripe",
                or_(
                    models.Payment.provider_payment_id == provider_payment_id,
                    models.Payment.provider_checkout_session_id == provider_payment_id,
                ),
            )
        )
        .scalars()
        .first()
    )


@_store_op("get_access_code")
def get_access_code(db: Session, code_id: str) -> models.AccessCode | None:
    return db.get(models.AccessCode, code_id)
