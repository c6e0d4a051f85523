"""
Worker loop for the email job queue.

Each run selects a batch of due jobs, claims them one at a time with a
conditional update, and drives each claimed job to one of three outcomes:

* sent: audit row ``email_sent`` and the job row is deleted;
* retried: back to ``pending`` with ``attempts + 1`` and a backed-off
  ``next_attempt_at``;
* dead-lettered: audit row ``email_failed`` plus a dead-letter row, then the
  job row is deleted. Data errors take this path on the first failure,
  transient errors once ``attempts + 1`` reaches ``max_attempts``.
"""
import logging
import random
from datetime import timedelta
from typing import Any

from paynotify.core.config import Settings
from paynotify.core.exceptions import (
    AppException,
    DataError,
    ErrorCode,
    NotConfiguredError,
    StoreError,
)
from paynotify.db import crud
from paynotify.db.models import utc_now
from paynotify.services.emails import render_access_code_email
from paynotify.services.event_extract import extract_payment_details
from paynotify.services.providers import ResendClient, StripeClient
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

MAX_BACKOFF_EXPONENT = 10
JITTER_RANGE = (0.1, 0.3)


def compute_backoff(
    attempts: int,
    *,
    base_seconds: float,
    max_seconds: float,
    rng: random.Random | None = None,
) -> float:
    """
    Delay in seconds before the next attempt.

    ``min(base * 2**min(attempts, 10), max)`` plus a jitter of 10-30% of that
    value, so the longest delay is ``1.3 * max`` whatever the attempt count.
    """
    exponent = min(max(attempts, 0), MAX_BACKOFF_EXPONENT)
    delay = min(base_seconds * (2**exponent), max_seconds)
    jitter = (rng or random).uniform(*JITTER_RANGE)
    return delay * (1 + jitter)


def is_retryable(exc: Exception) -> bool:
    if isinstance(exc, AppException):
        return getattr(exc, "retryable", True)
    # Unexpected failures are retried; max_attempts still bounds them
    return True


class EmailWorker:
    def __init__(
        self,
        db: Session,
        stripe: StripeClient,
        mailer: ResendClient,
        *,
        batch_size: int = 10,
        backoff_base_seconds: float = 30,
        backoff_max_seconds: float = 3600,
        email_subject: str = "Codigo de acesso",
        rng: random.Random | None = None,
    ):
        self.db = db
        self.stripe = stripe
        self.mailer = mailer
        self.batch_size = batch_size
        self.backoff_base_seconds = backoff_base_seconds
        self.backoff_max_seconds = backoff_max_seconds
        self.email_subject = email_subject
        self.rng = rng

    @classmethod
    def from_settings(cls, db: Session, settings: Settings) -> "EmailWorker":
        if not settings.worker_configured:
            raise NotConfiguredError("email_worker")
        return cls(
            db,
            StripeClient(
                settings.stripe_secret_key,
                base_url=settings.stripe_api_base,
                timeout=settings.http_timeout_seconds,
            ),
            ResendClient(
                settings.resend_api_key,
                settings.resend_from,
                base_url=settings.resend_api_base,
                timeout=settings.http_timeout_seconds,
            ),
            batch_size=settings.worker_batch_size,
            backoff_base_seconds=settings.backoff_base_seconds,
            backoff_max_seconds=settings.backoff_max_seconds,
            email_subject=settings.email_subject,
        )

    def run_batch(self) -> int:
        """Process up to ``batch_size`` due jobs; returns how many were selected."""
        jobs = crud.list_due_jobs(self.db, utc_now(), self.batch_size)
        for job in jobs:
            try:
                claimed = crud.claim_job(self.db, job.job_id, utc_now())
            except StoreError:
                logger.exception(
                    "Claim failed", extra={"extra_data": {"job_id": job.job_id}}
                )
                continue
            if not claimed:
                logger.info(
                    "Job already claimed by another worker",
                    extra={"extra_data": {"job_id": job.job_id}},
                )
                continue
            self.process_job(job)
        return len(jobs)

    def process_job(self, job: Any) -> None:
        # Filled in by _deliver as it goes so a failure audit row can carry them
        known: dict[str, str] = {}
        try:
            payment_id = self._deliver(job, known)
        except Exception as exc:
            self.db.rollback()
            self._handle_failure(job, exc, known)
            return

        logger.info(
            "Job completed",
            extra={
                "extra_data": {
                    "job_id": job.job_id,
                    "event_type": job.event_type,
                    "payment_id": payment_id,
                }
            },
        )

    def _deliver(self, job: Any, known: dict[str, str]) -> str:
        event = self.stripe.fetch_event(job.job_id)
        details = extract_payment_details(event, job.event_type)
        if not details.payer_email or not details.provider_payment_id:
            raise DataError(ErrorCode.MISSING_EMAIL_OR_PAYMENT_ID)
        known["email"] = details.payer_email

        payment = crud.find_payment(self.db, details.provider_payment_id)
        if payment is None:
            raise DataError(
                ErrorCode.PAYMENT_NOT_FOUND,
                {"provider_payment_id": details.provider_payment_id},
            )
        known["payment_id"] = payment.id
        if not payment.access_code_id:
            raise DataError(ErrorCode.ACCESS_CODE_MISSING, {"payment_id": payment.id})

        code = crud.get_access_code(self.db, payment.access_code_id)
        if code is None or not code.code_plaintext:
            raise DataError(ErrorCode.CODE_NOT_FOUND, {"access_code_id": payment.access_code_id})

        content = render_access_code_email(
            self.email_subject, code.code_plaintext, code.valid_until, details.receipt_url
        )
        self.mailer.send_email(details.payer_email, content.subject, content.text, content.html)

        payment_id = payment.id
        crud.complete_job(self.db, job.job_id, payment_id, details.payer_email)
        return payment_id

    def _handle_failure(
        self, job: Any, exc: Exception, known: dict[str, str] | None = None
    ) -> None:
        known = known or {}
        message = str(exc) or type(exc).__name__
        next_attempts = job.attempts + 1
        retryable = is_retryable(exc)
        log_context = {
            "job_id": job.job_id,
            "attempts": next_attempts,
            "max_attempts": job.max_attempts,
            "error": message,
        }

        try:
            if not retryable or next_attempts >= job.max_attempts:
                crud.dead_letter_job(
                    self.db,
                    job.job_id,
                    job.event_type,
                    next_attempts,
                    job.max_attempts,
                    message,
                    payment_id=known.get("payment_id"),
                    email=known.get("email"),
                )
                logger.error(
                    "Job dead-lettered",
                    extra={"extra_data": {**log_context, "retryable": retryable}},
                )
                return

            delay = compute_backoff(
                next_attempts,
                base_seconds=self.backoff_base_seconds,
                max_seconds=self.backoff_max_seconds,
                rng=self.rng,
            )
            now = utc_now()
            crud.reschedule_job(
                self.db, job.job_id, next_attempts, now + timedelta(seconds=delay), now
            )
            logger.warning(
                "Job failed, retry scheduled",
                extra={"extra_data": {**log_context, "retry_in_seconds": round(delay, 1)}},
            )
        except AppException:
            # The job stays in processing; release_stale_jobs returns it to the queue
            logger.exception(
                "Could not record job failure", extra={"extra_data": log_context}
            )


def release_stale_jobs(db: Session, stale_after_seconds: int) -> int:
    """Put jobs stuck in processing longer than ``stale_after_seconds`` back to pending."""
    now = utc_now()
    released = crud.release_stale_jobs(db, now - timedelta(seconds=stale_after_seconds), now)
    if released:
        logger.warning(
            "Released stale processing jobs", extra={"extra_data": {"count": released}}
        )
    return released
