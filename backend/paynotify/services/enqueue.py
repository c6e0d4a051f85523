"""
Turning verified webhook events into durable jobs.

``enqueue_event`` is the idempotency boundary: the job id is the provider
event id, so redelivering an event never creates a second job.
``EnqueueForwarder`` is the webhook receiver's side of the hop to the
enqueue endpoint, authenticated by a shared secret.
"""
import logging

import httpx
from paynotify.core.exceptions import EnqueueError, ErrorCode
from paynotify.db import crud
from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

ENQUEUE_SECRET_HEADER = "X-Enqueue-Secret"


def enqueue_event(db: Session, event_id: str, event_type: str, max_attempts: int) -> bool:
    """
    Insert a pending job for ``event_id`` unless one exists.

    Returns True when a new job was created. Store failures propagate as
    ``StoreError``; the provider redelivers on a non-2xx answer.
    """
    inserted = crud.insert_job_if_absent(db, event_id, event_type, max_attempts)
    logger.info(
        "Job enqueued" if inserted else "Duplicate event ignored",
        extra={"extra_data": {"event_id": event_id, "event_type": event_type}},
    )
    return inserted


class EnqueueForwarder:
    def __init__(self, url: str, secret: str, timeout: float = 10.0):
        self.url = url
        self.secret = secret
        self.timeout = timeout

    async def forward(self, event_id: str, event_type: str) -> None:
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                r = await client.post(
                    self.url,
                    headers={ENQUEUE_SECRET_HEADER: self.secret},
                    json={"event_id": event_id, "event_type": event_type},
                )
        except httpx.HTTPError as exc:
            raise EnqueueError(
                ErrorCode.ENQUEUE_FAILED, f"enqueue request failed: {exc}"
            ) from exc

        if not r.is_success:
            raise EnqueueError(
                ErrorCode.ENQUEUE_REJECTED,
                f"enqueue returned status {r.status_code}",
                details={"status": r.status_code, "body": r.text[:500]},
            )
