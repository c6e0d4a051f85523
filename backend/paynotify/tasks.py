import logging

from paynotify.celery_app import celery
from paynotify.core.config import get_settings
from paynotify.db.session import SessionLocal
from paynotify.services import email_worker

logger = logging.getLogger(__name__)


@celery.task(bind=True)
def run_email_worker(self, session=None):
    if self.request.id:
        logger.info(f"Email worker run, task ID: {self.request.id}")
    if session is None:
        session = SessionLocal()
        should_close = True
    else:
        should_close = False

    try:
        worker = email_worker.EmailWorker.from_settings(session, get_settings())
        processed = worker.run_batch()
        return {"ok": True, "processed": processed}
    finally:
        if should_close:
            session.close()


@celery.task
def release_stale_jobs(session=None):
    if session is None:
        session = SessionLocal()
        should_close = True
    else:
        should_close = False

    try:
        released = email_worker.release_stale_jobs(
            session, get_settings().stale_processing_seconds
        )
        return {"released": released}
    finally:
        if should_close:
            session.close()
