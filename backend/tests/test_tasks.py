from datetime import timedelta

import httpx
from conftest import RESEND_EMAILS_URL, STRIPE_EVENTS_URL, stripe_event
from freezegun import freeze_time
from paynotify.db import crud, models
from paynotify.db.models import utc_now
from paynotify.tasks import release_stale_jobs, run_email_worker


def test_run_email_worker_task(db, paid_payment, respx_mock):
    crud.insert_job_if_absent(db, "evt_42", "payment.succeeded", 5)
    respx_mock.get(f"{STRIPE_EVENTS_URL}/evt_42").mock(
        return_value=httpx.Response(200, json=stripe_event())
    )
    respx_mock.post(RESEND_EMAILS_URL).mock(return_value=httpx.Response(200, json={}))

    result = run_email_worker.apply(kwargs={"session": db}).get()

    assert result == {"ok": True, "processed": 1}
    db.expire_all()
    assert db.get(models.EmailJob, "evt_42") is None


def test_run_email_worker_task_with_empty_queue(db):
    result = run_email_worker.apply(kwargs={"session": db}).get()

    assert result == {"ok": True, "processed": 0}


def test_release_stale_jobs_task(db):
    with freeze_time("2026-01-01 12:00:00") as frozen:
        crud.insert_job_if_absent(db, "evt_42", "payment.succeeded", 5)
        crud.claim_job(db, "evt_42", utc_now())
        frozen.tick(timedelta(hours=1))

        result = release_stale_jobs.apply(kwargs={"session": db}).get()

    assert result == {"released": 1}
    db.expire_all()
    assert db.get(models.EmailJob, "evt_42").status == "pending"
