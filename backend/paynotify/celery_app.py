from celery import Celery
from paynotify.core.config import get_settings

settings = get_settings()

celery = Celery(
    "paynotify",
    broker=settings.redis_url,
    backend=settings.redis_url,
)

celery.conf.imports = ["paynotify.tasks"]
celery.conf.task_routes = {"paynotify.tasks.*": {"queue": "email_jobs"}}
celery.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,
    # One invocation per tick; an overlapping run is harmless thanks to the claim update
    task_time_limit=300,
)

celery.conf.beat_schedule = {
    "run-email-worker-every-minute": {
        "task": "paynotify.tasks.run_email_worker",
        "schedule": 60.0,
    },
    "release-stale-jobs-every-5-minutes": {
        "task": "paynotify.tasks.release_stale_jobs",
        "schedule": 300.0,
    },
}
