from celery import Celery

from event_registry.core.config import CELERY_QUEUE, get_reconcile_interval, get_redis_url

RECONCILE_TASK = "event_registry.tasks.reconcile_attendee_counts"


def beat_schedule(interval: float) -> dict:
    """Periodic jobs for celery beat; an interval of 0 or less turns them off."""
    if interval <= 0:
        return {}
    return {
        "reconcile-attendee-counts": {
            "task": RECONCILE_TASK,
            "schedule": interval,
        },
    }


def make_celery(app_name: str = "event_registry") -> Celery:
    redis_url = get_redis_url()
    celery = Celery(app_name, broker=redis_url, backend=redis_url, include=["event_registry.tasks"])
    celery.conf.update(
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        result_persistent=False,
        task_track_started=True,
        timezone="UTC",
        enable_utc=True,
        task_default_queue=CELERY_QUEUE,
        task_routes={RECONCILE_TASK: {"queue": CELERY_QUEUE}},
        beat_schedule=beat_schedule(get_reconcile_interval()),
    )
    return celery


celery_app = make_celery()
