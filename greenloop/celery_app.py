"""
Celery application

Queues:
- default: everything not routed below
- email: outgoing mail
- points: ledger maintenance (expiry sweep, expiry notices)
"""
from celery import Celery
from celery.schedules import crontab

from greenloop.config import get_settings

settings = get_settings()

broker_url = settings.celery_broker or settings.redis_url
backend_url = settings.celery_backend or settings.redis_url

celery_app = Celery(
    "greenloop",
    broker=broker_url,
    backend=backend_url,
    include=[
        "greenloop.tasks.email_tasks",
        "greenloop.tasks.points_tasks",
    ]
)

celery_app.conf.update(
    result_expires=86400,
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_time_limit=3600,
    task_soft_time_limit=3000,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_routes={
        "greenloop.tasks.email_tasks.*": {"queue": "email"},
        "greenloop.tasks.points_tasks.*": {"queue": "points"},
    },
    task_annotations={
        "greenloop.tasks.email_tasks.send_email_task": {"rate_limit": "10/m"},
    },
    task_reject_on_worker_lost=True,
    beat_schedule={
        # daily at 02:00 UTC
        "expire-points-daily": {
            "task": "greenloop.tasks.points_tasks.expire_points_task",
            "schedule": crontab(hour=2, minute=0),
        },
        "notify-expiring-points-daily": {
            "task": "greenloop.tasks.points_tasks.notify_expiring_points_task",
            "schedule": crontab(hour=9, minute=0),
        },
    },
)

celery_app.conf.worker_max_tasks_per_child = 1000
celery_app.conf.worker_concurrency = settings.celery_worker_concurrency

if __name__ == "__main__":
    celery_app.start()
