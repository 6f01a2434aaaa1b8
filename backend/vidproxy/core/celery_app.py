"""Celery application configuration."""

from celery import Celery

from vidproxy.core.config import settings

celery_app = Celery(
    "vidproxy",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=3600,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_POOL_SIZE,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    result_expires=settings.QUEUE_RETENTION_SECONDS,
)

celery_app.autodiscover_tasks(["vidproxy.modules.job"])
