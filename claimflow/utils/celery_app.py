"""
Celery Application
Background execution of claim submission and status refresh jobs.
Source: https://docs.celeryq.dev/en/stable/getting-started/first-steps-with-celery.html
Verified: 2026-10-16
"""

from celery import Celery

from claimflow.core.config import get_claims_settings

settings = get_claims_settings()

celery_app = Celery(
    "claimflow",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=30 * 60,  # 30 minutes
    task_soft_time_limit=25 * 60,  # 25 minutes
    task_acks_late=True,  # Handlers are idempotent; redeliver on worker loss
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,
)

# Tasks live in claimflow/tasks/*.py
celery_app.autodiscover_tasks(["claimflow.tasks"], related_name="claim_tasks")
