"""
tasks/celery_app.py
Celery application instance — shared across all task modules.

Workers are started with:
    celery -A tasks.celery_app worker --loglevel=info --queues=emails
"""

from celery import Celery

from config.settings import settings

celery_app = Celery(
    "peer_tutoring",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "tasks.email_tasks",
    ],
)

# ── Configuration ─────────────────────────────────────────────────────────────

celery_app.conf.update(
    # Serialization
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Europe/Paris",
    enable_utc=True,

    # Acknowledge AFTER execution so a dying worker doesn't lose the email
    task_acks_late=True,
    task_reject_on_worker_lost=True,

    result_expires=3600,
    task_max_retries=3,

    # Rate limits (per worker per second)
    task_annotations={
        "tasks.email_tasks.send_verification_email": {"rate_limit": "20/s"},
        "tasks.email_tasks.send_password_reset_email": {"rate_limit": "20/s"},
    },

    task_routes={
        "tasks.email_tasks.*": {"queue": "emails"},
    },

    worker_prefetch_multiplier=1,

    # Development and tests run tasks inline
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,
)
