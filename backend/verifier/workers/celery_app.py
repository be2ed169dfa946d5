from celery import Celery

from verifier.core.config import settings

celery_app = Celery(
    "verifier_worker",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "verifier.workers.sweep_tasks",
    ],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    broker_connection_retry_on_startup=True,
)

celery_app.conf.beat_schedule = {
    "auto-approval-sweep": {
        "task": "verifier.workers.sweep_tasks.run_auto_approval_sweep",
        "schedule": settings.AUTO_APPROVAL_SWEEP_INTERVAL_MINUTES * 60.0,
    },
}
