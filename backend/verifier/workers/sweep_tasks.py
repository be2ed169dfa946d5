"""Celery task for the periodic auto-approval sweep."""
import logging
import threading

from celery.signals import worker_process_init, worker_shutting_down

from verifier.workers.celery_app import celery_app

logger = logging.getLogger(__name__)

# Set on warm shutdown; the running sweep stops before its next session.
stop_event = threading.Event()


@worker_process_init.connect
def _configure_worker_logging(**kwargs):
    from verifier.core.logging import setup_logging
    setup_logging()


@worker_shutting_down.connect
def _request_sweep_stop(sig=None, how=None, exitcode=None, **kwargs):
    logger.info("Worker shutting down (%s); asking running sweep to stop", how)
    stop_event.set()


@celery_app.task(name="verifier.workers.sweep_tasks.run_auto_approval_sweep")
def run_auto_approval_sweep():
    """Force-resolve every session whose deadline has passed.

    Runs every AUTO_APPROVAL_SWEEP_INTERVAL_MINUTES via beat. Overlapping runs
    are harmless: each session is re-checked under its lock.
    """
    logger.info("run_auto_approval_sweep: starting")
    try:
        from verifier.db.session import SessionLocal
        from verifier.services.notifications import LogNotificationSink
        from verifier.services.sweep import run_sweep_once

        summary = run_sweep_once(
            SessionLocal,
            notifier=LogNotificationSink(),
            stop_event=stop_event,
        )
        return {
            "processed": summary.processed_count,
            "succeeded": summary.success_count,
            "failed": summary.failure_count,
            "auto_approved": summary.total_auto_approved_transactions,
            "cancelled": summary.cancelled,
        }

    except Exception as exc:
        logger.exception("run_auto_approval_sweep failed: %s", exc)
        return {"status": "error", "error": str(exc)}
