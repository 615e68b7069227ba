"""
Celery worker and beat schedule driving the notification reconciliation cycle.

Overlapping runs are tolerated: both ledgers make transition and notification
persistence idempotent.
"""
from celery import Celery
from celery.signals import worker_process_init
import logging

from .config import settings
from .database import ensure_ledger_store
from .use_cases.reconciliation import run_reconciliation_cycle

logger = logging.getLogger(__name__)

celery_app = Celery(
    "ticket_notifier",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND
)

celery_app.conf.update(
    task_serializer='json',
    accept_content=['json'],
    result_serializer='json',
    timezone='UTC',
    enable_utc=True,
)


@worker_process_init.connect
def check_ledger_store(**_kwargs):
    """A worker that cannot open the ledger store must not start."""
    try:
        ensure_ledger_store()
    except Exception as e:
        logger.critical(f"❌ Cannot open ledger store: {e}", exc_info=True)
        raise SystemExit(1) from e
    logger.info("✅ Ledger store reachable")


@celery_app.task(name="run_reconciliation_cycle")
def reconcile_ticket_notifications():
    """Poll Jira for every enabled subscriber and deliver new status changes."""
    report = run_reconciliation_cycle()
    return report.as_dict()


# Schedule periodic reconciliation
celery_app.conf.beat_schedule = {
    'reconcile-ticket-notifications': {
        'task': 'run_reconciliation_cycle',
        'schedule': float(settings.NOTIFICATION_POLL_INTERVAL_SECONDS),
    },
}
