"""Subscriber notification toggles and reconciliation endpoints."""
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session
import logging

from ..database import get_db
from ..domain_errors import issue_source_not_configured
from ..schemas import (
    CycleReportResponse,
    NotificationStatusResponse,
    SubscriberIdentityIn,
    SubscriberResponse,
)
from ..services import ledger
from ..services.ledger import SubscriberIdentity
from ..use_cases.reconciliation import NotificationReconciler, build_reconciler
from ..use_cases.subscriptions import (
    disable_notifications_use_case,
    enable_notifications_use_case,
)

router = APIRouter(tags=["notifications"])
logger = logging.getLogger(__name__)


def get_reconciler() -> NotificationReconciler:
    try:
        return build_reconciler()
    except RuntimeError as e:
        raise issue_source_not_configured(str(e)) from e


@router.put("/subscribers/{chat_id}/notifications", response_model=SubscriberResponse)
def enable_notifications(
    chat_id: int,
    data: SubscriberIdentityIn,
    db: Session = Depends(get_db),
):
    """Enable status notifications for a chat (idempotent)."""
    identity = SubscriberIdentity(
        telegram_user_id=data.telegram_user_id,
        username=data.username,
        name=data.name,
    )
    return enable_notifications_use_case(db=db, chat_id=chat_id, identity=identity)


@router.delete("/subscribers/{chat_id}/notifications", response_model=SubscriberResponse)
def disable_notifications(
    chat_id: int,
    db: Session = Depends(get_db),
):
    """Disable status notifications for a chat (idempotent)."""
    return disable_notifications_use_case(db=db, chat_id=chat_id)


@router.get("/notifications/status", response_model=NotificationStatusResponse)
def notification_status(db: Session = Depends(get_db)):
    """Counts used to monitor the notification backlog."""
    return NotificationStatusResponse(
        enabled_subscribers=ledger.count_enabled_subscribers(db=db),
        unsent_status_changes=ledger.count_unsent_status_changes(db=db),
        pending_deliveries=ledger.count_pending_deliveries(db=db),
    )


@router.post("/notifications/reconcile", response_model=CycleReportResponse)
def reconcile_now(reconciler: NotificationReconciler = Depends(get_reconciler)):
    """Run one reconciliation cycle immediately."""
    report = reconciler.run_cycle()
    logger.info(f"Manual reconciliation run: {report.as_dict()}")
    return CycleReportResponse(**report.as_dict())
