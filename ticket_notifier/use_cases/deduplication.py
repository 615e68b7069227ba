"""Two-layer dedup of status transitions: transition ledger, then per-subscriber notification ledger."""
from __future__ import annotations

import enum
import logging
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import StatusChange
from ..services import ledger
from ..services.change_extractor import StatusTransition, utcnow

logger = logging.getLogger(__name__)

DEFAULT_MATCH_TOLERANCE = timedelta(seconds=60)


class Notifier(Protocol):
    def deliver(self, chat_id: int, message: str) -> bool: ...


class NotificationOutcome(str, enum.Enum):
    DELIVERED = "delivered"
    ALREADY_NOTIFIED = "already_notified"
    DELIVERY_FAILED = "delivery_failed"


def record_transition(
    *,
    db: Session,
    transition: StatusTransition,
    tolerance: timedelta = DEFAULT_MATCH_TOLERANCE,
    now: datetime | None = None,
) -> tuple[StatusChange, bool]:
    """
    Return the status change row for `transition`, inserting it if no match exists.

    A match is the same ticket and old/new pair with changed_at within
    ±tolerance. Returns (row, created). Check and insert run under the ticket's
    lock and are committed before returning.
    """
    with ledger.ledger_mutex.hold(f"status:{transition.ticket_key}"):
        ledger.lock_ticket(db=db, jira_key=transition.ticket_key)
        existing = ledger.find_status_change(
            db=db,
            jira_key=transition.ticket_key,
            old_status=transition.old_status,
            new_status=transition.new_status,
            changed_at=transition.changed_at,
            tolerance=tolerance,
        )
        if existing is not None:
            db.commit()
            logger.debug(
                f"⏭️ Status change {transition.ticket_key} {transition.old_status!r} -> "
                f"{transition.new_status!r} already recorded as #{existing.id}"
            )
            return existing, False

        status_change = ledger.save_status_change(
            db=db, transition=transition, first_seen_at=now or utcnow()
        )
        db.commit()
        logger.info(
            f"📝 Recorded status change #{status_change.id} {transition.ticket_key}: "
            f"{transition.old_status!r} -> {transition.new_status!r}"
        )
        return status_change, True


def notify_subscriber(
    *,
    db: Session,
    status_change: StatusChange,
    chat_id: int,
    notifier: Notifier,
    message: str,
    now: datetime | None = None,
) -> NotificationOutcome:
    """
    Deliver `status_change` to one subscriber unless the notification ledger says it was sent.

    On success the notification record is written before the status change is
    marked sent, in one transaction. On failure only a pending delivery for this
    subscriber is written, which the retry sweep picks up.
    """
    status_change_id = status_change.id
    jira_key = status_change.jira_key
    old_status = status_change.old_status
    new_status = status_change.new_status

    with ledger.ledger_mutex.hold(f"notify:{chat_id}:{jira_key}"):
        ledger.lock_status_change(db=db, status_change_id=status_change_id)

        if ledger.notification_exists(
            db=db, chat_id=chat_id, jira_key=jira_key, old_value=old_status, new_value=new_status
        ):
            ledger.mark_notification_sent(db=db, status_change_id=status_change_id)
            ledger.clear_pending_delivery(db=db, status_change_id=status_change_id, chat_id=chat_id)
            db.commit()
            logger.info(f"⏭️ Chat {chat_id} already notified of {jira_key} {old_status!r} -> {new_status!r}")
            return NotificationOutcome.ALREADY_NOTIFIED

        if not notifier.deliver(chat_id, message):
            pending = ledger.record_failed_delivery(
                db=db, status_change_id=status_change_id, chat_id=chat_id, failed_at=now or utcnow()
            )
            db.commit()
            logger.warning(
                f"🔄 Delivery of status change #{status_change_id} to chat {chat_id} failed "
                f"(attempt {pending.attempts}); will retry"
            )
            return NotificationOutcome.DELIVERY_FAILED

        try:
            ledger.save_notification(
                db=db, chat_id=chat_id, jira_key=jira_key, old_value=old_status, new_value=new_status
            )
            ledger.mark_notification_sent(db=db, status_change_id=status_change_id)
            ledger.clear_pending_delivery(db=db, status_change_id=status_change_id, chat_id=chat_id)
            db.commit()
        except IntegrityError:
            # Another writer recorded the same tuple first.
            db.rollback()
            ledger.mark_notification_sent(db=db, status_change_id=status_change_id)
            ledger.clear_pending_delivery(db=db, status_change_id=status_change_id, chat_id=chat_id)
            db.commit()
            logger.warning(f"⏭️ Notification tuple for chat {chat_id} on {jira_key} was recorded concurrently")
            return NotificationOutcome.ALREADY_NOTIFIED

        logger.info(f"✅ Notified chat {chat_id} of {jira_key}: {old_status!r} -> {new_status!r}")
        return NotificationOutcome.DELIVERED


def process_transition(
    *,
    db: Session,
    transition: StatusTransition,
    chat_id: int,
    notifier: Notifier,
    message: str,
    tolerance: timedelta = DEFAULT_MATCH_TOLERANCE,
    now: datetime | None = None,
) -> NotificationOutcome:
    """Record the transition if new, then notify the subscriber if not already notified."""
    status_change, _created = record_transition(
        db=db, transition=transition, tolerance=tolerance, now=now
    )
    return notify_subscriber(
        db=db,
        status_change=status_change,
        chat_id=chat_id,
        notifier=notifier,
        message=message,
        now=now,
    )
