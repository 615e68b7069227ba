"""Ledger store primitives: subscribers, tracked tickets, status changes, pending deliveries, sent notifications.

Functions here flush but never commit; transaction boundaries belong to the
use-cases calling them.
"""

from __future__ import annotations

import threading
import weakref
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterator

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..models import (
    NOTIFICATION_TYPE_STATUS_CHANGE,
    NotificationRecord,
    PendingDelivery,
    StatusChange,
    Subscriber,
    Ticket,
)
from .change_extractor import StatusTransition, utcnow


@dataclass(frozen=True)
class SubscriberIdentity:
    """Telegram identity used to match a subscriber's tickets in Jira."""

    telegram_user_id: int | None = None
    username: str | None = None
    name: str | None = None

    def split_name(self) -> tuple[str, str]:
        parts = (self.name or "").strip().split(maxsplit=1)
        first_name = parts[0] if parts else ""
        last_name = parts[1] if len(parts) > 1 else ""
        return first_name, last_name


class _HeldLock:
    # Plain lock objects cannot be weakly referenced.
    def __init__(self) -> None:
        self.lock = threading.Lock()


class KeyedMutex:
    """Process-wide mutex per string key; entries vanish once nobody holds them."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: weakref.WeakValueDictionary[str, _HeldLock] = weakref.WeakValueDictionary()

    @contextmanager
    def hold(self, key: str) -> Iterator[None]:
        with self._guard:
            held = self._locks.get(key)
            if held is None:
                held = _HeldLock()
                self._locks[key] = held
        with held.lock:
            yield


ledger_mutex = KeyedMutex()


# Subscribers

def get_subscriber(*, db: Session, chat_id: int) -> Subscriber | None:
    return db.query(Subscriber).filter(Subscriber.chat_id == chat_id).first()


def save_subscriber(*, db: Session, chat_id: int, identity: SubscriberIdentity) -> Subscriber:
    """Insert or refresh the subscriber's identity; the notification flag is left untouched."""
    first_name, last_name = identity.split_name()
    subscriber = get_subscriber(db=db, chat_id=chat_id)
    if subscriber is None:
        subscriber = Subscriber(chat_id=chat_id, notifications_enabled=False)
        db.add(subscriber)

    subscriber.telegram_user_id = identity.telegram_user_id
    subscriber.username = identity.username or None
    subscriber.first_name = first_name
    subscriber.last_name = last_name
    subscriber.updated_at = utcnow()
    db.flush()
    return subscriber


def get_enabled_subscribers(*, db: Session) -> list[Subscriber]:
    return (
        db.query(Subscriber)
        .filter(Subscriber.notifications_enabled.is_(True))
        .order_by(Subscriber.chat_id)
        .all()
    )


def count_enabled_subscribers(*, db: Session) -> int:
    return (
        db.query(func.count(Subscriber.chat_id))
        .filter(Subscriber.notifications_enabled.is_(True))
        .scalar()
    ) or 0


# Tickets

def get_ticket(*, db: Session, jira_key: str) -> Ticket | None:
    return db.query(Ticket).filter(Ticket.jira_key == jira_key).first()


def save_ticket(
    *,
    db: Session,
    jira_key: str,
    chat_id: int | None,
    telegram_user_id: int | None = None,
    category: str | None = None,
    title: str | None = None,
    description: str | None = None,
    status: str | None = None,
    priority: str | None = None,
    start_date: date | None = None,
    due_date: date | None = None,
) -> Ticket:
    """Upsert a tracked ticket by Jira key (used by the ticket creation workflow)."""
    ticket = get_ticket(db=db, jira_key=jira_key)
    if ticket is None:
        ticket = Ticket(jira_key=jira_key)
        db.add(ticket)

    ticket.chat_id = chat_id
    ticket.telegram_user_id = telegram_user_id
    ticket.category = category
    ticket.title = title
    ticket.description = description
    ticket.status = status
    ticket.priority = priority
    ticket.start_date = start_date
    ticket.due_date = due_date
    ticket.updated_at = utcnow()
    db.flush()
    return ticket


def _field_name(fields: dict[str, Any], name: str) -> str | None:
    value = fields.get(name)
    if isinstance(value, dict):
        return value.get("name")
    return value


def register_ticket(
    *,
    db: Session,
    issue: dict[str, Any],
    chat_id: int,
    telegram_user_id: int | None = None,
) -> Ticket:
    """
    Return the tracked ticket for a Jira issue, creating it from the issue fields if needed.

    Existing rows are returned unchanged. Commits on creation so concurrent
    cycles observe the row; a concurrent insert of the same key is resolved by
    re-reading it.
    """
    jira_key = issue["key"]
    ticket = get_ticket(db=db, jira_key=jira_key)
    if ticket is not None:
        return ticket

    fields = issue.get("fields") or {}
    ticket = Ticket(
        jira_key=jira_key,
        chat_id=chat_id,
        telegram_user_id=telegram_user_id,
        category=_field_name(fields, "issuetype"),
        title=fields.get("summary"),
        description=fields.get("description") if isinstance(fields.get("description"), str) else None,
        status=_field_name(fields, "status"),
        priority=_field_name(fields, "priority"),
    )
    db.add(ticket)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        ticket = get_ticket(db=db, jira_key=jira_key)
        if ticket is None:
            raise
    return ticket


def update_ticket_status(*, db: Session, jira_key: str, status: str) -> int:
    """Set the ticket's last-known status; returns the number of rows changed."""
    return (
        db.query(Ticket)
        .filter(Ticket.jira_key == jira_key, Ticket.status.is_distinct_from(status))
        .update({"status": status, "updated_at": utcnow()}, synchronize_session=False)
    )


def lock_ticket(*, db: Session, jira_key: str) -> Ticket | None:
    """Row-lock the ticket for the rest of the transaction (SQLite sessions already hold the write lock)."""
    return db.query(Ticket).filter(Ticket.jira_key == jira_key).with_for_update().first()


# Status changes

def find_status_change(
    *,
    db: Session,
    jira_key: str,
    old_status: str,
    new_status: str,
    changed_at: datetime,
    tolerance: timedelta,
) -> StatusChange | None:
    """Existing status change for the same transition with changed_at within ±tolerance."""
    return (
        db.query(StatusChange)
        .filter(
            StatusChange.jira_key == jira_key,
            StatusChange.old_status == old_status,
            StatusChange.new_status == new_status,
            StatusChange.changed_at.between(changed_at - tolerance, changed_at + tolerance),
        )
        .order_by(StatusChange.id)
        .first()
    )


def save_status_change(
    *,
    db: Session,
    transition: StatusTransition,
    first_seen_at: datetime | None = None,
) -> StatusChange:
    status_change = StatusChange(
        jira_key=transition.ticket_key,
        old_status=transition.old_status or "",
        new_status=transition.new_status or "",
        changed_by=transition.changed_by,
        changed_at=transition.changed_at,
        first_seen_at=first_seen_at or utcnow(),
        notification_sent=False,
    )
    db.add(status_change)
    db.flush()
    return status_change


def lock_status_change(*, db: Session, status_change_id: int) -> StatusChange | None:
    return (
        db.query(StatusChange)
        .filter(StatusChange.id == status_change_id)
        .with_for_update()
        .first()
    )


def mark_notification_sent(*, db: Session, status_change_id: int) -> int:
    """Flip notification_sent to true; only ever false -> true."""
    return (
        db.query(StatusChange)
        .filter(StatusChange.id == status_change_id, StatusChange.notification_sent.is_(False))
        .update({"notification_sent": True}, synchronize_session=False)
    )


def count_unsent_status_changes(*, db: Session) -> int:
    return (
        db.query(func.count(StatusChange.id))
        .filter(StatusChange.notification_sent.is_(False))
        .scalar()
    ) or 0


# Pending deliveries

def record_failed_delivery(
    *, db: Session, status_change_id: int, chat_id: int, failed_at: datetime | None = None
) -> PendingDelivery:
    """Remember that `chat_id` still has to be told about `status_change_id`."""
    failed_at = failed_at or utcnow()
    pending = (
        db.query(PendingDelivery)
        .filter(
            PendingDelivery.status_change_id == status_change_id,
            PendingDelivery.chat_id == chat_id,
        )
        .first()
    )
    if pending is None:
        pending = PendingDelivery(
            status_change_id=status_change_id,
            chat_id=chat_id,
            attempts=1,
            first_failed_at=failed_at,
            last_failed_at=failed_at,
        )
        db.add(pending)
    else:
        pending.attempts += 1
        pending.last_failed_at = failed_at
    db.flush()
    return pending


def clear_pending_delivery(*, db: Session, status_change_id: int, chat_id: int) -> int:
    return (
        db.query(PendingDelivery)
        .filter(
            PendingDelivery.status_change_id == status_change_id,
            PendingDelivery.chat_id == chat_id,
        )
        .delete(synchronize_session=False)
    )


def get_pending_deliveries(
    *, db: Session, chat_id: int, jira_key: str, since: datetime
) -> list[StatusChange]:
    """Status changes of a ticket that failed to reach `chat_id`, first recorded at or after `since`."""
    return (
        db.query(StatusChange)
        .join(PendingDelivery, PendingDelivery.status_change_id == StatusChange.id)
        .filter(
            PendingDelivery.chat_id == chat_id,
            StatusChange.jira_key == jira_key,
            StatusChange.first_seen_at >= since,
        )
        .order_by(StatusChange.changed_at, StatusChange.id)
        .all()
    )


def count_pending_deliveries(*, db: Session) -> int:
    return db.query(func.count(PendingDelivery.id)).scalar() or 0


# Notifications

def notification_exists(
    *,
    db: Session,
    chat_id: int,
    jira_key: str,
    old_value: str | None,
    new_value: str | None,
    notification_type: str = NOTIFICATION_TYPE_STATUS_CHANGE,
) -> bool:
    row = (
        db.query(NotificationRecord.id)
        .filter(
            NotificationRecord.chat_id == chat_id,
            NotificationRecord.jira_key == jira_key,
            NotificationRecord.notification_type == notification_type,
            NotificationRecord.old_value == (old_value or ""),
            NotificationRecord.new_value == (new_value or ""),
        )
        .first()
    )
    return row is not None


def save_notification(
    *,
    db: Session,
    chat_id: int,
    jira_key: str,
    old_value: str | None,
    new_value: str | None,
    notification_type: str = NOTIFICATION_TYPE_STATUS_CHANGE,
) -> NotificationRecord:
    """Insert a notification record; raises IntegrityError if the tuple already exists."""
    record = NotificationRecord(
        chat_id=chat_id,
        jira_key=jira_key,
        notification_type=notification_type,
        old_value=old_value or "",
        new_value=new_value or "",
        sent_at=utcnow(),
    )
    db.add(record)
    db.flush()
    return record
