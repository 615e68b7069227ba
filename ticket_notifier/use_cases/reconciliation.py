"""
Reconciliation loop: poll Jira per subscriber, dedup status transitions, notify.

Each cycle is stateless apart from the ledgers. Per subscriber the cycle goes
FETCH -> EXTRACT -> DEDUP_AND_NOTIFY -> DONE; failures are contained to the
subscriber (fetch), the ticket, or the single transition (persistence).
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..database import SessionLocal
from ..integrations.jira import JiraIssueSource
from ..integrations.telegram import TelegramNotifier
from ..services import ledger
from ..services.change_extractor import (
    current_status,
    extract_status_transitions,
    issue_summary,
    utcnow,
)
from ..services.message_builder import build_status_change_message
from .deduplication import NotificationOutcome, Notifier, notify_subscriber, record_transition

logger = logging.getLogger(__name__)


class IssueSource(Protocol):
    def search_tickets_with_history(
        self, *, username: str | None = None, display_name: str | None = None
    ) -> list[dict[str, Any]]: ...


@dataclass(frozen=True)
class SubscriberRef:
    """Detached snapshot of a subscriber, safe to hand to a worker thread."""

    chat_id: int
    telegram_user_id: int | None
    username: str | None
    display_name: str


@dataclass
class CycleReport:
    subscribers: int = 0
    tickets: int = 0
    transitions: int = 0
    retried: int = 0
    delivered: int = 0
    already_notified: int = 0
    delivery_failures: int = 0
    source_errors: int = 0
    subscriber_errors: int = 0
    ticket_errors: int = 0
    persistence_errors: int = 0

    def record(self, outcome: NotificationOutcome) -> None:
        if outcome is NotificationOutcome.DELIVERED:
            self.delivered += 1
        elif outcome is NotificationOutcome.ALREADY_NOTIFIED:
            self.already_notified += 1
        else:
            self.delivery_failures += 1

    def merge(self, other: "CycleReport") -> None:
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


class NotificationReconciler:
    """Runs reconciliation cycles against an issue source, a notifier and the ledgers."""

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        issue_source: IssueSource,
        notifier: Notifier,
        lookback: timedelta = timedelta(seconds=300),
        tolerance: timedelta = timedelta(seconds=60),
        retry_horizon: timedelta = timedelta(hours=1),
        max_workers: int = 1,
        jira_base_url: str | None = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._session_factory = session_factory
        self._issue_source = issue_source
        self._notifier = notifier
        self._lookback = lookback
        self._tolerance = tolerance
        self._retry_horizon = retry_horizon
        self._max_workers = max(1, max_workers)
        self._jira_base_url = jira_base_url
        self._clock = clock

    def run_cycle(self) -> CycleReport:
        """Run one pass over every enabled subscriber."""
        now = self._clock()
        report = CycleReport()

        try:
            subscribers = self._load_subscribers()
        except SQLAlchemyError as e:
            logger.error(f"❌ Could not load subscribers: {e}", exc_info=True)
            report.persistence_errors += 1
            return report

        if not subscribers:
            logger.debug("No subscribers with notifications enabled")
            return report

        if self._max_workers == 1 or len(subscribers) == 1:
            for subscriber in subscribers:
                report.merge(self._reconcile_subscriber(subscriber, now))
        else:
            with ThreadPoolExecutor(
                max_workers=min(self._max_workers, len(subscribers)),
                thread_name_prefix="reconcile",
            ) as pool:
                futures = [pool.submit(self._reconcile_subscriber, subscriber, now) for subscriber in subscribers]
                for future in futures:
                    report.merge(future.result())

        logger.info(f"✅ Reconciliation cycle finished: {report.as_dict()}")
        return report

    def _load_subscribers(self) -> list[SubscriberRef]:
        db = self._session_factory()
        try:
            return [
                SubscriberRef(
                    chat_id=subscriber.chat_id,
                    telegram_user_id=subscriber.telegram_user_id,
                    username=subscriber.username,
                    display_name=subscriber.display_name,
                )
                for subscriber in ledger.get_enabled_subscribers(db=db)
            ]
        finally:
            db.close()

    def _reconcile_subscriber(self, subscriber: SubscriberRef, now: datetime) -> CycleReport:
        """One subscriber's pass; whatever goes wrong stays with that subscriber."""
        try:
            return self._process_subscriber(subscriber, now)
        except Exception as e:
            logger.error(f"❌ Unexpected error reconciling chat {subscriber.chat_id}: {e}", exc_info=True)
            return CycleReport(subscribers=1, subscriber_errors=1)

    def _process_subscriber(self, subscriber: SubscriberRef, now: datetime) -> CycleReport:
        report = CycleReport(subscribers=1)

        if not subscriber.username and not subscriber.display_name:
            logger.warning(f"⏭️ Chat {subscriber.chat_id} has no username or name to search tickets with")
            return report

        # FETCH
        try:
            issues = self._issue_source.search_tickets_with_history(
                username=subscriber.username,
                display_name=subscriber.display_name,
            )
        except Exception as e:
            report.source_errors += 1
            logger.error(f"❌ Could not fetch tickets for chat {subscriber.chat_id}: {e}")
            return report

        db = self._session_factory()
        try:
            for issue in issues:
                report.tickets += 1
                try:
                    self._process_ticket(db, subscriber, issue, now, report)
                except Exception as e:
                    db.rollback()
                    report.ticket_errors += 1
                    logger.error(
                        f"❌ Error processing ticket {issue.get('key')} for chat {subscriber.chat_id}: {e}",
                        exc_info=True,
                    )
        finally:
            db.close()

        return report

    def _process_ticket(
        self,
        db: Session,
        subscriber: SubscriberRef,
        issue: dict[str, Any],
        now: datetime,
        report: CycleReport,
    ) -> None:
        jira_key = issue.get("key")
        if not jira_key:
            logger.warning(f"⏭️ Skipping issue without key for chat {subscriber.chat_id}")
            return

        ledger.register_ticket(
            db=db, issue=issue, chat_id=subscriber.chat_id, telegram_user_id=subscriber.telegram_user_id
        )
        summary = issue_summary(issue)
        handled_ids: set[int] = set()

        # EXTRACT
        for transition in extract_status_transitions(issue, now=now, window=self._lookback):
            report.transitions += 1
            message = build_status_change_message(
                ticket_key=jira_key,
                summary=summary,
                old_status=transition.old_status,
                new_status=transition.new_status,
                changed_by=transition.changed_by,
                changed_at=transition.changed_at,
                jira_base_url=self._jira_base_url,
            )

            # DEDUP_AND_NOTIFY
            try:
                status_change, _created = record_transition(
                    db=db, transition=transition, tolerance=self._tolerance, now=now
                )
                handled_ids.add(status_change.id)
                outcome = notify_subscriber(
                    db=db,
                    status_change=status_change,
                    chat_id=subscriber.chat_id,
                    notifier=self._notifier,
                    message=message,
                    now=now,
                )
            except SQLAlchemyError as e:
                db.rollback()
                report.persistence_errors += 1
                logger.error(
                    f"❌ Ledger error on {jira_key} {transition.old_status!r} -> {transition.new_status!r}: {e}"
                )
                continue
            report.record(outcome)

        self._retry_pending(db, subscriber, jira_key, summary, now, handled_ids, report)

        status = current_status(issue)
        if status and ledger.update_ticket_status(db=db, jira_key=jira_key, status=status):
            logger.info(f"🔄 {jira_key} status is now {status!r}")
        # Ends the ticket's transaction, releasing the SQLite write lock between tickets.
        db.commit()

    def _retry_pending(
        self,
        db: Session,
        subscriber: SubscriberRef,
        jira_key: str,
        summary: str,
        now: datetime,
        handled_ids: set[int],
        report: CycleReport,
    ) -> None:
        """Retry this subscriber's failed deliveries whose status change was first seen inside the horizon."""
        if self._retry_horizon <= timedelta(0):
            return

        pending = ledger.get_pending_deliveries(
            db=db, chat_id=subscriber.chat_id, jira_key=jira_key, since=now - self._retry_horizon
        )
        for status_change in pending:
            if status_change.id in handled_ids:
                continue

            report.retried += 1
            message = build_status_change_message(
                ticket_key=jira_key,
                summary=summary,
                old_status=status_change.old_status,
                new_status=status_change.new_status,
                changed_by=status_change.changed_by,
                changed_at=status_change.changed_at,
                jira_base_url=self._jira_base_url,
            )
            try:
                outcome = notify_subscriber(
                    db=db,
                    status_change=status_change,
                    chat_id=subscriber.chat_id,
                    notifier=self._notifier,
                    message=message,
                    now=now,
                )
            except SQLAlchemyError as e:
                db.rollback()
                report.persistence_errors += 1
                logger.error(f"❌ Ledger error retrying status change #{status_change.id}: {e}")
                continue
            report.record(outcome)


def build_reconciler(session_factory: Callable[[], Session] = SessionLocal) -> NotificationReconciler:
    """Reconciler wired to Jira and Telegram from settings."""
    if not settings.jira_base_url:
        raise RuntimeError("JIRA_HOST must be configured to reconcile ticket notifications")

    issue_source = JiraIssueSource(
        base_url=settings.jira_base_url,
        username=settings.JIRA_USERNAME,
        api_token=settings.JIRA_API_TOKEN,
        username_field=settings.JIRA_CF_TELEGRAM_USERNAME,
        name_field=settings.JIRA_CF_TELEGRAM_NAME,
        max_results=settings.JIRA_MAX_RESULTS,
        timeout=settings.JIRA_TIMEOUT_SECONDS,
    )
    return NotificationReconciler(
        session_factory=session_factory,
        issue_source=issue_source,
        notifier=TelegramNotifier(settings.TELEGRAM_BOT_TOKEN),
        lookback=timedelta(seconds=settings.NOTIFICATION_LOOKBACK_SECONDS),
        tolerance=timedelta(seconds=settings.STATUS_CHANGE_MATCH_TOLERANCE_SECONDS),
        retry_horizon=timedelta(seconds=settings.NOTIFICATION_RETRY_HORIZON_SECONDS),
        max_workers=settings.NOTIFICATION_MAX_WORKERS,
        jira_base_url=settings.jira_base_url,
    )


def run_reconciliation_cycle(session_factory: Callable[[], Session] = SessionLocal) -> CycleReport:
    """Entry point for the timer; safe to call concurrently or by hand."""
    return build_reconciler(session_factory).run_cycle()
