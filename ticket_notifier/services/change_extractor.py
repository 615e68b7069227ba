"""Status transition extraction from Jira changelog histories."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

logger = logging.getLogger(__name__)

STATUS_FIELD = "status"
DEFAULT_LOOKBACK = timedelta(minutes=5)

_JIRA_TIMESTAMP_FORMATS = (
    "%Y-%m-%dT%H:%M:%S.%f%z",
    "%Y-%m-%dT%H:%M:%S%z",
)


@dataclass(frozen=True)
class StatusTransition:
    ticket_key: str
    old_status: str
    new_status: str
    changed_by: str | None
    changed_at: datetime  # naive UTC


def utcnow() -> datetime:
    """Current time as naive UTC, the representation stored in the ledgers."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_jira_timestamp(value: str | None) -> datetime | None:
    """Parse Jira's `2024-01-15T10:30:00.000+0000` style timestamps into naive UTC."""
    if not value:
        return None

    raw = value.strip()
    if raw.endswith("Z"):
        raw = raw[:-1] + "+0000"

    for fmt in _JIRA_TIMESTAMP_FORMATS:
        try:
            return to_naive_utc(datetime.strptime(raw, fmt))
        except ValueError:
            continue

    try:
        return to_naive_utc(datetime.fromisoformat(raw))
    except ValueError:
        return None


def current_status(issue: dict[str, Any]) -> str | None:
    status = (issue.get("fields") or {}).get("status") or {}
    return status.get("name")


def issue_summary(issue: dict[str, Any]) -> str:
    return (issue.get("fields") or {}).get("summary") or ""


def _histories(issue: dict[str, Any]) -> list[dict[str, Any]]:
    changelog = issue.get("changelog") or {}
    return changelog.get("histories") or []


def extract_status_transitions(
    issue: dict[str, Any],
    *,
    now: datetime,
    window: timedelta = DEFAULT_LOOKBACK,
) -> list[StatusTransition]:
    """
    Return the status transitions of `issue` whose timestamp lies in [now - window, now].

    Older entries were visible to an earlier cycle and are dropped. Order is
    the changelog's own order.
    """
    ticket_key = issue.get("key")
    if not ticket_key:
        return []

    now = to_naive_utc(now)
    window_start = now - window
    transitions: list[StatusTransition] = []

    for history in _histories(issue):
        items = [item for item in history.get("items") or [] if item.get("field") == STATUS_FIELD]
        if not items:
            continue

        changed_at = parse_jira_timestamp(history.get("created"))
        if changed_at is None:
            logger.warning(f"⏭️ Skipping history entry with unparseable timestamp on {ticket_key}: {history.get('created')!r}")
            continue
        if changed_at < window_start or changed_at > now:
            continue

        author = history.get("author") or {}
        changed_by = author.get("displayName") or author.get("name")

        for item in items:
            transitions.append(
                StatusTransition(
                    ticket_key=ticket_key,
                    old_status=item.get("fromString") or "",
                    new_status=item.get("toString") or "",
                    changed_by=changed_by,
                    changed_at=changed_at,
                )
            )

    return transitions
