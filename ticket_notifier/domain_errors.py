"""Domain-level exception primitives with stable machine-readable codes."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

SUBSCRIBER_IDENTITY_REQUIRED = "SUBSCRIBER_IDENTITY_REQUIRED"
SUBSCRIBER_NOT_FOUND = "SUBSCRIBER_NOT_FOUND"
ISSUE_SOURCE_NOT_CONFIGURED = "ISSUE_SOURCE_NOT_CONFIGURED"
ISSUE_SOURCE_UNAVAILABLE = "ISSUE_SOURCE_UNAVAILABLE"


@dataclass(eq=False)
class DomainError(Exception):
    """Use-case level error with stable code and HTTP mapping."""

    code: str
    http_status: int
    message: str
    details: dict[str, Any] | None = None

    def __str__(self) -> str:
        return self.message


def subscriber_identity_required(chat_id: int) -> DomainError:
    return DomainError(
        code=SUBSCRIBER_IDENTITY_REQUIRED,
        http_status=400,
        message="A Telegram username or name is required to match tickets",
        details={"chat_id": chat_id},
    )


def subscriber_not_found(chat_id: int) -> DomainError:
    return DomainError(
        code=SUBSCRIBER_NOT_FOUND,
        http_status=404,
        message="Subscriber not found",
        details={"chat_id": chat_id},
    )


def issue_source_not_configured(reason: str) -> DomainError:
    """The reconciler cannot be built, e.g. JIRA_HOST is unset."""
    return DomainError(code=ISSUE_SOURCE_NOT_CONFIGURED, http_status=503, message=reason)


def issue_source_unavailable(reason: str) -> DomainError:
    """Jira answered with an error or could not be reached."""
    return DomainError(code=ISSUE_SOURCE_UNAVAILABLE, http_status=502, message=reason)
