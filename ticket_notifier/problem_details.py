"""RFC 7807 Problem Details rendering for API errors."""
from __future__ import annotations

from http import HTTPStatus

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from .domain_errors import DomainError, issue_source_unavailable
from .integrations.jira import IssueSourceError

PROBLEM_TYPE_BASE = "https://ticket-notifier.local/problems"


def build_problem_details_response(exc: DomainError, *, instance: str | None = None) -> JSONResponse:
    """Render DomainError as RFC 7807 payload with stable domain code."""
    try:
        title = HTTPStatus(exc.http_status).phrase
    except ValueError:
        title = "Domain Error"

    payload: dict[str, object] = {
        "type": f"{PROBLEM_TYPE_BASE}/{exc.code.lower()}",
        "title": title,
        "status": exc.http_status,
        "detail": exc.message,
        "code": exc.code,
    }
    if instance:
        payload["instance"] = instance
    if exc.details is not None:
        payload["details"] = exc.details

    return JSONResponse(
        status_code=exc.http_status,
        content=payload,
        media_type="application/problem+json",
    )


def register_problem_handlers(app: FastAPI) -> None:
    """Map domain and issue-source errors to problem+json responses."""

    async def _handle_domain_error(request: Request, exc: DomainError):
        return build_problem_details_response(exc, instance=request.url.path)

    async def _handle_issue_source_error(request: Request, exc: IssueSourceError):
        return build_problem_details_response(
            issue_source_unavailable(str(exc)),
            instance=request.url.path,
        )

    app.add_exception_handler(DomainError, _handle_domain_error)
    app.add_exception_handler(IssueSourceError, _handle_issue_source_error)
