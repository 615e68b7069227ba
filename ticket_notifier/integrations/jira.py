"""Jira REST client used as the issue source for reconciliation."""
from __future__ import annotations

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)

SEARCH_FIELDS = ("summary", "status", "priority", "issuetype", "description", "updated")


class IssueSourceError(Exception):
    """Raised when the issue tracker cannot be queried."""


def _quote_jql(value: str) -> str:
    escaped = value.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def build_user_tickets_jql(
    *,
    username: str | None,
    display_name: str | None,
    username_field: str,
    name_field: str,
) -> str:
    """JQL matching tickets created from a Telegram user, newest activity first."""
    if username:
        return f"cf[{username_field}] ~ {_quote_jql(username)} ORDER BY updated DESC"
    if display_name:
        return f"cf[{name_field}] ~ {_quote_jql(display_name)} ORDER BY updated DESC"
    raise ValueError("username or display_name is required to search tickets")


class JiraIssueSource:
    """Reads a subscriber's tickets, with changelog, from Jira REST API v2."""

    def __init__(
        self,
        *,
        base_url: str,
        username: str | None,
        api_token: str | None,
        username_field: str,
        name_field: str,
        max_results: int = 20,
        timeout: float = 30,
        session: requests.Session | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._username_field = username_field
        self._name_field = name_field
        self._max_results = max_results
        self._timeout = timeout
        self._session = session or requests.Session()
        if username and api_token:
            self._session.auth = (username, api_token)
        self._session.headers.update({"Accept": "application/json"})

    def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self._base_url}{path}"
        try:
            response = self._session.get(url, params=params, timeout=self._timeout)
        except requests.RequestException as e:
            raise IssueSourceError(f"Jira request failed: {e}") from e

        if response.status_code != 200:
            raise IssueSourceError(f"Jira returned HTTP_{response.status_code}: {response.text[:200]}")

        try:
            return response.json()
        except ValueError as e:
            raise IssueSourceError("Jira returned a non-JSON response") from e

    def verify_connection(self) -> dict[str, Any]:
        """Fetch the authenticated Jira user; raises IssueSourceError when unreachable."""
        user = self._get("/rest/api/2/myself")
        logger.info(f"✅ Connected to Jira as {user.get('displayName') or user.get('name')}")
        return user

    def search_tickets_with_history(
        self,
        *,
        username: str | None = None,
        display_name: str | None = None,
    ) -> list[dict[str, Any]]:
        """Issues created by the given Telegram identity, most recently updated first."""
        jql = build_user_tickets_jql(
            username=username,
            display_name=display_name,
            username_field=self._username_field,
            name_field=self._name_field,
        )
        payload = self._get(
            "/rest/api/2/search",
            params={
                "jql": jql,
                "maxResults": self._max_results,
                "expand": "changelog",
                "fields": ",".join(SEARCH_FIELDS),
            },
        )
        issues = payload.get("issues") or []
        logger.debug(f"Jira search returned {len(issues)} issues for {username or display_name!r}")
        return issues
