from __future__ import annotations

import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")

from datetime import datetime, timedelta
from typing import Any

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ticket_notifier.database import Base, create_ledger_engine
from ticket_notifier import models  # noqa: F401


T0 = datetime(2026, 3, 2, 14, 0, 0)


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    def _fk_pragma_on_connect(dbapi_con, _con_record):
        dbapi_con.execute("pragma foreign_keys=ON")

    event.listen(engine, "connect", _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=db_engine)


@pytest.fixture
def file_session_factory(tmp_path):
    """Ledger in a SQLite file, one connection per session, as separate processes see it."""
    engine = create_ledger_engine(f"sqlite:///{tmp_path / 'ledger.db'}")
    Base.metadata.create_all(engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


def jira_timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%dT%H:%M:%S.") + f"{value.microsecond // 1000:03d}+0000"


def status_history(
    *,
    old: str,
    new: str,
    at: datetime,
    author: str = "Ana Gómez",
    extra_items: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    items = [{"field": "status", "fromString": old, "toString": new}]
    items.extend(extra_items or [])
    return {
        "id": f"h-{at.timestamp():.0f}-{old}-{new}",
        "author": {"displayName": author},
        "created": jira_timestamp(at),
        "items": items,
    }


def jira_issue(
    key: str,
    *,
    status: str,
    histories: list[dict[str, Any]] | None = None,
    summary: str = "Impresora sin conexión",
) -> dict[str, Any]:
    return {
        "key": key,
        "fields": {
            "summary": summary,
            "status": {"name": status},
            "priority": {"name": "Medium"},
            "issuetype": {"name": "Incidencia de Telegram"},
            "description": "No imprime desde ayer",
        },
        "changelog": {"histories": histories or []},
    }


class FakeIssueSource:
    """Issue source returning canned issues per identity."""

    def __init__(self, issues_by_identity: dict[str, list[dict[str, Any]]] | None = None):
        self.issues_by_identity = issues_by_identity or {}
        self.failing: set[str] = set()
        self.calls: list[tuple[str | None, str | None]] = []

    def search_tickets_with_history(self, *, username=None, display_name=None):
        self.calls.append((username, display_name))
        identity = username or display_name
        if identity in self.failing:
            raise ConnectionError(f"Jira unavailable for {identity}")
        return self.issues_by_identity.get(identity, [])


class FakeNotifier:
    """Notifier recording deliveries; chats in `failing` get a failed delivery."""

    def __init__(self):
        self.delivered: list[tuple[int, str]] = []
        self.attempts: list[int] = []
        self.failing: set[int] = set()

    def deliver(self, chat_id, message):
        self.attempts.append(chat_id)
        if chat_id in self.failing:
            return False
        self.delivered.append((chat_id, message))
        return True


class Clock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def issue_source():
    return FakeIssueSource()


@pytest.fixture
def notifier():
    return FakeNotifier()
