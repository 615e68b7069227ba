from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import T0, Clock, FakeIssueSource, jira_issue, status_history

from ticket_notifier.config import settings
from ticket_notifier.database import get_db
from ticket_notifier.main import app
from ticket_notifier.models import StatusChange, Subscriber, Ticket
from ticket_notifier.routers.notifications import get_reconciler
from ticket_notifier.use_cases.reconciliation import NotificationReconciler


@pytest.fixture
def client(session_factory):
    def _override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def _update(text: str, *, chat_id: int = 42, sender: dict | None = None) -> dict:
    return {
        "update_id": 1,
        "message": {
            "message_id": 10,
            "chat": {"id": chat_id, "type": "private"},
            "from": sender if sender is not None else {"id": 4242, "username": "ana", "first_name": "Ana"},
            "text": text,
        },
    }


def test_enable_and_disable_notifications(client, db) -> None:
    response = client.put(
        "/api/v1/subscribers/42/notifications",
        json={"telegram_user_id": 4242, "username": "ana", "name": "Ana Gómez"},
    )
    assert response.status_code == 200
    assert response.json()["notifications_enabled"] is True
    assert response.json()["first_name"] == "Ana"

    response = client.delete("/api/v1/subscribers/42/notifications")
    assert response.status_code == 200
    assert response.json()["notifications_enabled"] is False
    assert db.query(Subscriber).count() == 1


def test_enable_without_identity_is_problem_details(client) -> None:
    response = client.put("/api/v1/subscribers/42/notifications", json={})

    assert response.status_code == 400
    assert response.headers["content-type"].startswith("application/problem+json")
    payload = response.json()
    assert payload["code"] == "SUBSCRIBER_IDENTITY_REQUIRED"
    assert payload["instance"] == "/api/v1/subscribers/42/notifications"


def test_disable_unknown_subscriber_is_404(client) -> None:
    response = client.delete("/api/v1/subscribers/999/notifications")

    assert response.status_code == 404
    assert response.json()["code"] == "SUBSCRIBER_NOT_FOUND"


def test_status_counts_enabled_subscribers_and_unsent_changes(client, db) -> None:
    client.put("/api/v1/subscribers/42/notifications", json={"username": "ana"})
    client.put("/api/v1/subscribers/77/notifications", json={"username": "luis"})
    client.delete("/api/v1/subscribers/77/notifications")
    db.add(Ticket(jira_key="DES-12", chat_id=42, status="En Curso"))
    db.flush()
    db.add(StatusChange(jira_key="DES-12", old_status="Backlog", new_status="En Curso", changed_at=T0, first_seen_at=T0))
    db.commit()

    response = client.get("/api/v1/notifications/status")

    assert response.status_code == 200
    assert response.json() == {"enabled_subscribers": 1, "unsent_status_changes": 1, "pending_deliveries": 0}


def test_reconcile_endpoint_runs_one_cycle(client, session_factory, notifier) -> None:
    client.put("/api/v1/subscribers/42/notifications", json={"username": "ana"})
    source = FakeIssueSource(
        {"ana": [jira_issue("DES-12", status="En Curso", histories=[status_history(old="Backlog", new="En Curso", at=T0)])]}
    )
    app.dependency_overrides[get_reconciler] = lambda: NotificationReconciler(
        session_factory=session_factory,
        issue_source=source,
        notifier=notifier,
        clock=Clock(T0 + timedelta(seconds=10)),
    )

    response = client.post("/api/v1/notifications/reconcile")

    assert response.status_code == 200
    assert response.json()["delivered"] == 1
    assert response.json()["subscribers"] == 1
    assert [chat_id for chat_id, _ in notifier.delivered] == [42]


def test_reconcile_without_jira_host_is_503(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "JIRA_HOST", None)

    response = client.post("/api/v1/notifications/reconcile")

    assert response.status_code == 503
    assert response.json()["code"] == "ISSUE_SOURCE_NOT_CONFIGURED"


def test_webhook_commands_toggle_notifications(client, db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", None)

    on = client.post("/api/v1/telegram/webhook", json=_update("/notificaciones_on@MiBot"))
    assert on.status_code == 200
    assert on.json()["method"] == "sendMessage"
    assert on.json()["chat_id"] == 42
    assert db.get(Subscriber, 42).notifications_enabled is True

    off = client.post("/api/v1/telegram/webhook", json=_update("/notificaciones_off"))
    assert "desactivadas" in off.json()["text"]
    db.expire_all()
    assert db.get(Subscriber, 42).notifications_enabled is False


def test_webhook_enable_without_identity_replies_with_error(client, db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", None)

    response = client.post("/api/v1/telegram/webhook", json=_update("/notificaciones_on", sender={"id": 1}))

    assert response.status_code == 200
    assert response.json()["text"].startswith("❌")
    assert db.query(Subscriber).count() == 0


def test_webhook_disable_for_unknown_chat_still_replies(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", None)

    response = client.post("/api/v1/telegram/webhook", json=_update("/notificaciones_off", chat_id=5))

    assert response.json()["chat_id"] == 5


def test_webhook_ignores_other_updates(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", None)

    assert client.post("/api/v1/telegram/webhook", json={"update_id": 2}).json() == {"ok": True}
    assert client.post("/api/v1/telegram/webhook", json=_update("hola")).json() == {"ok": True}


def test_webhook_rejects_update_without_id(client, db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", None)
    body = _update("/notificaciones_on")
    del body["update_id"]

    response = client.post("/api/v1/telegram/webhook", json=body)

    assert response.status_code == 200
    assert response.json()["ok"] is False
    assert db.query(Subscriber).count() == 0


def test_webhook_rejects_wrong_secret(client, db, monkeypatch) -> None:
    monkeypatch.setattr(settings, "TELEGRAM_WEBHOOK_SECRET", "s3cret")

    rejected = client.post(
        "/api/v1/telegram/webhook",
        json=_update("/notificaciones_on"),
        headers={"X-Telegram-Bot-Api-Secret-Token": "nope"},
    )
    accepted = client.post(
        "/api/v1/telegram/webhook",
        json=_update("/notificaciones_on"),
        headers={"X-Telegram-Bot-Api-Secret-Token": "s3cret"},
    )

    assert rejected.json() == {"ok": False, "error": "Invalid secret"}
    assert accepted.json()["method"] == "sendMessage"
    assert db.query(Subscriber).count() == 1


def test_health_check(client) -> None:
    response = client.get("/api/v1/system/health")

    assert response.status_code == 200
    assert response.json()["status"] == "ok"
