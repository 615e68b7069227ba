from datetime import datetime

from ticket_notifier.services.message_builder import (
    build_status_change_message,
    build_toggle_reply,
    status_emoji,
)


def test_status_change_message_contains_transition_and_link() -> None:
    message = build_status_change_message(
        ticket_key="DES-12",
        summary="Impresora sin conexión",
        old_status="Backlog",
        new_status="En Curso",
        changed_by="Ana Gómez",
        changed_at=datetime(2026, 3, 2, 14, 0),
        jira_base_url="https://example.atlassian.net/",
    )

    assert "<b>DES-12</b>: Impresora sin conexión" in message
    assert "📝 Backlog → 🚀 En Curso" in message
    assert "Ana Gómez" in message
    assert "02/03/2026 14:00 UTC" in message
    assert 'href="https://example.atlassian.net/browse/DES-12"' in message


def test_user_text_is_html_escaped() -> None:
    message = build_status_change_message(
        ticket_key="DES-12",
        summary="<script>alert(1)</script>",
        old_status="A & B",
        new_status="Done",
        changed_by=None,
        changed_at=None,
    )

    assert "<script>" not in message
    assert "&lt;script&gt;" in message
    assert "A &amp; B" in message
    assert "Cambiado por" not in message
    assert "Ver en Jira" not in message


def test_unknown_status_uses_default_emoji() -> None:
    assert status_emoji("Finalizada") == "✅"
    assert status_emoji("Bloqueada") == "🔄"
    assert status_emoji(None) == "🔄"


def test_toggle_replies() -> None:
    assert "activadas" in build_toggle_reply(enabled=True)
    assert "desactivadas" in build_toggle_reply(enabled=False)
