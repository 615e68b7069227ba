"""Telegram message formatting for ticket notifications."""

from __future__ import annotations

from datetime import datetime
from html import escape

_STATUS_EMOJI: dict[str, str] = {
    "Finalizada": "✅",
    "Revisar": "🔎",
    "Paused": "⏳",
    "En Curso": "🚀",
    "Backlog": "📝",
}
_DEFAULT_STATUS_EMOJI = "🔄"


def status_emoji(status: str | None) -> str:
    return _STATUS_EMOJI.get(status or "", _DEFAULT_STATUS_EMOJI)


def _status_label(status: str | None) -> str:
    if not status:
        return "(sin estado)"
    return f"{status_emoji(status)} {escape(status)}"


def build_status_change_message(
    *,
    ticket_key: str,
    summary: str | None,
    old_status: str | None,
    new_status: str | None,
    changed_by: str | None,
    changed_at: datetime | None,
    jira_base_url: str | None = None,
) -> str:
    """Render a status change notification as Telegram HTML."""
    heading = f"<b>{escape(ticket_key)}</b>"
    if summary:
        heading = f"{heading}: {escape(summary)}"
    lines = [
        "🔔 <b>Actualización de ticket</b>",
        "",
        heading,
        f"<b>Estado:</b> {_status_label(old_status)} → {_status_label(new_status)}",
    ]
    if changed_by:
        lines.append(f"<b>Cambiado por:</b> {escape(changed_by)}")
    if changed_at:
        lines.append(f"<b>Fecha:</b> {changed_at.strftime('%d/%m/%Y %H:%M')} UTC")
    if jira_base_url:
        url = f"{jira_base_url.rstrip('/')}/browse/{ticket_key}"
        lines.append("")
        lines.append(f'<a href="{escape(url, quote=True)}">Ver en Jira</a>')
    return "\n".join(lines)


def build_toggle_reply(*, enabled: bool) -> str:
    if enabled:
        return "✅ Notificaciones activadas. Te avisaré cuando cambie el estado de tus tickets."
    return "🔕 Notificaciones desactivadas."
