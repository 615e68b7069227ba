"""
Telegram integration routes.
- Webhook handler for the notification opt-in / opt-out bot commands
"""
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session
import hmac
import logging

from ..config import settings
from ..database import get_db
from ..domain_errors import DomainError
from ..schemas import WebhookUpdate
from ..services.ledger import SubscriberIdentity
from ..services.message_builder import build_toggle_reply
from ..use_cases.subscriptions import (
    disable_notifications_use_case,
    enable_notifications_use_case,
)

router = APIRouter(prefix="/telegram", tags=["telegram"])
logger = logging.getLogger(__name__)

ENABLE_COMMAND = "/notificaciones_on"
DISABLE_COMMAND = "/notificaciones_off"
SECRET_HEADER = "X-Telegram-Bot-Api-Secret-Token"


def _command(text: str) -> str:
    """First word of the message without the optional @botname suffix."""
    if not text.startswith("/"):
        return ""
    return text.split(maxsplit=1)[0].split("@", 1)[0].lower()


def _identity_from_sender(sender: dict) -> SubscriberIdentity:
    name = f"{sender.get('first_name') or ''} {sender.get('last_name') or ''}".strip()
    return SubscriberIdentity(
        telegram_user_id=sender.get("id"),
        username=sender.get("username") or None,
        name=name or None,
    )


def _reply(chat_id: int, text: str) -> dict:
    return {"ok": True, "method": "sendMessage", "chat_id": chat_id, "text": text}


@router.post("/webhook")
async def telegram_webhook(
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Telegram bot webhook handler.

    Handles /notificaciones_on and /notificaciones_off for the sending chat.
    Replies are returned inline as a sendMessage method call.

    Must respond 200 quickly (Telegram retries on non-2xx).
    """
    if settings.TELEGRAM_WEBHOOK_SECRET:
        received = request.headers.get(SECRET_HEADER, "")
        if not hmac.compare_digest(received, settings.TELEGRAM_WEBHOOK_SECRET):
            logger.warning("❌ Webhook call with invalid secret token")
            return {"ok": False, "error": "Invalid secret"}

    try:
        update = WebhookUpdate.model_validate(await request.json())

        message = update.message
        if not message:
            # Not a message update (could be edited_message, callback_query, etc.)
            return {"ok": True}

        command = _command(message.get("text") or "")
        if command not in (ENABLE_COMMAND, DISABLE_COMMAND):
            return {"ok": True}

        chat_id = message["chat"]["id"]

        if command == ENABLE_COMMAND:
            identity = _identity_from_sender(message.get("from") or {})
            try:
                enable_notifications_use_case(db=db, chat_id=chat_id, identity=identity)
            except DomainError as e:
                logger.warning(f"⏭️ Cannot enable notifications for chat {chat_id}: {e.code}")
                return _reply(chat_id, "❌ No se pudo identificar tu usuario de Telegram.")
            return _reply(chat_id, build_toggle_reply(enabled=True))

        try:
            disable_notifications_use_case(db=db, chat_id=chat_id)
        except DomainError:
            # Never subscribed: already in the requested state.
            pass
        return _reply(chat_id, build_toggle_reply(enabled=False))

    except Exception as e:
        logger.error(f"❌ Webhook error: {e}", exc_info=True)
        # Always return 200 to avoid Telegram retries on our bugs
        return {"ok": False, "error": str(e)}
