"""Telegram Bot API delivery channel."""
from __future__ import annotations

import logging

import requests

logger = logging.getLogger(__name__)

TELEGRAM_API_URL = "https://api.telegram.org"


def send_telegram_message(
    bot_token: str | None,
    chat_id: int | str,
    message: str,
    *,
    timeout: float = 10,
) -> tuple[bool, str | None]:
    """Send message via Telegram Bot API."""
    if not bot_token:
        return False, "TELEGRAM_BOT_TOKEN not configured"

    url = f"{TELEGRAM_API_URL}/bot{bot_token}/sendMessage"

    try:
        response = requests.post(
            url,
            json={
                "chat_id": chat_id,
                "text": message,
                "parse_mode": "HTML",
                "disable_web_page_preview": True,
            },
            timeout=timeout,
        )

        if response.status_code == 200:
            return True, None
        elif response.status_code == 429:
            # Rate limit - extract retry_after
            data = response.json()
            retry_after = data.get("parameters", {}).get("retry_after", 60)
            return False, f"RATE_LIMIT:{retry_after}"
        elif response.status_code == 403:
            # Bot blocked by user
            return False, "BOT_BLOCKED"
        else:
            return False, f"HTTP_{response.status_code}: {response.text[:200]}"

    except requests.RequestException as e:
        return False, f"EXCEPTION: {str(e)}"


class TelegramNotifier:
    """Delivers formatted messages to subscriber chats."""

    def __init__(self, bot_token: str | None, *, timeout: float = 10):
        self._bot_token = bot_token
        self._timeout = timeout

    def deliver(self, chat_id: int, message: str) -> bool:
        success, error = send_telegram_message(
            self._bot_token, chat_id, message, timeout=self._timeout
        )
        if success:
            logger.info(f"✅ Delivered notification to chat {chat_id}")
            return True

        if error and error.startswith("RATE_LIMIT:"):
            logger.warning(f"⏳ Rate limited delivering to chat {chat_id}: retry after {error.split(':', 1)[1]}s")
        elif error == "BOT_BLOCKED":
            logger.warning(f"🚫 Chat {chat_id} blocked the bot")
        else:
            logger.error(f"❌ Delivery to chat {chat_id} failed: {error}")
        return False
