from __future__ import annotations

import pytest
import requests

from ticket_notifier.integrations import telegram
from ticket_notifier.integrations.telegram import TelegramNotifier, send_telegram_message


class _Response:
    def __init__(self, status_code, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload or {}
        self.text = text

    def json(self):
        return self._payload


@pytest.fixture
def posted(monkeypatch):
    calls = []
    responses = []

    def _post(url, json=None, timeout=None):
        calls.append({"url": url, "json": json, "timeout": timeout})
        result = responses.pop(0)
        if isinstance(result, Exception):
            raise result
        return result

    monkeypatch.setattr(telegram.requests, "post", _post)
    return calls, responses


def test_send_posts_html_message(posted) -> None:
    calls, responses = posted
    responses.append(_Response(200))

    assert send_telegram_message("TOKEN", 42, "<b>hola</b>") == (True, None)
    assert calls[0]["url"] == "https://api.telegram.org/botTOKEN/sendMessage"
    assert calls[0]["json"]["chat_id"] == 42
    assert calls[0]["json"]["parse_mode"] == "HTML"
    assert calls[0]["timeout"] == 10


@pytest.mark.parametrize(
    ("response", "expected"),
    [
        (_Response(429, {"parameters": {"retry_after": 17}}), "RATE_LIMIT:17"),
        (_Response(403), "BOT_BLOCKED"),
        (_Response(500, text="boom"), "HTTP_500: boom"),
    ],
)
def test_send_classifies_failures(posted, response, expected) -> None:
    _calls, responses = posted
    responses.append(response)

    assert send_telegram_message("TOKEN", 42, "hola") == (False, expected)


def test_send_reports_network_errors(posted) -> None:
    _calls, responses = posted
    responses.append(requests.Timeout("read timed out"))

    success, error = send_telegram_message("TOKEN", 42, "hola")

    assert success is False
    assert error.startswith("EXCEPTION:")


def test_send_without_token_does_not_call_api(posted) -> None:
    calls, _responses = posted

    success, error = send_telegram_message(None, 42, "hola")

    assert success is False
    assert "not configured" in error
    assert calls == []


def test_notifier_maps_results_to_bool(posted) -> None:
    _calls, responses = posted
    responses.extend([_Response(200), _Response(403)])
    notifier = TelegramNotifier("TOKEN")

    assert notifier.deliver(42, "hola") is True
    assert notifier.deliver(42, "hola") is False
