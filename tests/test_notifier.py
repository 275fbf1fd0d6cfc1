from __future__ import annotations

import json

import httpx

from regime_trader.notify.telegram import TelegramNotifier


def test_telegram_posts_tagged_message() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True})

    client = httpx.Client(transport=httpx.MockTransport(handler))
    notifier = TelegramNotifier("TOKEN", "42", client=client)
    notifier.notify("OPEN", "BTCUSDT long @ 100")

    assert len(seen) == 1
    assert seen[0].url.path == "/botTOKEN/sendMessage"
    assert json.loads(seen[0].content) == {"chat_id": "42", "text": "[OPEN] BTCUSDT long @ 100"}
    notifier.close()


def test_telegram_failures_are_swallowed() -> None:
    client = httpx.Client(transport=httpx.MockTransport(lambda request: httpx.Response(500)))
    notifier = TelegramNotifier("TOKEN", "42", client=client)
    notifier.notify("WARN", "low score")


def test_telegram_transport_errors_are_swallowed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("unreachable", request=request)

    notifier = TelegramNotifier("TOKEN", "42", client=httpx.Client(transport=httpx.MockTransport(handler)))
    notifier.notify("CLOSE", "ETHUSDT tp_hit")
