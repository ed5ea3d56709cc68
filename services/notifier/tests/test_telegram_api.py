from __future__ import annotations

import json

import httpx
import pytest
from notifier.errors import ConfigurationError, TelegramApiError
from notifier.telegram_api import TelegramBotClient, describe_error

pytestmark = pytest.mark.unit


def make_client(handler, **kwargs) -> TelegramBotClient:
    return TelegramBotClient(
        bot_token=kwargs.pop("bot_token", "123:abc"),
        api_base_url="https://telegram.test/",
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        **kwargs,
    )


@pytest.mark.asyncio
async def test_send_message_posts_to_bot_endpoint() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"ok": True, "result": {"message_id": 7}})

    client = make_client(handler, disable_link_preview=False)

    body = await client.send_message(555001, "hello")

    assert body["result"]["message_id"] == 7
    (request,) = seen
    assert str(request.url) == "https://telegram.test/bot123:abc/sendMessage"
    assert json.loads(request.content) == {
        "chat_id": 555001,
        "text": "hello",
        "disable_web_page_preview": False,
    }


@pytest.mark.asyncio
async def test_send_message_raises_with_api_description() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(403, json={"ok": False, "description": "Forbidden: bot was blocked"})

    client = make_client(handler)

    with pytest.raises(TelegramApiError) as excinfo:
        await client.send_message(1, "hello")

    assert str(excinfo.value) == "Forbidden: bot was blocked"
    assert excinfo.value.status_code == 403


@pytest.mark.asyncio
async def test_send_message_falls_back_to_status_for_non_json_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>bad gateway</html>")

    client = make_client(handler)

    with pytest.raises(TelegramApiError, match="HTTP 502"):
        await client.send_message(1, "hello")


@pytest.mark.asyncio
async def test_send_message_treats_redirects_as_failures() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(302, headers={"location": "https://proxy.test/login"})

    client = make_client(handler)

    with pytest.raises(TelegramApiError, match="HTTP 302") as excinfo:
        await client.send_message(1, "hello")

    assert excinfo.value.status_code == 302


@pytest.mark.asyncio
async def test_send_message_reports_timeouts() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("read timed out", request=request)

    client = make_client(handler, timeout_seconds=2.5)

    with pytest.raises(TelegramApiError, match=r"timed out after 2\.5s"):
        await client.send_message(1, "hello")


@pytest.mark.asyncio
async def test_send_message_requires_token() -> None:
    client = TelegramBotClient(bot_token=None)

    assert client.configured is False
    with pytest.raises(ConfigurationError):
        await client.send_message(1, "hello")


@pytest.mark.asyncio
async def test_aclose_leaves_injected_client_open() -> None:
    injected = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json={}))
    )
    client = TelegramBotClient(bot_token="123:abc", client=injected)

    await client.aclose()

    assert injected.is_closed is False
    await injected.aclose()


def test_describe_error_prefers_description_then_error() -> None:
    assert describe_error({"description": " chat not found "}, 400) == "chat not found"
    assert describe_error({"error": "rate limited"}, 429) == "rate limited"
    assert describe_error([], 500) == "Telegram API responded with HTTP 500"
