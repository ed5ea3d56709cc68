from __future__ import annotations

from typing import Any

import httpx

from notifier.errors import ConfigurationError, TelegramApiError


class TelegramBotClient:
    """Thin wrapper around the Bot API ``sendMessage`` call.

    A single ``httpx.AsyncClient`` is reused for every request. Tests pass
    their own client (usually backed by ``httpx.MockTransport``).
    """

    def __init__(
        self,
        *,
        bot_token: str | None,
        api_base_url: str = "https://api.telegram.org",
        timeout_seconds: float = 20.0,
        disable_link_preview: bool = True,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.bot_token = bot_token
        self.api_base_url = api_base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.disable_link_preview = disable_link_preview
        self._client = client
        self._owns_client = client is None

    @property
    def configured(self) -> bool:
        return bool(self.bot_token)

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._client

    async def send_message(self, chat_id: str | int, text: str) -> dict[str, Any]:
        if not self.bot_token:
            raise ConfigurationError("Telegram bot token is not configured")

        url = f"{self.api_base_url}/bot{self.bot_token}/sendMessage"
        payload = {
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": self.disable_link_preview,
        }
        try:
            response = await self._get_client().post(
                url, json=payload, timeout=self.timeout_seconds
            )
        except httpx.TimeoutException as exc:
            raise TelegramApiError(
                f"Telegram API request timed out after {self.timeout_seconds:g}s"
            ) from exc
        except httpx.RequestError as exc:
            raise TelegramApiError(f"Telegram API request failed: {exc}") from exc

        try:
            body = response.json()
        except ValueError:
            body = {}

        if not response.is_success:
            raise TelegramApiError(
                describe_error(body, response.status_code),
                status_code=response.status_code,
            )
        return body if isinstance(body, dict) else {}

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None


def describe_error(body: object, status_code: int) -> str:
    if isinstance(body, dict):
        for key in ("description", "error"):
            value = body.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    return f"Telegram API responded with HTTP {status_code}"
