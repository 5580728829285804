"""
Telegram Channel Adapter — Bot API delivery.

Send flow:
1. initialize() calls getMe to verify the bot token
2. send() POSTs sendMessage with {chat_id, text}
3. A response with "ok": false is a definitive failure (blocked bot,
   unknown chat, ...) and surfaces as ChannelError

Only connection-level errors are retried; once the request has reached
Telegram a resend could deliver the message twice.

API Docs: https://core.telegram.org/bots/api#sendmessage
"""
from __future__ import annotations

from typing import Any, Optional

import httpx
from tenacity import (
    retry, retry_if_exception_type, stop_after_attempt, wait_exponential,
)

from channels.base import ChannelAdapter, ChannelError


class TelegramAdapter(ChannelAdapter):
    """Sends plain-text messages to a Telegram chat id."""

    channel_name = "telegram"

    def __init__(
        self,
        bot_token: str,
        api_base_url: str = "https://api.telegram.org",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        logger=None,
    ):
        super().__init__(logger=logger)
        self.bot_token = bot_token
        self.base_url = f"{api_base_url.rstrip('/')}/bot{bot_token}"
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.bot_username: str = ""

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout, connect=5.0),
                transport=self._transport,
            )
        return self._client

    @retry(
        retry=retry_if_exception_type(httpx.ConnectError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, max=5),
        reraise=True,
    )
    async def _request(self, method: str, payload: dict[str, Any] = None) -> dict[str, Any]:
        client = await self._get_client()
        resp = await client.post(f"/{method}", json=payload or {})
        try:
            body = resp.json()
        except ValueError:
            body = {"ok": False, "description": resp.text[:500]}

        if resp.status_code >= 400 or not body.get("ok", False):
            description = body.get("description", f"HTTP {resp.status_code}")
            self.log.error("telegram_api_error",
                           method=method,
                           status=resp.status_code,
                           description=description)
            raise ChannelError(
                f"telegram {method} failed: {description}",
                channel=self.channel_name,
                retryable=resp.status_code == 429 or resp.status_code >= 500,
            )
        return body.get("result", {})

    async def initialize(self) -> None:
        if not self.bot_token:
            raise ChannelError("telegram bot token is not configured", channel=self.channel_name)
        me = await self._request("getMe")
        self.bot_username = me.get("username", "")
        self._initialized = True
        self.log.info("telegram_bot_authorized", bot_username=self.bot_username)

    async def _do_send(self, recipient: int, text: str) -> dict[str, Any]:
        result = await self._request("sendMessage", {"chat_id": recipient, "text": text})
        self.log.info("telegram_message_sent", chat_id=recipient)
        return {
            "status": "sent",
            "channel_message_id": str(result.get("message_id", "")),
        }

    async def health_check(self) -> dict[str, Any]:
        base = await super().health_check()
        return {**base, "bot_username": self.bot_username}

    async def shutdown(self) -> None:
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
