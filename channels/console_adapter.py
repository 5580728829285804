"""Console channel — logs messages instead of delivering them. For local runs."""
from __future__ import annotations

import uuid
from typing import Any

from channels.base import ChannelAdapter


class ConsoleAdapter(ChannelAdapter):
    channel_name = "console"

    def __init__(self, logger=None):
        super().__init__(logger=logger)
        self.sent: list[tuple[int, str]] = []

    async def _do_send(self, recipient: int, text: str) -> dict[str, Any]:
        self.sent.append((recipient, text))
        self.log.info("console_message", chat_id=recipient, text=text)
        return {"status": "sent", "channel_message_id": uuid.uuid4().hex[:12]}
