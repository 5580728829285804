"""Delivery channel adapters."""
from channels.base import ChannelAdapter, ChannelError, ChannelMetrics
from channels.console_adapter import ConsoleAdapter
from channels.telegram_adapter import TelegramAdapter


def create_channel(settings) -> ChannelAdapter:
    """Build the adapter selected by settings.channel."""
    if settings.channel == "telegram":
        return TelegramAdapter(
            bot_token=settings.telegram.bot_token,
            api_base_url=settings.telegram.api_base_url,
            timeout=settings.telegram.timeout,
        )
    return ConsoleAdapter()


__all__ = [
    "ChannelAdapter", "ChannelError", "ChannelMetrics",
    "ConsoleAdapter", "TelegramAdapter", "create_channel",
]
