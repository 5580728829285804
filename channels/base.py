"""
Channel Adapters — Base infrastructure for delivery channels.

Provides:
- ChannelError: raised for every failed send
- ChannelMetrics: per-channel send/fail/latency tracking
- ChannelAdapter: abstract base wrapping every send with metrics and logging
"""
from __future__ import annotations

import abc
import time
import structlog
from typing import Any


class ChannelError(Exception):
    """Base exception for all channel operations."""

    def __init__(self, message: str, channel: str = "", retryable: bool = False):
        self.channel = channel
        self.retryable = retryable
        super().__init__(message)


# ══════════════════════════════════════════════════════════════
#  CHANNEL METRICS
# ══════════════════════════════════════════════════════════════

class ChannelMetrics:
    """Tracks per-channel send, failure and latency metrics."""

    def __init__(self, channel: str):
        self.channel = channel
        self.messages_sent: int = 0
        self.messages_failed: int = 0
        self._latencies: list[float] = []
        self._errors: list[str] = []

    def record_send(self, latency_ms: float = 0.0):
        self.messages_sent += 1
        if latency_ms > 0:
            self._latencies.append(latency_ms)
            del self._latencies[:-1000]

    def record_failure(self, error: str = ""):
        self.messages_failed += 1
        if error:
            self._errors.append(error)
            del self._errors[:-100]

    @property
    def avg_latency_ms(self) -> float:
        return sum(self._latencies) / len(self._latencies) if self._latencies else 0.0

    @property
    def failure_rate(self) -> float:
        total = self.messages_sent + self.messages_failed
        return self.messages_failed / total if total > 0 else 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "sent": self.messages_sent,
            "failed": self.messages_failed,
            "avg_latency_ms": round(self.avg_latency_ms, 1),
            "failure_rate": round(self.failure_rate, 4),
            "recent_errors": self._errors[-10:],
        }


# ══════════════════════════════════════════════════════════════
#  CHANNEL ADAPTER — Abstract Base
# ══════════════════════════════════════════════════════════════

class ChannelAdapter(abc.ABC):
    """
    Base class for delivery channels.

    Subclasses implement _do_send. The base class times every send,
    records metrics, and normalises any failure into ChannelError.
    """

    channel_name: str = ""

    def __init__(self, logger=None):
        self._initialized = False
        self._metrics = ChannelMetrics(self.channel_name)
        self.log = logger or structlog.get_logger().bind(component=f"channel.{self.channel_name}")

    # ── Abstract hooks ────────────────────────────────────────

    @abc.abstractmethod
    async def _do_send(self, recipient: int, text: str) -> dict[str, Any]:
        ...

    async def initialize(self) -> None:
        self._initialized = True

    # ── Public send ───────────────────────────────────────────

    async def send(self, recipient: int, text: str) -> dict[str, Any]:
        """Deliver text to recipient. Raises ChannelError on any failure."""
        start = time.monotonic()
        try:
            result = await self._do_send(recipient, text)
        except ChannelError as e:
            e.channel = e.channel or self.channel_name
            self._metrics.record_failure(str(e))
            raise
        except Exception as e:
            self._metrics.record_failure(str(e))
            raise ChannelError(str(e), channel=self.channel_name) from e

        latency = (time.monotonic() - start) * 1000
        self._metrics.record_send(latency)
        result["latency_ms"] = round(latency, 1)
        return result

    # ── Health ────────────────────────────────────────────────

    async def health_check(self) -> dict[str, Any]:
        return {
            "channel": self.channel_name,
            "initialized": self._initialized,
            "metrics": self._metrics.to_dict(),
        }

    async def shutdown(self) -> None:
        pass
