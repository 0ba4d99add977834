"""Rate-limited send path from the watcher to the notification sink."""

import logging
from typing import Protocol

from .config import TelegramConfig
from .models import ForwardableEmail
from .ratelimit import RateLimiter
from .telegram import format_message

logger = logging.getLogger("mailgram")


class NotificationSink(Protocol):
    """Anything that can deliver a formatted message, raising on failure."""

    async def notify(self, text: str) -> None:
        ...


class Forwarder:
    """Format a ForwardableEmail and deliver it if the rate limit allows.

    There is no buffering: a rejected email is gone. Callers see
    RateLimitExceeded or the sink's own error.
    """

    def __init__(self, rate_limiter: RateLimiter, sink: NotificationSink, config: TelegramConfig):
        self.rate_limiter = rate_limiter
        self.sink = sink
        self.config = config

    async def send(self, message: ForwardableEmail) -> None:
        self.rate_limiter.acquire()
        await self.sink.notify(format_message(message, self.config))
        logger.info(f"Forwarded '{message.subject[:50]}' for {message.recipient}")
