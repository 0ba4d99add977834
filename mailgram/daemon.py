"""Daemon mode - wire the watcher, rate limiter and Telegram sink together."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from datetime import datetime, timezone

from .config import Config
from .forwarder import Forwarder
from .models import ForwardableEmail
from .ratelimit import RateLimiter
from .telegram import TelegramNotifier
from .watcher import MailboxWatcher

logger = logging.getLogger("mailgram")


async def run_watcher(config: Config) -> None:
    """Run the mailbox watcher until SIGINT or SIGTERM."""
    rate_limiter = RateLimiter(config.rate_limit)

    async with TelegramNotifier(config.telegram) as notifier:
        forwarder = Forwarder(rate_limiter, notifier, config.telegram)
        watcher = MailboxWatcher(config, forwarder)
        loop = asyncio.get_event_loop()

        def on_signal() -> None:
            logger.info("Shutting down...")
            watcher.end()

        handled = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            # Not available on Windows event loops
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, on_signal)
                handled.append(sig)

        logger.info(f"Forwarding mail for {', '.join(config.monitoring.target_emails)}")
        try:
            await watcher.connect()
        finally:
            watcher.end()
            for sig in handled:
                loop.remove_signal_handler(sig)


async def run_scan(config: Config) -> int:
    """Scan the mailbox once and forward matching unread messages.

    Returns the number of messages forwarded.
    """
    rate_limiter = RateLimiter(config.rate_limit)

    async with TelegramNotifier(config.telegram) as notifier:
        forwarder = Forwarder(rate_limiter, notifier, config.telegram)
        watcher = MailboxWatcher(config, forwarder)
        forwarded = await watcher.run_once()

    logger.info(f"Forwarded {forwarded} messages")
    return forwarded


async def send_test_message(config: Config, text: str) -> None:
    """Push a test message through the rate-limited send path."""
    rate_limiter = RateLimiter(config.rate_limit)
    recipient = config.monitoring.target_emails[0] if config.monitoring.target_emails else ""

    async with TelegramNotifier(config.telegram) as notifier:
        forwarder = Forwarder(rate_limiter, notifier, config.telegram)
        await forwarder.send(
            ForwardableEmail(
                subject="mailgram test message",
                recipient=recipient,
                date=datetime.now(timezone.utc),
                content=text,
            )
        )
