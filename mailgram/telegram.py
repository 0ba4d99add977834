"""Telegram Bot API notification sink."""

import html
import logging

import httpx

from .config import TelegramConfig
from .models import ForwardableEmail

logger = logging.getLogger("mailgram")


class NotificationError(Exception):
    """Raised when Telegram does not accept a message."""


def escape_html(text: str) -> str:
    """Escape the characters Telegram's HTML parse mode treats as markup."""
    return html.escape(text, quote=False)


def truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 1].rstrip() + "…"


def format_message(message: ForwardableEmail, config: TelegramConfig) -> str:
    """Compose the HTML message posted to the channel.

    Subject, recipient and content are escaped; content is truncated before
    escaping so the escaped text cannot be cut inside an entity.
    """
    subject = escape_html(message.subject or "(no subject)")
    recipient = escape_html(message.recipient)
    date = escape_html(message.date.strftime(config.date_format))
    content = escape_html(truncate(message.content, config.max_content_length))

    return (
        f"<b>{subject}</b>\n"
        f"📩 {recipient}\n"
        f"({date})\n"
        f"\n"
        f"<blockquote expandable>\n"
        f"{content}\n"
        f"</blockquote>"
    )


class TelegramNotifier:
    """Async client posting messages to a Telegram channel."""

    def __init__(self, config: TelegramConfig):
        self.config = config
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "TelegramNotifier":
        self._client = httpx.AsyncClient(
            base_url=f"{self.config.api_base_url.rstrip('/')}/bot{self.config.token}",
            timeout=httpx.Timeout(self.config.timeout_seconds),
        )
        return self

    async def __aexit__(self, *args) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            raise RuntimeError("Client not initialized. Use async context manager.")
        return self._client

    async def notify(self, text: str) -> None:
        """Send one HTML-formatted message to the configured channel.

        Raises:
            NotificationError: If the request fails or Telegram rejects it
        """
        try:
            response = await self.client.post(
                "/sendMessage",
                json={
                    "chat_id": self.config.channel_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": True,
                },
            )
            data = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationError(f"Telegram request failed: {e}") from e

        if not data.get("ok"):
            description = data.get("description", f"HTTP {response.status_code}")
            raise NotificationError(f"Telegram rejected message: {description}")
