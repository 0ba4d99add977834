"""Shared test fixtures."""

import asyncio
import tempfile
import threading
import time
from datetime import datetime, timezone
from pathlib import Path

import pytest

from mailgram.config import (
    Config,
    ImapConfig,
    MonitoringConfig,
    RateLimitConfig,
    TelegramConfig,
)
from mailgram.models import MailboxMessage


class FakeMailbox:
    """In-memory stand-in for ImapMailbox.

    ``idle_script`` entries are consumed one per idle_wait() call: a list is
    returned as the server responses, an exception is raised, and a callable
    is invoked and its result returned. With the script exhausted, idle_wait()
    blocks like a real IDLE until shutdown() is called.
    """

    def __init__(self):
        self.exists = 0
        self.messages: list[MailboxMessage] = []
        self.raw: dict[int, bytes] = {}
        self.seen: list[int] = []
        self.idle_script: list = []
        self.connect_errors: list[Exception] = []
        self.select_errors: list[Exception] = []
        self.fetch_errors: list[Exception] = []
        self.download_errors: dict[int, Exception] = {}
        self.events: list[tuple] = []
        self.connect_count = 0
        self.fetch_count = 0
        self.idle_calls = 0
        self.shutdown_count = 0
        self.logout_count = 0
        self._shutdown = threading.Event()

    def add_message(self, message: MailboxMessage, raw: bytes = b"") -> None:
        self.messages.append(message)
        self.raw[message.uid] = raw or f"Subject: {message.subject}\r\n\r\nBody {message.uid}".encode()
        self.exists += 1

    def connect(self) -> None:
        self.connect_count += 1
        self.events.append(("connect",))
        if self.connect_errors:
            raise self.connect_errors.pop(0)
        self._shutdown.clear()

    def select_folder(self, folder: str) -> int:
        if self.select_errors:
            raise self.select_errors.pop(0)
        return self.exists

    def fetch_unread(self) -> list[MailboxMessage]:
        self.fetch_count += 1
        self.events.append(("fetch",))
        if self.fetch_errors:
            raise self.fetch_errors.pop(0)
        return [m for m in self.messages if m.uid not in self.seen]

    def download(self, uid: int) -> bytes:
        self.events.append(("download", uid))
        if uid in self.download_errors:
            raise self.download_errors[uid]
        return self.raw[uid]

    def mark_seen(self, uid: int) -> None:
        self.events.append(("seen", uid))
        self.seen.append(uid)

    def idle_wait(self, timeout: float) -> list[tuple]:
        self.idle_calls += 1
        if self.idle_script:
            item = self.idle_script.pop(0)
            if isinstance(item, Exception):
                raise item
            if callable(item):
                return item()
            return item
        if not self._shutdown.wait(5):
            return []
        raise OSError("socket closed")

    def shutdown(self) -> None:
        self.shutdown_count += 1
        self._shutdown.set()

    def disconnect(self) -> None:
        self.logout_count += 1
        self.events.append(("logout",))


def make_message(uid: int, to=("claude@pan93.com",), cc=(), subject=None, seen=False) -> MailboxMessage:
    return MailboxMessage(
        uid=uid,
        subject=subject or f"Message {uid}",
        sender="sender@example.com",
        to=list(to),
        cc=list(cc),
        date=datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc),
        seen=seen,
    )


@pytest.fixture
def temp_dir():
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def imap_config():
    """Create a test IMAP configuration."""
    return ImapConfig(
        host="imap.example.com",
        port=993,
        username="test@example.com",
        password="testpass",
    )


@pytest.fixture
def telegram_config():
    return TelegramConfig(channel_id="@mailgram_test", token="123:abc")


@pytest.fixture
def sample_config(imap_config, telegram_config):
    """Create a sample configuration for testing."""
    return Config(
        imap=imap_config,
        telegram=telegram_config,
        monitoring=MonitoringConfig(
            target_emails=["claude@pan93.com", "gpt@pan93.com"],
            reconnect_delay_seconds=0.01,
        ),
        rate_limit=RateLimitConfig(window_ms=1000, max_requests=20),
    )


@pytest.fixture
def fake_mailbox():
    return FakeMailbox()


@pytest.fixture
def wait_until():
    """Return a coroutine function polling a predicate until it holds."""

    async def _wait_until(predicate, timeout: float = 2.0) -> None:
        deadline = time.monotonic() + timeout
        while not predicate():
            if time.monotonic() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.01)

    return _wait_until


@pytest.fixture
def sample_config_toml(temp_dir, monkeypatch):
    """Create a sample TOML config file."""
    # Secrets must come from environment variables
    monkeypatch.setenv("MAILGRAM_IMAP_USERNAME", "user@test.com")
    monkeypatch.setenv("MAILGRAM_IMAP_PASSWORD", "secret")
    monkeypatch.setenv("MAILGRAM_TELEGRAM_TOKEN", "123:token")

    config_path = temp_dir / "config.toml"
    config_path.write_text('''
[imap]
host = "imap.test.com"
port = 993
use_ssl = true
folder = "INBOX"
idle_timeout_seconds = 120
timeout_seconds = 45

[telegram]
channel_id = -100123456

[monitoring]
target_emails = ["claude@pan93.com", "gpt@pan93.com"]
reconnect_delay_seconds = 5

[rate_limit]
window_ms = 30000
max_requests = 5
''')
    return config_path
