"""Tests for daemon wiring."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from conftest import make_message
from mailgram.daemon import run_scan, run_watcher, send_test_message
from mailgram.telegram import TelegramNotifier


class TestRunScan:
    @pytest.mark.asyncio
    async def test_forwards_unread_mail(self, sample_config, fake_mailbox):
        fake_mailbox.add_message(make_message(1, subject="First"))
        fake_mailbox.add_message(make_message(2, to=["nobody@example.com"]))

        with (
            patch("mailgram.watcher.ImapMailbox", return_value=fake_mailbox),
            patch.object(TelegramNotifier, "notify", new_callable=AsyncMock) as mock_notify,
        ):
            forwarded = await run_scan(sample_config)

        assert forwarded == 1
        assert mock_notify.await_args.args[0].startswith("<b>First</b>")

    @pytest.mark.asyncio
    async def test_rate_limit_applies_across_scan(self, sample_config, fake_mailbox):
        sample_config.rate_limit.max_requests = 1
        fake_mailbox.add_message(make_message(1))
        fake_mailbox.add_message(make_message(2))

        with (
            patch("mailgram.watcher.ImapMailbox", return_value=fake_mailbox),
            patch.object(TelegramNotifier, "notify", new_callable=AsyncMock) as mock_notify,
        ):
            forwarded = await run_scan(sample_config)

        assert forwarded == 1
        assert mock_notify.await_count == 1
        assert fake_mailbox.seen == [1, 2]


class TestSendTestMessage:
    @pytest.mark.asyncio
    async def test_sends_through_forwarder(self, sample_config):
        with patch.object(TelegramNotifier, "notify", new_callable=AsyncMock) as mock_notify:
            await send_test_message(sample_config, "ping & pong")

        text = mock_notify.await_args.args[0]
        assert "ping &amp; pong" in text
        assert "claude@pan93.com" in text


class TestRunWatcher:
    @pytest.mark.asyncio
    async def test_runs_watcher_and_ends_it(self, sample_config):
        watcher = MagicMock()
        watcher.connect = AsyncMock()

        with patch("mailgram.daemon.MailboxWatcher", return_value=watcher) as mock_class:
            await run_watcher(sample_config)

        mock_class.assert_called_once()
        watcher.connect.assert_awaited_once()
        watcher.end.assert_called_once()
