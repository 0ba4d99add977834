"""Mailbox watcher: connection lifecycle, IDLE loop and message scanning."""

import asyncio
import logging
from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone

from .config import Config
from .content import to_plain_text
from .forwarder import Forwarder
from .imap_client import ImapMailbox
from .models import ConnectionState, ForwardableEmail, MailboxMessage
from .ratelimit import RateLimitExceeded

logger = logging.getLogger("mailgram")


class WatcherClosed(Exception):
    """Raised inside the watcher when end() interrupts an operation."""


def match_recipient(message: MailboxMessage, targets: Iterable[str]) -> str | None:
    """Return the target address a message was sent to, or None.

    To and Cc addresses are compared case-insensitively and exactly, so
    ``notclaude@pan93.com`` does not match ``claude@pan93.com``.
    """
    wanted = {target.lower(): target for target in targets}
    for address in message.recipients:
        target = wanted.get(address.lower())
        if target is not None:
            return target
    return None


class MailboxWatcher:
    """Watch one IMAP folder and forward unread mail sent to target addresses.

    connect() runs until end() is called: it logs in, scans the folder once,
    then waits in IDLE and rescans whenever the server reports new messages
    or an IDLE wait times out with no pushes.
    Any failure drops the connection and retries after a fixed delay.

    All IMAP calls run on a single worker thread so only one command is in
    flight per connection. end() must be called from the event loop thread.
    """

    def __init__(
        self,
        config: Config,
        forwarder: Forwarder,
        extract_text: Callable[[bytes], str] = to_plain_text,
    ):
        self.config = config
        self.forwarder = forwarder
        self.extract_text = extract_text
        self.targets = list(config.monitoring.target_emails)
        self._state = ConnectionState.DISCONNECTED
        self._stop = asyncio.Event()
        self._mailbox: ImapMailbox | None = None
        self._executor: ThreadPoolExecutor | None = None
        self._message_count = 0

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def closed(self) -> bool:
        return self._state is ConnectionState.CLOSED

    def _transition(self, state: ConnectionState) -> None:
        if self.closed:
            raise WatcherClosed()
        logger.debug(f"Watcher state {self._state.value} -> {state.value}")
        self._state = state

    async def _run(self, func, *args):
        """Run a blocking IMAP call on the connection's worker thread."""
        loop = asyncio.get_event_loop()
        return await loop.run_in_executor(self._executor, func, *args)

    def _drop_mailbox(self) -> None:
        mailbox = self._mailbox
        self._mailbox = None
        if mailbox is not None:
            mailbox.shutdown()

    async def _wait_for_stop(self, timeout: float) -> bool:
        """Sleep up to timeout seconds; return True early if end() was called."""
        try:
            await asyncio.wait_for(self._stop.wait(), timeout=timeout)
            return True
        except asyncio.TimeoutError:
            return False

    async def connect(self) -> None:
        """Watch the mailbox until end() is called.

        Returns immediately if the watcher was already started or closed.
        Errors never propagate: each one leads to a reconnect after
        ``reconnect_delay_seconds``.
        """
        if self._state is not ConnectionState.DISCONNECTED:
            logger.debug(f"connect() ignored in state {self._state.value}")
            return

        delay = self.config.monitoring.reconnect_delay_seconds
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mailgram-imap")
        try:
            while not self.closed:
                try:
                    await self._open()
                    await self.scan()
                    await self._idle_loop()
                except WatcherClosed:
                    break
                except Exception as e:
                    if self.closed:
                        break
                    logger.error(f"IMAP connection error on {self.config.imap.host}: {e}")
                    self._drop_mailbox()
                    self._transition(ConnectionState.RECONNECTING)
                    logger.info(f"Reconnecting in {delay:.0f}s...")
                    await self._wait_for_stop(delay)
        finally:
            self._drop_mailbox()
            self._executor.shutdown(wait=False)
            self._executor = None
        logger.info("Mailbox watcher stopped")

    async def run_once(self) -> int:
        """Connect, scan the folder a single time and close.

        Unlike connect(), errors propagate to the caller. A successful scan
        logs out before the connection is closed.

        Returns:
            Number of messages forwarded
        """
        if self._state is not ConnectionState.DISCONNECTED:
            raise RuntimeError(f"Watcher already started (state: {self._state.value})")

        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="mailgram-imap")
        try:
            await self._open()
            forwarded = await self.scan()
            mailbox = self._mailbox
            if mailbox is not None:
                await self._run(mailbox.disconnect)
            return forwarded
        finally:
            self.end()
            self._executor.shutdown(wait=False)
            self._executor = None

    def end(self) -> None:
        """Stop watching: wake any pending wait and close the connection.

        Safe in every state; calling it on a closed watcher does nothing.
        """
        if self.closed:
            return
        logger.info("Stopping mailbox watcher")
        self._state = ConnectionState.CLOSED
        self._stop.set()
        self._drop_mailbox()

    async def _open(self) -> None:
        """Log in and select the watched folder."""
        imap = self.config.imap
        self._transition(ConnectionState.CONNECTING)
        mailbox = ImapMailbox(imap)
        self._mailbox = mailbox
        logger.info(f"Connecting to IMAP server {imap.host}:{imap.port}")
        try:
            await self._run(mailbox.connect)
            self._transition(ConnectionState.CONNECTED)
            self._message_count = await self._run(mailbox.select_folder, imap.folder)
            self._transition(ConnectionState.WATCHING)
        except WatcherClosed:
            # end() ran while login was in progress and saw no socket to close
            mailbox.shutdown()
            raise
        logger.info(f"Watching {imap.folder} on {imap.host} ({self._message_count} messages)")

    async def _idle_loop(self) -> None:
        while self._state is ConnectionState.WATCHING:
            responses = await self._wait_for_activity()
            if self.closed:
                raise WatcherClosed()
            if not responses:
                # EXISTS sent while a scan held the connection is not repeated in IDLE
                logger.debug(f"IDLE timeout on {self.config.imap.folder}, rescanning")
                await self.scan()
            elif self._has_new_messages(responses):
                await self.scan()

    async def _wait_for_activity(self) -> list[tuple]:
        """Wait in IDLE for server pushes, racing against end().

        Raises:
            WatcherClosed: If end() was called first
        """
        mailbox = self._mailbox
        if mailbox is None:
            raise WatcherClosed()

        idle = asyncio.ensure_future(
            self._run(mailbox.idle_wait, self.config.imap.idle_timeout_seconds)
        )
        stop = asyncio.ensure_future(self._stop.wait())
        try:
            done, _ = await asyncio.wait({idle, stop}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            stop.cancel()
            if not idle.done():
                # The socket is shut down by end(); the worker thread unwinds on its own
                idle.cancel()

        if idle not in done:
            raise WatcherClosed()
        return idle.result()

    def _has_new_messages(self, responses: list[tuple]) -> bool:
        """Track the folder's message count and report whether it grew."""
        grew = False
        for response in responses:
            if len(response) < 2 or not isinstance(response[0], int):
                continue
            number, kind = response[0], response[1]
            if kind == b"EXISTS":
                if number > self._message_count:
                    grew = True
                self._message_count = number
            elif kind == b"EXPUNGE":
                self._message_count = max(self._message_count - 1, 0)
        if grew:
            logger.info(f"New activity in {self.config.imap.folder} ({self._message_count} messages)")
        return grew

    async def scan(self) -> int:
        """Forward every unread message addressed to a target.

        A failure while handling one message is logged and the scan moves on
        to the next. Failing to list unread messages is a connection error.

        Returns:
            Number of messages forwarded
        """
        mailbox = self._mailbox
        if self._state is not ConnectionState.WATCHING or mailbox is None:
            return 0

        messages = await self._run(mailbox.fetch_unread)
        logger.info(f"Found {len(messages)} unread messages in {self.config.imap.folder}")

        forwarded = 0
        for message in messages:
            if self._state is not ConnectionState.WATCHING:
                break
            if message.seen:
                continue

            recipient = match_recipient(message, self.targets)
            if recipient is None:
                logger.debug(f"Message {message.uid} is not for a monitored address")
                continue

            try:
                prepared = await self._prepare(mailbox, message, recipient)
            except Exception as e:
                logger.error(f"Error processing message {message.uid}: {e}")
                continue

            if await self._forward(message, prepared):
                forwarded += 1
        return forwarded

    async def _prepare(
        self, mailbox: ImapMailbox, message: MailboxMessage, recipient: str
    ) -> ForwardableEmail:
        """Download, extract and mark a message read, in that order."""
        raw = await self._run(mailbox.download, message.uid)
        content = self.extract_text(raw)
        # Seen must be set before the email reaches the send path
        await self._run(mailbox.mark_seen, message.uid)

        return ForwardableEmail(
            subject=message.subject,
            recipient=recipient,
            date=message.date or datetime.now(timezone.utc),
            content=content,
        )

    async def _forward(self, message: MailboxMessage, prepared: ForwardableEmail) -> bool:
        try:
            await self.forwarder.send(prepared)
            return True
        except RateLimitExceeded as e:
            logger.warning(f"Dropping message {message.uid} ('{message.subject[:50]}'): {e}")
        except Exception as e:
            logger.error(f"Error forwarding message {message.uid}: {e}")
        return False
