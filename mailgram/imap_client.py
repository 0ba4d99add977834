"""IMAP session used by the mailbox watcher."""

import contextlib
import email.message
import logging
from datetime import datetime
from email.header import decode_header

from imapclient import SEEN, IMAPClient

from .config import ImapConfig
from .models import MailboxMessage

logger = logging.getLogger("mailgram")


def _decode_bytes(data: bytes, charset: str | None) -> str:
    try:
        return data.decode(charset or "utf-8", errors="replace")
    except LookupError:
        # Unknown charset label
        return data.decode("utf-8", errors="replace")


def decode_mime_header(header: str | bytes | None) -> str:
    """Decode a MIME-encoded email header."""
    if header is None:
        return ""
    if isinstance(header, bytes):
        header = header.decode("utf-8", errors="replace")
    decoded_parts = decode_header(header)
    result = []
    for part, charset in decoded_parts:
        if isinstance(part, bytes):
            result.append(_decode_bytes(part, charset))
        else:
            result.append(part)
    return "".join(result)


def _decode_part(part: email.message.Message) -> str | None:
    payload = part.get_payload(decode=True)
    if isinstance(payload, bytes):
        return _decode_bytes(payload, part.get_content_charset())
    return None


def extract_body(msg: email.message.Message) -> str:
    """Extract the body text from an email message.

    Inline text/plain is preferred; the first inline text/html part is used
    when no plain part exists. The result may therefore contain markup.
    """
    if msg.is_multipart():
        for wanted in ("text/plain", "text/html"):
            for part in msg.walk():
                if part.get_content_type() != wanted:
                    continue
                # Skip attachments - only get inline body text
                disposition = part.get("Content-Disposition", "")
                if "attachment" in disposition:
                    continue
                text = _decode_part(part)
                if text is not None:
                    return text
    else:
        text = _decode_part(msg)
        if text is not None:
            return text
    return ""


def format_address(address) -> str | None:
    """Render an imapclient envelope Address as ``mailbox@host``.

    Returns None for group markers, which carry no host.
    """
    if address is None or not address.mailbox or not address.host:
        return None
    mailbox = address.mailbox.decode("utf-8", errors="replace")
    host = address.host.decode("utf-8", errors="replace")
    return f"{mailbox}@{host}"


def _address_list(addresses) -> list[str]:
    result = []
    for address in addresses or ():
        formatted = format_address(address)
        if formatted:
            result.append(formatted)
    return result


def _format_sender(addresses) -> str:
    for address in addresses or ():
        formatted = format_address(address)
        if not formatted:
            continue
        name = decode_mime_header(address.name) if address.name else ""
        return f"{name} <{formatted}>" if name else formatted
    return ""


def message_from_fetch(uid: int, data: dict) -> MailboxMessage:
    """Build a MailboxMessage from an ENVELOPE/FLAGS/INTERNALDATE fetch result.

    Raises:
        ValueError: If the server returned no envelope for the message
    """
    envelope = data.get(b"ENVELOPE")
    if envelope is None:
        raise ValueError(f"No envelope returned for UID {uid}")

    flags = data.get(b"FLAGS", ())
    date = envelope.date
    if date is None:
        date = data.get(b"INTERNALDATE")

    return MailboxMessage(
        uid=uid,
        subject=decode_mime_header(envelope.subject),
        sender=_format_sender(envelope.from_),
        to=_address_list(envelope.to),
        cc=_address_list(envelope.cc),
        date=date if isinstance(date, datetime) else None,
        seen=SEEN in flags,
    )


class ImapMailbox:
    """A single authenticated IMAP connection with one selected folder."""

    def __init__(self, config: ImapConfig):
        self.config = config
        self._client: IMAPClient | None = None

    def connect(self) -> None:
        """Connect to the IMAP server."""
        self._client = IMAPClient(
            self.config.host,
            port=self.config.port,
            ssl=self.config.use_ssl,
            timeout=self.config.timeout_seconds,
        )
        self._client.login(self.config.username, self.config.password)

    def disconnect(self) -> None:
        """Log out and drop the connection."""
        if self._client:
            with contextlib.suppress(Exception):
                self._client.logout()
            self._client = None

    def shutdown(self) -> None:
        """Close the socket without logging out.

        Safe to call from another thread; a blocked IDLE wait on the
        connection returns or raises shortly afterwards.
        """
        client = self._client
        if client is not None:
            with contextlib.suppress(Exception):
                client.shutdown()

    @property
    def client(self) -> IMAPClient:
        if self._client is None:
            raise RuntimeError("Not connected to IMAP server")
        return self._client

    def select_folder(self, folder: str) -> int:
        """Select a folder and return its current message count."""
        response = self.client.select_folder(folder)
        return int(response.get(b"EXISTS", 0))

    def fetch_unread(self) -> list[MailboxMessage]:
        """Fetch envelope and flags of every unread message in the selected folder."""
        uids = self.client.search(["UNSEEN"])
        if not uids:
            return []

        response = self.client.fetch(uids, ["ENVELOPE", "FLAGS", "INTERNALDATE"])
        messages = []
        for uid in sorted(response):
            try:
                messages.append(message_from_fetch(uid, response[uid]))
            except ValueError as e:
                logger.warning(f"Skipping message: {e}")
        return messages

    def download(self, uid: int) -> bytes:
        """Fetch raw RFC822 bytes by UID without setting the Seen flag.

        Raises:
            LookupError: If the server has no such message
        """
        # Use BODY.PEEK[] to avoid marking as read
        messages = self.client.fetch([uid], ["BODY.PEEK[]"])
        if uid not in messages or b"BODY[]" not in messages[uid]:
            raise LookupError(f"Message UID {uid} not found")
        return messages[uid][b"BODY[]"]

    def mark_seen(self, uid: int) -> None:
        """Set the Seen flag on a message."""
        self.client.add_flags([uid], [SEEN])

    def idle_wait(self, timeout: float) -> list[tuple]:
        """Block in IDLE until the server pushes something or timeout expires.

        Returns:
            Untagged responses such as ``(3, b"EXISTS")``; empty on timeout
        """
        self.client.idle()
        try:
            responses = list(self.client.idle_check(timeout=timeout))
        finally:
            _text, trailing = self.client.idle_done()
        responses.extend(trailing)
        return responses
