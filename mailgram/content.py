"""Plain-text extraction from raw email messages."""

import email
import html
import re

from .imap_client import extract_body

# Pre-compiled regex patterns for better performance
_HTML_HINT_RE = re.compile(r'<(html|body|div|p|br|table|span|a|td|font)\b', re.IGNORECASE)
_HTML_DROP_RE = re.compile(r'<(script|style|head|title)\b[^>]*>.*?</\1\s*>', re.IGNORECASE | re.DOTALL)
_HTML_COMMENT_RE = re.compile(r'<!--.*?-->', re.DOTALL)
_HTML_BREAK_RE = re.compile(r'<br\s*/?>', re.IGNORECASE)
_HTML_BLOCK_END_RE = re.compile(
    r'</(p|div|tr|table|h[1-6]|blockquote|ul|ol|pre|section|article|header|footer)\s*>',
    re.IGNORECASE,
)
_HTML_LIST_ITEM_RE = re.compile(r'<li\b[^>]*>', re.IGNORECASE)
_HTML_CELL_END_RE = re.compile(r'</t[dh]\s*>', re.IGNORECASE)
_HTML_TAG_RE = re.compile(r'<[^>]*>')
_MULTI_SPACE_RE = re.compile(r'[ \t\f\v\u00a0]+')
_MULTI_NEWLINE_RE = re.compile(r'\n\s*\n\s*\n+')


def html_to_text(markup: str) -> str:
    """Convert an HTML fragment to readable text.

    Tolerates unbalanced or truncated markup; anything that still looks like
    a tag after block handling is dropped.
    """
    text = _HTML_COMMENT_RE.sub('', markup)
    text = _HTML_DROP_RE.sub('', text)
    text = _HTML_BREAK_RE.sub('\n', text)
    text = _HTML_LIST_ITEM_RE.sub('\n- ', text)
    text = _HTML_CELL_END_RE.sub(' ', text)
    text = _HTML_BLOCK_END_RE.sub('\n', text)
    text = _HTML_TAG_RE.sub('', text)
    # A lone '<' without a closing '>' survives the tag pass; unescape after
    return html.unescape(text)


def normalize_whitespace(text: str) -> str:
    text = text.replace('\r\n', '\n').replace('\r', '\n')
    text = _MULTI_SPACE_RE.sub(' ', text)
    text = '\n'.join(line.strip() for line in text.split('\n'))
    text = _MULTI_NEWLINE_RE.sub('\n\n', text)
    return text.strip()


def to_plain_text(raw: bytes | str | None) -> str:
    """Turn a raw RFC822 message into plain text suitable for forwarding.

    The inline body is located and charset-decoded; HTML bodies are
    converted to text. Malformed input never raises, it only degrades the
    result.

    Args:
        raw: Full message source as returned by the server

    Returns:
        Readable text, possibly empty
    """
    if not raw:
        return ""
    if isinstance(raw, str):
        raw = raw.encode("utf-8", errors="replace")

    try:
        body = extract_body(email.message_from_bytes(raw))
    except Exception:
        # The stdlib parser is lenient, but decoding broken payloads can still fail
        body = raw.decode("utf-8", errors="replace")

    if _HTML_HINT_RE.search(body):
        body = html_to_text(body)
    return normalize_whitespace(body)
