"""Helpers for splitting raw messages into headers and body."""

import re
from datetime import datetime, timezone
from email import policy
from email.header import decode_header, make_header
from email.parser import BytesParser
from email.utils import parseaddr, parsedate_to_datetime

from spamscan.models.message import Envelope, Message

_HEADER_END = re.compile(r"\r?\n\r?\n")
_HEADER_LINE = re.compile(r"^([^:\s][^:]*):\s*(.*)$")

# Headers added by a classifier on a previous pass
_SPAM_HEADER_PREFIXES = ("x-spam-", "x-ham-report")


def _to_text(raw: bytes | str) -> str:
    if isinstance(raw, bytes):
        return raw.decode("utf-8", errors="replace")
    return raw


def split_message(raw: bytes | str) -> tuple[dict[str, str], str]:
    """Split a raw message into unfolded headers and body.

    Header names are lower-cased and continuation lines are joined with a
    single space. A repeated header keeps its last value.

    Args:
        raw: Full message (headers + body).

    Returns:
        Tuple of (headers, body). Input without a blank line separating
        headers from body yields no headers and the whole input as body.
    """
    text = _to_text(raw)
    match = _HEADER_END.search(text)
    if match is None:
        return {}, text

    header_text = text[: match.start()]
    body = text[match.end():].strip()
    return parse_headers(header_text), body


def parse_headers(header_text: str) -> dict[str, str]:
    """Parse a header block into a dict with lower-cased keys."""
    headers: dict[str, str] = {}
    current_key: str | None = None

    for line in re.split(r"\r?\n", header_text):
        if line[:1] in (" ", "\t"):
            if current_key is not None:
                headers[current_key] += " " + line.strip()
            continue

        match = _HEADER_LINE.match(line)
        if match:
            current_key = match.group(1).strip().lower()
            headers[current_key] = match.group(2)

    return headers


def extract_headers(raw: bytes | str) -> dict[str, str]:
    """Headers of a raw message (empty when there is no header block)."""
    return split_message(raw)[0]


def strip_spam_headers(raw: bytes) -> bytes:
    """Remove X-Spam-* and X-Ham-Report headers, including continuations.

    Only the header block is touched; the body is returned unchanged.
    """
    # Header block keeps the newline ending its last line
    match = re.search(rb"\r?\n(\r?\n)", raw)
    if match is None:
        head, rest = raw, b""
    else:
        head, rest = raw[: match.start(1)], raw[match.start(1):]

    prefixes = tuple(prefix.encode() for prefix in _SPAM_HEADER_PREFIXES)
    kept: list[bytes] = []
    skipping = False
    for line in head.splitlines(keepends=True):
        if line[:1] in (b" ", b"\t") and skipping:
            continue
        skipping = line.lower().startswith(prefixes)
        if not skipping:
            kept.append(line)

    return b"".join(kept) + rest


def decode_mime_words(value: str) -> str:
    """Decode RFC 2047 encoded words, leaving malformed input untouched."""
    if not value:
        return ""
    try:
        return str(make_header(decode_header(value)))
    except Exception:
        return value


def parse_date_header(value: str | None) -> datetime | None:
    """Parse an RFC 2822 Date header, returning None when unusable."""
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    # "-0000" means UTC with unknown origin
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def message_from_bytes(
    uid: int,
    raw: bytes,
    flags: frozenset[str] = frozenset(),
    internal_date: datetime | None = None,
) -> Message:
    """Build a Message from a fetched RFC822 payload.

    Args:
        uid: Message UID in the selected folder.
        raw: Raw message bytes.
        flags: IMAP flags and keywords set on the message.
        internal_date: Server INTERNALDATE, used when the Date header is
            missing or unparsable.

    Returns:
        Parsed Message.
    """
    headers, _ = split_message(raw)

    try:
        parsed = BytesParser(policy=policy.default).parsebytes(raw)
        part = parsed.get_body(preferencelist=("plain", "html"))
        body = part.get_content() if part is not None else ""
    except Exception:
        # Fallback for malformed MIME
        body = split_message(raw)[1]

    envelope = Envelope(
        subject=decode_mime_words(headers.get("subject", "")),
        sender=parseaddr(headers.get("from", ""))[1],
        date=parse_date_header(headers.get("date")) or internal_date,
        message_id=headers.get("message-id", "").strip(),
    )

    return Message(
        uid=uid,
        envelope=envelope,
        headers=headers,
        flags=flags,
        raw=raw,
        body=body,
    )
