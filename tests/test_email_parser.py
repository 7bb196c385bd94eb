"""Tests for raw message parsing helpers."""

from datetime import datetime, timezone

from conftest import make_raw

from spamscan.utils.email_parser import (
    decode_mime_words,
    message_from_bytes,
    parse_date_header,
    split_message,
    strip_spam_headers,
)


class TestSplitMessage:
    """Tests for header/body splitting."""

    def test_folded_headers(self):
        """Test continuation lines are unfolded and keys lower-cased."""
        raw = b"Subject: first\r\n  second\r\nX-Test: 1\r\n\r\nBody text\r\n"

        headers, body = split_message(raw)

        assert headers == {"subject": "first second", "x-test": "1"}
        assert body == "Body text"

    def test_lf_only(self):
        """Test bare LF line endings are accepted."""
        headers, body = split_message("From: a@b.com\n\nhello\n")

        assert headers == {"from": "a@b.com"}
        assert body == "hello"

    def test_no_separator(self):
        """Test input without a blank line is all body."""
        headers, body = split_message("just some text")

        assert headers == {}
        assert body == "just some text"


class TestStripSpamHeaders:
    """Tests for removal of earlier classifier headers."""

    def test_removes_spam_headers_and_continuations(self):
        """Test X-Spam-* headers and their folded lines are removed."""
        raw = (
            b"X-Spam-Status: Yes, score=9.0\r\n"
            b"\ttests=BAYES_99\r\n"
            b"Subject: hi\r\n"
            b"X-Ham-Report: none\r\n"
            b"X-Spam-Flag: YES\r\n"
            b"\r\n"
            b"X-Spam-Status: in body stays\r\n"
        )

        assert strip_spam_headers(raw) == (
            b"Subject: hi\r\n\r\nX-Spam-Status: in body stays\r\n"
        )

    def test_untouched_without_spam_headers(self):
        """Test clean messages pass through unchanged."""
        raw = make_raw()

        assert strip_spam_headers(raw) == raw


class TestHeaderValues:
    """Tests for header value decoding."""

    def test_decode_mime_words(self):
        """Test RFC 2047 subjects are decoded."""
        assert decode_mime_words("=?utf-8?q?Caf=C3=A9?=") == "Café"

    def test_parse_date_header(self):
        """Test dates are timezone aware."""
        parsed = parse_date_header("Mon, 15 Jan 2024 12:30:00 +0200")

        assert parsed == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_parse_date_header_unknown_zone(self):
        """Test -0000 dates are read as UTC."""
        assert parse_date_header("Mon, 15 Jan 2024 12:30:00 -0000").tzinfo is not None

    def test_parse_date_header_invalid(self):
        """Test unusable dates give None."""
        assert parse_date_header("not a date") is None
        assert parse_date_header(None) is None


class TestMessageFromBytes:
    """Tests for Message construction."""

    def test_envelope(self):
        """Test envelope fields are filled from headers."""
        raw = make_raw(sender="Alice <alice@example.com>", subject="Report", body="See attached.")

        message = message_from_bytes(7, raw, frozenset({"\\Seen"}))

        assert message.uid == 7
        assert message.envelope.sender == "alice@example.com"
        assert message.envelope.subject == "Report"
        assert message.envelope.message_id == "<Report@example.com>"
        assert message.body.strip() == "See attached."
        assert message.raw == raw
        assert message.flags == frozenset({"\\Seen"})

    def test_internal_date_fallback(self):
        """Test INTERNALDATE is used when Date is unusable."""
        internal = datetime(2024, 1, 1, tzinfo=timezone.utc)

        message = message_from_bytes(1, make_raw(date="garbage"), internal_date=internal)

        assert message.envelope.date == internal
