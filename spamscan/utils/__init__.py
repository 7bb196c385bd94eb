"""Utility modules for logging, header parsing, and sender maps."""

from spamscan.utils.email_parser import extract_headers, split_message, strip_spam_headers
from spamscan.utils.mapfile import MapStore
from spamscan.utils.senders import extract_sender_addresses, extract_senders

__all__ = [
    "extract_headers",
    "split_message",
    "strip_spam_headers",
    "MapStore",
    "extract_senders",
    "extract_sender_addresses",
]
