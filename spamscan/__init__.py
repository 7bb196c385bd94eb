"""Incremental IMAP spam scanner with in-mailbox cursor state."""

__version__ = "0.1.0"
