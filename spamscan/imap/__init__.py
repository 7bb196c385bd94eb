"""IMAP client module for mail store access."""

from spamscan.imap.client import IMAPClient, MailStoreAuthenticationError, MailStoreError
from spamscan.imap.search import SearchCriteria, filter_new_uids

__all__ = [
    "IMAPClient",
    "MailStoreError",
    "MailStoreAuthenticationError",
    "SearchCriteria",
    "filter_new_uids",
]
