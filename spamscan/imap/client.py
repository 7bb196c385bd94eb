"""IMAP mail store client."""

import imaplib
import re
import ssl
import time
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Iterator

from spamscan.imap.search import format_uid_set
from spamscan.models.message import Message
from spamscan.utils.email_parser import message_from_bytes
from spamscan.utils.logging import logger


class MailStoreError(Exception):
    """Raised when an IMAP operation fails."""

    pass


class MailStoreAuthenticationError(MailStoreError):
    """Raised when IMAP authentication fails."""

    pass


def quote_folder(folder: str) -> str:
    """Quote a folder name for IMAP commands."""
    escaped = folder.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


class IMAPClient:
    """IMAP client with password authentication.

    Provides the mailbox operations the scan and training pipelines need.
    Includes automatic retry logic and reconnection on connection failures.
    """

    # Retry configuration
    DEFAULT_MAX_RETRIES = 3
    DEFAULT_RETRY_DELAY = 2.0  # seconds

    # BODY.PEEK leaves \Seen untouched
    FETCH_PARTS = "(UID FLAGS INTERNALDATE BODY.PEEK[])"

    def __init__(
        self,
        host: str,
        user: str,
        password: str,
        port: int = 993,
        tls: bool = True,
        gmail_labels: bool = False,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        """Initialize client with server address and credentials.

        Args:
            host: IMAP server hostname.
            user: Login user name.
            password: Login password.
            port: IMAP port.
            tls: If True, use implicit TLS (IMAPS).
            gmail_labels: If True, labels are stored with the Gmail
                X-GM-LABELS extension instead of IMAP keywords.
            max_retries: Maximum retry attempts for failed operations.
            retry_delay: Base delay between retries (uses exponential backoff).
        """
        self.host = host
        self.port = port
        self.user = user
        self._password = password
        self.tls = tls
        self.gmail_labels = gmail_labels
        self._connection: imaplib.IMAP4 | None = None
        self._selected_folder: str | None = None
        self._readonly = True
        self._max_retries = max_retries
        self._retry_delay = retry_delay
        self._delimiter: str | None = None
        self._capabilities: tuple[str, ...] = ()

    @property
    def selected_folder(self) -> str | None:
        """Currently selected folder, if any."""
        return self._selected_folder

    def connect(self) -> None:
        """Establish connection to the IMAP server.

        Raises:
            MailStoreError: If connection fails.
        """
        if self._connection is not None:
            return  # Already connected

        try:
            if self.tls:
                ssl_context = ssl.create_default_context()
                self._connection = imaplib.IMAP4_SSL(
                    host=self.host,
                    port=self.port,
                    ssl_context=ssl_context,
                )
            else:
                self._connection = imaplib.IMAP4(host=self.host, port=self.port)
        except Exception as e:
            raise MailStoreError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

    def login(self) -> None:
        """Authenticate with user name and password.

        Raises:
            MailStoreAuthenticationError: If authentication fails.
            MailStoreError: If not connected.
        """
        if self._connection is None:
            raise MailStoreError("Not connected. Call connect() first.")

        try:
            self._connection.login(self.user, self._password)
        except imaplib.IMAP4.error as e:
            raise MailStoreAuthenticationError(f"IMAP login failed for {self.user}: {e}") from e

        self._refresh_capabilities()

    def _refresh_capabilities(self) -> None:
        # Servers may advertise extensions such as MOVE only once logged in
        try:
            status, data = self._connection.capability()  # type: ignore
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"CAPABILITY failed: {e}") from e

        if status == "OK" and data and data[-1]:
            line = data[-1].decode() if isinstance(data[-1], bytes) else data[-1]
            self._capabilities = tuple(line.upper().split())

    def has_capability(self, name: str) -> bool:
        """Whether the server advertises an extension."""
        self._ensure_connected()
        capabilities = self._capabilities or tuple(self._connection.capabilities)  # type: ignore
        return name.upper() in capabilities

    def disconnect(self) -> None:
        """Properly close IMAP connection."""
        if self._connection is not None:
            try:
                if self._selected_folder:
                    self._connection.close()
                self._connection.logout()
            except Exception as e:
                logger.debug(f"Error during IMAP logout: {e}")
            finally:
                self._connection = None
                self._selected_folder = None
                self._capabilities = ()

    def select_folder(self, folder: str, readonly: bool = True) -> int:
        """Select mailbox folder.

        Args:
            folder: IMAP folder name.
            readonly: If True, open in read-only mode (EXAMINE).

        Returns:
            Number of messages in the folder.

        Raises:
            MailStoreError: If not connected or selection fails.
        """
        self._ensure_connected()

        try:
            status, data = self._connection.select(quote_folder(folder), readonly=readonly)  # type: ignore
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"Error selecting folder {folder}: {e}") from e

        if status != "OK":
            raise MailStoreError(f"Failed to select folder {folder}: {data}")

        self._selected_folder = folder
        self._readonly = readonly

        count = data[0].decode() if isinstance(data[0], bytes) else data[0]
        return int(count or 0)

    @contextmanager
    def using_folder(self, folder: str, readonly: bool = True) -> Iterator[int]:
        """Select a folder for the duration of a block, then restore.

        The previously selected folder is re-selected with its original
        access mode on exit, so callers iterating over another mailbox can
        keep using it.

        Yields:
            Number of messages in the folder.
        """
        previous = self._selected_folder
        previous_readonly = self._readonly
        try:
            yield self.select_folder(folder, readonly=readonly)
        finally:
            if previous and (previous != folder or previous_readonly != readonly):
                self.select_folder(previous, readonly=previous_readonly)

    def list_folders(self) -> list[str]:
        """List all available IMAP folders.

        Raises:
            MailStoreError: If not connected or the listing fails.
        """
        self._ensure_connected()

        try:
            status, data = self._connection.list()  # type: ignore
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"Error listing folders: {e}") from e

        if status != "OK":
            raise MailStoreError(f"LIST failed: {data}")

        folders = []
        for item in data:
            if item is None:
                continue
            # Format: (\\Flags) "delimiter" "folder_name"
            if isinstance(item, bytes):
                item = item.decode("utf-8", errors="replace")
            match = re.match(r'\((?P<flags>[^)]*)\) (?P<delim>"[^"]*"|NIL) (?P<name>.*)$', item)
            if not match:
                continue
            if self._delimiter is None and match.group("delim") != "NIL":
                self._delimiter = match.group("delim").strip('"')
            name = match.group("name").strip()
            if name.startswith('"') and name.endswith('"'):
                name = name[1:-1].replace('\\"', '"').replace("\\\\", "\\")
            folders.append(name)

        return folders

    def folder_delimiter(self) -> str:
        """Hierarchy delimiter reported by the server (defaults to ".")."""
        if self._delimiter is None:
            self.list_folders()
        return self._delimiter or "."

    def create_folder(self, folder: str) -> None:
        """Create a folder.

        Raises:
            MailStoreError: If creation fails.
        """
        self._ensure_connected()

        try:
            status, data = self._connection.create(quote_folder(folder))  # type: ignore
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"Error creating folder {folder}: {e}") from e

        if status != "OK":
            raise MailStoreError(f"Failed to create folder {folder}: {data}")

        try:
            self._connection.subscribe(quote_folder(folder))  # type: ignore
        except imaplib.IMAP4.error as e:
            logger.debug(f"Could not subscribe to {folder}: {e}")

    def search(self, criteria: str) -> list[int]:
        """Search for messages matching criteria.

        Args:
            criteria: IMAP search criteria string.

        Returns:
            List of message UIDs matching criteria, in server order.

        Raises:
            MailStoreError: If not connected, no folder selected, or the
                search fails after retries.
        """
        return self._retry_with_reconnect(f"Search {criteria}", self._search_internal, criteria)

    def _search_internal(self, criteria: str) -> list[int]:
        self._ensure_connected()
        self._ensure_folder_selected()

        try:
            status, data = self._connection.uid("SEARCH", None, criteria)  # type: ignore
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"Search failed: {e}") from e

        if status != "OK":
            raise MailStoreError(f"Search failed: {data}")

        if data and data[0]:
            uid_bytes = data[0]
            if isinstance(uid_bytes, bytes):
                uid_bytes = uid_bytes.decode()
            return [int(uid) for uid in uid_bytes.split()]

        return []

    def fetch_messages(self, uids: list[int]) -> list[Message]:
        """Fetch full messages by UID.

        UIDs that no longer exist are silently absent from the result.

        Args:
            uids: Message UIDs.

        Returns:
            Messages ordered by UID.
        """
        if not uids:
            return []

        return self._retry_with_reconnect(
            f"Fetch {len(uids)} messages",
            self._fetch_internal,
            format_uid_set(uids),
        )

    def fetch_all_messages(self) -> list[Message]:
        """Fetch every message in the selected folder."""
        return self._retry_with_reconnect("Fetch all messages", self._fetch_internal, "1:*")

    def _fetch_internal(self, uid_set: str) -> list[Message]:
        self._ensure_connected()
        self._ensure_folder_selected()

        try:
            status, data = self._connection.uid("FETCH", uid_set, self.FETCH_PARTS)  # type: ignore
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"Fetch error for UIDs {uid_set}: {e}") from e

        if status != "OK":
            raise MailStoreError(f"Failed to fetch UIDs {uid_set}: {data}")

        messages = [
            message_from_bytes(uid, raw, flags, internal_date)
            for uid, raw, flags, internal_date in self._parse_fetch_response(data or [])
        ]
        return sorted(messages, key=lambda m: m.uid)

    def move_messages(self, uids: list[int], folder: str) -> None:
        """Move messages to another folder.

        Uses UID MOVE when the server supports it, else COPY + delete +
        expunge. Moving UIDs that are already gone is not an error.
        """
        if not uids:
            return

        logger.debug(f"Moving {len(uids)} messages to {folder}")
        self._retry_with_reconnect(
            f"Move {len(uids)} messages to {folder}",
            self._move_internal,
            uids,
            folder,
        )

    def _move_internal(self, uids: list[int], folder: str) -> None:
        self._ensure_connected()
        self._ensure_folder_selected()

        uid_set = format_uid_set(uids)
        try:
            if self.has_capability("MOVE"):
                status, data = self._connection.uid("MOVE", uid_set, quote_folder(folder))  # type: ignore
                if status != "OK":
                    raise MailStoreError(f"MOVE to {folder} failed: {data}")
                return

            status, data = self._connection.uid("COPY", uid_set, quote_folder(folder))  # type: ignore
            if status != "OK":
                raise MailStoreError(f"COPY to {folder} failed: {data}")
            self._connection.uid("STORE", uid_set, "+FLAGS.SILENT", "(\\Deleted)")  # type: ignore
            self._expunge_uids(uids)
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"Move to {folder} failed: {e}") from e

    def add_flags(self, uids: list[int], flags: list[str]) -> None:
        """Set flags or keywords on messages."""
        self._store(uids, "+FLAGS.SILENT", flags)

    def remove_flags(self, uids: list[int], flags: list[str]) -> None:
        """Clear flags or keywords from messages."""
        self._store(uids, "-FLAGS.SILENT", flags)

    def update_labels(self, uids: list[int], add: list[str], remove: list[str]) -> None:
        """Add and remove labels on messages.

        Labels are IMAP keywords unless the client was created with
        ``gmail_labels``, in which case X-GM-LABELS is used.
        """
        if self.gmail_labels:
            if remove:
                self._store(uids, "-X-GM-LABELS", [f'"{label}"' for label in remove])
            if add:
                self._store(uids, "+X-GM-LABELS", [f'"{label}"' for label in add])
            return

        if remove:
            self.remove_flags(uids, remove)
        if add:
            self.add_flags(uids, add)

    def _store(self, uids: list[int], command: str, values: list[str]) -> None:
        if not uids or not values:
            return

        self._retry_with_reconnect(
            f"STORE {command} on {len(uids)} messages",
            self._store_internal,
            format_uid_set(uids),
            command,
            f"({' '.join(values)})",
        )

    def _store_internal(self, uid_set: str, command: str, values: str) -> None:
        self._ensure_connected()
        self._ensure_folder_selected()

        try:
            status, data = self._connection.uid("STORE", uid_set, command, values)  # type: ignore
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"STORE {command} failed: {e}") from e

        if status != "OK":
            raise MailStoreError(f"STORE {command} failed: {data}")

    def append(
        self,
        folder: str,
        email_data: bytes,
        flags: list[str] | None = None,
        date_time: Any = None,
    ) -> int | None:
        """Upload a message to a folder via IMAP APPEND.

        Args:
            folder: Target folder name.
            email_data: Raw email bytes (RFC822 format).
            flags: List of IMAP flags (e.g., ["\\Seen"]).
            date_time: Internal date for message.

        Returns:
            UID of appended message, or None if the server does not report it.

        Raises:
            MailStoreError: If append fails after retries.
        """
        return self._retry_with_reconnect(
            f"Append to {folder}",
            self._append_internal,
            folder,
            email_data,
            flags,
            date_time,
        )

    def _append_internal(
        self,
        folder: str,
        email_data: bytes,
        flags: list[str] | None = None,
        date_time: Any = None,
    ) -> int | None:
        self._ensure_connected()

        try:
            flag_str = f"({' '.join(flags)})" if flags else None
            status, data = self._connection.append(  # type: ignore
                quote_folder(folder),
                flag_str,
                date_time,
                email_data,
            )
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"APPEND error: {e}") from e

        if status != "OK":
            raise MailStoreError(f"APPEND failed: {data}")

        # UIDPLUS servers return: [b'[APPENDUID uidvalidity uid] ...']
        if data and data[0]:
            response = data[0].decode() if isinstance(data[0], bytes) else str(data[0])
            match = re.search(r"APPENDUID \d+ (\d+)", response)
            if match:
                return int(match.group(1))

        return None

    def delete_and_expunge(self, criteria: str) -> int:
        """Delete every message in the selected folder matching criteria.

        Returns:
            Number of messages deleted.
        """
        uids = self.search(criteria)
        self.delete_messages(uids)
        return len(uids)

    def delete_messages(self, uids: list[int]) -> None:
        """Mark messages deleted and expunge exactly those UIDs.

        Other messages in the folder that already carry \\Deleted are
        left in place.
        """
        if not uids:
            return

        self._store(uids, "+FLAGS.SILENT", ["\\Deleted"])
        self._retry_with_reconnect(
            f"Expunge {len(uids)} messages",
            self._expunge_internal,
            uids,
        )

    def _expunge_internal(self, uids: list[int]) -> None:
        self._ensure_connected()
        self._ensure_folder_selected()

        try:
            self._expunge_uids(uids)
        except imaplib.IMAP4.error as e:
            raise MailStoreError(f"EXPUNGE failed: {e}") from e

    def _expunge_uids(self, uids: list[int]) -> None:
        """Expunge only the given UIDs from the selected folder.

        Uses UID EXPUNGE (RFC 4315) when available. Otherwise the \\Deleted
        flag is lifted from every other message for the duration of a
        plain EXPUNGE and put back afterwards.
        """
        uid_set = format_uid_set(uids)
        if self.has_capability("UIDPLUS"):
            status, data = self._connection.uid("EXPUNGE", uid_set)  # type: ignore
            if status != "OK":
                raise MailStoreError(f"UID EXPUNGE failed: {data}")
            return

        status, data = self._connection.uid("SEARCH", None, "DELETED")  # type: ignore
        if status != "OK":
            raise MailStoreError(f"Search for deleted messages failed: {data}")
        marked = {int(uid) for uid in data[0].split()} if data and data[0] else set()
        others = sorted(marked - set(uids))

        if others:
            logger.debug(f"Keeping {len(others)} other deleted messages out of EXPUNGE")
            self._connection.uid(  # type: ignore
                "STORE", format_uid_set(others), "-FLAGS.SILENT", "(\\Deleted)"
            )
        try:
            self._connection.expunge()  # type: ignore
        finally:
            if others:
                self._connection.uid(  # type: ignore
                    "STORE", format_uid_set(others), "+FLAGS.SILENT", "(\\Deleted)"
                )

    def _ensure_connected(self) -> None:
        if self._connection is None:
            raise MailStoreError("Not connected. Call connect() and login() first.")

    def _ensure_folder_selected(self) -> None:
        if self._selected_folder is None:
            raise MailStoreError("No folder selected. Call select_folder() first.")

    def _reconnect(self) -> None:
        """Reconnect to IMAP server after connection loss."""
        previous_folder = self._selected_folder
        previous_readonly = self._readonly

        if self._connection is not None:
            try:
                self._connection.logout()
            except Exception as e:
                logger.debug(f"Ignoring logout error during reconnect: {e}")
            self._connection = None
            self._selected_folder = None
            self._capabilities = ()

        self.connect()
        self.login()

        if previous_folder:
            self.select_folder(previous_folder, readonly=previous_readonly)

    def _is_connection_error(self, error: Exception) -> bool:
        """Check if an exception indicates a recoverable connection failure."""
        if isinstance(error, (imaplib.IMAP4.abort, ConnectionError, TimeoutError, ssl.SSLError)):
            return True

        error_str = str(error).lower()
        connection_indicators = [
            "eof",
            "socket error",
            "connection reset",
            "broken pipe",
            "connection refused",
            "timed out",
        ]
        return any(indicator in error_str for indicator in connection_indicators)

    def _retry_with_reconnect(
        self, operation_name: str, operation_func: Any, *args: Any, **kwargs: Any
    ) -> Any:
        """Execute an operation with retry logic and automatic reconnection.

        Raises:
            MailStoreError: If all retries are exhausted, or immediately for
                failures that are not connection related.
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries + 1):
            try:
                return operation_func(*args, **kwargs)
            except Exception as e:
                last_error = e

                if not self._is_connection_error(e):
                    raise

                if attempt < self._max_retries:
                    delay = self._retry_delay * (2 ** attempt)
                    logger.warning(
                        f"{operation_name} failed ({e}), retrying in {delay:.1f}s "
                        f"[{attempt + 1}/{self._max_retries}]"
                    )
                    time.sleep(delay)

                    try:
                        self._reconnect()
                    except MailStoreError as reconnect_error:
                        logger.warning(f"Reconnect failed: {reconnect_error}")

        raise MailStoreError(
            f"{operation_name} failed after {self._max_retries + 1} attempts: {last_error}"
        ) from last_error

    def _parse_fetch_response(
        self, data: list[Any]
    ) -> list[tuple[int, bytes, frozenset[str], datetime | None]]:
        """Parse a UID FETCH response into per-message tuples.

        Metadata may appear before or after the RFC822 literal, so the text
        following a literal is merged into that message's metadata.

        Returns:
            List of (uid, raw, flags, internal_date).
        """
        records: list[list[Any]] = []

        for item in data:
            if item is None:
                continue
            if isinstance(item, tuple):
                meta = item[0] if isinstance(item[0], bytes) else str(item[0]).encode()
                body = item[1] if len(item) > 1 else b""
                records.append([meta, body])
            elif isinstance(item, bytes) and records:
                records[-1][0] += b" " + item

        parsed = []
        for meta, body in records:
            uid_match = re.search(rb"UID (\d+)", meta)
            if not uid_match:
                continue

            flags = frozenset(
                flag.decode("utf-8", errors="replace") for flag in imaplib.ParseFlags(meta)
            )

            internal_date = None
            date_tuple = imaplib.Internaldate2tuple(meta)
            if date_tuple is not None:
                internal_date = datetime.fromtimestamp(time.mktime(date_tuple)).astimezone()

            parsed.append((int(uid_match.group(1)), body or b"", flags, internal_date))

        return parsed

    def __enter__(self) -> "IMAPClient":
        """Context manager entry - connect and log in."""
        self.connect()
        self.login()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        """Context manager exit - disconnect."""
        self.disconnect()
