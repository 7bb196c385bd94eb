"""Key/value state persisted as messages inside a dedicated mailbox."""

from typing import TYPE_CHECKING, Any

from spamscan.imap.search import SearchCriteria
from spamscan.models.message import Message, ScannerState
from spamscan.state.record import (
    STATE_HEADER,
    StateNotFound,
    StateValidationError,
    build_record,
    build_scanner_record,
    parse_scanner_record,
    read_record_body,
    state_to_dict,
)
from spamscan.utils.logging import logger

if TYPE_CHECKING:
    from spamscan.imap.client import IMAPClient

_MISSING: Any = object()


class StateStore:
    """Stores one record per key in a state mailbox.

    A write deletes every existing record for the key and then appends the
    new one. The mail store has no transactional replace, so a crash
    between the two steps loses the record; the next scan then starts from
    the caller's default. Every operation re-selects the folder that was
    open before it.
    """

    def __init__(self, client: "IMAPClient", folder: str) -> None:
        """Initialize with a connected client and the state mailbox name.

        Args:
            client: Connected and authenticated IMAPClient.
            folder: Mailbox holding the state records.
        """
        self.client = client
        self.folder = folder

    def read(self, key: str, default: ScannerState | None = _MISSING) -> ScannerState:
        """Read the scanner state stored under a key.

        Args:
            key: State key.
            default: Returned when no record exists. Omit to raise instead.

        Returns:
            The stored ScannerState, or the default.

        Raises:
            StateNotFound: If no record exists and no default was given.
            StateValidationError: If the stored record is malformed.
        """
        with self.client.using_folder(self.folder, readonly=True):
            records = self._find_records(key)

        if not records:
            if default is _MISSING:
                raise StateNotFound(f"No state stored under key {key!r}")
            logger.debug(f"No state under {key!r}, using default")
            return default

        if len(records) == 1:
            return parse_scanner_record(records[0].raw)

        return self._resolve_duplicates(key, records)

    def write(self, key: str, state: ScannerState | dict[str, Any]) -> None:
        """Replace the scanner state stored under a key.

        The state is validated before the mailbox is touched, so an invalid
        state leaves any stored record in place.

        Raises:
            StateValidationError: If the state is malformed.
        """
        raw = build_scanner_record(key, state)
        self._replace(key, raw)
        logger.debug(f"State {key!r} written: {state_to_dict(state)}")

    def delete(self, key: str) -> bool:
        """Delete every record stored under a key.

        Returns:
            True if something was deleted, False if no record existed.
        """
        with self.client.using_folder(self.folder, readonly=False):
            records = self._find_records(key)
            if not records:
                return False
            self.client.delete_and_expunge(
                SearchCriteria(uids=[record.uid for record in records]).to_imap_criteria()
            )

        logger.info(f"State {key!r} deleted ({len(records)} records)")
        return True

    def read_text(self, key: str) -> str | None:
        """Read a free-form text entry, such as a map file backup.

        Returns:
            The stored text, or None when no record exists. With several
            records the most recently appended one wins.
        """
        with self.client.using_folder(self.folder, readonly=True):
            records = self._find_records(key)

        if not records:
            return None

        newest = max(records, key=lambda record: record.uid)
        # The message body always ends in a newline the stored text may lack
        return read_record_body(newest.raw).removesuffix("\n")

    def write_text(self, key: str, text: str) -> None:
        """Replace a free-form text entry."""
        self._replace(key, build_record(key, text))
        logger.debug(f"Text state {key!r} written ({len(text)} chars)")

    def _replace(self, key: str, raw: bytes) -> None:
        with self.client.using_folder(self.folder, readonly=False):
            stale = [record.uid for record in self._find_records(key)]
            if stale:
                self.client.delete_and_expunge(SearchCriteria(uids=stale).to_imap_criteria())
            self.client.append(self.folder, raw, flags=["\\Seen"])

    def _find_records(self, key: str) -> list[Message]:
        """Records in the selected state folder whose marker equals the key.

        SEARCH HEADER is a substring match, so candidates are re-checked.
        """
        criteria = SearchCriteria(header=(STATE_HEADER, key)).to_imap_criteria()
        uids = self.client.search(criteria)
        if not uids:
            return []

        marker = STATE_HEADER.lower()
        return [
            message
            for message in self.client.fetch_messages(uids)
            if message.headers.get(marker, "").strip() == key
        ]

    def _resolve_duplicates(self, key: str, records: list[Message]) -> ScannerState:
        """Pick the state with the most recent last_checked among duplicates.

        Malformed duplicates are skipped; if none is valid the first
        validation error is raised.
        """
        logger.warning(f"Found {len(records)} state records under {key!r}, using the most recent")

        candidates: list[tuple[ScannerState, int]] = []
        first_error: StateValidationError | None = None
        for record in records:
            try:
                candidates.append((parse_scanner_record(record.raw), record.uid))
            except StateValidationError as e:
                logger.warning(f"Skipping malformed state record UID {record.uid}: {e}")
                first_error = first_error or e

        if not candidates:
            if first_error is None:
                raise StateNotFound(f"No state stored under {key!r}")
            raise first_error

        state, _ = max(candidates, key=lambda item: (item[0].last_checked, item[1]))
        return state
