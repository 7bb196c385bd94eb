"""Pytest configuration and shared fixtures."""

import re
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterator

import pytest

from spamscan.classifier.base import Classifier, ClassifierError
from spamscan.imap.client import MailStoreError
from spamscan.models.message import LearnResult, Message, Polarity, SpamInfo
from spamscan.state.store import StateStore
from spamscan.utils.email_parser import extract_headers, message_from_bytes


def make_raw(
    sender: str = "alice@example.com",
    subject: str = "Hello",
    date: str = "Mon, 15 Jan 2024 10:30:00 +0000",
    body: str = "Hi there.",
    extra_headers: dict[str, str] | None = None,
) -> bytes:
    """Build a small RFC822 message."""
    lines = [
        f"From: {sender}",
        "To: bob@example.com",
        f"Subject: {subject}",
        f"Date: {date}",
        f"Message-ID: <{subject.replace(' ', '.')}@example.com>",
    ]
    for name, value in (extra_headers or {}).items():
        lines.append(f"{name}: {value}")
    return ("\r\n".join(lines) + "\r\n\r\n" + body + "\r\n").encode()


@dataclass
class StoredMessage:
    """A message held by the fake mail store."""

    uid: int
    raw: bytes
    flags: set[str] = field(default_factory=set)
    internal_date: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class FakeMailStore:
    """In-memory stand-in for IMAPClient.

    Implements the subset of IMAP the pipelines use, including the way an
    open UID range past the highest UID still matches the last message.
    Mutations on a folder opened read-only fail like a STORE after EXAMINE.
    """

    def __init__(self, folders: tuple[str, ...] = ("INBOX",), delimiter: str = ".") -> None:
        self.folders: dict[str, list[StoredMessage]] = {name: [] for name in folders}
        self.uid_next: dict[str, int] = {name: 1 for name in folders}
        self.delimiter = delimiter
        self.gmail_labels = False
        self._selected: str | None = None
        self._readonly = True
        self.search_log: list[str] = []
        self.search_override: Callable[[str], list[int] | None] | None = None
        self.failures: dict[str, Exception] = {}

    # Test helpers

    def add_message(
        self,
        folder: str,
        raw: bytes,
        flags: tuple[str, ...] = (),
        internal_date: datetime | None = None,
        uid: int | None = None,
    ) -> int:
        """Put a message into a folder and return its UID."""
        if uid is None:
            uid = self.uid_next[folder]
        self.uid_next[folder] = max(self.uid_next[folder], uid + 1)
        self.folders[folder].append(
            StoredMessage(
                uid=uid,
                raw=raw,
                flags=set(flags),
                internal_date=internal_date or datetime(2024, 1, 15, tzinfo=timezone.utc),
            )
        )
        return uid

    def uids(self, folder: str) -> list[int]:
        return sorted(message.uid for message in self.folders[folder])

    def flags_of(self, folder: str, uid: int) -> set[str]:
        return self._get(folder, uid).flags

    def raw_messages(self, folder: str) -> list[bytes]:
        return [message.raw for message in self.folders[folder]]

    def _get(self, folder: str, uid: int) -> StoredMessage:
        for message in self.folders[folder]:
            if message.uid == uid:
                return message
        raise KeyError(uid)

    def _check(self, operation: str, mutating: bool = False) -> list[StoredMessage]:
        if operation in self.failures:
            raise self.failures[operation]
        if self._selected is None:
            raise MailStoreError("No folder selected. Call select_folder() first.")
        if mutating and self._readonly:
            raise MailStoreError(f"{operation} on read-only folder {self._selected}")
        return self.folders[self._selected]

    # IMAPClient contract

    @property
    def selected_folder(self) -> str | None:
        return self._selected

    def select_folder(self, folder: str, readonly: bool = True) -> int:
        if folder not in self.folders:
            raise MailStoreError(f"Failed to select folder {folder}")
        self._selected = folder
        self._readonly = readonly
        return len(self.folders[folder])

    @contextmanager
    def using_folder(self, folder: str, readonly: bool = True) -> Iterator[int]:
        previous, previous_readonly = self._selected, self._readonly
        try:
            yield self.select_folder(folder, readonly=readonly)
        finally:
            if previous and (previous != folder or previous_readonly != readonly):
                self.select_folder(previous, readonly=previous_readonly)

    def list_folders(self) -> list[str]:
        return list(self.folders)

    def folder_delimiter(self) -> str:
        return self.delimiter

    def create_folder(self, folder: str) -> None:
        if folder in self.folders:
            raise MailStoreError(f"Folder {folder} exists")
        self.folders[folder] = []
        self.uid_next[folder] = 1

    def search(self, criteria: str) -> list[int]:
        messages = self._check("search")
        self.search_log.append(criteria)
        if self.search_override is not None:
            # None falls through to the normal matching
            overridden = self.search_override(criteria)
            if overridden is not None:
                return overridden

        matched = {message.uid for message in messages}

        range_match = re.search(r"UID (\d+):\*", criteria)
        if range_match:
            start = int(range_match.group(1))
            existing = sorted(matched)
            if existing and start > existing[-1]:
                # n:* past the end is read as *:n, which holds the last UID
                matched = {existing[-1]}
            else:
                matched = {uid for uid in existing if uid >= start}

        if "UNSEEN" in criteria:
            matched &= {m.uid for m in messages if "\\Seen" not in m.flags}

        set_match = re.search(r"UID ((?:\d+(?::\d+)?)(?:,\d+(?::\d+)?)*)(?=\s|$)", criteria)
        if set_match:
            wanted: set[int] = set()
            for part in set_match.group(1).split(","):
                low, _, high = part.partition(":")
                wanted.update(range(int(low), int(high or low) + 1))
            matched &= wanted

        header_match = re.search(r'HEADER (\S+) "((?:[^"\\]|\\.)*)"', criteria)
        if header_match:
            name = header_match.group(1).lower()
            value = header_match.group(2).replace('\\"', '"').replace("\\\\", "\\").lower()
            matched &= {
                m.uid for m in messages if value in extract_headers(m.raw).get(name, "").lower()
            }

        since_match = re.search(r"SINCE (\d{2}-\w{3}-\d{4})", criteria)
        if since_match:
            since = datetime.strptime(since_match.group(1), "%d-%b-%Y").date()
            matched &= {m.uid for m in messages if m.internal_date.date() >= since}

        return sorted(matched)

    def fetch_messages(self, uids: list[int]) -> list[Message]:
        messages = self._check("fetch")
        wanted = set(uids)
        return [
            message_from_bytes(m.uid, m.raw, frozenset(m.flags), m.internal_date)
            for m in sorted(messages, key=lambda m: m.uid)
            if m.uid in wanted
        ]

    def fetch_all_messages(self) -> list[Message]:
        return self.fetch_messages([m.uid for m in self._check("fetch")])

    def move_messages(self, uids: list[int], folder: str) -> None:
        if not uids:
            return
        messages = self._check("move", mutating=True)
        if folder not in self.folders:
            raise MailStoreError(f"MOVE to {folder} failed: no such folder")
        wanted = set(uids)
        for message in [m for m in messages if m.uid in wanted]:
            messages.remove(message)
            self.add_message(folder, message.raw, tuple(message.flags), message.internal_date)

    def add_flags(self, uids: list[int], flags: list[str]) -> None:
        for message in self._check("store", mutating=True):
            if message.uid in uids:
                message.flags.update(flags)

    def remove_flags(self, uids: list[int], flags: list[str]) -> None:
        for message in self._check("store", mutating=True):
            if message.uid in uids:
                message.flags.difference_update(flags)

    def update_labels(self, uids: list[int], add: list[str], remove: list[str]) -> None:
        if remove:
            self.remove_flags(uids, remove)
        if add:
            self.add_flags(uids, add)

    def append(self, folder: str, email_data: bytes, flags=None, date_time=None) -> int:
        if "append" in self.failures:
            raise self.failures["append"]
        if folder not in self.folders:
            raise MailStoreError(f"APPEND failed: no folder {folder}")
        return self.add_message(folder, email_data, tuple(flags or ()))

    def delete_and_expunge(self, criteria: str) -> int:
        uids = self.search(criteria)
        self.delete_messages(uids)
        return len(uids)

    def delete_messages(self, uids: list[int]) -> None:
        if not uids:
            return
        self.add_flags(uids, ["\\Deleted"])
        # Expunges only these UIDs, like UID EXPUNGE
        doomed = set(uids)
        messages = self._check("delete", mutating=True)
        messages[:] = [m for m in messages if m.uid not in doomed]

    def __enter__(self) -> "FakeMailStore":
        return self

    def __exit__(self, *args) -> None:
        self._selected = None


class StubClassifier(Classifier):
    """Classifier returning verdicts keyed by message subject."""

    name = "stub"

    def __init__(
        self,
        verdicts: dict[str, SpamInfo] | None = None,
        default: SpamInfo = SpamInfo(score=0.0, required=10.0, is_spam=False),
        fail_subjects: set[str] | None = None,
        already_learned_subjects: set[str] | None = None,
    ) -> None:
        self.verdicts = verdicts or {}
        self.default = default
        self.fail_subjects = fail_subjects or set()
        self.already_learned_subjects = already_learned_subjects or set()
        self.checked: list[str] = []
        self.learned: list[tuple[str, Polarity]] = []
        self._lock = threading.Lock()

    def _subject(self, raw: bytes) -> str:
        return extract_headers(raw).get("subject", "")

    def check(self, raw: bytes) -> SpamInfo:
        subject = self._subject(raw)
        with self._lock:
            self.checked.append(subject)
        if subject in self.fail_subjects:
            raise ClassifierError(f"Rspamd check failed with status 500: {subject}")
        return self.verdicts.get(subject, self.default)

    def learn(self, raw: bytes, polarity: Polarity) -> LearnResult:
        subject = self._subject(raw)
        if subject in self.fail_subjects:
            raise ClassifierError(f"Rspamd learn {polarity.value} failed: {subject}")
        with self._lock:
            self.learned.append((subject, polarity))
        if subject in self.already_learned_subjects:
            return LearnResult(success=True, already_learned=True, message="already learned")
        return LearnResult(success=True)


FOLDERS = (
    "INBOX",
    "INBOX.spam",
    "INBOX.scanner.train-spam",
    "INBOX.scanner.train-ham",
    "INBOX.scanner.train-whitelist",
    "INBOX.scanner.train-blacklist",
    "scanner.state",
)


@pytest.fixture
def mail_store() -> FakeMailStore:
    """Fake mail store with the default folder layout."""
    return FakeMailStore(folders=FOLDERS)


@pytest.fixture
def state_store(mail_store: FakeMailStore) -> StateStore:
    """State store backed by the fake mail store."""
    return StateStore(mail_store, "scanner.state")


@pytest.fixture
def stub_classifier() -> StubClassifier:
    """Classifier that calls every message clean."""
    return StubClassifier()


@pytest.fixture
def sample_raw_email() -> bytes:
    """A plain text message."""
    return make_raw(subject="Quarterly report", body="Numbers attached.")


@pytest.fixture
def sample_message(sample_raw_email: bytes) -> Message:
    """Parsed sample message with UID 42."""
    return message_from_bytes(42, sample_raw_email, frozenset({"\\Seen"}))


@pytest.fixture
def temp_map_path(tmp_path: Path) -> Path:
    """Path for a map file that does not exist yet."""
    return tmp_path / "maps" / "whitelist.map"


# Markers for test categories
def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests (may require network)"
    )
    config.addinivalue_line(
        "markers", "slow: marks tests as slow running"
    )
