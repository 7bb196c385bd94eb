"""Data models for message scanning and training."""

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, accepting a trailing ``Z``.

    Naive values are assumed to be UTC.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp.
    """
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Render a datetime as an ISO-8601 UTC string."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


class Tier(str, Enum):
    """Spam likelihood bucket assigned to a scanned message."""

    CLEAN = "clean"
    LOW_RISK = "low_risk"
    HIGH_RISK = "high_risk"
    CONFIRMED_SPAM = "confirmed_spam"


class Polarity(str, Enum):
    """Direction of a classifier training request."""

    SPAM = "spam"
    HAM = "ham"


@dataclass(frozen=True)
class Envelope:
    """Summary fields of a message used for logging and cursor dates."""

    subject: str = ""
    sender: str = ""
    date: datetime | None = None
    message_id: str = ""


@dataclass(frozen=True)
class SpamInfo:
    """Classifier verdict attached to a message."""

    score: float | None
    required: float | None
    is_spam: bool
    level: int | None = None

    @property
    def percentage(self) -> float | None:
        """Score as a percentage of the classifier's action threshold."""
        if self.score is None or self.required is None or self.required <= 0:
            return None
        return (self.score / self.required) * 100


@dataclass(frozen=True)
class Message:
    """A fetched message. Immutable for the duration of a pipeline run."""

    uid: int
    envelope: Envelope
    headers: dict[str, str] = field(default_factory=dict)
    flags: frozenset[str] = frozenset()
    raw: bytes = b""
    body: str = ""
    spam_info: SpamInfo | None = None

    def with_spam_info(self, spam_info: SpamInfo) -> "Message":
        """Return a copy of this message carrying a classifier verdict."""
        return replace(self, spam_info=spam_info)

    def __str__(self) -> str:
        """Human-readable representation."""
        date_str = self.envelope.date.strftime("%Y-%m-%d %H:%M") if self.envelope.date else "?"
        return f"[UID {self.uid} {date_str}] {self.envelope.sender}: {self.envelope.subject}"


@dataclass
class ScannerState:
    """Scan cursor persisted inside the state mailbox."""

    last_uid: int
    last_seen_date: datetime
    last_checked: datetime

    @classmethod
    def initial(cls, now: datetime | None = None) -> "ScannerState":
        """Cursor used when no state has been stored yet."""
        now = now or utcnow()
        return cls(last_uid=0, last_seen_date=now, last_checked=now)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the serialized form stored in a state record."""
        return {
            "last_uid": self.last_uid,
            "last_seen_date": format_timestamp(self.last_seen_date),
            "last_checked": format_timestamp(self.last_checked),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ScannerState":
        """Create from an already validated dictionary."""
        return cls(
            last_uid=data["last_uid"],
            last_seen_date=parse_timestamp(data["last_seen_date"]),
            last_checked=parse_timestamp(data["last_checked"]),
        )


@dataclass
class CategorizedMessages:
    """Messages of one sub-batch grouped by tier."""

    clean: list[Message] = field(default_factory=list)
    low_risk: list[Message] = field(default_factory=list)
    high_risk: list[Message] = field(default_factory=list)
    confirmed_spam: list[Message] = field(default_factory=list)

    def add(self, tier: Tier, message: Message) -> None:
        """Append a message to the bucket for its tier."""
        self.bucket(tier).append(message)

    def bucket(self, tier: Tier) -> list[Message]:
        """Messages assigned to the given tier."""
        return {
            Tier.CLEAN: self.clean,
            Tier.LOW_RISK: self.low_risk,
            Tier.HIGH_RISK: self.high_risk,
            Tier.CONFIRMED_SPAM: self.confirmed_spam,
        }[tier]

    def counts(self) -> dict[str, int]:
        """Number of messages per tier, keyed by tier value."""
        return {tier.value: len(self.bucket(tier)) for tier in Tier}

    def __len__(self) -> int:
        return sum(len(self.bucket(tier)) for tier in Tier)


@dataclass
class ScanResult:
    """Result of one scan cycle."""

    processed: int = 0
    batches: int = 0
    last_uid: int = 0
    by_tier: dict[str, int] = field(default_factory=lambda: {tier.value: 0 for tier in Tier})
    duration_seconds: float = 0.0

    def record_batch(self, categorized: CategorizedMessages, last_uid: int) -> None:
        """Accumulate the counts of a committed sub-batch."""
        self.batches += 1
        self.processed += len(categorized)
        self.last_uid = last_uid
        for tier, count in categorized.counts().items():
            self.by_tier[tier] += count


@dataclass(frozen=True)
class LearnResult:
    """Outcome of a single classifier training request."""

    success: bool
    already_learned: bool = False
    message: str = ""


@dataclass
class TrainingResult:
    """Result of draining one training folder."""

    folder: str
    polarity: Polarity
    processed: int = 0
    already_learned: int = 0


@dataclass
class MapUpdateResult:
    """Result of merging addresses into a map file."""

    added: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    total: int = 0
