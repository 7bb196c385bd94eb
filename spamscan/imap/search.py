"""IMAP SEARCH criteria construction."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from spamscan.imap.client import IMAPClient


def format_uid_set(uids: list[int]) -> str:
    """Render UIDs as an IMAP sequence set, collapsing consecutive runs."""
    ordered = sorted(set(uids))
    ranges: list[str] = []
    start = prev = ordered[0]
    for uid in ordered[1:]:
        if uid == prev + 1:
            prev = uid
            continue
        ranges.append(f"{start}:{prev}" if start != prev else str(start))
        start = prev = uid
    ranges.append(f"{start}:{prev}" if start != prev else str(start))
    return ",".join(ranges)


@dataclass
class SearchCriteria:
    """Email search criteria container."""

    # Open-ended UID range start (UID n:*)
    uid_start: int | None = None

    # Explicit UIDs (UID 3,5:7)
    uids: list[int] | None = None

    # Only messages without the \Seen flag
    unseen_only: bool = False

    # Exact header match as (name, value)
    header: tuple[str, str] | None = None

    # Messages with internal date on or after this day
    since: datetime | None = None

    def to_imap_criteria(self) -> str:
        """Convert to IMAP SEARCH criteria string."""
        criteria_parts: list[str] = []

        if self.uid_start is not None:
            criteria_parts.append(f"UID {max(self.uid_start, 1)}:*")

        if self.uids:
            criteria_parts.append(f"UID {format_uid_set(self.uids)}")

        if self.unseen_only:
            criteria_parts.append("UNSEEN")

        if self.header:
            name, value = self.header
            escaped = value.replace("\\", "\\\\").replace('"', '\\"')
            criteria_parts.append(f'HEADER {name} "{escaped}"')

        if self.since:
            criteria_parts.append(f"SINCE {self.since.strftime('%d-%b-%Y')}")

        if not criteria_parts:
            return "ALL"

        return " ".join(criteria_parts)


def filter_new_uids(uids: list[int], last_uid: int) -> list[int]:
    """Keep only UIDs strictly above the cursor, ascending and unique.

    ``UID n:*`` is inclusive and, when n exceeds the highest UID in the
    folder, the server answers with the last message instead of nothing.
    That message was already processed, so it must be dropped here.
    """
    return sorted({uid for uid in uids if uid > last_uid})


def find_first_uid_since(client: "IMAPClient", since: datetime) -> int | None:
    """Lowest UID in the selected folder with an internal date on/after a day.

    Returns:
        The UID, or None when no message is that recent.
    """
    uids = client.search(SearchCriteria(since=since).to_imap_criteria())
    return min(uids) if uids else None


def parse_date_string(date_str: str) -> datetime:
    """Parse date string to datetime.

    Supports formats:
    - YYYY-MM-DD
    - DD-Mon-YYYY
    - relative: "30d", "6m", "1y" (days/months/years ago)

    Args:
        date_str: Date string to parse.

    Returns:
        Parsed datetime.

    Raises:
        ValueError: If format is invalid.
    """
    date_str = date_str.strip().lower()

    relative_units = {"d": 1, "m": 30, "y": 365}
    if date_str[-1:] in relative_units:
        try:
            amount = int(date_str[:-1])
            return datetime.now() - timedelta(days=amount * relative_units[date_str[-1]])
        except ValueError:
            pass

    formats = [
        "%Y-%m-%d",
        "%d-%b-%Y",
        "%d/%m/%Y",
    ]

    for fmt in formats:
        try:
            return datetime.strptime(date_str, fmt)
        except ValueError:
            continue

    raise ValueError(f"Invalid date format: {date_str}")
