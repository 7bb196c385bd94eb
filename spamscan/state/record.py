"""Serialization of state entries as synthetic messages."""

import json
from email import policy
from email.message import EmailMessage
from email.parser import BytesParser
from email.utils import format_datetime
from typing import Any

from spamscan.models.message import ScannerState, parse_timestamp, utcnow

# Marker header identifying a state record and carrying its key
STATE_HEADER = "X-App-State"

STATE_ADDRESS = "Scanner State <scanner@localhost>"

REQUIRED_FIELDS = ("last_uid", "last_seen_date", "last_checked")


class StateError(Exception):
    """Base class for state storage errors."""

    pass


class StateNotFound(StateError):
    """Raised when no record exists for a key and no default was given."""

    pass


class StateValidationError(StateError):
    """Raised when a state object or stored record is malformed."""

    pass


def validate_state(state: Any) -> dict[str, Any]:
    """Check that a state object has exactly the scanner state fields.

    Args:
        state: Candidate state, usually decoded JSON.

    Returns:
        The same object, for chaining.

    Raises:
        StateValidationError: If the object is not a dict, has missing or
            extra fields, or has wrongly typed values.
    """
    if not isinstance(state, dict):
        raise StateValidationError("Invalid state: must be a non-null object")

    missing = [name for name in REQUIRED_FIELDS if name not in state]
    if missing:
        raise StateValidationError(f"Invalid state: missing required properties {missing}")

    extra = [name for name in state if name not in REQUIRED_FIELDS]
    if extra:
        raise StateValidationError(f"Invalid state: invalid property names {extra}")

    last_uid = state["last_uid"]
    # bool is an int subclass but never a valid UID
    if not isinstance(last_uid, int) or isinstance(last_uid, bool) or last_uid < 0:
        raise StateValidationError("Invalid state: last_uid must be a non-negative integer")

    for name in ("last_seen_date", "last_checked"):
        value = state[name]
        if not isinstance(value, str):
            raise StateValidationError(f"Invalid state: {name} must be a timestamp string")
        try:
            parse_timestamp(value)
        except ValueError as e:
            raise StateValidationError(f"Invalid state: {name} is not a timestamp: {value}") from e

    return state


def state_to_dict(state: ScannerState | dict[str, Any]) -> dict[str, Any]:
    """Serializable, validated form of a scanner state."""
    data = state.to_dict() if isinstance(state, ScannerState) else state
    return validate_state(data)


def build_record(key: str, body: str) -> bytes:
    """Render a state record message.

    Args:
        key: State key carried in the marker header.
        body: Serialized state.

    Returns:
        RFC822 message bytes ready for APPEND.
    """
    message = EmailMessage(policy=policy.SMTP)
    message["From"] = STATE_ADDRESS
    message["To"] = STATE_ADDRESS
    message["Subject"] = f"AppState: {key}"
    message["Date"] = format_datetime(utcnow())
    message[STATE_HEADER] = key
    message.set_content(body, charset="utf-8")
    return message.as_bytes()


def build_scanner_record(key: str, state: ScannerState | dict[str, Any]) -> bytes:
    """Render a scanner state as a record, validating it first."""
    return build_record(key, json.dumps(state_to_dict(state), indent=2))


def read_record_body(raw: bytes) -> str:
    """Decoded text body of a record."""
    message = BytesParser(policy=policy.default).parsebytes(raw)
    try:
        content = message.get_content()
    except (KeyError, LookupError) as e:
        raise StateValidationError(f"Unreadable state record body: {e}") from e
    if isinstance(content, bytes):
        content = content.decode("utf-8", errors="replace")
    return content.replace("\r\n", "\n")


def parse_scanner_record(raw: bytes) -> ScannerState:
    """Parse and validate the scanner state stored in a record.

    Raises:
        StateValidationError: If the body is not valid state JSON.
    """
    body = read_record_body(raw).strip()
    try:
        data = json.loads(body)
    except json.JSONDecodeError as e:
        raise StateValidationError(f"State record body is not valid JSON: {e}") from e

    return ScannerState.from_dict(validate_state(data))
