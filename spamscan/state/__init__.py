"""Scanner state persisted inside the mail store."""

from spamscan.state.record import (
    STATE_HEADER,
    StateError,
    StateNotFound,
    StateValidationError,
    validate_state,
)
from spamscan.state.store import StateStore

__all__ = [
    "STATE_HEADER",
    "StateError",
    "StateNotFound",
    "StateValidationError",
    "StateStore",
    "validate_state",
]
