"""Data models for message scanning and training."""

from spamscan.models.message import (
    CategorizedMessages,
    Envelope,
    LearnResult,
    MapUpdateResult,
    Message,
    Polarity,
    ScannerState,
    ScanResult,
    SpamInfo,
    Tier,
    TrainingResult,
)

__all__ = [
    "CategorizedMessages",
    "Envelope",
    "LearnResult",
    "MapUpdateResult",
    "Message",
    "Polarity",
    "ScannerState",
    "ScanResult",
    "SpamInfo",
    "Tier",
    "TrainingResult",
]
