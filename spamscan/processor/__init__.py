"""Scan and training pipelines."""

from spamscan.processor.actions import (
    ActionStrategy,
    ColorStrategy,
    FolderStrategy,
    LabelStrategy,
    create_strategy,
)
from spamscan.processor.categorizer import Thresholds, categorize, categorize_messages
from spamscan.processor.scan import ScanPipeline
from spamscan.processor.training import MapTrainingPipeline, TrainingPipeline

__all__ = [
    "ActionStrategy",
    "ColorStrategy",
    "FolderStrategy",
    "LabelStrategy",
    "MapTrainingPipeline",
    "ScanPipeline",
    "Thresholds",
    "TrainingPipeline",
    "categorize",
    "categorize_messages",
    "create_strategy",
]
