"""Logging configuration and utilities."""

import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path
from typing import Any

# Create module logger
logger = logging.getLogger("spamscan")


def setup_logging(
    level: str = "INFO",
    log_file: Path | None = None,
    verbose: bool = False,
) -> None:
    """Configure application logging.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR).
        log_file: Optional path to log file.
        verbose: If True, include timestamps and logger names on the console.
    """
    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(logging.DEBUG if log_file else log_level)

    # Clear existing handlers
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(log_level)

    if verbose:
        console_format = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%H:%M:%S",
        )
    else:
        console_format = logging.Formatter("%(message)s")

    console_handler.setFormatter(console_format)
    logger.addHandler(console_handler)

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)  # Always verbose in file

        file_format = logging.Formatter(
            "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        file_handler.setFormatter(file_format)
        logger.addHandler(file_handler)


class OperationLogger:
    """Structured logging for pipeline events with JSONL output."""

    def __init__(self, log_path: Path | None = None) -> None:
        """Initialize operation logger.

        Args:
            log_path: Path to JSONL log file. Without one, events only go
                to the package logger.
        """
        self.log_path = log_path
        if log_path:
            log_path.parent.mkdir(parents=True, exist_ok=True)

    def _write(self, event: str, data: dict[str, Any]) -> None:
        if not self.log_path:
            return

        entry = {"timestamp": datetime.now().isoformat(), "event": event, **data}
        with open(self.log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(entry, default=str) + "\n")

    def log_cycle_start(self, folder: str, last_uid: int, candidates: int) -> None:
        """Log the start of a scan cycle.

        Args:
            folder: Folder being scanned.
            last_uid: Cursor the cycle starts from.
            candidates: Number of UIDs selected for this cycle.
        """
        logger.info(f"Scanning {folder}: {candidates} new messages after UID {last_uid}")
        self._write(
            "cycle_start",
            {"folder": folder, "last_uid": last_uid, "candidates": candidates},
        )

    def log_batch_complete(
        self,
        first_uid: int,
        last_batch_uid: int,
        counts: dict[str, int],
        committed_uid: int,
    ) -> None:
        """Log a committed sub-batch.

        Args:
            first_uid: Lowest UID in the sub-batch.
            last_batch_uid: Highest UID in the sub-batch.
            counts: Messages per tier.
            committed_uid: Cursor value written after the sub-batch.
        """
        logger.info(
            f"Batch UID {first_uid}-{last_batch_uid} complete: "
            + ", ".join(f"{count} {tier}" for tier, count in counts.items())
            + f"; cursor at {committed_uid}"
        )
        self._write(
            "batch_complete",
            {
                "first_uid": first_uid,
                "last_uid": last_batch_uid,
                "counts": counts,
                "committed_uid": committed_uid,
            },
        )

    def log_cycle_complete(
        self,
        folder: str,
        processed: int,
        by_tier: dict[str, int],
        duration_seconds: float,
    ) -> None:
        """Log completion of a scan cycle.

        Args:
            folder: Folder that was scanned.
            processed: Messages classified and acted on.
            by_tier: Messages per tier across the cycle.
            duration_seconds: Total processing time.
        """
        logger.info(f"Scan of {folder} complete: {processed} messages in {duration_seconds:.1f}s")
        self._write(
            "cycle_complete",
            {
                "folder": folder,
                "processed": processed,
                "by_tier": by_tier,
                "duration_seconds": duration_seconds,
            },
        )

    def log_training_complete(
        self,
        folder: str,
        polarity: str,
        processed: int,
        already_learned: int,
    ) -> None:
        """Log completion of a training folder drain."""
        logger.info(
            f"Trained {processed} {polarity} messages from {folder} "
            f"({already_learned} already learned)"
        )
        self._write(
            "training_complete",
            {
                "folder": folder,
                "polarity": polarity,
                "processed": processed,
                "already_learned": already_learned,
            },
        )

    def log_map_update(self, map_path: Path, added: int, skipped: int, total: int) -> None:
        """Log a map file update."""
        logger.info(f"Map {map_path} updated: {added} added, {skipped} skipped, {total} total")
        self._write(
            "map_update",
            {"map_path": str(map_path), "added": added, "skipped": skipped, "total": total},
        )

    def log_error(self, operation: str, error: Exception) -> None:
        """Log error with stack trace.

        Args:
            operation: Operation that failed.
            error: Exception that occurred.
        """
        logger.error(f"{operation} failed: {error}")
        self._write(
            "error",
            {
                "operation": operation,
                "error_type": type(error).__name__,
                "error_message": str(error),
                "traceback": traceback.format_exc(),
            },
        )
