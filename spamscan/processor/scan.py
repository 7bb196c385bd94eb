"""Incremental, cursor-based scan of the inbox."""

import time
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from spamscan.cli.config import FoldersConfig, ScanConfig
from spamscan.imap.search import SearchCriteria, filter_new_uids
from spamscan.models.message import CategorizedMessages, Message, ScannerState, ScanResult, utcnow
from spamscan.processor.actions import ActionStrategy
from spamscan.processor.categorizer import Thresholds, categorize_messages
from spamscan.processor.pool import run_concurrently
from spamscan.utils.logging import OperationLogger, logger

if TYPE_CHECKING:
    from spamscan.classifier.base import Classifier
    from spamscan.imap.client import IMAPClient
    from spamscan.state.store import StateStore


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class ScanPipeline:
    """Classifies new inbox messages and applies tier actions.

    Each cycle reads the cursor, searches for UIDs above it, and processes
    them in sub-batches. Classification within a sub-batch is concurrent;
    sub-batches run one after another and the cursor is written after each
    one completes. A failure aborts the cycle without moving the cursor past
    the failed sub-batch, so the next cycle processes it again.
    """

    def __init__(
        self,
        client: "IMAPClient",
        classifier: "Classifier",
        strategy: ActionStrategy,
        state_store: "StateStore",
        folders: FoldersConfig | None = None,
        scan: ScanConfig | None = None,
        thresholds: Thresholds | None = None,
        state_key: str = "scanner",
        operation_logger: OperationLogger | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize scan pipeline.

        Args:
            client: Connected IMAP client.
            classifier: Spam classifier adapter.
            strategy: Action applied to clean and risky tiers.
            state_store: Store holding the cursor.
            folders: Inbox and spam folder names.
            scan: Batch sizes and the unseen-only switch.
            thresholds: Tier boundaries.
            state_key: Key of the cursor record.
            operation_logger: Optional JSONL operation logger.
            clock: Source of the current time.
        """
        self.client = client
        self.classifier = classifier
        self.strategy = strategy
        self.state_store = state_store
        self.folders = folders or FoldersConfig()
        self.scan = scan or ScanConfig()
        self.thresholds = thresholds or Thresholds()
        self.state_key = state_key
        self.op_logger = operation_logger or OperationLogger()
        self.clock = clock

    def run(self) -> ScanResult:
        """Run one scan cycle.

        Returns:
            ScanResult with per-tier counts and the final cursor.

        Raises:
            ClassifierError: If a message could not be classified.
            MailStoreError: If a mailbox operation failed.
            StateError: If the cursor could not be read or written.
        """
        start_time = time.time()
        folder = self.folders.inbox

        try:
            state = self.state_store.read(self.state_key, default=ScannerState.initial(self.clock()))
            result = ScanResult(last_uid=state.last_uid)

            self.client.select_folder(folder, readonly=False)
            candidates = self.select_candidates(state.last_uid)

            if not candidates:
                logger.info(f"No new messages in {folder} after UID {state.last_uid}")
                return result

            self.op_logger.log_cycle_start(folder, state.last_uid, len(candidates))

            batch_size = self.scan.process_batch_size
            for i in range(0, len(candidates), batch_size):
                batch_uids = candidates[i : i + batch_size]
                logger.info(
                    f"Scanning batch {i + 1}-{i + len(batch_uids)} of {len(candidates)}"
                )

                categorized, state = self.process_batch(batch_uids, state)
                result.record_batch(categorized, state.last_uid)
                self.op_logger.log_batch_complete(
                    batch_uids[0], batch_uids[-1], categorized.counts(), state.last_uid
                )
        except Exception as e:
            self.op_logger.log_error(f"Scan of {folder}", e)
            raise

        result.duration_seconds = time.time() - start_time
        self.op_logger.log_cycle_complete(
            folder, result.processed, result.by_tier, result.duration_seconds
        )
        return result

    def select_candidates(self, last_uid: int) -> list[int]:
        """UIDs to process this cycle, strictly above the cursor.

        The search starts at ``last_uid + 1``. Any UID at or below the
        cursor is still dropped, because an open range past the highest UID
        returns the last message of the folder.
        """
        criteria = SearchCriteria(
            uid_start=last_uid + 1,
            unseen_only=not self.scan.scan_read,
        )
        found = self.client.search(criteria.to_imap_criteria())
        uids = filter_new_uids(found, last_uid)

        if len(uids) != len(found):
            logger.debug(f"Dropped {len(found) - len(uids)} UIDs at or below cursor {last_uid}")

        return uids[: self.scan.scan_batch_size]

    def process_batch(
        self, uids: list[int], state: ScannerState
    ) -> tuple[CategorizedMessages, ScannerState]:
        """Classify, act on and commit one sub-batch.

        Args:
            uids: UIDs of the sub-batch, ascending.
            state: Cursor before the sub-batch.

        Returns:
            Tuple of (categorized messages, committed cursor).
        """
        messages = self.client.fetch_messages(uids)
        if len(messages) != len(uids):
            logger.warning(f"{len(uids) - len(messages)} messages vanished before fetch")

        classified = run_concurrently(self.classify, messages, self.scan.process_batch_size)
        categorized = categorize_messages(classified, self.thresholds)

        self.strategy.process(self.client, categorized)

        if categorized.confirmed_spam:
            logger.info(
                f"Moving {len(categorized.confirmed_spam)} spam messages to {self.folders.spam}"
            )
            self.client.move_messages(
                [message.uid for message in categorized.confirmed_spam], self.folders.spam
            )

        new_state = self._advance(state, uids, messages)
        self.state_store.write(self.state_key, new_state)
        return categorized, new_state

    def classify(self, message: Message) -> Message:
        """Attach the classifier verdict to a message."""
        try:
            spam_info = self.classifier.check(message.raw)
        except Exception as e:
            logger.error(f"UID {message.uid}: classification failed: {e}")
            raise

        logger.info(
            f"UID {message.uid}: score={spam_info.score} required={spam_info.required} "
            f"spam={spam_info.is_spam} subject={message.envelope.subject!r}"
        )
        return message.with_spam_info(spam_info)

    def _advance(
        self, state: ScannerState, uids: list[int], messages: list[Message]
    ) -> ScannerState:
        last_seen = _as_utc(state.last_seen_date)
        for message in messages:
            if message.envelope.date is not None:
                last_seen = max(last_seen, _as_utc(message.envelope.date))

        return ScannerState(
            last_uid=max([state.last_uid, *uids]),
            last_seen_date=last_seen,
            last_checked=self.clock(),
        )
