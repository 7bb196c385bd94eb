"""Training workflows that drain the training folders."""

from pathlib import Path
from typing import TYPE_CHECKING

from spamscan.cli.config import FoldersConfig, MapsConfig, StateConfig
from spamscan.models.message import LearnResult, MapUpdateResult, Message, Polarity, TrainingResult
from spamscan.processor.pool import run_concurrently
from spamscan.utils.logging import OperationLogger, logger
from spamscan.utils.mapfile import MapStore
from spamscan.utils.senders import extract_sender_addresses

if TYPE_CHECKING:
    from spamscan.classifier.base import Classifier
    from spamscan.imap.client import IMAPClient
    from spamscan.state.store import StateStore


class TrainingPipeline:
    """Feeds every message of a training folder to the classifier.

    Spam training drains ``train_spam`` into the spam folder; ham training
    drains ``train_ham`` into the inbox. Messages are moved only after their
    whole sub-batch was learned.
    """

    def __init__(
        self,
        client: "IMAPClient",
        classifier: "Classifier",
        folders: FoldersConfig | None = None,
        process_batch_size: int = 10,
        operation_logger: OperationLogger | None = None,
    ) -> None:
        self.client = client
        self.classifier = classifier
        self.folders = folders or FoldersConfig()
        self.process_batch_size = process_batch_size
        self.op_logger = operation_logger or OperationLogger()

    def route(self, polarity: Polarity) -> tuple[str, str]:
        """Source and destination folders for a polarity."""
        if polarity is Polarity.SPAM:
            return self.folders.train_spam, self.folders.spam
        return self.folders.train_ham, self.folders.inbox

    def train(self, polarity: Polarity) -> TrainingResult:
        """Learn and relocate every message in the training folder.

        Raises:
            ClassifierError: If a message could not be learned. Messages of
                the failing sub-batch stay in the training folder.
            MailStoreError: If a mailbox operation failed.
        """
        source, destination = self.route(polarity)
        result = TrainingResult(folder=source, polarity=polarity)

        try:
            count = self.client.select_folder(source, readonly=False)
            if count == 0:
                logger.info(f"No messages in {source} to learn")
                return result

            messages = self.client.fetch_all_messages()
            size = self.process_batch_size

            for i in range(0, len(messages), size):
                batch = messages[i : i + size]
                logger.info(
                    f"Learning {polarity.value} batch {i + 1}-{i + len(batch)} of {len(messages)}"
                )

                outcomes = run_concurrently(
                    lambda message: self._learn(message, polarity), batch, size
                )
                self.client.move_messages([message.uid for message in batch], destination)

                result.processed += len(batch)
                result.already_learned += sum(1 for outcome in outcomes if outcome.already_learned)
        except Exception as e:
            self.op_logger.log_error(f"Training {polarity.value} from {source}", e)
            raise

        self.op_logger.log_training_complete(
            source, polarity.value, result.processed, result.already_learned
        )
        return result

    def _learn(self, message: Message, polarity: Polarity) -> LearnResult:
        try:
            outcome = self.classifier.learn(message.raw, polarity)
        except Exception as e:
            logger.error(f"UID {message.uid}: learning {polarity.value} failed: {e}")
            raise

        if outcome.already_learned:
            logger.info(f"UID {message.uid}: already learned as {polarity.value}")
        else:
            logger.info(f"UID {message.uid}: learned as {polarity.value}")
        return outcome


class MapTrainingPipeline:
    """Builds allow/deny maps from the senders of messages in training folders.

    Whitelist training drains ``train_whitelist`` into the inbox; blacklist
    training drains ``train_blacklist`` into the spam folder. After the map
    file is updated its full text is backed up to the state mailbox.
    """

    def __init__(
        self,
        client: "IMAPClient",
        state_store: "StateStore",
        folders: FoldersConfig | None = None,
        maps: MapsConfig | None = None,
        state_keys: StateConfig | None = None,
        operation_logger: OperationLogger | None = None,
    ) -> None:
        self.client = client
        self.state_store = state_store
        self.folders = folders or FoldersConfig()
        self.maps = maps or MapsConfig()
        self.state_keys = state_keys or StateConfig()
        self.op_logger = operation_logger or OperationLogger()

    def train_whitelist(self) -> MapUpdateResult:
        """Add senders of the whitelist training folder to the whitelist map."""
        return self._train(
            "whitelist",
            self.folders.train_whitelist,
            self.maps.whitelist_path,
            self.state_keys.whitelist_key,
            self.folders.inbox,
        )

    def train_blacklist(self) -> MapUpdateResult:
        """Add senders of the blacklist training folder to the blacklist map."""
        return self._train(
            "blacklist",
            self.folders.train_blacklist,
            self.maps.blacklist_path,
            self.state_keys.blacklist_key,
            self.folders.spam,
        )

    def _train(
        self,
        list_type: str,
        source: str,
        map_path: Path,
        state_key: str,
        destination: str,
    ) -> MapUpdateResult:
        try:
            count = self.client.select_folder(source, readonly=False)
            if count == 0:
                logger.info(f"No messages in {source} to {list_type}")
                return MapUpdateResult()

            messages = self.client.fetch_all_messages()
            senders = extract_sender_addresses(messages)

            if not senders:
                # Left in place so they can be inspected
                logger.warning(f"No sender addresses found in {len(messages)} messages in {source}")
                return MapUpdateResult()

            logger.info(f"Adding {len(senders)} senders to the {list_type}")
            store = MapStore(map_path)
            update = store.update(senders)
            self.op_logger.log_map_update(
                map_path, len(update.added), len(update.skipped), update.total
            )

            self.state_store.write_text(state_key, store.read_text() or "")
            logger.debug(f"Backed up {map_path} under state key {state_key!r}")

            self.client.move_messages([message.uid for message in messages], destination)
            logger.info(f"Moved {len(messages)} messages from {source} to {destination}")
        except Exception as e:
            self.op_logger.log_error(f"{list_type.capitalize()} training from {source}", e)
            raise

        return update
