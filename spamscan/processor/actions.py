"""Mailbox mutations applied to each spam tier."""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING

from spamscan.cli.config import ActionsConfig, ConfigurationError, FoldersConfig
from spamscan.models.message import CategorizedMessages, Message
from spamscan.utils.logging import logger

if TYPE_CHECKING:
    from spamscan.imap.client import IMAPClient


def _uids(messages: list[Message]) -> list[int]:
    return [message.uid for message in messages]


class ActionStrategy(ABC):
    """Turns a tier assignment into mailbox changes.

    Strategies act on the clean, low-risk and high-risk tiers of the
    currently selected folder. Confirmed spam is moved by the scan pipeline
    itself. Every change must be safe to repeat, because a failed sub-batch
    is processed again from the start.
    """

    name = "base"

    @abstractmethod
    def process(self, client: "IMAPClient", categorized: CategorizedMessages) -> None:
        """Apply the strategy to one sub-batch."""


class LabelStrategy(ActionStrategy):
    """Marks low and high risk messages with labels (IMAP keywords)."""

    name = "label"

    def __init__(self, label_low: str = "Spam:Low", label_high: str = "Spam:High") -> None:
        self.label_low = label_low
        self.label_high = label_high

    def process(self, client: "IMAPClient", categorized: CategorizedMessages) -> None:
        """Clear labels on clean messages and set exactly one on risky ones."""
        if categorized.clean:
            logger.info(f"Resetting spam labels on {len(categorized.clean)} messages")
            client.update_labels(
                _uids(categorized.clean), add=[], remove=[self.label_low, self.label_high]
            )

        if categorized.low_risk:
            logger.info(f"Applying {self.label_low} to {len(categorized.low_risk)} messages")
            client.update_labels(
                _uids(categorized.low_risk), add=[self.label_low], remove=[self.label_high]
            )

        if categorized.high_risk:
            logger.info(f"Applying {self.label_high} to {len(categorized.high_risk)} messages")
            client.update_labels(
                _uids(categorized.high_risk), add=[self.label_high], remove=[self.label_low]
            )


class FolderStrategy(ActionStrategy):
    """Moves low and high risk messages to their own folders."""

    name = "folder"

    def __init__(self, spam_low: str | None, spam_high: str | None) -> None:
        """Initialize with the destination folders.

        Raises:
            ConfigurationError: If either folder is missing.
        """
        if not spam_low or not spam_high:
            raise ConfigurationError(
                "Folder mode requires both folders.spam_low and folders.spam_high"
            )
        self.spam_low = spam_low
        self.spam_high = spam_high

    def process(self, client: "IMAPClient", categorized: CategorizedMessages) -> None:
        """Move risky messages; clean ones stay where they are."""
        if categorized.low_risk:
            logger.info(f"Moving {len(categorized.low_risk)} messages to {self.spam_low}")
            client.move_messages(_uids(categorized.low_risk), self.spam_low)

        if categorized.high_risk:
            logger.info(f"Moving {len(categorized.high_risk)} messages to {self.spam_high}")
            client.move_messages(_uids(categorized.high_risk), self.spam_high)


class ColorStrategy(ActionStrategy):
    """Placeholder for colour flags. Changes nothing."""

    name = "color"

    def process(self, client: "IMAPClient", categorized: CategorizedMessages) -> None:
        """Log and leave the messages untouched."""
        logger.warning(
            f"Color mode is not implemented, leaving {len(categorized)} messages unchanged"
        )


def create_strategy(actions: ActionsConfig, folders: FoldersConfig) -> ActionStrategy:
    """Build the strategy selected by ``actions.mode``.

    Raises:
        ConfigurationError: If the mode is unknown or its settings are
            incomplete.
    """
    mode = actions.mode
    if mode == "label":
        return LabelStrategy(actions.label_low, actions.label_high)
    if mode == "folder":
        return FolderStrategy(folders.spam_low, folders.spam_high)
    if mode == "color":
        return ColorStrategy()
    raise ConfigurationError(f"Unknown action mode: {actions.mode}")
