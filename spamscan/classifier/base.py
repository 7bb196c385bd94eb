"""Classifier adapter contract."""

from abc import ABC, abstractmethod

from spamscan.models.message import LearnResult, Polarity, SpamInfo


class ClassifierError(Exception):
    """Raised when the classifier cannot be reached or rejects a request."""

    pass


class Classifier(ABC):
    """Scores raw messages and learns from labelled examples.

    Implementations must raise ClassifierError for transport failures and
    error responses, and must be safe to call from several threads at once.
    """

    name = "classifier"

    @abstractmethod
    def check(self, raw: bytes) -> SpamInfo:
        """Score a raw RFC822 message.

        Raises:
            ClassifierError: If the message could not be scored.
        """

    @abstractmethod
    def learn(self, raw: bytes, polarity: Polarity) -> LearnResult:
        """Train the classifier with a message.

        A message the classifier has already learned is reported as a
        success with ``already_learned`` set, not as an error.

        Raises:
            ClassifierError: If training failed.
        """

    def close(self) -> None:
        """Release resources held by the adapter."""
