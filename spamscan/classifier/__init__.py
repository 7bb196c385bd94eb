"""Spam classifier adapters."""

from spamscan.classifier.base import Classifier, ClassifierError
from spamscan.classifier.rspamd import RspamdClassifier, parse_rspamd_output
from spamscan.classifier.spamassassin import SpamAssassinClassifier, parse_spamassassin_headers
from spamscan.cli.config import ClassifierConfig, ConfigurationError


def create_classifier(config: ClassifierConfig) -> Classifier:
    """Build the adapter selected by ``config.backend``.

    Raises:
        ConfigurationError: If the backend is unknown.
    """
    if config.backend == "rspamd":
        return RspamdClassifier(url=config.url, password=config.password, timeout=config.timeout)
    if config.backend == "spamassassin":
        return SpamAssassinClassifier(
            username=config.username,
            max_size=config.max_size,
            timeout=config.timeout,
        )
    raise ConfigurationError(f"Unknown classifier backend: {config.backend}")


__all__ = [
    "Classifier",
    "ClassifierError",
    "RspamdClassifier",
    "SpamAssassinClassifier",
    "create_classifier",
    "parse_rspamd_output",
    "parse_spamassassin_headers",
]
