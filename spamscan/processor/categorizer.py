"""Assignment of classifier verdicts to spam tiers."""

from dataclasses import dataclass

from spamscan.models.message import CategorizedMessages, Message, SpamInfo, Tier


@dataclass(frozen=True)
class Thresholds:
    """Tier boundaries as a percentage of the classifier's required score.

    ``high_risk`` is a nominal cap: percentages above it are still HighRisk.
    """

    clean: float = 30
    low_risk: float = 60
    high_risk: float = 100


def categorize(spam_info: SpamInfo, thresholds: Thresholds = Thresholds()) -> Tier:
    """Tier for a single verdict.

    Args:
        spam_info: Classifier verdict.
        thresholds: Tier boundaries.

    Returns:
        ConfirmedSpam when the classifier flagged the message, otherwise the
        tier matching score/required as a percentage. No usable score is
        Clean.
    """
    if spam_info.is_spam:
        return Tier.CONFIRMED_SPAM

    percentage = spam_info.percentage
    if percentage is None or percentage <= thresholds.clean:
        return Tier.CLEAN
    if percentage < thresholds.low_risk:
        return Tier.LOW_RISK
    return Tier.HIGH_RISK


def categorize_messages(
    messages: list[Message], thresholds: Thresholds = Thresholds()
) -> CategorizedMessages:
    """Group classified messages by tier, keeping their order.

    Raises:
        ValueError: If a message has not been classified.
    """
    categorized = CategorizedMessages()
    for message in messages:
        if message.spam_info is None:
            raise ValueError(f"UID {message.uid} has no classifier verdict")
        categorized.add(categorize(message.spam_info, thresholds), message)
    return categorized
