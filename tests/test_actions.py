"""Tests for tier action strategies."""

import logging

import pytest

from conftest import FakeMailStore, make_raw

from spamscan.cli.config import ActionsConfig, ConfigurationError, FoldersConfig
from spamscan.models.message import CategorizedMessages, Tier
from spamscan.processor.actions import (
    ColorStrategy,
    FolderStrategy,
    LabelStrategy,
    create_strategy,
)
from spamscan.utils.email_parser import message_from_bytes


@pytest.fixture
def store() -> FakeMailStore:
    """Inbox with four messages, selected read-write."""
    store = FakeMailStore(folders=("INBOX", "INBOX.spam-low", "INBOX.spam-high"))
    for subject in ("one", "two", "three", "four"):
        store.add_message("INBOX", make_raw(subject=subject))
    store.select_folder("INBOX", readonly=False)
    return store


def _categorize(store: FakeMailStore, tiers: dict[int, Tier]) -> CategorizedMessages:
    categorized = CategorizedMessages()
    for uid, tier in tiers.items():
        raw = store._get("INBOX", uid).raw
        categorized.add(tier, message_from_bytes(uid, raw))
    return categorized


class TestLabelStrategy:
    """Tests for label mode."""

    def test_labels_by_tier(self, store: FakeMailStore):
        """Test each risky tier gets exactly its own label."""
        categorized = _categorize(
            store, {1: Tier.CLEAN, 2: Tier.LOW_RISK, 3: Tier.HIGH_RISK}
        )

        LabelStrategy().process(store, categorized)

        assert store.flags_of("INBOX", 1) == set()
        assert store.flags_of("INBOX", 2) == {"Spam:Low"}
        assert store.flags_of("INBOX", 3) == {"Spam:High"}

    def test_relabels_on_rescan(self, store: FakeMailStore):
        """Test a message moving between tiers loses the old label."""
        store.flags_of("INBOX", 1).update({"Spam:Low", "Spam:High"})
        store.flags_of("INBOX", 2).add("Spam:High")
        store.flags_of("INBOX", 3).add("Spam:Low")

        categorized = _categorize(
            store, {1: Tier.CLEAN, 2: Tier.LOW_RISK, 3: Tier.HIGH_RISK}
        )
        LabelStrategy().process(store, categorized)

        assert store.flags_of("INBOX", 1) == set()
        assert store.flags_of("INBOX", 2) == {"Spam:Low"}
        assert store.flags_of("INBOX", 3) == {"Spam:High"}

    def test_idempotent(self, store: FakeMailStore):
        """Test applying the same batch twice changes nothing more."""
        categorized = _categorize(store, {2: Tier.LOW_RISK, 3: Tier.HIGH_RISK})
        strategy = LabelStrategy("Risk:Low", "Risk:High")

        strategy.process(store, categorized)
        strategy.process(store, categorized)

        assert store.flags_of("INBOX", 2) == {"Risk:Low"}
        assert store.flags_of("INBOX", 3) == {"Risk:High"}

    def test_confirmed_spam_untouched(self, store: FakeMailStore):
        """Test the strategy leaves confirmed spam alone."""
        categorized = _categorize(store, {4: Tier.CONFIRMED_SPAM})

        LabelStrategy().process(store, categorized)

        assert store.flags_of("INBOX", 4) == set()
        assert store.uids("INBOX") == [1, 2, 3, 4]


class TestFolderStrategy:
    """Tests for folder mode."""

    def test_moves_risky_messages(self, store: FakeMailStore):
        """Test low and high risk go to their folders, clean stays."""
        categorized = _categorize(
            store, {1: Tier.CLEAN, 2: Tier.LOW_RISK, 3: Tier.HIGH_RISK}
        )

        FolderStrategy("INBOX.spam-low", "INBOX.spam-high").process(store, categorized)

        assert store.uids("INBOX") == [1, 4]
        assert len(store.folders["INBOX.spam-low"]) == 1
        assert len(store.folders["INBOX.spam-high"]) == 1

    @pytest.mark.parametrize("low,high", [(None, "INBOX.spam-high"), ("INBOX.spam-low", None)])
    def test_requires_both_folders(self, low, high):
        """Test missing folders are a configuration error."""
        with pytest.raises(ConfigurationError, match="spam_low"):
            FolderStrategy(low, high)


class TestColorStrategy:
    """Tests for color mode."""

    def test_no_mailbox_changes(self, store: FakeMailStore, caplog):
        """Test nothing changes and a warning is logged."""
        categorized = _categorize(store, {2: Tier.LOW_RISK, 3: Tier.HIGH_RISK})

        with caplog.at_level(logging.WARNING, logger="spamscan"):
            ColorStrategy().process(store, categorized)

        assert store.flags_of("INBOX", 2) == set()
        assert store.uids("INBOX") == [1, 2, 3, 4]
        assert "not implemented" in caplog.text


class TestCreateStrategy:
    """Tests for the strategy factory."""

    def test_label_mode(self):
        """Test label mode carries configured labels."""
        strategy = create_strategy(
            ActionsConfig(mode="label", label_low="A", label_high="B"), FoldersConfig()
        )

        assert isinstance(strategy, LabelStrategy)
        assert (strategy.label_low, strategy.label_high) == ("A", "B")

    def test_folder_mode(self):
        """Test folder mode uses the folder settings."""
        folders = FoldersConfig(spam_low="INBOX.spam-low", spam_high="INBOX.spam-high")

        strategy = create_strategy(ActionsConfig(mode="folder"), folders)

        assert isinstance(strategy, FolderStrategy)
        assert strategy.spam_high == "INBOX.spam-high"

    def test_folder_mode_incomplete(self):
        """Test folder mode without folders fails at construction."""
        with pytest.raises(ConfigurationError):
            create_strategy(ActionsConfig(mode="folder"), FoldersConfig())

    def test_color_mode(self):
        """Test color mode."""
        assert isinstance(create_strategy(ActionsConfig(mode="color"), FoldersConfig()), ColorStrategy)

    def test_unknown_mode(self):
        """Test unknown modes are rejected."""
        with pytest.raises(ConfigurationError, match="Unknown action mode"):
            create_strategy(ActionsConfig(mode="paint"), FoldersConfig())
