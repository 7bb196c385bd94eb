"""Tests for configuration loading and validation."""

from pathlib import Path

import pytest

from spamscan.cli.config import (
    Config,
    ConfigurationError,
    create_default_config,
    load_config,
    require_valid_config,
    validate_config,
)
from spamscan.processor.actions import LabelStrategy, create_strategy


def _write(tmp_path: Path, text: str) -> Path:
    path = tmp_path / "config.yaml"
    path.write_text(text, encoding="utf-8")
    return path


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, tmp_path: Path):
        """Test defaults apply when the file does not exist."""
        config = load_config(tmp_path / "missing.yaml", environ={})

        assert config.folders.inbox == "INBOX"
        assert config.folders.spam == "INBOX.spam"
        assert config.folders.state == "scanner.state"
        assert config.scan.scan_batch_size == 200
        assert config.scan.process_batch_size == 10
        assert config.scan.scan_read is False
        assert config.thresholds.clean == 30
        assert config.actions.mode == "label"
        assert config.classifier.backend == "rspamd"
        assert config.state.scanner_key == "scanner"

    def test_yaml_sections(self, tmp_path: Path):
        """Test values from each section are read."""
        path = _write(
            tmp_path,
            """
imap:
  host: mail.example.com
  port: 143
  user: me@example.com
  tls: false
folders:
  spam: Junk
  spam_low: Junk.low
scan:
  scan_batch_size: 50
  scan_read: true
thresholds:
  clean: 20
actions:
  mode: FOLDER
classifier:
  backend: spamassassin
  username: mail
maps:
  whitelist_path: /etc/rspamd/whitelist.map
logging:
  level: DEBUG
  operation_log: logs/ops.jsonl
""",
        )

        config = load_config(path, environ={})

        assert config.imap.host == "mail.example.com"
        assert config.imap.port == 143
        assert config.imap.tls is False
        assert config.folders.spam == "Junk"
        assert config.folders.spam_low == "Junk.low"
        assert config.folders.train_spam == "INBOX.scanner.train-spam"
        assert config.scan.scan_batch_size == 50
        assert config.scan.scan_read is True
        assert config.thresholds.clean == 20.0
        assert config.thresholds.low_risk == 60.0
        assert config.actions.mode == "folder"
        assert config.classifier.backend == "spamassassin"
        assert config.classifier.username == "mail"
        assert config.maps.whitelist_path == Path("/etc/rspamd/whitelist.map")
        assert config.logging.operation_log == Path("logs/ops.jsonl")

    def test_env_overrides(self, tmp_path: Path):
        """Test environment variables take precedence over the file."""
        path = _write(tmp_path, "imap:\n  host: file-host\n  user: file-user\n")
        environ = {
            "IMAP_HOST": "env-host",
            "IMAP_PORT": "1993",
            "IMAP_USER": "env-user",
            "IMAP_PASSWORD": "env-pass",
            "RSPAMD_URL": "http://rspamd:11334",
            "RSPAMD_PASSWORD": "ctrl",
        }

        config = load_config(path, environ=environ)

        assert config.imap.host == "env-host"
        assert config.imap.port == 1993
        assert config.imap.user == "env-user"
        assert config.imap.password == "env-pass"
        assert config.classifier.url == "http://rspamd:11334"
        assert config.classifier.password == "ctrl"

    def test_bad_env_port(self, tmp_path: Path):
        """Test a non-numeric port is a configuration error."""
        with pytest.raises(ConfigurationError, match="IMAP_PORT"):
            load_config(tmp_path / "missing.yaml", environ={"IMAP_PORT": "imap"})

    def test_invalid_yaml(self, tmp_path: Path):
        """Test YAML syntax errors are reported."""
        path = _write(tmp_path, "imap: [unclosed\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config(path, environ={})

    def test_wrong_value_type(self, tmp_path: Path):
        """Test uncoercible values are reported."""
        path = _write(tmp_path, "scan:\n  scan_batch_size: lots\n")

        with pytest.raises(ConfigurationError, match="Invalid configuration value"):
            load_config(path, environ={})

    def test_not_a_mapping(self, tmp_path: Path):
        """Test a top-level list is rejected."""
        path = _write(tmp_path, "- a\n- b\n")

        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path, environ={})


class TestValidateConfig:
    """Tests for validate_config."""

    def _valid(self) -> Config:
        config = Config()
        config.imap.host = "mail.example.com"
        config.imap.user = "me"
        return config

    def test_valid(self):
        """Test a complete config has no issues."""
        assert validate_config(self._valid()) == []

    def test_missing_connection(self):
        """Test missing host and user are reported."""
        issues = validate_config(Config())

        assert "IMAP host not configured" in issues
        assert "IMAP user not configured" in issues

    def test_folder_mode_needs_folders(self):
        """Test folder mode without folders is reported."""
        config = self._valid()
        config.actions.mode = "folder"

        assert validate_config(config) == [
            "Folder mode requires folders.spam_low and folders.spam_high"
        ]

    def test_bad_values(self):
        """Test invalid mode, backend, sizes and thresholds are reported."""
        config = self._valid()
        config.actions.mode = "paint"
        config.classifier.backend = "bogofilter"
        config.scan.process_batch_size = 0
        config.thresholds.clean = 70

        issues = validate_config(config)

        assert len(issues) == 4

    def test_require_valid_config(self):
        """Test all issues are joined into one error."""
        with pytest.raises(ConfigurationError, match="IMAP host not configured; IMAP user"):
            require_valid_config(Config())


class TestCreateDefaultConfig:
    """Tests for the default config template."""

    def test_template_loads(self, tmp_path: Path):
        """Test the written template parses back to the defaults."""
        path = tmp_path / "config.yaml"

        create_default_config(path)
        config = load_config(path, environ={})

        assert config.imap.host == "imap.example.com"
        assert config.folders == Config().folders
        assert config.scan == Config().scan
        assert config.thresholds == Config().thresholds
        assert config.actions == Config().actions
        assert config.maps == Config().maps


class TestModeCase:
    """Tests for case handling of the action mode."""

    def test_mixed_case_mode_from_file(self, tmp_path: Path):
        """Test a capitalised mode is accepted by validation and the factory."""
        path = _write(tmp_path, "imap:\n  host: h\n  user: u\nactions:\n  mode: Label\n")

        config = load_config(path, environ={})

        assert config.actions.mode == "label"
        assert validate_config(config) == []
        assert isinstance(create_strategy(config.actions, config.folders), LabelStrategy)

    def test_unnormalised_mode_rejected_consistently(self):
        """Test validation and the factory agree on a mode set in code."""
        config = Config()
        config.imap.host = "h"
        config.imap.user = "u"
        config.actions.mode = "Label"

        assert validate_config(config) == ["Invalid action mode: Label"]
        with pytest.raises(ConfigurationError, match="Unknown action mode"):
            create_strategy(config.actions, config.folders)
