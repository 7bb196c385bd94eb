"""Configuration loading and validation."""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Mapping

import yaml

ACTION_MODES = ("label", "folder", "color")
CLASSIFIER_BACKENDS = ("rspamd", "spamassassin")


class ConfigurationError(Exception):
    """Raised when configuration is missing or inconsistent."""

    pass


@dataclass
class IMAPConfig:
    """Mail store connection."""

    host: str = ""
    port: int = 993
    user: str = ""
    password: str = ""
    tls: bool = True
    gmail_labels: bool = False  # X-GM-LABELS instead of IMAP keywords


@dataclass
class FoldersConfig:
    """Mailbox names."""

    inbox: str = "INBOX"
    spam: str = "INBOX.spam"
    train_spam: str = "INBOX.scanner.train-spam"
    train_ham: str = "INBOX.scanner.train-ham"
    train_whitelist: str = "INBOX.scanner.train-whitelist"
    train_blacklist: str = "INBOX.scanner.train-blacklist"
    state: str = "scanner.state"
    spam_low: str | None = None  # folder mode only
    spam_high: str | None = None  # folder mode only


@dataclass
class StateConfig:
    """Keys of the records kept in the state mailbox."""

    scanner_key: str = "scanner"
    whitelist_key: str = "whitelist-map"
    blacklist_key: str = "blacklist-map"


@dataclass
class ScanConfig:
    """Scan cycle options."""

    scan_batch_size: int = 200
    process_batch_size: int = 10
    scan_read: bool = False
    interval: int = -1  # seconds between runs, <= 0 for a single run


@dataclass
class ThresholdsConfig:
    """Tier boundaries as a percentage of the classifier's required score."""

    clean: float = 30
    low_risk: float = 60
    high_risk: float = 100


@dataclass
class ActionsConfig:
    """How tiers are applied to messages."""

    mode: str = "label"  # label, folder, color
    label_low: str = "Spam:Low"
    label_high: str = "Spam:High"


@dataclass
class ClassifierConfig:
    """Spam classifier backend."""

    backend: str = "rspamd"  # rspamd, spamassassin
    url: str = "http://localhost:11333"
    password: str | None = None
    timeout: float = 30.0
    username: str | None = None  # spamc --username
    max_size: int = 100_000_000


@dataclass
class MapsConfig:
    """Allow/deny list files."""

    whitelist_path: Path = Path("maps/whitelist.map")
    blacklist_path: Path = Path("maps/blacklist.map")


@dataclass
class LoggingConfig:
    """Logging options."""

    level: str = "INFO"
    file: Path | None = None
    verbose: bool = False
    operation_log: Path | None = None


@dataclass
class Config:
    """Complete application configuration."""

    imap: IMAPConfig = field(default_factory=IMAPConfig)
    folders: FoldersConfig = field(default_factory=FoldersConfig)
    state: StateConfig = field(default_factory=StateConfig)
    scan: ScanConfig = field(default_factory=ScanConfig)
    thresholds: ThresholdsConfig = field(default_factory=ThresholdsConfig)
    actions: ActionsConfig = field(default_factory=ActionsConfig)
    classifier: ClassifierConfig = field(default_factory=ClassifierConfig)
    maps: MapsConfig = field(default_factory=MapsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def load_config(
    config_path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> Config:
    """Load configuration from file, then apply environment overrides.

    Args:
        config_path: Path to YAML config file. Defaults to config.yaml.
        environ: Environment to read overrides from. Defaults to os.environ.

    Returns:
        Loaded Config object.

    Raises:
        ConfigurationError: If the file is not valid YAML or a value has the
            wrong type.
    """
    config = Config()

    # Try default paths if not specified
    if config_path is None:
        for default_path in ["config.yaml", "config.yml", "config.local.yaml"]:
            if Path(default_path).exists():
                config_path = Path(default_path)
                break

    if config_path and config_path.exists():
        with open(config_path, "r", encoding="utf-8") as f:
            try:
                data = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in {config_path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"{config_path} must contain a mapping")
        config = _parse_config(data)

    apply_env_overrides(config, os.environ if environ is None else environ)
    return config


def _optional_path(value: Any) -> Path | None:
    return Path(value) if value else None


def _parse_config(data: dict[str, Any]) -> Config:
    """Parse configuration dictionary into Config object.

    Args:
        data: Raw configuration dictionary.

    Returns:
        Config object.
    """
    config = Config()

    try:
        # IMAP section
        if "imap" in data:
            imap_data = data["imap"] or {}
            config.imap = IMAPConfig(
                host=imap_data.get("host", ""),
                port=int(imap_data.get("port", 993)),
                user=imap_data.get("user", ""),
                password=str(imap_data.get("password", "") or ""),
                tls=imap_data.get("tls", True),
                gmail_labels=imap_data.get("gmail_labels", False),
            )

        # Folders section
        if "folders" in data:
            folder_data = data["folders"] or {}
            defaults = FoldersConfig()
            config.folders = FoldersConfig(
                **{
                    name: folder_data.get(name, getattr(defaults, name))
                    for name in defaults.__dataclass_fields__
                }
            )

        # State keys section
        if "state" in data:
            state_data = data["state"] or {}
            config.state = StateConfig(
                scanner_key=state_data.get("scanner_key", "scanner"),
                whitelist_key=state_data.get("whitelist_key", "whitelist-map"),
                blacklist_key=state_data.get("blacklist_key", "blacklist-map"),
            )

        # Scan section
        if "scan" in data:
            scan_data = data["scan"] or {}
            config.scan = ScanConfig(
                scan_batch_size=int(scan_data.get("scan_batch_size", 200)),
                process_batch_size=int(scan_data.get("process_batch_size", 10)),
                scan_read=scan_data.get("scan_read", False),
                interval=int(scan_data.get("interval", -1)),
            )

        # Thresholds section
        if "thresholds" in data:
            threshold_data = data["thresholds"] or {}
            config.thresholds = ThresholdsConfig(
                clean=float(threshold_data.get("clean", 30)),
                low_risk=float(threshold_data.get("low_risk", 60)),
                high_risk=float(threshold_data.get("high_risk", 100)),
            )

        # Actions section
        if "actions" in data:
            action_data = data["actions"] or {}
            config.actions = ActionsConfig(
                mode=str(action_data.get("mode", "label")).lower(),
                label_low=action_data.get("label_low", "Spam:Low"),
                label_high=action_data.get("label_high", "Spam:High"),
            )

        # Classifier section
        if "classifier" in data:
            classifier_data = data["classifier"] or {}
            config.classifier = ClassifierConfig(
                backend=str(classifier_data.get("backend", "rspamd")).lower(),
                url=classifier_data.get("url", "http://localhost:11333"),
                password=classifier_data.get("password"),
                timeout=float(classifier_data.get("timeout", 30.0)),
                username=classifier_data.get("username"),
                max_size=int(classifier_data.get("max_size", 100_000_000)),
            )

        # Maps section
        if "maps" in data:
            map_data = data["maps"] or {}
            config.maps = MapsConfig(
                whitelist_path=Path(map_data.get("whitelist_path", "maps/whitelist.map")),
                blacklist_path=Path(map_data.get("blacklist_path", "maps/blacklist.map")),
            )

        # Logging section
        if "logging" in data:
            log_data = data["logging"] or {}
            config.logging = LoggingConfig(
                level=log_data.get("level", "INFO"),
                file=_optional_path(log_data.get("file")),
                verbose=log_data.get("verbose", False),
                operation_log=_optional_path(log_data.get("operation_log")),
            )
    except (TypeError, ValueError, AttributeError) as e:
        raise ConfigurationError(f"Invalid configuration value: {e}") from e

    return config


def apply_env_overrides(config: Config, environ: Mapping[str, str]) -> None:
    """Override connection settings and secrets from environment variables."""
    if environ.get("IMAP_HOST"):
        config.imap.host = environ["IMAP_HOST"]
    if environ.get("IMAP_PORT"):
        try:
            config.imap.port = int(environ["IMAP_PORT"])
        except ValueError as e:
            raise ConfigurationError(f"IMAP_PORT must be an integer: {environ['IMAP_PORT']}") from e
    if environ.get("IMAP_USER"):
        config.imap.user = environ["IMAP_USER"]
    if environ.get("IMAP_PASSWORD"):
        config.imap.password = environ["IMAP_PASSWORD"]
    if environ.get("RSPAMD_URL"):
        config.classifier.url = environ["RSPAMD_URL"]
    if environ.get("RSPAMD_PASSWORD"):
        config.classifier.password = environ["RSPAMD_PASSWORD"]


def validate_config(config: Config) -> list[str]:
    """Validate configuration, return list of issues.

    Args:
        config: Configuration to validate.

    Returns:
        List of validation issue messages.
    """
    issues = []

    if not config.imap.host:
        issues.append("IMAP host not configured")
    if not config.imap.user:
        issues.append("IMAP user not configured")

    if config.actions.mode not in ACTION_MODES:
        issues.append(f"Invalid action mode: {config.actions.mode}")
    elif config.actions.mode == "folder":
        if not config.folders.spam_low or not config.folders.spam_high:
            issues.append("Folder mode requires folders.spam_low and folders.spam_high")

    if config.classifier.backend not in CLASSIFIER_BACKENDS:
        issues.append(f"Invalid classifier backend: {config.classifier.backend}")

    if config.scan.scan_batch_size <= 0:
        issues.append("scan_batch_size must be positive")
    if config.scan.process_batch_size <= 0:
        issues.append("process_batch_size must be positive")

    thresholds = config.thresholds
    if not thresholds.clean < thresholds.low_risk <= thresholds.high_risk:
        issues.append("Thresholds must satisfy clean < low_risk <= high_risk")

    return issues


def require_valid_config(config: Config) -> Config:
    """Return the config unchanged, or raise if it has any issue.

    Raises:
        ConfigurationError: Listing every validation issue.
    """
    issues = validate_config(config)
    if issues:
        raise ConfigurationError("; ".join(issues))
    return config


def create_default_config(path: Path) -> None:
    """Create default configuration file.

    Args:
        path: Path to write config file.
    """
    default_config = """# IMAP Spam Scanner Configuration
# Secrets can also be supplied through IMAP_HOST, IMAP_PORT, IMAP_USER,
# IMAP_PASSWORD, RSPAMD_URL and RSPAMD_PASSWORD.

imap:
  host: "imap.example.com"
  port: 993
  user: "user@example.com"
  password: ""
  tls: true
  # true for Gmail (labels via X-GM-LABELS), false for IMAP keywords
  gmail_labels: false

folders:
  inbox: "INBOX"
  spam: "INBOX.spam"
  train_spam: "INBOX.scanner.train-spam"
  train_ham: "INBOX.scanner.train-ham"
  train_whitelist: "INBOX.scanner.train-whitelist"
  train_blacklist: "INBOX.scanner.train-blacklist"
  state: "scanner.state"
  # Required when actions.mode is "folder"
  # spam_low: "INBOX.spam-low"
  # spam_high: "INBOX.spam-high"

state:
  scanner_key: "scanner"
  whitelist_key: "whitelist-map"
  blacklist_key: "blacklist-map"

scan:
  scan_batch_size: 200
  process_batch_size: 10
  # Also rescan messages that were already read
  scan_read: false
  # Seconds between runs of "spamscan run"; -1 runs once
  interval: -1

# Percentages of the classifier's required score
thresholds:
  clean: 30
  low_risk: 60
  high_risk: 100

actions:
  # label  - set Spam:Low / Spam:High labels
  # folder - move to folders.spam_low / folders.spam_high
  # color  - reserved, does nothing
  mode: "label"
  label_low: "Spam:Low"
  label_high: "Spam:High"

classifier:
  # rspamd or spamassassin
  backend: "rspamd"
  url: "http://localhost:11333"
  timeout: 30
  # spamassassin only
  # username: "user"
  max_size: 100000000

maps:
  whitelist_path: "maps/whitelist.map"
  blacklist_path: "maps/blacklist.map"

logging:
  level: "INFO"
  # file: "./logs/spamscan.log"
  verbose: false
  # operation_log: "./logs/operations.jsonl"
"""
    with open(path, "w", encoding="utf-8") as f:
        f.write(default_config)
