"""CLI commands using Typer."""

import time
from datetime import timezone
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Optional

import typer
from rich.console import Console

from spamscan.cli.config import (
    Config,
    ConfigurationError,
    create_default_config,
    load_config,
    require_valid_config,
)
from spamscan.cli.output import RichOutput
from spamscan.imap.client import IMAPClient
from spamscan.models.message import (
    MapUpdateResult,
    Polarity,
    ScannerState,
    ScanResult,
    TrainingResult,
    utcnow,
)
from spamscan.state.store import StateStore
from spamscan.utils.logging import OperationLogger, logger, setup_logging

app = typer.Typer(
    name="spamscan",
    help="IMAP spam scanner - classify new mail, apply spam labels and train the classifier.",
    add_completion=False,
)
state_app = typer.Typer(help="Inspect and repair state stored in the state mailbox.")
map_app = typer.Typer(help="Manage whitelist and blacklist map files.")
config_app = typer.Typer(help="Configuration file helpers.")
app.add_typer(state_app, name="state")
app.add_typer(map_app, name="map")
app.add_typer(config_app, name="config")

console = Console()
output = RichOutput(console)

ConfigOption = typer.Option(None, "--config", "-c", help="Path to config file")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Verbose logging")


class ListType(str, Enum):
    """Which allow/deny map a command works on."""

    WHITELIST = "whitelist"
    BLACKLIST = "blacklist"


def get_config(
    config_path: Optional[Path],
    verbose: bool = False,
    validate: bool = True,
) -> Config:
    """Load configuration and set up logging.

    Args:
        config_path: Optional path to config file.
        verbose: Force verbose console logging.
        validate: If True, any configuration issue is fatal.

    Returns:
        Loaded Config object.

    Raises:
        typer.Exit: If configuration is invalid.
    """
    try:
        config = load_config(config_path)
        if validate:
            require_valid_config(config)
    except ConfigurationError as e:
        output.print_error("Invalid configuration", str(e))
        raise typer.Exit(1)

    setup_logging(
        level="DEBUG" if verbose else config.logging.level,
        log_file=config.logging.file,
        verbose=verbose or config.logging.verbose,
    )
    return config


def connect(config: Config) -> IMAPClient:
    """Create a client for the configured mail store (not yet connected)."""
    return IMAPClient(
        host=config.imap.host,
        port=config.imap.port,
        user=config.imap.user,
        password=config.imap.password,
        tls=config.imap.tls,
        gmail_labels=config.imap.gmail_labels,
    )


def folders_to_create(config: Config) -> list[str]:
    """Folders the scanner needs besides the inbox."""
    folders = config.folders
    wanted = [
        folders.spam,
        folders.train_spam,
        folders.train_ham,
        folders.train_whitelist,
        folders.train_blacklist,
        folders.state,
    ]
    if config.actions.mode == "folder":
        wanted += [folder for folder in (folders.spam_low, folders.spam_high) if folder]
    return wanted


def run_init(config: Config) -> list[str]:
    """Create missing folders. Returns the folders created."""
    from spamscan.imap.folders import ensure_folders

    with connect(config) as client:
        return ensure_folders(client, folders_to_create(config))


def run_scan(config: Config) -> ScanResult:
    """Run one scan cycle over the inbox."""
    from spamscan.classifier import create_classifier
    from spamscan.processor.actions import create_strategy
    from spamscan.processor.categorizer import Thresholds
    from spamscan.processor.scan import ScanPipeline

    strategy = create_strategy(config.actions, config.folders)
    classifier = create_classifier(config.classifier)
    thresholds = Thresholds(
        clean=config.thresholds.clean,
        low_risk=config.thresholds.low_risk,
        high_risk=config.thresholds.high_risk,
    )

    try:
        with connect(config) as client:
            pipeline = ScanPipeline(
                client=client,
                classifier=classifier,
                strategy=strategy,
                state_store=StateStore(client, config.folders.state),
                folders=config.folders,
                scan=config.scan,
                thresholds=thresholds,
                state_key=config.state.scanner_key,
                operation_logger=OperationLogger(config.logging.operation_log),
            )
            return pipeline.run()
    finally:
        classifier.close()


def run_training(config: Config, polarity: Polarity) -> TrainingResult:
    """Drain the spam or ham training folder into the classifier."""
    from spamscan.classifier import create_classifier
    from spamscan.processor.training import TrainingPipeline

    classifier = create_classifier(config.classifier)
    try:
        with connect(config) as client:
            pipeline = TrainingPipeline(
                client=client,
                classifier=classifier,
                folders=config.folders,
                process_batch_size=config.scan.process_batch_size,
                operation_logger=OperationLogger(config.logging.operation_log),
            )
            return pipeline.train(polarity)
    finally:
        classifier.close()


def run_map_training(config: Config, list_type: ListType) -> MapUpdateResult:
    """Drain the whitelist or blacklist training folder into its map."""
    from spamscan.processor.training import MapTrainingPipeline

    with connect(config) as client:
        pipeline = MapTrainingPipeline(
            client=client,
            state_store=StateStore(client, config.folders.state),
            folders=config.folders,
            maps=config.maps,
            state_keys=config.state,
            operation_logger=OperationLogger(config.logging.operation_log),
        )
        if list_type is ListType.WHITELIST:
            return pipeline.train_whitelist()
        return pipeline.train_blacklist()


def run_step(name: str, step: Callable[[], Any]) -> Any:
    """Run one orchestrated step and log how long it took."""
    start_time = time.time()
    try:
        return step()
    finally:
        logger.info(f"Step {name} completed in {time.time() - start_time:.1f}s")


def run_cycle(config: Config) -> ScanResult:
    """Training steps followed by a scan, each on its own connection."""
    run_step("train-spam", lambda: run_training(config, Polarity.SPAM))
    run_step("train-ham", lambda: run_training(config, Polarity.HAM))
    run_step("train-whitelist", lambda: run_map_training(config, ListType.WHITELIST))
    run_step("train-blacklist", lambda: run_map_training(config, ListType.BLACKLIST))
    return run_step("scan", lambda: run_scan(config))


def _map_settings(config: Config, list_type: ListType) -> tuple[Path, str]:
    if list_type is ListType.WHITELIST:
        return config.maps.whitelist_path, config.state.whitelist_key
    return config.maps.blacklist_path, config.state.blacklist_key


@app.command()
def init(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Create the training, state and spam folders if they are missing."""
    config = get_config(config_path, verbose)

    try:
        created = run_init(config)
    except Exception as e:
        output.print_error("Folder initialization failed", str(e))
        raise typer.Exit(1)

    if created:
        for folder in created:
            output.console.print(f"  created [cyan]{folder}[/cyan]")
        output.print_success(f"Created {len(created)} folders")
    else:
        output.console.print("[dim]All folders already exist.[/dim]")


@app.command()
def scan(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Classify new inbox messages and apply spam actions."""
    config = get_config(config_path, verbose)

    try:
        result = run_scan(config)
    except Exception as e:
        output.print_error("Scan failed", str(e))
        raise typer.Exit(1)

    output.print_scan_result(result)


@app.command("train-spam")
def train_spam(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Learn every message in the spam training folder as spam."""
    config = get_config(config_path, verbose)

    try:
        result = run_training(config, Polarity.SPAM)
    except Exception as e:
        output.print_error("Spam training failed", str(e))
        raise typer.Exit(1)

    output.print_training_result(result)


@app.command("train-ham")
def train_ham(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Learn every message in the ham training folder as ham."""
    config = get_config(config_path, verbose)

    try:
        result = run_training(config, Polarity.HAM)
    except Exception as e:
        output.print_error("Ham training failed", str(e))
        raise typer.Exit(1)

    output.print_training_result(result)


@app.command("train-whitelist")
def train_whitelist(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Add senders from the whitelist training folder to the whitelist map."""
    config = get_config(config_path, verbose)

    try:
        result = run_map_training(config, ListType.WHITELIST)
    except Exception as e:
        output.print_error("Whitelist training failed", str(e))
        raise typer.Exit(1)

    output.print_map_result("whitelist", result)


@app.command("train-blacklist")
def train_blacklist(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Add senders from the blacklist training folder to the blacklist map."""
    config = get_config(config_path, verbose)

    try:
        result = run_map_training(config, ListType.BLACKLIST)
    except Exception as e:
        output.print_error("Blacklist training failed", str(e))
        raise typer.Exit(1)

    output.print_map_result("blacklist", result)


@app.command()
def run(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
    interval: Optional[int] = typer.Option(
        None,
        "--interval",
        "-i",
        help="Seconds between cycles (overrides scan.interval; <= 0 runs once)",
    ),
) -> None:
    """Initialize folders, then train and scan, repeating every interval."""
    config = get_config(config_path, verbose)
    if interval is not None:
        config.scan.interval = interval

    logger.info(
        f"Starting scanner for {config.imap.user}@{config.imap.host} "
        f"(interval {config.scan.interval}s)"
    )

    try:
        run_step("init", lambda: run_init(config))

        while True:
            result = run_cycle(config)
            output.print_scan_result(result)

            if config.scan.interval <= 0:
                logger.info("Cycle complete, single-run mode")
                break

            logger.info(f"Cycle complete, sleeping {config.scan.interval}s")
            time.sleep(config.scan.interval)
    except KeyboardInterrupt:
        output.print_warning("Interrupted")
        raise typer.Exit(130)
    except Exception as e:
        output.print_error("Run failed", str(e))
        raise typer.Exit(1)


@app.command("list")
def list_messages(
    folder: Optional[str] = typer.Option(
        None,
        "--folder",
        "-f",
        help="Folder to list (defaults to the inbox)",
    ),
    limit: int = typer.Option(
        50,
        "--limit",
        "-l",
        help="Show the most recent N messages",
    ),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """List messages in a folder with their flags."""
    config = get_config(config_path, verbose)
    folder = folder or config.folders.inbox

    try:
        with connect(config) as client:
            client.select_folder(folder, readonly=True)
            uids = client.search("ALL")
            messages = client.fetch_messages(sorted(uids)[-limit:] if limit > 0 else uids)
    except Exception as e:
        output.print_error(f"Listing {folder} failed", str(e))
        raise typer.Exit(1)

    output.console.print(f"[bold]{folder}[/bold]: {len(uids)} messages")
    output.print_messages(messages, limit=len(messages))


@app.command("uid-on-date")
def uid_on_date(
    since: str = typer.Argument(
        ...,
        help="Date (YYYY-MM-DD, DD-Mon-YYYY or relative: 30d, 6m, 1y)",
    ),
    folder: Optional[str] = typer.Option(
        None,
        "--folder",
        "-f",
        help="Folder to search (defaults to the inbox)",
    ),
    write: bool = typer.Option(
        False,
        "--write",
        help="Store a cursor so the next scan starts at the found message",
    ),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Find the first message on or after a date."""
    from spamscan.imap.search import find_first_uid_since, parse_date_string

    config = get_config(config_path, verbose)
    folder = folder or config.folders.inbox

    try:
        since_date = parse_date_string(since)
    except ValueError as e:
        output.print_error(f"Invalid date format: {since}", str(e))
        raise typer.Exit(1)

    try:
        with connect(config) as client:
            client.select_folder(folder, readonly=True)
            uid = find_first_uid_since(client, since_date)

            if uid is not None and write:
                if folder != config.folders.inbox:
                    output.print_warning(f"The scanner reads {config.folders.inbox}, not {folder}")
                now = utcnow()
                state = ScannerState(
                    last_uid=uid - 1,
                    last_seen_date=since_date.replace(tzinfo=since_date.tzinfo or timezone.utc),
                    last_checked=now,
                )
                StateStore(client, config.folders.state).write(config.state.scanner_key, state)
    except Exception as e:
        output.print_error("UID lookup failed", str(e))
        raise typer.Exit(1)

    if uid is None:
        output.print_warning(f"No message in {folder} since {since_date.strftime('%Y-%m-%d')}")
        return

    output.console.print(f"First UID in {folder} since {since_date.strftime('%Y-%m-%d')}: [cyan]{uid}[/cyan]")
    if write:
        output.print_success(f"Cursor set to UID {uid - 1}; the next scan starts at UID {uid}")


@state_app.command("show")
def state_show(
    key: Optional[str] = typer.Option(None, "--key", "-k", help="State key (defaults to the scanner key)"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Show a stored state record.

    The scanner key is shown as a cursor; any other key, such as a map
    backup, is shown as text.
    """
    from spamscan.state.record import StateNotFound

    config = get_config(config_path, verbose)
    key = key or config.state.scanner_key

    try:
        with connect(config) as client:
            store = StateStore(client, config.folders.state)
            if key != config.state.scanner_key:
                text = store.read_text(key)
            else:
                state = store.read(key)
    except StateNotFound:
        output.print_warning(f"No state stored under {key!r}")
        raise typer.Exit(1)
    except Exception as e:
        output.print_error("Reading state failed", str(e))
        raise typer.Exit(1)

    if key != config.state.scanner_key:
        if text is None:
            output.print_warning(f"No state stored under {key!r}")
            raise typer.Exit(1)
        output.print_text_state(key, text)
    else:
        output.print_state(key, state)


@state_app.command("reset")
def state_reset(
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Reset the scanner cursor to UID 0 so the next scan starts over."""
    config = get_config(config_path, verbose)

    if not yes and not output.confirm("Reset the scanner cursor? All unseen mail will be rescanned."):
        raise typer.Exit(0)

    try:
        with connect(config) as client:
            StateStore(client, config.folders.state).write(
                config.state.scanner_key, ScannerState.initial()
            )
    except Exception as e:
        output.print_error("Resetting state failed", str(e))
        raise typer.Exit(1)

    output.print_success("Scanner cursor reset to UID 0")


@state_app.command("delete")
def state_delete(
    key: Optional[str] = typer.Option(None, "--key", "-k", help="State key (defaults to the scanner key)"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Delete a state record."""
    config = get_config(config_path, verbose)
    key = key or config.state.scanner_key

    if not yes and not output.confirm(f"Delete state {key!r}?"):
        raise typer.Exit(0)

    try:
        with connect(config) as client:
            deleted = StateStore(client, config.folders.state).delete(key)
    except Exception as e:
        output.print_error("Deleting state failed", str(e))
        raise typer.Exit(1)

    if deleted:
        output.print_success(f"State {key!r} deleted")
    else:
        output.console.print(f"[dim]No state stored under {key!r}[/dim]")


@state_app.command("restore-map")
def state_restore_map(
    list_type: ListType = typer.Argument(..., help="Map to restore"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Rewrite a map file from its backup in the state mailbox."""
    from spamscan.utils.mapfile import MapStore

    config = get_config(config_path, verbose)
    map_path, key = _map_settings(config, list_type)

    try:
        with connect(config) as client:
            content = StateStore(client, config.folders.state).read_text(key)
    except Exception as e:
        output.print_error("Reading map backup failed", str(e))
        raise typer.Exit(1)

    if content is None:
        output.print_error(f"No backup stored under {key!r}")
        raise typer.Exit(1)

    MapStore(map_path).restore(content)
    output.print_success(f"Restored {map_path} from {key!r}")


@map_app.command("seed")
def map_seed(
    list_type: ListType = typer.Argument(..., help="Map to seed"),
    source: Path = typer.Argument(..., help="Text file with one address per line"),
    config_path: Optional[Path] = ConfigOption,
    verbose: bool = VerboseOption,
) -> None:
    """Overwrite a map file with the addresses listed in a text file."""
    from spamscan.utils.mapfile import MapStore

    config = get_config(config_path, verbose, validate=False)
    map_path, _ = _map_settings(config, list_type)

    if not source.exists():
        output.print_error(f"File not found: {source}")
        raise typer.Exit(1)

    addresses = source.read_text(encoding="utf-8").splitlines()
    count = MapStore(map_path).seed(addresses)
    output.print_success(f"Seeded {map_path} with {count} addresses")


@config_app.command("init")
def config_init(
    path: Path = typer.Argument(Path("config.yaml"), help="Where to write the config file"),
    force: bool = typer.Option(False, "--force", help="Overwrite an existing file"),
) -> None:
    """Write an annotated default configuration file."""
    if path.exists() and not force:
        output.print_error(f"{path} already exists (use --force to overwrite)")
        raise typer.Exit(1)

    create_default_config(path)
    output.print_success(f"Configuration written to {path}")


if __name__ == "__main__":
    app()
