"""Rich console output formatting."""

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from spamscan.models.message import (
    MapUpdateResult,
    Message,
    ScannerState,
    ScanResult,
    Tier,
    TrainingResult,
    format_timestamp,
)

TIER_STYLES = {
    Tier.CLEAN.value: "green",
    Tier.LOW_RISK.value: "yellow",
    Tier.HIGH_RISK.value: "red",
    Tier.CONFIRMED_SPAM.value: "bold red",
}


class RichOutput:
    """Rich console output formatting."""

    def __init__(self, console: Console | None = None) -> None:
        """Initialize with Rich console.

        Args:
            console: Rich Console instance.
        """
        self.console = console or Console()

    def print_scan_result(self, result: ScanResult) -> None:
        """Display the outcome of a scan cycle.

        Args:
            result: Scan cycle result.
        """
        if result.processed == 0:
            self.console.print(
                f"[dim]No new messages. Cursor remains at UID {result.last_uid}.[/dim]"
            )
            return

        tiers = "\n".join(
            f"[{TIER_STYLES[tier]}]{tier}[/{TIER_STYLES[tier]}]: {count}"
            for tier, count in result.by_tier.items()
        )
        panel_content = f"""
[bold]Processed:[/bold] {result.processed}
[bold]Batches:[/bold] {result.batches}
[bold]Cursor:[/bold] UID {result.last_uid}

{tiers}

[bold]Duration:[/bold] {result.duration_seconds:.1f} seconds
"""
        self.console.print(Panel(panel_content, title="Scan Complete"))

    def print_training_result(self, result: TrainingResult) -> None:
        """Display the outcome of a training run."""
        self.console.print(
            f"Learned [cyan]{result.processed}[/cyan] {result.polarity.value} messages "
            f"from {result.folder} ([dim]{result.already_learned} already learned[/dim])"
        )

    def print_map_result(self, list_type: str, result: MapUpdateResult) -> None:
        """Display the outcome of a whitelist or blacklist update."""
        self.console.print(
            f"{list_type.capitalize()}: [green]{len(result.added)} added[/green], "
            f"{len(result.skipped)} already present, {result.total} total"
        )
        for address in result.added:
            self.console.print(f"  + {address}")

    def print_state(self, key: str, state: ScannerState) -> None:
        """Display a stored scanner cursor."""
        panel_content = f"""
[bold]Last UID:[/bold] {state.last_uid}
[bold]Last seen date:[/bold] {format_timestamp(state.last_seen_date)}
[bold]Last checked:[/bold] {format_timestamp(state.last_checked)}
"""
        self.console.print(Panel(panel_content, title=f"State: {key}"))

    def print_text_state(self, key: str, text: str) -> None:
        """Display a free-form state entry such as a map backup."""
        lines = text.splitlines()
        self.console.print(
            Panel(text or "[dim](empty)[/dim]", title=f"State: {key}", subtitle=f"{len(lines)} lines")
        )

    def print_messages(self, messages: list[Message], limit: int = 50) -> None:
        """Display messages as a table.

        Args:
            messages: Messages to display.
            limit: Maximum rows to show.
        """
        table = Table(title="Messages")

        table.add_column("UID", justify="right", style="cyan")
        table.add_column("Date", width=16)
        table.add_column("From", style="green", max_width=30)
        table.add_column("Subject", max_width=40)
        table.add_column("Flags", style="magenta")

        for message in messages[:limit]:
            date = message.envelope.date
            table.add_row(
                str(message.uid),
                date.strftime("%Y-%m-%d %H:%M") if date else "",
                self._truncate(message.envelope.sender, 30),
                self._truncate(message.envelope.subject or "(no subject)", 40),
                " ".join(sorted(message.flags)),
            )

        self.console.print(table)

        if len(messages) > limit:
            self.console.print(f"\n[dim]... and {len(messages) - limit} more messages[/dim]")

    def print_error(self, message: str, details: str | None = None) -> None:
        """Display error message.

        Args:
            message: Error message.
            details: Optional additional details.
        """
        self.console.print(f"[bold red]Error:[/bold red] {message}")
        if details:
            self.console.print(f"[dim]{details}[/dim]")

    def print_success(self, message: str) -> None:
        """Display success message."""
        self.console.print(f"[bold green]Success:[/bold green] {message}")

    def print_warning(self, message: str) -> None:
        """Display warning message."""
        self.console.print(f"[bold yellow]Warning:[/bold yellow] {message}")

    def confirm(self, message: str) -> bool:
        """Request user confirmation.

        Returns:
            True if user confirms.
        """
        response = self.console.input(f"{message} [y/N]: ")
        return response.lower() in ("y", "yes")

    def _truncate(self, text: str, max_length: int) -> str:
        """Truncate text with ellipsis."""
        if len(text) <= max_length:
            return text
        return text[: max_length - 3] + "..."
