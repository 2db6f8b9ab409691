"""
Console output for TCFS.

Renders lock, status, unlock, and list results with Rich.

Design Principles:
    - Status at a glance: icons and colors for the gate state
    - Times shown both as RFC 3339 text and as a remaining duration
    - Never prints key material or plaintext
"""

from pathlib import Path

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from tcfs.schema import GateState
from tcfs.store import CapsuleListing, CapsuleStatus, LockOutcome, UnlockOutcome
from tcfs.timeutil import format_rfc3339

# Status icons
ICON_SUCCESS = "[green]✓[/green]"
ICON_ERROR = "[red]✗[/red]"
ICON_LOCKED = "[yellow]🔒[/yellow]"
ICON_OPEN = "[green]🔓[/green]"

GATE_STYLES = {
    GateState.UNLOCKABLE: "green",
    GateState.VALID: "yellow",
    GateState.EXPIRED_BUT_GATED: "yellow",
    GateState.UNVALIDATED: "red",
}


def format_duration(seconds: int) -> str:
    """Render seconds as e.g. '2d 3h 4m 5s'."""
    if seconds <= 0:
        return "0s"
    days, rest = divmod(seconds, 86_400)
    hours, rest = divmod(rest, 3_600)
    minutes, secs = divmod(rest, 60)
    parts = []
    if days:
        parts.append(f"{days}d")
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if secs or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def print_lock_outcome(console: Console, outcome: LockOutcome) -> None:
    """Print the result of a lock."""
    console.print(f"{ICON_SUCCESS} [bold green]Locked[/bold green] {escape(outcome.paths.name)}")
    console.print(f"  [dim]Encrypted file:[/dim] {escape(str(outcome.paths.ciphertext))}")
    console.print(f"  [dim]Metadata file:[/dim]  {escape(str(outcome.paths.metadata))}")
    console.print(f"  [dim]Unlocks at:[/dim]     {format_rfc3339(outcome.policy.unlock_at)}")
    if outcome.policy.grace_seconds:
        console.print(f"  [dim]Grace period:[/dim]   {format_duration(outcome.policy.grace_seconds)}")
    if outcome.metadata.key_protection is not None:
        console.print("  [dim]Data key:[/dim]       passphrase-protected")

    if outcome.source_deleted:
        console.print("  [dim]Original file securely deleted.[/dim]")
    for warning in outcome.warnings:
        console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")


def print_status(console: Console, status: CapsuleStatus) -> None:
    """Print a capsule's status panel and details."""
    style = GATE_STYLES.get(status.gate_state, "dim")
    icon = ICON_OPEN if status.can_unlock else ICON_LOCKED

    header = Text()
    header.append(" Capsule ", style="bold")
    header.append(status.name, style="bold cyan")
    header.append(" │ ", style="dim")
    header.append(status.gate_state.value.upper(), style=f"bold {style}")
    console.print(Panel(header, expand=False))

    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style="dim")
    table.add_column("Value", overflow="fold")

    table.add_row("Policy", escape(status.policy.describe()))
    table.add_row("Owner", escape(status.owner))
    if status.label:
        table.add_row("Label", escape(status.label))
    if status.policy.notes:
        table.add_row("Notes", escape(status.policy.notes))
    table.add_row("Unlock time", format_rfc3339(status.unlock_at))
    if status.policy.grace_seconds:
        table.add_row("Effective unlock", format_rfc3339(status.effective_unlock_at))
    table.add_row(
        "Time remaining",
        f"{status.seconds_remaining} seconds ({format_duration(status.seconds_remaining)})",
    )
    table.add_row("Can unlock", f"{icon} {'Yes' if status.can_unlock else 'No'}")
    table.add_row("Created at", escape(status.created_at))
    table.add_row("Original filename", escape(status.original_filename))
    table.add_row("Tool version", escape(status.tool_version))
    table.add_row("Crypto backend", escape(status.crypto_backend))
    table.add_row("Passphrase", "required" if status.protected else "none")
    table.add_row("Store file", escape(str(status.paths.ciphertext)))
    table.add_row("Metadata file", escape(str(status.paths.metadata)))

    console.print(table)


def print_unlock_outcome(console: Console, outcome: UnlockOutcome) -> None:
    """Print the result of an unlock attempt."""
    status = outcome.status
    if not outcome.unlocked:
        console.print(
            f"{ICON_LOCKED} [yellow]Cannot unlock yet.[/yellow] "
            f"Time remaining: {status.seconds_remaining} seconds "
            f"({format_duration(status.seconds_remaining)})"
        )
        console.print(f"  [dim]Unlock time:[/dim] {format_rfc3339(status.unlock_at)}")
        return

    console.print(f"{ICON_OPEN} [bold green]Unlocked[/bold green] {escape(status.name)}")
    if outcome.output_path is not None:
        console.print(f"  [dim]Decrypted file:[/dim] {escape(str(outcome.output_path))}")
    console.print(f"  [dim]Capsule remains in store:[/dim] {escape(str(status.paths.ciphertext))}")


def print_listing(console: Console, store: Path, listings: list[CapsuleListing]) -> None:
    """Print all capsules in a store as a table."""
    if not listings:
        console.print(f"[dim]No capsules in {escape(str(store))}[/dim]")
        return

    table = Table(title=f"Capsules in {escape(str(store))}", show_header=True, header_style="bold")
    table.add_column("Name", style="cyan")
    table.add_column("Owner")
    table.add_column("Label")
    table.add_column("Unlock time")
    table.add_column("Remaining", justify="right")
    table.add_column("State", justify="center")

    for listing in listings:
        status = listing.status
        if status is None:
            table.add_row(escape(listing.name), "", "", "", "", f"{ICON_ERROR} [red]{escape(listing.error or '')}[/red]")
            continue
        style = GATE_STYLES.get(status.gate_state, "dim")
        table.add_row(
            escape(status.name),
            escape(status.owner),
            escape(status.label),
            format_rfc3339(status.unlock_at),
            format_duration(status.seconds_remaining),
            f"[{style}]{status.gate_state.value}[/{style}]",
        )

    console.print(table)
