"""Rich console display helpers for toolkeep.

Provides formatted output using Rich library for tool tables, operation
progress, errors and status messages.
"""

from typing import Iterable, Optional

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from toolkeep.core.errors import CatalogError
from toolkeep.core.version import VersionInfo
from toolkeep.tools.models import (
    OperationKind,
    OperationPhase,
    OperationProgress,
    StatusState,
    ToolDefinition,
    ToolStatus,
)


# Global console instance
console = Console()

STATE_STYLES = {
    StatusState.INSTALLED: "green",
    StatusState.NOT_INSTALLED: "dim",
    StatusState.ERROR: "red",
    StatusState.UNKNOWN: "yellow",
}

PHASE_ICONS = {
    OperationPhase.PENDING: "[dim]⏳[/dim]",
    OperationPhase.IN_PROGRESS: "[cyan]⟳[/cyan]",
    OperationPhase.COMPLETED: "[green]✓[/green]",
    OperationPhase.FAILED: "[red]✗[/red]",
}


def print_error(message: str, title: str = "Error") -> None:
    """Display error message.

    Args:
        message: Error message to display
        title: Panel title
    """
    console.print(
        Panel(
            f"[red]{message}[/red]",
            title=f"[bold red]{title}[/bold red]",
            border_style="red"
        )
    )


def print_success(message: str) -> None:
    """Display success message.

    Args:
        message: Success message to display
    """
    console.print(f"[green]✓[/green] {message}")


def print_warning(message: str) -> None:
    """Display warning message.

    Args:
        message: Warning message to display
    """
    console.print(f"[yellow]⚠[/yellow] {message}")


def print_info(message: str) -> None:
    """Display info message.

    Args:
        message: Info message to display
    """
    console.print(f"[blue]ℹ[/blue] {message}")


def format_status(status: ToolStatus) -> str:
    """Status as rich markup."""
    style = STATE_STYLES.get(status.state, "white")
    return f"[{style}]{status.format()}[/{style}]"


def print_tools_table(
    tools: Iterable[ToolDefinition],
    statuses: dict[str, ToolStatus],
    busy: Optional[dict[str, OperationKind]] = None,
    title: str = "Managed Tools",
) -> None:
    """Display managed tools with their last known status.

    Args:
        tools: Tools in display order
        statuses: Status per tool id
        busy: Operation currently running per tool id
        title: Table title
    """
    tools = list(tools)
    if not tools:
        print_info("The catalog contains no tools.")
        return

    busy = busy or {}
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold")
    table.add_column("Name")
    table.add_column("Command", style="cyan")
    table.add_column("Status")

    for tool in tools:
        status = statuses.get(tool.id, ToolStatus.unknown())
        status_text = format_status(status)
        operation = busy.get(tool.id)
        if operation is not None:
            status_text += f" [cyan]({operation.value} running)[/cyan]"
        table.add_row(tool.id, tool.name, tool.command, status_text)

    console.print(table)


def print_tool_detail(tool: ToolDefinition, status: ToolStatus, latest_version: Optional[str] = None) -> None:
    """Display one tool with its install method and status in a panel."""
    method = tool.install_method()
    lines = [
        f"[bold]{tool.name}[/bold] [dim]({tool.id})[/dim]",
        tool.description,
        "",
        f"[bold]Status:[/bold] {format_status(status)}",
    ]
    if latest_version:
        lines.append(f"[bold]Latest:[/bold] {latest_version}")
    if method is not None:
        lines.append(f"[bold]Install method:[/bold] {method.to_dict()['method']}")
    else:
        lines.append("[bold]Install method:[/bold] [red]unsupported on this platform[/red]")
    if tool.homepage:
        lines.append(f"[bold]Homepage:[/bold] {tool.homepage}")
    if tool.config_schema:
        lines.append("")
        lines.append("[bold]Settings:[/bold]")
        for name, field in tool.config_schema.items():
            flags = " [yellow](required)[/yellow]" if field.required else ""
            lines.append(f"  • {name} [dim]{field.field_type}[/dim]{flags}: {field.description}")

    console.print(Panel("\n".join(lines), border_style="blue", padding=(1, 2)))


def print_progress(event: OperationProgress) -> None:
    """Display one operation progress event.

    Args:
        event: Progress event
    """
    icon = PHASE_ICONS.get(event.phase, "[blue]●[/blue]")
    console.print(f"  {icon} [bold]{event.tool_id}[/bold] {event.message}")
    if event.command and event.phase == OperationPhase.PENDING:
        console.print(f"    [dim]$ {event.command}[/dim]")


def print_catalog_errors(errors: Iterable[CatalogError]) -> None:
    """Display catalog entries that were skipped or loaded with warnings."""
    errors = list(errors)
    if not errors:
        print_success("Catalog is valid.")
        return

    table = Table(title="Catalog Problems", show_header=True, header_style="bold cyan")
    table.add_column("Severity", width=10)
    table.add_column("Entry", style="bold")
    table.add_column("Problem")

    for error in errors:
        color = "red" if error.severity == "error" else "yellow"
        where = error.tool_id or (f"#{error.index}" if error.index is not None else "-")
        table.add_row(f"[{color}]{error.severity}[/{color}]", where, error.message)

    console.print(table)


def print_updates_table(infos: Iterable[VersionInfo]) -> None:
    """Display installed and latest versions of tools.

    Args:
        infos: Version information per tool
    """
    table = Table(title="Available Updates", show_header=True, header_style="bold cyan")
    table.add_column("ID", style="bold")
    table.add_column("Installed")
    table.add_column("Latest")
    table.add_column("Update", justify="center")
    table.add_column("Source", style="dim")

    for info in infos:
        update = "[yellow]available[/yellow]" if info.update_available else "[dim]-[/dim]"
        table.add_row(
            info.tool_id,
            info.current or "[dim]not installed[/dim]",
            info.latest or "[dim]unknown[/dim]",
            update,
            info.check_method,
        )

    console.print(table)


def print_config(values: dict) -> None:
    """Display configuration values in a table."""
    table = Table(title="Configuration", show_header=True, header_style="bold cyan")
    table.add_column("Setting", style="bold")
    table.add_column("Value")

    for key, value in values.items():
        table.add_row(key, "[dim]-[/dim]" if value is None else str(value))

    console.print(table)


def confirm(message: str, default: bool = True) -> bool:
    """Prompt user for confirmation.

    Args:
        message: Confirmation message
        default: Default response

    Returns:
        True if user confirms, False otherwise
    """
    from rich.prompt import Confirm
    return Confirm.ask(message, default=default)
