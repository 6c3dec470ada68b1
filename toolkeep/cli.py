"""Command-line interface for toolkeep using Typer."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.logging import RichHandler

from toolkeep import __version__
from toolkeep.config import ToolkeepConfig
from toolkeep.core.errors import CatalogLoadError, ToolError
from toolkeep.core.manager import ToolManager
from toolkeep.tools.catalog import default_catalog_path, load_catalog, resolve_tool_config
from toolkeep.tools.models import ConfigField, OperationKind, ToolStatus
from toolkeep.utils import display

app = typer.Typer(
    name="toolkeep",
    help="Install, update and track command-line developer tools",
    add_completion=False,
)


def version_callback(value: bool):
    """Print version and exit."""
    if value:
        display.console.print(f"toolkeep version {__version__}")
        raise typer.Exit()


def setup_logging(debug: bool = False) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=display.console, show_path=False, rich_tracebacks=debug)],
        force=True,
    )


@app.callback()
def main_callback(
    version: bool = typer.Option(
        False,
        "--version",
        "-v",
        help="Show version and exit",
        callback=version_callback,
        is_eager=True
    ),
    debug: bool = typer.Option(
        False,
        "--debug",
        help="Enable debug logging"
    ),
):
    """toolkeep - Lifecycle manager for command-line developer tools."""
    setup_logging(debug)


def _load_config() -> ToolkeepConfig:
    config = ToolkeepConfig.load_from_file()
    if config.debug:
        setup_logging(True)
    return config


def _build_manager() -> ToolManager:
    manager = ToolManager.from_config(_load_config())
    for error in manager.catalog.errors:
        display.print_warning(f"Catalog: {error}")
    return manager


def _fail(error: ToolError) -> None:
    title = error.kind.value.replace("_", " ").capitalize()
    display.print_error(error.message, title=title)
    if error.command:
        display.console.print(f"  [dim]$ {error.command}[/dim]")
    raise typer.Exit(code=1)


@app.command(name="list")
def list_command():
    """List managed tools with their last known status.

    Examples:
        toolkeep list
    """
    manager = _build_manager()
    statuses = {tool.id: manager.cached_status(tool.id) for tool in manager.tools()}
    display.print_tools_table(manager.tools(), statuses)


@app.command(name="status")
def status_command(
    tool_id: Optional[str] = typer.Argument(
        None,
        help="Tool to check (default: all tools)"
    ),
    refresh: bool = typer.Option(
        False,
        "--refresh",
        "-r",
        help="Probe tools even when the cached status is fresh"
    ),
):
    """Show installation status of tools.

    Examples:
        toolkeep status
        toolkeep status gemini-cli --refresh
    """
    manager = _build_manager()

    async def check_one() -> ToolStatus:
        try:
            return await manager.check_status(tool_id, force_refresh=refresh)
        finally:
            await manager.aclose()

    async def check_all() -> dict[str, ToolStatus]:
        try:
            if refresh:
                return await manager.refresh_all()
            statuses = {}
            for tool in manager.tools():
                statuses[tool.id] = await manager.check_status(tool.id)
            return statuses
        finally:
            await manager.aclose()

    try:
        if tool_id:
            status = asyncio.run(check_one())
            entry = manager.cache.get(tool_id)
            display.print_tool_detail(
                manager.get_tool(tool_id),
                status,
                latest_version=entry.latest_version if entry else None,
            )
        else:
            with display.console.status("Checking tools...", spinner="dots"):
                statuses = asyncio.run(check_all())
            display.print_tools_table(manager.tools(), statuses)
    except ToolError as e:
        _fail(e)


@app.command(name="refresh")
def refresh_command(
    concurrency: Optional[int] = typer.Option(
        None,
        "--concurrency",
        "-c",
        min=1,
        help="Maximum number of tools probed at the same time"
    ),
):
    """Probe every tool and update the status cache.

    Examples:
        toolkeep refresh
        toolkeep refresh --concurrency 2
    """
    manager = _build_manager()

    async def run():
        try:
            statuses = await manager.refresh_all(concurrency)
            infos = []
            if manager.config.auto_check_updates:
                infos = await manager.check_all_updates(concurrency)
            return statuses, infos
        finally:
            await manager.aclose()

    with display.console.status("Refreshing tool status...", spinner="dots"):
        statuses, infos = asyncio.run(run())
    display.print_tools_table(manager.tools(), statuses)
    if any(info.update_available for info in infos):
        display.print_updates_table([info for info in infos if info.update_available])


async def _run_operation(manager: ToolManager, operation: OperationKind, tool_id: str) -> ToolStatus:
    """Run an operation while printing its progress events."""
    subscription = manager.subscribe_progress()

    async def show() -> None:
        async for event in subscription:
            if event.tool_id == tool_id and event.operation == operation:
                display.print_progress(event)

    printer = asyncio.ensure_future(show())
    try:
        if operation == OperationKind.INSTALL:
            return await manager.install(tool_id)
        if operation == OperationKind.UNINSTALL:
            return await manager.uninstall(tool_id)
        return await manager.update(tool_id)
    finally:
        subscription.close()
        await printer
        await manager.aclose()


def _operation_command(operation: OperationKind, tool_id: str) -> None:
    manager = _build_manager()
    try:
        status = asyncio.run(_run_operation(manager, operation, tool_id))
    except ToolError as e:
        _fail(e)
    except KeyboardInterrupt:
        display.print_warning(f"{operation.value.capitalize()} of {tool_id} interrupted.")
        raise typer.Exit(code=130)

    display.print_success(f"{tool_id}: {status.format()}")


@app.command(name="install")
def install_command(
    tool_id: str = typer.Argument(..., help="Tool to install"),
):
    """Install a tool with the method declared for this platform.

    Examples:
        toolkeep install gemini-cli
    """
    _operation_command(OperationKind.INSTALL, tool_id)


@app.command(name="uninstall")
def uninstall_command(
    tool_id: str = typer.Argument(..., help="Tool to uninstall"),
    yes: bool = typer.Option(
        False,
        "--yes",
        "-y",
        help="Do not ask for confirmation"
    ),
):
    """Uninstall a tool.

    Examples:
        toolkeep uninstall opencode
        toolkeep uninstall opencode --yes
    """
    if not yes and not display.confirm(f"Uninstall {tool_id}?", default=False):
        display.print_info("Cancelled")
        return
    _operation_command(OperationKind.UNINSTALL, tool_id)


@app.command(name="update")
def update_command(
    tool_id: str = typer.Argument(..., help="Tool to update"),
):
    """Update a tool to its latest version.

    Examples:
        toolkeep update claude-code
    """
    _operation_command(OperationKind.UPDATE, tool_id)


@app.command(name="updates")
def updates_command(
    tool_id: Optional[str] = typer.Argument(
        None,
        help="Tool to check (default: all installed tools)"
    ),
):
    """Check installed tools for newer versions.

    Examples:
        toolkeep updates
        toolkeep updates qwen-code
    """
    manager = _build_manager()

    async def run():
        try:
            if tool_id:
                return [await manager.check_updates(tool_id)]
            await manager.refresh_all()
            return await manager.check_all_updates()
        finally:
            await manager.aclose()

    try:
        with display.console.status("Checking for updates...", spinner="dots"):
            infos = asyncio.run(run())
    except ToolError as e:
        _fail(e)

    if not infos:
        display.print_info("No installed tools to check.")
        return
    display.print_updates_table(infos)


@app.command(
    name="exec",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def exec_command(
    tool_id: str = typer.Argument(..., help="Tool to run"),
    args: Optional[list[str]] = typer.Argument(
        None,
        help="Arguments passed to the tool"
    ),
    timeout: Optional[float] = typer.Option(
        None,
        "--timeout",
        "-t",
        min=1,
        help="Seconds before the tool is stopped (default: install timeout)"
    ),
):
    """Run an installed tool and print its output.

    The tool's exit code becomes the exit code of this command.

    Examples:
        toolkeep exec gemini-cli -- --version
        toolkeep exec opencode -- run "explain this repo"
    """
    manager = _build_manager()

    async def run():
        try:
            return await manager.execute_tool(tool_id, args or [], timeout=timeout)
        finally:
            await manager.aclose()

    try:
        outcome = asyncio.run(run())
    except ToolError as e:
        _fail(e)

    if outcome.stdout:
        typer.echo(outcome.stdout, nl=not outcome.stdout.endswith("\n"))
    if outcome.stderr:
        typer.echo(outcome.stderr, err=True, nl=not outcome.stderr.endswith("\n"))
    if outcome.exit_code != 0:
        raise typer.Exit(code=outcome.exit_code)


@app.command(name="tool-help")
def tool_help_command(
    tool_id: str = typer.Argument(..., help="Tool whose help to show"),
    refresh: bool = typer.Option(
        False,
        "--refresh",
        "-r",
        help="Ask the tool again instead of using the cached text"
    ),
):
    """Show the help text of a tool.

    Examples:
        toolkeep tool-help qwen-code
    """
    manager = _build_manager()

    async def run():
        try:
            return await manager.tool_help(tool_id, refresh=refresh)
        finally:
            await manager.aclose()

    try:
        text = asyncio.run(run())
    except ToolError as e:
        _fail(e)

    typer.echo(text.rstrip("\n"))


@app.command(name="catalog")
def catalog_command(
    path: Optional[Path] = typer.Argument(
        None,
        help="Catalog file to validate (default: configured catalog)"
    ),
):
    """Validate a tool catalog and report malformed entries.

    Examples:
        toolkeep catalog
        toolkeep catalog ./tools.json
    """
    if path is None:
        path = _load_config().catalog_path or default_catalog_path()

    try:
        catalog = load_catalog(path)
    except CatalogLoadError as e:
        display.print_error(str(e), title="Invalid catalog")
        raise typer.Exit(code=1)

    display.print_info(f"{catalog.source}: {len(catalog)} tools, version {catalog.version or '-'}")
    display.print_catalog_errors(catalog.errors)
    if any(error.severity == "error" for error in catalog.errors):
        raise typer.Exit(code=1)


@app.command(name="settings")
def settings_command(
    tool_id: str = typer.Argument(..., help="Tool whose settings to check"),
    values: Optional[list[str]] = typer.Argument(
        None,
        help="Settings as KEY=VALUE pairs"
    ),
):
    """Check tool settings against the tool's config schema.

    Examples:
        toolkeep settings gemini-cli api_key=abc model=gemini-2.5-pro
    """
    manager = _build_manager()

    try:
        tool = manager.get_tool(tool_id)
        parsed = {}
        for item in values or []:
            key, sep, value = item.partition("=")
            if not sep:
                display.print_error(f"Expected KEY=VALUE, got '{item}'")
                raise typer.Exit(code=1)
            key = key.strip()
            parsed[key] = _coerce(tool.config_schema.get(key), value)
        resolved = resolve_tool_config(tool, parsed)
    except ToolError as e:
        _fail(e)

    shown = {}
    for key, value in resolved.items():
        field = tool.config_schema[key]
        shown[key] = "********" if field.secret and value else value
    display.print_config(shown)


def _coerce(field: Optional[ConfigField], value: str):
    """Convert a command-line value to the type its config field expects."""
    if field is None:
        return value
    try:
        if field.field_type == "boolean" and value.lower() in ("true", "false", "1", "0", "yes", "no"):
            return value.lower() in ("true", "1", "yes")
        if field.field_type == "integer":
            return int(value)
        if field.field_type == "number":
            return float(value)
    except ValueError:
        pass
    return value


@app.command(name="config")
def config_command(
    show: bool = typer.Option(
        False,
        "--show",
        help="Show current configuration"
    ),
    save: bool = typer.Option(
        False,
        "--save",
        help="Write the current configuration to the config file"
    ),
):
    """Manage toolkeep configuration.

    Examples:
        toolkeep config --show
        toolkeep config --save
    """
    config = _load_config()

    if show:
        display.print_config(config.model_dump())
        return

    if save:
        config.save_to_file()
        display.print_success(f"Configuration saved to {config.config_path}")
        return

    # No options specified, show help
    display.print_info("Use --show to view configuration or --save to write it to disk")


if __name__ == "__main__":
    app()
