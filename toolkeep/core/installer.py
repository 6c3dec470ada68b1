"""Install orchestration.

Resolves the install method a tool declares for the running platform, turns
it into a concrete command, runs it, and reports each phase as an
OperationProgress event:

    Pending -> InProgress -> Completed | Failed

Unsupported platforms and methods that cannot perform the requested operation
end in a single Failed event without spawning any process. Partial installs
are not rolled back.
"""

import asyncio
import hashlib
import logging
import os
import sys
import tempfile
from dataclasses import dataclass
from typing import AsyncIterator, Optional, Sequence

import httpx

from toolkeep.tools.models import (
    CommandInstall,
    InstallMethod,
    OperationKind,
    OperationPhase,
    OperationProgress,
    PackageManagerInstall,
    Platform,
    ScriptInstall,
    ToolDefinition,
)
from .errors import (
    ExecError,
    ExecErrorKind,
    InstallFailedError,
    NotSupportedError,
    OperationCancelledError,
    ToolError,
    ToolErrorKind,
    UninstallFailedError,
    UnsupportedPlatformError,
    UpdateFailedError,
)
from .executor import (
    DEFAULT_INSTALL_TIMEOUT,
    CancelToken,
    ExecutionResult,
    ProcessExecutor,
    format_command,
    shell_argv,
)


logger = logging.getLogger(__name__)

PACKAGE = "{package}"


@dataclass(frozen=True)
class ManagerCommands:
    """Argv templates for one package manager. `{package}` is substituted."""

    install: tuple[str, ...]
    uninstall: Optional[tuple[str, ...]] = None
    update: Optional[tuple[str, ...]] = None


PACKAGE_MANAGERS: dict[str, ManagerCommands] = {
    "npm": ManagerCommands(
        install=("npm", "install", "-g", PACKAGE),
        uninstall=("npm", "uninstall", "-g", PACKAGE),
        update=("npm", "install", "-g", PACKAGE + "@latest"),
    ),
    "pnpm": ManagerCommands(
        install=("pnpm", "add", "-g", PACKAGE),
        uninstall=("pnpm", "remove", "-g", PACKAGE),
        update=("pnpm", "update", "-g", PACKAGE),
    ),
    "yarn": ManagerCommands(
        install=("yarn", "global", "add", PACKAGE),
        uninstall=("yarn", "global", "remove", PACKAGE),
        update=("yarn", "global", "upgrade", PACKAGE),
    ),
    "bun": ManagerCommands(
        install=("bun", "add", "-g", PACKAGE),
        uninstall=("bun", "remove", "-g", PACKAGE),
        update=("bun", "add", "-g", PACKAGE + "@latest"),
    ),
    "pip": ManagerCommands(
        install=("pip", "install", PACKAGE),
        uninstall=("pip", "uninstall", "-y", PACKAGE),
        update=("pip", "install", "--upgrade", PACKAGE),
    ),
    "pipx": ManagerCommands(
        install=("pipx", "install", PACKAGE),
        uninstall=("pipx", "uninstall", PACKAGE),
        update=("pipx", "upgrade", PACKAGE),
    ),
    "uv": ManagerCommands(
        install=("uv", "tool", "install", PACKAGE),
        uninstall=("uv", "tool", "uninstall", PACKAGE),
        update=("uv", "tool", "upgrade", PACKAGE),
    ),
    "brew": ManagerCommands(
        install=("brew", "install", PACKAGE),
        uninstall=("brew", "uninstall", PACKAGE),
        update=("brew", "upgrade", PACKAGE),
    ),
    "apt": ManagerCommands(
        install=("sudo", "apt", "install", "-y", PACKAGE),
        uninstall=("sudo", "apt", "remove", "-y", PACKAGE),
        update=("sudo", "apt", "install", "--only-upgrade", "-y", PACKAGE),
    ),
    "yum": ManagerCommands(
        install=("sudo", "yum", "install", "-y", PACKAGE),
        uninstall=("sudo", "yum", "remove", "-y", PACKAGE),
        update=("sudo", "yum", "upgrade", "-y", PACKAGE),
    ),
    "dnf": ManagerCommands(
        install=("sudo", "dnf", "install", "-y", PACKAGE),
        uninstall=("sudo", "dnf", "remove", "-y", PACKAGE),
        update=("sudo", "dnf", "upgrade", "-y", PACKAGE),
    ),
    "pacman": ManagerCommands(
        install=("sudo", "pacman", "-S", "--noconfirm", PACKAGE),
        uninstall=("sudo", "pacman", "-R", "--noconfirm", PACKAGE),
        update=("sudo", "pacman", "-S", "--noconfirm", PACKAGE),
    ),
    "winget": ManagerCommands(
        install=("winget", "install", PACKAGE, "--accept-source-agreements", "--accept-package-agreements"),
        uninstall=("winget", "uninstall", PACKAGE),
        update=("winget", "upgrade", PACKAGE, "--accept-source-agreements", "--accept-package-agreements"),
    ),
    "choco": ManagerCommands(
        install=("choco", "install", PACKAGE, "-y"),
        uninstall=("choco", "uninstall", PACKAGE, "-y"),
        update=("choco", "upgrade", PACKAGE, "-y"),
    ),
    "scoop": ManagerCommands(
        install=("scoop", "install", PACKAGE),
        uninstall=("scoop", "uninstall", PACKAGE),
        update=("scoop", "update", PACKAGE),
    ),
    "cargo": ManagerCommands(
        install=("cargo", "install", PACKAGE),
        uninstall=("cargo", "uninstall", PACKAGE),
        update=("cargo", "install", "--force", PACKAGE),
    ),
    "go": ManagerCommands(
        install=("go", "install", PACKAGE),
        update=("go", "install", PACKAGE),
    ),
}

_FAILURE_ERRORS = {
    OperationKind.INSTALL: InstallFailedError,
    OperationKind.UNINSTALL: UninstallFailedError,
    OperationKind.UPDATE: UpdateFailedError,
}

_VERBS = {
    OperationKind.INSTALL: ("install", "Installing", "Installed"),
    OperationKind.UNINSTALL: ("uninstall", "Uninstalling", "Uninstalled"),
    OperationKind.UPDATE: ("update", "Updating", "Updated"),
}


@dataclass(frozen=True)
class PlannedCommand:
    """Concrete action for one operation: an argv, or a script to download and run."""

    argv: Optional[tuple[str, ...]] = None
    script_url: Optional[str] = None
    checksum: Optional[str] = None
    shell: Optional[str] = None

    @property
    def display(self) -> str:
        """Command line shown to the user before execution."""
        if self.argv is not None:
            return format_command(self.argv)
        runner = format_command(shell_argv(_script_name(), self.shell))
        return f"{runner}  # script from {self.script_url}"


def _script_name() -> str:
    return "install.ps1" if sys.platform.startswith("win") else "install.sh"


def _fill(template: Sequence[str], package: str) -> tuple[str, ...]:
    return tuple(part.replace(PACKAGE, package) for part in template)


def plan_command(tool: ToolDefinition, operation: OperationKind, method: InstallMethod) -> PlannedCommand:
    """Derive the command an operation runs for an install method.

    Args:
        tool: Tool being operated on.
        operation: Install, uninstall or update.
        method: Install method for the current platform.

    Returns:
        The planned command.

    Raises:
        NotSupportedError: If the method offers no way to perform the operation.
    """
    if isinstance(method, PackageManagerInstall):
        commands = PACKAGE_MANAGERS.get(method.manager)
        if operation == OperationKind.INSTALL and method.command:
            return PlannedCommand(argv=method.command)
        if operation == OperationKind.UNINSTALL and method.uninstall_command:
            return PlannedCommand(argv=method.uninstall_command)

        if commands is None:
            if operation == OperationKind.UPDATE and method.command:
                return PlannedCommand(argv=method.command)
            raise NotSupportedError(
                f"Package manager '{method.manager}' is not supported for {operation.value}",
                tool_id=tool.id,
            )

        template = {
            OperationKind.INSTALL: commands.install,
            OperationKind.UNINSTALL: commands.uninstall,
            OperationKind.UPDATE: commands.update,
        }[operation]
        if template is not None and method.package_name:
            return PlannedCommand(argv=_fill(template, method.package_name))
        if operation == OperationKind.UPDATE and method.command:
            return PlannedCommand(argv=method.command)
        raise NotSupportedError(
            f"Cannot derive a {operation.value} command for {method.manager} "
            f"without a package name" if template is not None else
            f"{method.manager} has no {operation.value} command",
            tool_id=tool.id,
        )

    if isinstance(method, ScriptInstall):
        if operation == OperationKind.UNINSTALL:
            if method.uninstall_command:
                return PlannedCommand(argv=method.uninstall_command)
            if method.uninstall_url:
                return PlannedCommand(script_url=method.uninstall_url, shell=method.shell)
            raise NotSupportedError(
                f"{tool.name} was installed by script and declares no uninstall script",
                tool_id=tool.id,
            )
        return PlannedCommand(script_url=method.url, checksum=method.checksum, shell=method.shell)

    if isinstance(method, CommandInstall):
        if operation == OperationKind.UNINSTALL:
            if method.uninstall_command:
                return PlannedCommand(argv=method.uninstall_command)
            raise NotSupportedError(
                f"{tool.name} declares no uninstall command",
                tool_id=tool.id,
            )
        return PlannedCommand(argv=method.command)

    raise NotSupportedError(f"Unknown install method {method!r}", tool_id=tool.id)


def verify_checksum(content: bytes, checksum: str) -> bool:
    """Check downloaded content against an expected digest.

    Args:
        content: Downloaded bytes.
        checksum: "<algorithm>:<hex>" or a bare SHA-256 hex digest.

    Returns:
        True if the digest matches.
    """
    algorithm, _, expected = checksum.strip().rpartition(":")
    algorithm = (algorithm or "sha256").lower()
    try:
        digest = hashlib.new(algorithm, content).hexdigest()
    except ValueError:
        return False
    return digest == expected.lower()


class InstallOrchestrator:
    """Drives install, uninstall and update operations to completion.

    Each operation is an async iterator of progress events; the last event is
    Completed or Failed, and Failed events carry the terminal ToolError.

    Example:
        orchestrator = InstallOrchestrator(ProcessExecutor())
        async for event in orchestrator.install(tool):
            print(event.phase.value, event.message)
    """

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        install_timeout: float = DEFAULT_INSTALL_TIMEOUT,
        platform: Optional[Platform] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the orchestrator.

        Args:
            executor: Process executor. A default one is created if not provided.
            install_timeout: Time bound for each install command, in seconds.
            platform: Platform whose install methods apply. Defaults to the running one.
            http_client: Client used to download install scripts.
        """
        self.executor = executor or ProcessExecutor(default_timeout=install_timeout)
        self.install_timeout = install_timeout
        self.platform = platform or Platform.current()
        self.http_client = http_client

    def install(self, tool: ToolDefinition, cancel_token: Optional[CancelToken] = None) -> AsyncIterator[OperationProgress]:
        """Install a tool."""
        return self.run(tool, OperationKind.INSTALL, cancel_token)

    def uninstall(self, tool: ToolDefinition, cancel_token: Optional[CancelToken] = None) -> AsyncIterator[OperationProgress]:
        """Uninstall a tool."""
        return self.run(tool, OperationKind.UNINSTALL, cancel_token)

    def update(self, tool: ToolDefinition, cancel_token: Optional[CancelToken] = None) -> AsyncIterator[OperationProgress]:
        """Update a tool to its latest version."""
        return self.run(tool, OperationKind.UPDATE, cancel_token)

    def resolve(self, tool: ToolDefinition, operation: OperationKind) -> PlannedCommand:
        """Resolve the command an operation would run on this platform.

        Raises:
            UnsupportedPlatformError: If the tool has no method for this platform.
            NotSupportedError: If the method cannot perform the operation.
        """
        method = tool.install_method(self.platform)
        if method is None:
            raise UnsupportedPlatformError(
                f"{tool.name} cannot be installed on {self.platform.value}",
                tool_id=tool.id,
            )
        return plan_command(tool, operation, method)

    async def run(
        self,
        tool: ToolDefinition,
        operation: OperationKind,
        cancel_token: Optional[CancelToken] = None,
    ) -> AsyncIterator[OperationProgress]:
        """Run one operation, yielding its progress events in phase order."""
        verb, doing, done = _VERBS[operation]

        try:
            plan = self.resolve(tool, operation)
        except ToolError as e:
            logger.warning(f"Cannot {verb} {tool.id}: {e.message}")
            yield self._failed(tool, operation, e)
            return

        command = plan.display
        yield self._event(tool, operation, OperationPhase.PENDING, f"Preparing to {verb} {tool.name}", command)
        yield self._event(tool, operation, OperationPhase.IN_PROGRESS, f"{doing} {tool.name}", command)
        logger.info(f"{doing} {tool.id}: {command}")

        try:
            if plan.argv is not None:
                result = await self.executor.run(
                    plan.argv,
                    timeout=self.install_timeout,
                    cancel_token=cancel_token,
                )
            else:
                result = await self._run_script(tool, operation, plan, cancel_token)
        except ExecError as e:
            error = self._exec_failure(tool, operation, e, command)
            logger.error(f"Failed to {verb} {tool.id}: {error.message}")
            yield self._failed(tool, operation, error)
            return
        except ToolError as e:
            if e.command is None:
                e.command = command
            logger.error(f"Failed to {verb} {tool.id}: {e.message}")
            yield self._failed(tool, operation, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error during {verb} of {tool.id}")
            error = _FAILURE_ERRORS[operation](
                f"{verb.capitalize()} failed: {e}",
                tool_id=tool.id,
                command=command,
            )
            yield self._failed(tool, operation, error)
            return

        if result.success:
            logger.info(f"{done} {tool.id}")
            yield self._event(tool, operation, OperationPhase.COMPLETED, f"{done} {tool.name}", command)
            return

        detail = result.stderr.strip() or result.stdout.strip() or "no output"
        error = _FAILURE_ERRORS[operation](
            f"{verb.capitalize()} command failed with exit code {result.exit_code}: {detail}",
            tool_id=tool.id,
            command=command,
        )
        logger.error(f"Failed to {verb} {tool.id}: {error.message}")
        yield self._failed(tool, operation, error)

    async def _run_script(
        self,
        tool: ToolDefinition,
        operation: OperationKind,
        plan: PlannedCommand,
        cancel_token: Optional[CancelToken],
    ) -> ExecutionResult:
        failure = _FAILURE_ERRORS[operation]
        content = await self._download(tool, plan.script_url, failure, cancel_token)

        if cancel_token is not None and cancel_token.cancelled:
            raise ExecError(ExecErrorKind.CANCELLED, cancel_token.reason or "Cancelled")

        if plan.checksum and not verify_checksum(content, plan.checksum):
            raise failure(
                f"Checksum mismatch for {plan.script_url}; the script was not executed",
                tool_id=tool.id,
            )

        with tempfile.TemporaryDirectory(prefix="toolkeep-") as workdir:
            script_path = os.path.join(workdir, _script_name())
            try:
                with open(script_path, "wb") as f:
                    f.write(content)
            except OSError as e:
                raise failure(f"Cannot write install script: {e}", tool_id=tool.id) from e
            return await self.executor.run(
                shell_argv(script_path, plan.shell),
                timeout=self.install_timeout,
                cancel_token=cancel_token,
                cwd=workdir,
            )

    async def _download(
        self,
        tool: ToolDefinition,
        url: str,
        failure: type,
        cancel_token: Optional[CancelToken] = None,
    ) -> bytes:
        """Fetch a script, giving up as soon as the operation is cancelled.

        Raises:
            ExecError: With the cancelled kind if the token fires first.
            ToolError: Of the `failure` class if the download fails.
        """
        logger.debug(f"Downloading install script {url}")
        request = asyncio.ensure_future(self._get(url))
        waiters = {request}
        if cancel_token is not None:
            waiters.add(asyncio.ensure_future(cancel_token.wait()))

        try:
            done, _ = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()

        if request not in done:
            raise ExecError(ExecErrorKind.CANCELLED, cancel_token.reason or "Cancelled")

        try:
            response = request.result()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise failure(f"Failed to download {url}: {e}", tool_id=tool.id) from e
        return response.content

    async def _get(self, url: str) -> httpx.Response:
        if self.http_client is not None:
            response = await self.http_client.get(url, follow_redirects=True)
        else:
            async with httpx.AsyncClient(timeout=self.install_timeout) as client:
                response = await client.get(url, follow_redirects=True)
        response.raise_for_status()
        return response

    def _exec_failure(self, tool: ToolDefinition, operation: OperationKind, e: ExecError, command: str) -> ToolError:
        if e.kind == ExecErrorKind.CANCELLED:
            return OperationCancelledError(e.message, tool_id=tool.id, command=command)
        if e.kind == ExecErrorKind.TIMEOUT:
            return OperationCancelledError(
                e.message, tool_id=tool.id, command=command, kind=ToolErrorKind.TIMEOUT
            )
        detail = e.stderr.strip() or e.message
        return _FAILURE_ERRORS[operation](detail, tool_id=tool.id, command=command)

    def _event(
        self,
        tool: ToolDefinition,
        operation: OperationKind,
        phase: OperationPhase,
        message: str,
        command: Optional[str] = None,
    ) -> OperationProgress:
        return OperationProgress(
            tool_id=tool.id,
            operation=operation,
            phase=phase,
            message=message,
            command=command,
        )

    def _failed(self, tool: ToolDefinition, operation: OperationKind, error: ToolError) -> OperationProgress:
        return OperationProgress(
            tool_id=tool.id,
            operation=operation,
            phase=OperationPhase.FAILED,
            message=error.message,
            command=error.command,
            error_kind=error.kind.value,
            error=error,
        )
