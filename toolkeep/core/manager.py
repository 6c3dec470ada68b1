"""Tool manager facade.

Coordinates the catalog, status cache, version checker and install
orchestrator behind a per-tool command surface:

    manager = ToolManager.from_config()
    status = await manager.check_status("gemini-cli")
    await manager.install("gemini-cli")

At most one operation runs per tool id at any time. Every probe, install,
uninstall and update publishes its phase transitions to the progress feed.
"""

import asyncio
import logging
import threading
from pathlib import Path
from typing import Optional, Sequence, Union

from toolkeep.config import ToolkeepConfig
from toolkeep.storage.cache import StatusCache
from toolkeep.tools.catalog import CatalogIndex, CatalogSource, default_catalog_path, load_catalog
from toolkeep.tools.models import (
    OperationKind,
    OperationPhase,
    OperationProgress,
    Platform,
    StatusState,
    ToolDefinition,
    ToolStatus,
)
from .errors import (
    CacheError,
    CatalogLoadError,
    ExecError,
    ExecErrorKind,
    ExecutionFailedError,
    OperationCancelledError,
    OperationInProgressError,
    ToolError,
    ToolErrorKind,
    ToolNotFoundError,
    ToolNotInstalledError,
    VersionCheckFailedError,
)
from .executor import CancelToken, ExecutionResult, ProcessExecutor, format_command
from .installer import InstallOrchestrator
from .progress import ProgressFeed, ProgressSubscription
from .version import VersionChecker, VersionInfo


logger = logging.getLogger(__name__)

HELP_ARGS = (("--help",), ("help",), ("-h",))


class ToolManager:
    """Facade for checking, installing, updating and removing tools.

    Example:
        manager = ToolManager(load_catalog(path), StatusCache(cache_path))
        subscription = manager.subscribe_progress()
        statuses = await manager.refresh_all()
        await manager.install("opencode")
        await manager.aclose()
    """

    def __init__(
        self,
        catalog: CatalogIndex,
        cache: Optional[StatusCache] = None,
        executor: Optional[ProcessExecutor] = None,
        config: Optional[ToolkeepConfig] = None,
        version_checker: Optional[VersionChecker] = None,
        orchestrator: Optional[InstallOrchestrator] = None,
        platform: Optional[Platform] = None,
    ):
        """Initialize the manager.

        Args:
            catalog: Loaded tool catalog.
            cache: Status cache. An in-memory one is used if not provided.
            executor: Process executor shared by probes and installs.
            config: Settings for timeouts, TTL and concurrency.
            version_checker: Custom version checker.
            orchestrator: Custom install orchestrator.
            platform: Platform whose install methods apply.
        """
        self.config = config or ToolkeepConfig()
        self._catalog = catalog
        self.cache = cache if cache is not None else StatusCache(ttl=self.config.status_ttl_seconds)
        self.executor = executor or ProcessExecutor(default_timeout=self.config.probe_timeout)
        self.version_checker = version_checker or VersionChecker(
            self.executor,
            probe_timeout=self.config.probe_timeout,
        )
        self.orchestrator = orchestrator or InstallOrchestrator(
            self.executor,
            install_timeout=self.config.install_timeout,
            platform=platform,
        )
        self.max_concurrent_checks = self.config.max_concurrent_checks
        self.progress = ProgressFeed()

        # Guards _busy, _probes, _update_checks and _tokens; never held across an await
        self._lock = threading.Lock()
        self._busy: dict[str, OperationKind] = {}
        self._probes: dict[str, asyncio.Future] = {}
        self._update_checks: dict[str, asyncio.Future] = {}
        self._tokens: dict[str, CancelToken] = {}
        self._background: set[asyncio.Future] = set()

    @classmethod
    def from_config(cls, config: Optional[ToolkeepConfig] = None) -> "ToolManager":
        """Build a manager from settings: load the catalog and the cache from disk.

        A configured catalog that cannot be read is replaced by the bundled one.
        """
        config = config or ToolkeepConfig()

        catalog_path = config.catalog_path or default_catalog_path()
        try:
            catalog = load_catalog(catalog_path)
        except CatalogLoadError as e:
            logger.warning(f"{e}; falling back to the bundled catalog")
            catalog = load_catalog(default_catalog_path())

        cache = StatusCache(config.cache_path, ttl=config.status_ttl_seconds)
        cache.load_from_disk()
        return cls(catalog, cache, config=config)

    # =========================================================================
    # Catalog
    # =========================================================================

    @property
    def catalog(self) -> CatalogIndex:
        return self._catalog

    def tools(self) -> list[ToolDefinition]:
        """All managed tools in catalog order."""
        return list(self._catalog)

    def get_tool(self, tool_id: str) -> ToolDefinition:
        """Get a tool definition.

        Raises:
            ToolNotFoundError: If the id is not in the catalog.
        """
        tool = self._catalog.get(tool_id)
        if tool is None:
            raise ToolNotFoundError(f"Tool {tool_id} not found", tool_id=tool_id)
        return tool

    def reload_catalog(self, source: Optional[Union[CatalogSource, Path]] = None) -> CatalogIndex:
        """Replace the catalog. Operations already running keep their definitions.

        Args:
            source: New catalog source. Defaults to the configured catalog.

        Raises:
            CatalogLoadError: If the new catalog cannot be parsed; the old one is kept.
        """
        catalog = load_catalog(source or self.config.catalog_path or default_catalog_path())
        self._catalog = catalog
        logger.info(f"Reloaded catalog with {len(catalog)} tools")
        return catalog

    # =========================================================================
    # Status
    # =========================================================================

    def cached_status(self, tool_id: str) -> ToolStatus:
        """Last known status without probing; Unknown if never checked."""
        entry = self.cache.get(tool_id)
        return entry.status if entry is not None else ToolStatus.unknown()

    def busy_operation(self, tool_id: str) -> Optional[OperationKind]:
        """Operation currently running for a tool, if any."""
        with self._lock:
            return self._busy.get(tool_id)

    async def check_status(self, tool_id: str, force_refresh: bool = False) -> ToolStatus:
        """Get the installation status of a tool.

        Fresh cached data is returned without probing. Stale data is returned
        immediately while a background probe refreshes it. Missing data, or
        force_refresh, waits for a probe. Concurrent checks of one tool share
        a single probe.

        While an install, uninstall or update of the tool is running, the last
        known status is returned without probing.

        Raises:
            ToolNotFoundError: If the id is not in the catalog.
            OperationCancelledError: If the probe was cancelled.
        """
        tool = self.get_tool(tool_id)
        entry = self.cache.get(tool_id)

        if entry is not None and not force_refresh:
            if self.cache.is_stale(entry):
                logger.debug(f"Cached status for {tool_id} is stale, refreshing in background")
                self._schedule_refresh(tool)
            return entry.status

        probe = self._start_probe(tool)
        if probe is None:
            return self.cached_status(tool_id)
        return await asyncio.shield(probe)

    async def refresh_all(self, concurrency: Optional[int] = None) -> dict[str, ToolStatus]:
        """Probe every tool, at most `concurrency` at a time.

        Returns:
            Status of every tool, keyed by id. Tools whose probe could not run
            report their last known status.
        """
        semaphore = asyncio.Semaphore(concurrency or self.max_concurrent_checks)

        async def check(tool: ToolDefinition) -> tuple[str, ToolStatus]:
            async with semaphore:
                try:
                    return tool.id, await self.check_status(tool.id, force_refresh=True)
                except ToolError as e:
                    logger.warning(f"Status check for {tool.id} did not complete: {e.message}")
                    return tool.id, self.cached_status(tool.id)

        results = await asyncio.gather(*(check(tool) for tool in self.tools()))
        return dict(results)

    async def check_updates(self, tool_id: str) -> VersionInfo:
        """Compare the installed version of a tool with the latest published one.

        The result only adds a latest-version hint; it never changes the
        cached installation status. The lookup holds the tool's operation
        lock as a version check, and concurrent lookups share one run.

        Raises:
            ToolNotFoundError: If the id is not in the catalog.
            OperationInProgressError: If an install, uninstall or update is running.
            OperationCancelledError: If the lookup was cancelled.
        """
        tool = self.get_tool(tool_id)
        status = await self.check_status(tool_id)

        while True:
            with self._lock:
                running = self._update_checks.get(tool_id)
                if running is None and tool_id not in self._busy:
                    token = CancelToken()
                    self._busy[tool_id] = OperationKind.VERSION_CHECK
                    self._tokens[tool_id] = token
                    running = asyncio.ensure_future(self._run_update_check(tool, status, token))
                    self._update_checks[tool_id] = running
                busy = self._busy.get(tool_id)
                probe = self._probes.get(tool_id)

            if running is not None:
                return await asyncio.shield(running)
            if busy != OperationKind.VERSION_CHECK:
                raise OperationInProgressError(
                    f"A {busy.value} of {tool_id} is already in progress",
                    tool_id=tool_id,
                )
            if probe is not None:
                await asyncio.wait({probe})
            else:
                await asyncio.sleep(0)

    async def check_all_updates(self, concurrency: Optional[int] = None) -> list[VersionInfo]:
        """Check every tool known to be installed for a newer version.

        Tools with another operation running are skipped.
        """
        semaphore = asyncio.Semaphore(concurrency or self.max_concurrent_checks)
        installed = [tool.id for tool in self.tools() if self.cached_status(tool.id).is_installed]

        async def check(tool_id: str) -> Optional[VersionInfo]:
            async with semaphore:
                try:
                    return await self.check_updates(tool_id)
                except ToolError as e:
                    logger.warning(f"Update check for {tool_id} skipped: {e.message}")
                    return None

        results = await asyncio.gather(*(check(tool_id) for tool_id in installed))
        return [info for info in results if info is not None]

    async def _run_update_check(self, tool: ToolDefinition, status: ToolStatus, token: CancelToken) -> VersionInfo:
        kind = OperationKind.VERSION_CHECK
        command = format_command(tool.update_check) if tool.update_check else None
        try:
            self._publish(tool.id, kind, OperationPhase.PENDING, f"Checking {tool.name} for updates", command)
            self._publish(tool.id, kind, OperationPhase.IN_PROGRESS, f"Looking up the latest {tool.name}", command)
            try:
                info = await self.version_checker.check_updates(tool, status, token)
            except OperationCancelledError as e:
                self._publish(tool.id, kind, OperationPhase.FAILED, e.message, command, error=e)
                raise

            if info.latest:
                self.cache.set_latest_version(tool.id, info.latest)
            if info.update_available:
                message = f"{tool.name} {info.latest} is available"
            elif info.latest:
                message = f"{tool.name} is up to date"
            else:
                message = f"Latest version of {tool.name} is unknown"
            self._publish(tool.id, kind, OperationPhase.COMPLETED, message, command)
        finally:
            with self._lock:
                self._update_checks.pop(tool.id, None)
                if self._busy.get(tool.id) == kind:
                    del self._busy[tool.id]
                    self._tokens.pop(tool.id, None)

        await self._persist()
        return info

    def _start_probe(self, tool: ToolDefinition) -> Optional[asyncio.Future]:
        with self._lock:
            probe = self._probes.get(tool.id)
            if probe is not None:
                return probe
            if tool.id in self._busy:
                return None
            token = CancelToken()
            self._busy[tool.id] = OperationKind.VERSION_CHECK
            self._tokens[tool.id] = token
            probe = asyncio.ensure_future(self._run_probe(tool, token))
            self._probes[tool.id] = probe
            return probe

    def _schedule_refresh(self, tool: ToolDefinition) -> None:
        probe = self._start_probe(tool)
        if probe is None or probe in self._background:
            return
        self._background.add(probe)
        probe.add_done_callback(self._background_done)

    def _background_done(self, future: asyncio.Future) -> None:
        self._background.discard(future)
        if not future.cancelled() and future.exception() is not None:
            logger.warning(f"Background status refresh failed: {future.exception()}")

    async def _run_probe(self, tool: ToolDefinition, token: CancelToken) -> ToolStatus:
        kind = OperationKind.VERSION_CHECK
        command = format_command(tool.probe_argv)
        try:
            self._publish(tool.id, kind, OperationPhase.PENDING, f"Checking {tool.name}", command)
            self._publish(tool.id, kind, OperationPhase.IN_PROGRESS, f"Running {command}", command)
            try:
                status = await self.version_checker.check_version(tool, token)
            except OperationCancelledError as e:
                self._publish(
                    tool.id, kind, OperationPhase.FAILED, e.message, command,
                    error=e,
                )
                raise

            self.cache.set(tool.id, status)
            if status.state == StatusState.ERROR:
                error = VersionCheckFailedError(
                    f"Version check failed: {status.message}", tool_id=tool.id, command=command
                )
                self._publish(tool.id, kind, OperationPhase.FAILED, error.message, command, error=error)
            else:
                self._publish(
                    tool.id, kind, OperationPhase.COMPLETED,
                    f"{tool.name}: {status.format()}", command,
                )
        finally:
            with self._lock:
                self._probes.pop(tool.id, None)
                if self._busy.get(tool.id) == kind:
                    del self._busy[tool.id]
                    self._tokens.pop(tool.id, None)

        await self._persist()
        return status

    # =========================================================================
    # Install / uninstall / update
    # =========================================================================

    async def install(self, tool_id: str, cancel_token: Optional[CancelToken] = None) -> ToolStatus:
        """Install a tool.

        Returns:
            Status of the tool after installation.

        Raises:
            ToolNotFoundError: If the id is not in the catalog.
            OperationInProgressError: If another operation on the tool is running.
            ToolError: Terminal failure of the installation.
        """
        return await self._run_operation(tool_id, OperationKind.INSTALL, cancel_token)

    async def uninstall(self, tool_id: str, cancel_token: Optional[CancelToken] = None) -> ToolStatus:
        """Uninstall a tool.

        Returns:
            Status of the tool after removal.

        Raises:
            ToolNotFoundError: If the id is not in the catalog.
            OperationInProgressError: If another operation on the tool is running.
            ToolError: Terminal failure of the removal.
        """
        return await self._run_operation(tool_id, OperationKind.UNINSTALL, cancel_token)

    async def update(self, tool_id: str, cancel_token: Optional[CancelToken] = None) -> ToolStatus:
        """Update a tool to its latest version.

        Raises:
            ToolNotFoundError: If the id is not in the catalog.
            OperationInProgressError: If another operation on the tool is running.
            ToolError: Terminal failure of the update.
        """
        return await self._run_operation(tool_id, OperationKind.UPDATE, cancel_token)

    def cancel(self, tool_id: str, reason: str = "Cancelled by user") -> bool:
        """Cancel the operation running for a tool.

        Returns:
            True if an operation was running and has been asked to stop.
        """
        with self._lock:
            token = self._tokens.get(tool_id)
        if token is None:
            return False
        token.cancel(reason)
        return True

    async def _run_operation(
        self,
        tool_id: str,
        kind: OperationKind,
        cancel_token: Optional[CancelToken],
    ) -> ToolStatus:
        tool = self.get_tool(tool_id)
        token = cancel_token or CancelToken()
        await self._acquire(tool_id, kind, token)

        final: Optional[OperationProgress] = None
        try:
            async for event in self.orchestrator.run(tool, kind, token):
                self.progress.publish(event)
                final = event
        finally:
            self._release(tool_id, kind)

        if final is None or final.phase != OperationPhase.COMPLETED:
            error = final.error if final is not None else None
            if isinstance(error, ToolError):
                raise error
            raise ToolError(f"{kind.value} of {tool_id} ended without a result", tool_id=tool_id)

        try:
            return await self.check_status(tool_id, force_refresh=True)
        except ToolError as e:
            logger.warning(f"Could not verify {tool_id} after {kind.value}: {e.message}")
            return self.cached_status(tool_id)

    async def _acquire(self, tool_id: str, kind: OperationKind, token: CancelToken) -> None:
        """Claim the operation lock of a tool.

        A running version check (status probe or update lookup) is waited
        for; any other running operation is rejected.
        """
        while True:
            with self._lock:
                busy = self._busy.get(tool_id)
                if busy is None:
                    self._busy[tool_id] = kind
                    self._tokens[tool_id] = token
                    return
                if busy != OperationKind.VERSION_CHECK:
                    raise OperationInProgressError(
                        f"A {busy.value} of {tool_id} is already in progress",
                        tool_id=tool_id,
                    )
                check = self._probes.get(tool_id) or self._update_checks.get(tool_id)

            if check is not None:
                await asyncio.wait({check})
            else:
                await asyncio.sleep(0)

    def _release(self, tool_id: str, kind: OperationKind) -> None:
        with self._lock:
            if self._busy.get(tool_id) == kind:
                del self._busy[tool_id]
                self._tokens.pop(tool_id, None)

    # =========================================================================
    # Running tools
    # =========================================================================

    async def execute_tool(
        self,
        tool_id: str,
        args: Sequence[str] = (),
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> ExecutionResult:
        """Run an installed tool with the given arguments and capture its output.

        A non-zero exit is returned in the result, not raised.

        Args:
            tool_id: Tool to run.
            args: Arguments passed to the tool's command.
            timeout: Time bound in seconds. Defaults to the install timeout.
            cancel_token: Optional cancellation token.

        Raises:
            ToolNotFoundError: If the id is not in the catalog.
            ToolNotInstalledError: If the tool's executable is not installed.
            OperationInProgressError: If an install, uninstall or update is running.
            OperationCancelledError: If the run was cancelled or timed out.
            ExecutionFailedError: If the process could not be started.
        """
        tool = self.get_tool(tool_id)
        busy = self.busy_operation(tool_id)
        if busy is not None and busy != OperationKind.VERSION_CHECK:
            raise OperationInProgressError(
                f"A {busy.value} of {tool_id} is in progress", tool_id=tool_id
            )

        status = await self.check_status(tool_id)
        if not status.is_installed:
            raise ToolNotInstalledError(f"Tool {tool_id} is not installed", tool_id=tool_id)

        argv = [tool.command, *args]
        command = format_command(argv)
        logger.debug(f"Executing {command}")
        try:
            return await self.executor.run(
                argv,
                timeout=timeout or self.config.install_timeout,
                cancel_token=cancel_token,
            )
        except ExecError as e:
            if e.kind == ExecErrorKind.NOT_FOUND:
                self.cache.set(tool_id, ToolStatus.not_installed())
                await self._persist()
            raise self._exec_error(tool, e, command) from e

    async def tool_help(self, tool_id: str, refresh: bool = False) -> str:
        """Help text of a tool, served from the cache when available.

        Tries `--help`, `help` and `-h` in turn and keeps the first non-empty
        output of a successful run.

        Raises:
            ToolNotFoundError: If the id is not in the catalog.
            ToolNotInstalledError: If the tool's executable is not installed.
            ExecutionFailedError: If no help command produced any output.
        """
        tool = self.get_tool(tool_id)
        if not refresh:
            cached = self.cache.get_tool_help(tool_id)
            if cached is not None:
                return cached

        for args in HELP_ARGS:
            argv = [tool.command, *args]
            try:
                result = await self.executor.run(argv, timeout=self.config.probe_timeout)
            except ExecError as e:
                if e.kind == ExecErrorKind.NOT_FOUND:
                    raise self._exec_error(tool, e, format_command(argv)) from e
                logger.debug(f"{format_command(argv)} failed: {e.message}")
                continue
            if result.success and result.stdout.strip():
                self.cache.set_tool_help(tool_id, result.stdout)
                await self._persist()
                return result.stdout

        raise ExecutionFailedError(f"Could not get help information for {tool_id}", tool_id=tool_id)

    def _exec_error(self, tool: ToolDefinition, e: ExecError, command: str) -> ToolError:
        if e.kind == ExecErrorKind.NOT_FOUND:
            return ToolNotInstalledError(f"Tool {tool.id} is not installed", tool_id=tool.id, command=command)
        if e.kind == ExecErrorKind.CANCELLED:
            return OperationCancelledError(e.message, tool_id=tool.id, command=command)
        if e.kind == ExecErrorKind.TIMEOUT:
            return OperationCancelledError(
                e.message, tool_id=tool.id, command=command, kind=ToolErrorKind.TIMEOUT
            )
        return ExecutionFailedError(f"Failed to execute {tool.id}: {e.message}", tool_id=tool.id, command=command)

    # =========================================================================
    # Progress
    # =========================================================================

    def subscribe_progress(self) -> ProgressSubscription:
        """Subscribe to all progress events published from now on."""
        return self.progress.subscribe()

    def progress_log(self, tool_id: Optional[str] = None) -> list[OperationProgress]:
        """Latest event of every tracked operation."""
        return self.progress.log(tool_id)

    def clear_progress(self, tool_id: Optional[str] = None, operation: Optional[OperationKind] = None) -> int:
        """Forget tracked operations. Returns the number of entries removed."""
        return self.progress.clear(tool_id, operation)

    def _publish(
        self,
        tool_id: str,
        operation: OperationKind,
        phase: OperationPhase,
        message: str,
        command: Optional[str] = None,
        error: Optional[ToolError] = None,
        error_kind: Optional[str] = None,
    ) -> None:
        if error is not None and error_kind is None:
            error_kind = error.kind.value
        self.progress.publish(OperationProgress(
            tool_id=tool_id,
            operation=operation,
            phase=phase,
            message=message,
            command=command,
            error_kind=error_kind,
            error=error,
        ))

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def _persist(self) -> None:
        try:
            await self.cache.persist_async()
        except CacheError as e:
            logger.warning(f"Status cache not saved: {e}")

    async def wait_for_background(self) -> None:
        """Wait for scheduled background refreshes to finish."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def aclose(self) -> None:
        """Finish background work, save the cache and close subscriptions."""
        await self.wait_for_background()
        await self._persist()
        self.progress.close()
