"""Version probing for managed tools.

Runs a tool's own version command to decide whether it is installed and which
version it reports, and optionally looks up the latest published version to
signal available updates.
"""

import json
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import httpx

from toolkeep.tools.models import PackageManagerInstall, ToolDefinition, ToolStatus
from .errors import ExecError, ExecErrorKind, OperationCancelledError
from .executor import DEFAULT_PROBE_TIMEOUT, CancelToken, ProcessExecutor


logger = logging.getLogger(__name__)

UNKNOWN_VERSION = "unknown"
# Update-check output meaning "already on the latest version"
LATEST_IS_CURRENT = "current"

PYPI_URL = "https://pypi.org/pypi/{package}/json"
NPM_REGISTRY_URL = "https://registry.npmjs.org/{package}"

_SEMVER = re.compile(r"(\d+\.\d+\.\d+)")
_UPDATE_PATTERNS = [
    re.compile(r"update.*available.*?v?(\d+\.\d+\.\d+)", re.IGNORECASE),
    re.compile(r"new.*version.*?v?(\d+\.\d+\.\d+)", re.IGNORECASE),
    re.compile(r"latest.*?v?(\d+\.\d+\.\d+)", re.IGNORECASE),
]
_UP_TO_DATE_MARKERS = ("up to date", "up-to-date", "already latest", "already the latest")


def parse_version_string(output: str) -> Optional[str]:
    """Extract the first X.Y.Z version from command output.

    Args:
        output: Command output.

    Returns:
        Version string, or None if the output contains none.
    """
    match = _SEMVER.search(output)
    return match.group(1) if match else None


def parse_latest_version(output: str) -> Optional[str]:
    """Extract the advertised latest version from update-check output.

    Returns:
        The version, LATEST_IS_CURRENT when the tool reports it is up to
        date, or None if nothing could be recognised.
    """
    lowered = output.lower()
    if any(marker in lowered for marker in _UP_TO_DATE_MARKERS):
        return LATEST_IS_CURRENT

    for pattern in _UPDATE_PATTERNS:
        match = pattern.search(output)
        if match:
            return match.group(1)

    return parse_version_string(output)


def _version_parts(version: str) -> list[int]:
    parts = []
    for piece in version.strip().lstrip("vV").split("."):
        digits = re.match(r"\d+", piece)
        if not digits:
            break
        parts.append(int(digits.group(0)))
    return parts


def is_version_newer(candidate: str, current: str) -> bool:
    """Whether `candidate` is a strictly newer dotted version than `current`."""
    new_parts = _version_parts(candidate)
    current_parts = _version_parts(current)

    for new_part, current_part in zip(new_parts, current_parts):
        if new_part != current_part:
            return new_part > current_part

    return len(new_parts) > len(current_parts)


@dataclass
class VersionInfo:
    """Installed and latest known version of a tool."""

    tool_id: str
    current: Optional[str] = None
    latest: Optional[str] = None
    update_available: bool = False
    check_method: str = "none"
    last_checked: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "tool_id": self.tool_id,
            "current": self.current,
            "latest": self.latest,
            "update_available": self.update_available,
            "check_method": self.check_method,
            "last_checked": self.last_checked.isoformat(),
        }


class VersionChecker:
    """Determines installation state and version of tools.

    Example:
        checker = VersionChecker(ProcessExecutor())
        status = await checker.check_version(tool)
        if status.is_installed:
            print(status.version)
    """

    def __init__(
        self,
        executor: Optional[ProcessExecutor] = None,
        probe_timeout: float = DEFAULT_PROBE_TIMEOUT,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the checker.

        Args:
            executor: Process executor. A default one is created if not provided.
            probe_timeout: Time bound for each probe, in seconds.
            http_client: Client for registry lookups. A short-lived one is
                created per lookup if not provided.
        """
        self.executor = executor or ProcessExecutor(default_timeout=probe_timeout)
        self.probe_timeout = probe_timeout
        self.http_client = http_client

    async def check_version(
        self,
        tool: ToolDefinition,
        cancel_token: Optional[CancelToken] = None,
    ) -> ToolStatus:
        """Probe a tool by running its version command.

        Args:
            tool: Tool to probe.
            cancel_token: Optional cancellation token.

        Returns:
            Installed (with the parsed version or "unknown"), NotInstalled when
            the executable is missing, or Error carrying stderr.

        Raises:
            OperationCancelledError: If the probe was cancelled.
        """
        logger.debug(f"Checking version for tool: {tool.id}")
        try:
            result = await self.executor.run(
                tool.probe_argv,
                timeout=self.probe_timeout,
                cancel_token=cancel_token,
            )
        except ExecError as e:
            if e.kind == ExecErrorKind.NOT_FOUND:
                return ToolStatus.not_installed()
            if e.kind == ExecErrorKind.CANCELLED:
                raise OperationCancelledError(e.message, tool_id=tool.id) from e
            return ToolStatus.error((e.stderr.strip() or e.message))

        if not result.success:
            message = result.stderr.strip() or result.stdout.strip() or (
                f"Version check exited with code {result.exit_code}"
            )
            return ToolStatus.error(message)

        version = parse_version_string(result.stdout) or parse_version_string(result.stderr)
        return ToolStatus.installed(version or UNKNOWN_VERSION)

    async def check_latest(
        self,
        tool: ToolDefinition,
        cancel_token: Optional[CancelToken] = None,
    ) -> tuple[Optional[str], str]:
        """Look up the latest available version of a tool.

        Uses the tool's own `update_check` command when configured, otherwise
        asks the package registry behind its install method. Failures are
        logged and reported as an unknown latest version.

        Returns:
            (latest version or None, name of the method used)
        """
        if tool.update_check:
            try:
                result = await self.executor.run(
                    list(tool.update_check),
                    timeout=self.probe_timeout,
                    cancel_token=cancel_token,
                )
            except ExecError as e:
                if e.kind == ExecErrorKind.CANCELLED:
                    raise OperationCancelledError(e.message, tool_id=tool.id) from e
                logger.warning(f"Update check failed for {tool.id}: {e.message}")
                return None, "self-check"

            if result.success:
                return parse_latest_version(result.stdout), "self-check"
            logger.warning(f"Update check command failed for {tool.id}")
            return None, "self-check"

        method = tool.install_method()
        if isinstance(method, PackageManagerInstall) and method.package_name:
            latest = await self._registry_version(method, cancel_token)
            return latest, f"package-manager-{method.manager}"

        return None, "none"

    async def check_updates(
        self,
        tool: ToolDefinition,
        status: Optional[ToolStatus] = None,
        cancel_token: Optional[CancelToken] = None,
    ) -> VersionInfo:
        """Compare the installed version of a tool with the latest one.

        Args:
            tool: Tool to check.
            status: Known status; probed when not given.
            cancel_token: Optional cancellation token.

        Returns:
            VersionInfo describing whether an update is available.
        """
        if status is None:
            status = await self.check_version(tool, cancel_token)

        current = status.version if status.is_installed else None
        latest, method = await self.check_latest(tool, cancel_token)

        if latest == LATEST_IS_CURRENT:
            latest = current
        update_available = bool(
            current
            and latest
            and current != UNKNOWN_VERSION
            and is_version_newer(latest, current)
        )

        return VersionInfo(
            tool_id=tool.id,
            current=current,
            latest=latest,
            update_available=update_available,
            check_method=method,
        )

    async def _registry_version(
        self,
        method: PackageManagerInstall,
        cancel_token: Optional[CancelToken],
    ) -> Optional[str]:
        package = method.package_name
        try:
            if method.manager in ("npm", "pnpm", "yarn", "bun"):
                data = await self._get_json(
                    NPM_REGISTRY_URL.format(package=package.replace("/", "%2F"))
                )
                return data.get("dist-tags", {}).get("latest")
            if method.manager in ("pip", "pipx", "uv"):
                data = await self._get_json(PYPI_URL.format(package=package))
                return data.get("info", {}).get("version")
            if method.manager == "brew":
                result = await self.executor.run(
                    ["brew", "info", "--json=v1", package],
                    timeout=self.probe_timeout,
                    cancel_token=cancel_token,
                )
                if result.success:
                    formulae = json.loads(result.stdout)
                    if formulae:
                        return formulae[0].get("versions", {}).get("stable")
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, AttributeError, IndexError) as e:
            logger.debug(f"Registry lookup failed for {package}: {e}")
        except ExecError as e:
            if e.kind == ExecErrorKind.CANCELLED:
                raise OperationCancelledError(e.message) from e
            logger.debug(f"Registry lookup failed for {package}: {e.message}")
        return None

    async def _get_json(self, url: str) -> dict:
        if self.http_client is not None:
            response = await self.http_client.get(url)
            response.raise_for_status()
            return response.json()
        async with httpx.AsyncClient(timeout=self.probe_timeout, follow_redirects=True) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.json()
