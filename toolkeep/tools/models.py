"""Data model for managed tools.

Defines tool definitions as loaded from the catalog, the per-platform install
method variants, tool status values and operation progress records.
"""

import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union


class Platform(str, Enum):
    """Operating system families a tool can be installed on."""

    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"

    @classmethod
    def current(cls) -> "Platform":
        """Platform of the running interpreter."""
        if sys.platform.startswith("win"):
            return cls.WINDOWS
        if sys.platform == "darwin":
            return cls.MACOS
        return cls.LINUX

    @classmethod
    def parse(cls, key: str) -> Optional["Platform"]:
        """Map a catalog platform key to a Platform.

        Args:
            key: Key as written in the catalog (e.g. "macos", "darwin").

        Returns:
            Matching platform or None if the key is not recognised.
        """
        return _PLATFORM_ALIASES.get(key.strip().lower())


_PLATFORM_ALIASES = {
    "windows": Platform.WINDOWS,
    "win32": Platform.WINDOWS,
    "win": Platform.WINDOWS,
    "macos": Platform.MACOS,
    "darwin": Platform.MACOS,
    "osx": Platform.MACOS,
    "linux": Platform.LINUX,
}


# =============================================================================
# Install methods
# =============================================================================

@dataclass(frozen=True)
class PackageManagerInstall:
    """Install through a package manager such as npm, brew or winget.

    `command` overrides the derived `<manager> install <package>` argv.
    """

    manager: str
    package_name: Optional[str] = None
    command: Optional[tuple[str, ...]] = None
    uninstall_command: Optional[tuple[str, ...]] = None

    method = "package_manager"

    def to_dict(self) -> dict:
        """Convert to catalog representation."""
        data: dict[str, Any] = {"method": self.manager}
        if self.package_name:
            data["package_name"] = self.package_name
        if self.command:
            data["command"] = list(self.command)
        if self.uninstall_command:
            data["uninstall_command"] = list(self.uninstall_command)
        return data


@dataclass(frozen=True)
class ScriptInstall:
    """Download an installer script and run it with the platform shell."""

    url: str
    checksum: Optional[str] = None
    shell: Optional[str] = None
    uninstall_url: Optional[str] = None
    uninstall_command: Optional[tuple[str, ...]] = None

    method = "script"

    def to_dict(self) -> dict:
        """Convert to catalog representation."""
        data: dict[str, Any] = {"method": "script", "url": self.url}
        if self.checksum:
            data["checksum"] = self.checksum
        if self.shell:
            data["shell"] = self.shell
        if self.uninstall_url:
            data["uninstall_url"] = self.uninstall_url
        if self.uninstall_command:
            data["uninstall_command"] = list(self.uninstall_command)
        return data


@dataclass(frozen=True)
class CommandInstall:
    """Run an explicit argv to install the tool."""

    command: tuple[str, ...]
    uninstall_command: Optional[tuple[str, ...]] = None

    method = "command"

    def to_dict(self) -> dict:
        """Convert to catalog representation."""
        data: dict[str, Any] = {"method": "command", "command": list(self.command)}
        if self.uninstall_command:
            data["uninstall_command"] = list(self.uninstall_command)
        return data


InstallMethod = Union[PackageManagerInstall, ScriptInstall, CommandInstall]


# =============================================================================
# Tool definitions
# =============================================================================

CONFIG_FIELD_TYPES = ("string", "boolean", "integer", "number", "enum")


@dataclass(frozen=True)
class ConfigField:
    """A user-configurable setting a tool accepts."""

    field_type: str
    description: str
    secret: bool = False
    required: bool = False
    default: Any = None
    values: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data: dict[str, Any] = {
            "field_type": self.field_type,
            "description": self.description,
            "secret": self.secret,
            "required": self.required,
        }
        if self.default is not None:
            data["default"] = self.default
        if self.values:
            data["values"] = list(self.values)
        return data


@dataclass(frozen=True)
class ToolDefinition:
    """A managed tool as declared in the catalog.

    Instances are immutable once loaded and shared read-only between the
    manager, the version checker and the install orchestrator.
    """

    id: str
    name: str
    description: str
    command: str
    homepage: str = ""
    version_check: tuple[str, ...] = ("--version",)
    update_check: Optional[tuple[str, ...]] = None
    install: dict[Platform, InstallMethod] = field(default_factory=dict)
    config_schema: dict[str, ConfigField] = field(default_factory=dict)

    def install_method(self, platform: Optional[Platform] = None) -> Optional[InstallMethod]:
        """Get the install method for a platform.

        Args:
            platform: Target platform. Defaults to the running platform.

        Returns:
            Install method, or None when the platform is unsupported.
        """
        return self.install.get(platform or Platform.current())

    def supports(self, platform: Optional[Platform] = None) -> bool:
        """Whether the tool can be installed on a platform."""
        return self.install_method(platform) is not None

    @property
    def probe_argv(self) -> list[str]:
        """Command line used to probe the installed version."""
        return [self.command, *self.version_check]

    def to_dict(self) -> dict:
        """Convert to catalog representation."""
        data: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "homepage": self.homepage,
            "command": self.command,
            "version_check": list(self.version_check),
            "install": {p.value: m.to_dict() for p, m in self.install.items()},
        }
        if self.update_check is not None:
            data["update_check"] = list(self.update_check)
        if self.config_schema:
            data["config_schema"] = {k: f.to_dict() for k, f in self.config_schema.items()}
        return data


# =============================================================================
# Status
# =============================================================================

class StatusState(str, Enum):
    """Installation state of a tool."""

    UNKNOWN = "unknown"             # Not probed yet
    NOT_INSTALLED = "not_installed" # Executable not on the search path
    INSTALLED = "installed"         # Probe succeeded
    ERROR = "error"                 # Probe ran but failed


@dataclass(frozen=True)
class ToolStatus:
    """Last known installation state of a tool.

    Produced by version probes and install/uninstall outcomes.
    """

    state: StatusState = StatusState.UNKNOWN
    version: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def unknown(cls) -> "ToolStatus":
        return cls(StatusState.UNKNOWN)

    @classmethod
    def not_installed(cls) -> "ToolStatus":
        return cls(StatusState.NOT_INSTALLED)

    @classmethod
    def installed(cls, version: str) -> "ToolStatus":
        return cls(StatusState.INSTALLED, version=version)

    @classmethod
    def error(cls, message: str) -> "ToolStatus":
        return cls(StatusState.ERROR, message=message)

    @property
    def is_installed(self) -> bool:
        return self.state == StatusState.INSTALLED

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        data: dict[str, Any] = {"state": self.state.value}
        if self.version is not None:
            data["version"] = self.version
        if self.message is not None:
            data["message"] = self.message
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "ToolStatus":
        """Create from dictionary."""
        return cls(
            state=StatusState(data.get("state", "unknown")),
            version=data.get("version"),
            message=data.get("message"),
        )

    def format(self) -> str:
        """Short human readable form."""
        if self.state == StatusState.INSTALLED:
            return f"installed ({self.version})"
        if self.state == StatusState.NOT_INSTALLED:
            return "not installed"
        if self.state == StatusState.ERROR:
            return f"error ({self.message or 'unknown error'})"
        return "unknown"


# =============================================================================
# Operation progress
# =============================================================================

class OperationKind(str, Enum):
    """Operations that can run against a tool."""

    INSTALL = "install"
    UNINSTALL = "uninstall"
    UPDATE = "update"
    VERSION_CHECK = "version_check"


class OperationPhase(str, Enum):
    """Phases of an operation. Completed and failed are terminal."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (OperationPhase.COMPLETED, OperationPhase.FAILED)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class OperationProgress:
    """A phase transition of one operation on one tool.

    Failed events carry the terminal error in `error` and its category in
    `error_kind`.
    """

    tool_id: str
    operation: OperationKind
    phase: OperationPhase
    message: str
    command: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    error_kind: Optional[str] = None
    error: Optional[Exception] = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> tuple[str, OperationKind]:
        return (self.tool_id, self.operation)

    def to_dict(self) -> dict:
        """Convert to dictionary."""
        return {
            "tool_id": self.tool_id,
            "operation": self.operation.value,
            "phase": self.phase.value,
            "message": self.message,
            "command": self.command,
            "timestamp": self.timestamp.isoformat(),
            "error_kind": self.error_kind,
        }
