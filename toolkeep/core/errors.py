"""Error types for toolkeep.

Catalog and cache errors are recovered where they occur (logged, entry or
cache skipped). Execution and tool errors are surfaced to the caller as the
terminal result of an operation.
"""

from enum import Enum
from typing import Optional


class ToolkeepError(Exception):
    """Base class for all toolkeep errors."""
    pass


class CatalogError(ToolkeepError):
    """A single malformed catalog entry.

    Recorded on the loaded catalog rather than raised, so one bad entry never
    aborts the whole load.

    Attributes:
        tool_id: Id of the offending entry, if it had one
        message: What was wrong with the entry
        severity: "error" when the entry was skipped, "warning" otherwise
        index: Position of the entry in the document
    """

    def __init__(
        self,
        message: str,
        tool_id: Optional[str] = None,
        severity: str = "error",
        index: Optional[int] = None,
    ):
        super().__init__(message)
        self.message = message
        self.tool_id = tool_id
        self.severity = severity
        self.index = index

    def __str__(self) -> str:
        where = self.tool_id or (f"entry #{self.index}" if self.index is not None else "catalog")
        return f"{where}: {self.message}"


class CatalogLoadError(ToolkeepError):
    """Raised when a catalog document cannot be read or parsed at all."""
    pass


class CacheError(ToolkeepError):
    """Raised when the status cache cannot be read or written."""
    pass


class ExecErrorKind(str, Enum):
    """Why a process could not be run to completion."""

    NOT_FOUND = "not_found"         # Executable is not on the search path
    SPAWN_FAILED = "spawn_failed"   # OS refused to start the process
    TIMEOUT = "timeout"             # Killed after exceeding its time bound
    CANCELLED = "cancelled"         # Killed because the caller cancelled


class ExecError(ToolkeepError):
    """Process execution failure.

    A non-zero exit code is not an ExecError; it is reported through the
    execution result instead.
    """

    def __init__(
        self,
        kind: ExecErrorKind,
        message: str,
        stdout: str = "",
        stderr: str = "",
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.stdout = stdout
        self.stderr = stderr


class ToolErrorKind(str, Enum):
    """Kinds of tool operation failures."""

    NOT_FOUND = "not_found"
    UNSUPPORTED_PLATFORM = "unsupported_platform"
    OPERATION_IN_PROGRESS = "operation_in_progress"
    INSTALL_FAILED = "install_failed"
    UNINSTALL_FAILED = "uninstall_failed"
    UPDATE_FAILED = "update_failed"
    VERSION_CHECK_FAILED = "version_check_failed"
    NOT_SUPPORTED = "not_supported"
    CANCELLED = "cancelled"
    TIMEOUT = "timeout"
    INVALID_CONFIG = "invalid_config"
    NOT_INSTALLED = "not_installed"
    EXECUTION_FAILED = "execution_failed"


class ToolError(ToolkeepError):
    """Failure of an operation on a single tool.

    Attributes:
        kind: Failure category
        message: Human readable description
        tool_id: Tool the operation targeted
        command: Command line that was attempted, if any
    """

    kind: ToolErrorKind = ToolErrorKind.NOT_SUPPORTED

    def __init__(
        self,
        message: str,
        tool_id: Optional[str] = None,
        command: Optional[str] = None,
        kind: Optional[ToolErrorKind] = None,
    ):
        super().__init__(message)
        self.message = message
        self.tool_id = tool_id
        self.command = command
        if kind is not None:
            self.kind = kind


class ToolNotFoundError(ToolError):
    """The tool id is not present in the catalog."""

    kind = ToolErrorKind.NOT_FOUND


class UnsupportedPlatformError(ToolError):
    """The tool declares no install method for the running platform."""

    kind = ToolErrorKind.UNSUPPORTED_PLATFORM


class OperationInProgressError(ToolError):
    """Another operation for the same tool has not finished yet."""

    kind = ToolErrorKind.OPERATION_IN_PROGRESS


class InstallFailedError(ToolError):
    kind = ToolErrorKind.INSTALL_FAILED


class UninstallFailedError(ToolError):
    kind = ToolErrorKind.UNINSTALL_FAILED


class UpdateFailedError(ToolError):
    kind = ToolErrorKind.UPDATE_FAILED


class VersionCheckFailedError(ToolError):
    kind = ToolErrorKind.VERSION_CHECK_FAILED


class NotSupportedError(ToolError):
    """The install method offers no way to perform the requested operation."""

    kind = ToolErrorKind.NOT_SUPPORTED


class OperationCancelledError(ToolError):
    """The operation was cancelled, or timed out, before it finished."""

    kind = ToolErrorKind.CANCELLED


class ToolConfigError(ToolError):
    """User-supplied tool settings do not satisfy the tool's config schema."""

    kind = ToolErrorKind.INVALID_CONFIG


class ToolNotInstalledError(ToolError):
    """The tool is in the catalog but its executable is not installed."""

    kind = ToolErrorKind.NOT_INSTALLED


class ExecutionFailedError(ToolError):
    kind = ToolErrorKind.EXECUTION_FAILED
