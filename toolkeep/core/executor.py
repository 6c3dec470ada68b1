"""Process execution for toolkeep.

Runs external commands with a time bound, cooperative cancellation and
output capture. The executor holds no per-run state and can be shared by any
number of concurrent operations.
"""

import asyncio
import logging
import os
import shlex
import shutil
import signal
import sys
import time
from typing import Optional, Sequence

from .errors import ExecError, ExecErrorKind


logger = logging.getLogger(__name__)

DEFAULT_PROBE_TIMEOUT = 30.0
DEFAULT_INSTALL_TIMEOUT = 600.0

# Grace period for collecting output after a process has been killed
_KILL_GRACE_SECONDS = 5.0


class CancelToken:
    """Cooperative cancellation flag shared between a caller and an operation.

    Example:
        token = CancelToken()
        task = asyncio.create_task(executor.run(["npm", "install", "-g", "x"], cancel_token=token))
        token.cancel()
    """

    def __init__(self):
        """Initialize an uncancelled token."""
        self._event = asyncio.Event()
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        """Whether cancellation has been requested."""
        return self._event.is_set()

    def cancel(self, reason: str = "Cancelled by user") -> None:
        """Request cancellation.

        Args:
            reason: Message reported with the cancellation.
        """
        if not self._event.is_set():
            self.reason = reason
            self._event.set()

    async def wait(self) -> None:
        """Wait until cancellation is requested."""
        await self._event.wait()


class ExecutionResult:
    """Result from command execution.

    Attributes:
        stdout: Standard output
        stderr: Standard error
        exit_code: Process exit code
        wall_duration: Time taken to execute (seconds)
        command: The command line that was run
    """

    def __init__(
        self,
        stdout: str = "",
        stderr: str = "",
        exit_code: int = 0,
        wall_duration: float = 0.0,
        command: str = "",
    ):
        self.stdout = stdout
        self.stderr = stderr
        self.exit_code = exit_code
        self.wall_duration = wall_duration
        self.command = command

    @property
    def success(self) -> bool:
        """Whether the process exited with code 0."""
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return self.stdout + self.stderr

    def __str__(self) -> str:
        """String representation."""
        status = "Success" if self.success else "Failed"
        return f"ExecutionResult({status}, code={self.exit_code}, time={self.wall_duration:.2f}s)"


def format_command(argv: Sequence[str]) -> str:
    """Render an argv as a copy-pasteable command line."""
    return shlex.join(list(argv))


def shell_argv(script_path: str, shell: Optional[str] = None) -> list[str]:
    """Build the command line that runs a script with the platform shell.

    Args:
        script_path: Path of the script to run.
        shell: Explicit shell to use instead of the platform default.

    Returns:
        Argument vector.
    """
    if shell:
        if shell.lower() in ("powershell", "pwsh"):
            return [shell, "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", script_path]
        return [shell, script_path]
    if sys.platform.startswith("win"):
        return ["powershell", "-NoProfile", "-ExecutionPolicy", "Bypass", "-File", script_path]
    return ["sh", script_path]


class ProcessExecutor:
    """Runs external commands with timeout and cancellation.

    Every run is bounded by a timeout. A run that exceeds it, or whose cancel
    token fires, is forcibly terminated and reported as an ExecError with
    kind TIMEOUT or CANCELLED. A non-zero exit is returned as a normal result.
    """

    def __init__(
        self,
        default_timeout: float = DEFAULT_PROBE_TIMEOUT,
    ):
        """Initialize process executor.

        Args:
            default_timeout: Timeout in seconds used when a run specifies none
        """
        self.default_timeout = default_timeout

    async def run(
        self,
        argv: Sequence[str],
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
        retries: int = 0,
        env: Optional[dict[str, str]] = None,
        cwd: Optional[str] = None,
    ) -> ExecutionResult:
        """Run a command and capture its output.

        Args:
            argv: Program followed by its arguments
            timeout: Timeout in seconds (uses default if None)
            cancel_token: Token checked before spawning and between retries
            retries: Extra attempts after a spawn failure or timeout
            env: Extra environment variables
            cwd: Working directory for execution

        Returns:
            ExecutionResult with output and exit code

        Raises:
            ExecError: If the process could not be run to completion
            ValueError: If argv is empty
        """
        if not argv:
            raise ValueError("Cannot run an empty command")

        argv = [str(a) for a in argv]
        timeout = timeout or self.default_timeout
        attempt = 0

        while True:
            if cancel_token is not None and cancel_token.cancelled:
                raise ExecError(
                    ExecErrorKind.CANCELLED,
                    cancel_token.reason or "Cancelled before start",
                )
            try:
                return await self._run_once(argv, timeout, cancel_token, env, cwd)
            except ExecError as e:
                retryable = e.kind in (ExecErrorKind.SPAWN_FAILED, ExecErrorKind.TIMEOUT)
                if not retryable or attempt >= retries:
                    raise
                attempt += 1
                logger.debug(f"Retrying {format_command(argv)} ({attempt}/{retries}): {e.message}")

    async def _run_once(
        self,
        argv: list[str],
        timeout: float,
        cancel_token: Optional[CancelToken],
        env: Optional[dict[str, str]],
        cwd: Optional[str],
    ) -> ExecutionResult:
        command = format_command(argv)
        executable = shutil.which(argv[0])
        if executable is None:
            if os.path.dirname(argv[0]) and os.path.exists(argv[0]):
                executable = argv[0]
            else:
                raise ExecError(ExecErrorKind.NOT_FOUND, f"Command not found: {argv[0]}")

        process_env = None
        if env:
            process_env = dict(os.environ)
            process_env.update(env)

        logger.debug(f"Running: {command}")
        start_time = time.monotonic()

        try:
            process = await asyncio.create_subprocess_exec(
                executable,
                *argv[1:],
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=cwd,
                env=process_env,
                start_new_session=not sys.platform.startswith("win"),
            )
        except FileNotFoundError as e:
            raise ExecError(ExecErrorKind.NOT_FOUND, f"Command not found: {argv[0]}") from e
        except OSError as e:
            raise ExecError(ExecErrorKind.SPAWN_FAILED, f"Failed to start {argv[0]}: {e}") from e

        communicate = asyncio.ensure_future(process.communicate())
        waiters = {communicate}
        cancel_wait = None
        if cancel_token is not None:
            cancel_wait = asyncio.ensure_future(cancel_token.wait())
            waiters.add(cancel_wait)

        try:
            done, _ = await asyncio.wait(
                waiters,
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            await self._kill(process, communicate)
            raise
        finally:
            if cancel_wait is not None:
                cancel_wait.cancel()

        if communicate in done:
            stdout_bytes, stderr_bytes = communicate.result()
            return ExecutionResult(
                stdout=_decode(stdout_bytes),
                stderr=_decode(stderr_bytes),
                exit_code=process.returncode if process.returncode is not None else -1,
                wall_duration=time.monotonic() - start_time,
                command=command,
            )

        # Timed out or cancelled: kill the process and keep whatever it printed
        stdout, stderr = await self._kill(process, communicate)
        elapsed = time.monotonic() - start_time

        if cancel_token is not None and cancel_token.cancelled:
            raise ExecError(
                ExecErrorKind.CANCELLED,
                f"{cancel_token.reason or 'Cancelled'} after {elapsed:.1f}s: {command}",
                stdout=stdout,
                stderr=stderr,
            )
        raise ExecError(
            ExecErrorKind.TIMEOUT,
            f"Command timed out after {timeout:g} seconds: {command}",
            stdout=stdout,
            stderr=stderr,
        )

    async def _kill(self, process: asyncio.subprocess.Process, communicate: asyncio.Future) -> tuple[str, str]:
        """Forcibly terminate a process and collect its remaining output."""
        try:
            if sys.platform.startswith("win"):
                process.kill()
            else:
                os.killpg(process.pid, signal.SIGKILL)
        except (ProcessLookupError, PermissionError):
            pass

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                asyncio.shield(communicate),
                timeout=_KILL_GRACE_SECONDS,
            )
        except asyncio.TimeoutError:
            communicate.cancel()
            return "", ""
        return _decode(stdout_bytes), _decode(stderr_bytes)


def _decode(data: Optional[bytes]) -> str:
    return data.decode("utf-8", errors="replace") if data else ""
