"""Shared fixtures for toolkeep tests."""

import asyncio
from typing import Optional

import pytest

from toolkeep.core.errors import ExecError, ExecErrorKind
from toolkeep.core.executor import CancelToken, ExecutionResult


class FakeExecutor:
    """Stand-in for ProcessExecutor that records argvs and replays canned results.

    Responses are looked up by the full argv tuple first, then by the program
    name. A response may be an ExecutionResult, an exception to raise, or a
    callable taking the argv and returning either.
    """

    def __init__(self, responses: Optional[dict] = None, delay: float = 0.0):
        self.responses = dict(responses or {})
        self.default = ExecutionResult(stdout="", stderr="", exit_code=0)
        self.delay = delay
        self.calls: list[list[str]] = []
        self.gate: Optional[asyncio.Event] = None
        self.active = 0
        self.max_active = 0

    async def run(
        self,
        argv,
        timeout: Optional[float] = None,
        cancel_token: Optional[CancelToken] = None,
        retries: int = 0,
        env=None,
        cwd=None,
    ) -> ExecutionResult:
        argv = [str(a) for a in argv]
        if cancel_token is not None and cancel_token.cancelled:
            raise ExecError(ExecErrorKind.CANCELLED, cancel_token.reason or "Cancelled")

        self.calls.append(argv)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.gate is not None:
                while not self.gate.is_set():
                    if cancel_token is not None and cancel_token.cancelled:
                        raise ExecError(ExecErrorKind.CANCELLED, cancel_token.reason or "Cancelled")
                    await asyncio.sleep(0.01)
        finally:
            self.active -= 1

        response = self.responses.get(tuple(argv), self.responses.get(argv[0], self.default))
        if callable(response) and not isinstance(response, ExecutionResult):
            response = response(argv)
        if isinstance(response, Exception):
            raise response
        return response

    def calls_for(self, program: str) -> list[list[str]]:
        return [argv for argv in self.calls if argv[0] == program]


def result(stdout: str = "", stderr: str = "", exit_code: int = 0) -> ExecutionResult:
    return ExecutionResult(stdout=stdout, stderr=stderr, exit_code=exit_code)


def not_found(program: str = "demo") -> ExecError:
    return ExecError(ExecErrorKind.NOT_FOUND, f"Command not found: {program}")


@pytest.fixture
def fake_executor():
    """Fake executor with no canned responses."""
    return FakeExecutor()


@pytest.fixture
def catalog_data():
    """Catalog document with one tool per install method."""
    return {
        "version": "1.0",
        "last_updated": "2025-08-01",
        "tools": [
            {
                "id": "demo",
                "name": "Demo CLI",
                "description": "Demo tool installed with npm",
                "command": "demo",
                "version_check": ["--version"],
                "install": {
                    "windows": {"method": "npm", "package_name": "demo-pkg"},
                    "macos": {"method": "brew", "package_name": "demo"},
                    "linux": {"method": "npm", "package_name": "demo-pkg"},
                },
            },
            {
                "id": "winonly",
                "name": "Windows Only",
                "description": "Tool that only ships for Windows",
                "command": "winonly",
                "install": {
                    "windows": {"method": "winget", "package_name": "Vendor.WinOnly"},
                },
            },
            {
                "id": "scripted",
                "name": "Scripted",
                "description": "Tool installed by script",
                "command": "scripted",
                "install": {
                    "linux": {
                        "method": "script",
                        "url": "https://example.com/install.sh",
                        "checksum": "sha256:0000",
                    },
                },
            },
            {
                "id": "custom",
                "name": "Custom",
                "description": "Tool installed by an explicit command",
                "command": "custom",
                "version_check": ["version"],
                "install": {
                    "linux": {
                        "method": "command",
                        "command": ["custom-installer", "--yes"],
                        "uninstall_command": ["custom-installer", "--remove"],
                    },
                },
                "config_schema": {
                    "api_key": {"type": "string", "description": "API key", "secret": True, "required": True},
                    "retries": {"type": "integer", "description": "Retry count", "default": 3},
                    "mode": {"type": "enum", "description": "Mode", "values": ["fast", "safe"], "default": "safe"},
                },
            },
        ],
    }
