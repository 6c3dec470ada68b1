"""Test the tool manager facade."""

import asyncio
import json
from datetime import datetime, timedelta, timezone

import pytest

from conftest import FakeExecutor, not_found, result
from toolkeep.config import ToolkeepConfig
from toolkeep.core.errors import (
    ExecutionFailedError,
    InstallFailedError,
    OperationCancelledError,
    OperationInProgressError,
    ToolErrorKind,
    ToolNotFoundError,
    ToolNotInstalledError,
    UnsupportedPlatformError,
    VersionCheckFailedError,
)
from toolkeep.core.manager import ToolManager
from toolkeep.core.version import VersionInfo
from toolkeep.storage.cache import StatusCache
from toolkeep.tools.catalog import load_catalog
from toolkeep.tools.models import (
    OperationKind,
    OperationPhase,
    Platform,
    StatusState,
    ToolStatus,
)


DEMO_VERSION = result(stdout="demo version 2.3.1\n")


@pytest.fixture
def config(tmp_path):
    """Configuration isolated from the user's environment."""
    return ToolkeepConfig(
        config_path=tmp_path / "config.yaml",
        cache_path=tmp_path / "status.json",
        status_ttl_seconds=3600,
        max_concurrent_checks=4,
    )


@pytest.fixture
def make_manager(catalog_data, config):
    """Factory for managers backed by a fake executor."""
    def factory(executor, cache=None):
        return ToolManager(
            load_catalog(catalog_data),
            cache if cache is not None else StatusCache(ttl=config.status_ttl_seconds),
            executor=executor,
            config=config,
            platform=Platform.LINUX,
        )
    return factory


async def wait_until(predicate, timeout=2.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not reached")
        await asyncio.sleep(0.01)


# =============================================================================
# Unknown ids and unsupported platforms
# =============================================================================

@pytest.mark.asyncio
async def test_unknown_tool_raises_not_found(make_manager):
    """Test that unknown ids fail without spawning a process."""
    executor = FakeExecutor()
    manager = make_manager(executor)

    with pytest.raises(ToolNotFoundError):
        await manager.check_status("nope")
    with pytest.raises(ToolNotFoundError):
        await manager.install("nope")
    with pytest.raises(ToolNotFoundError):
        await manager.uninstall("nope")
    with pytest.raises(ToolNotFoundError):
        await manager.update("nope")

    assert executor.calls == []


@pytest.mark.asyncio
async def test_unsupported_platform_install(make_manager):
    """Test that installing on an undeclared platform fails with no InProgress event."""
    executor = FakeExecutor()
    manager = make_manager(executor)
    subscription = manager.subscribe_progress()

    with pytest.raises(UnsupportedPlatformError):
        await manager.install("winonly")

    events = [e for e in subscription.drain() if e.tool_id == "winonly"]
    assert [e.phase for e in events] == [OperationPhase.FAILED]
    assert events[0].error_kind == ToolErrorKind.UNSUPPORTED_PLATFORM.value
    assert executor.calls == []
    assert manager.busy_operation("winonly") is None


# =============================================================================
# Status checks and caching
# =============================================================================

@pytest.mark.asyncio
async def test_check_status_parses_version(make_manager):
    """Test that a probe printing a version yields Installed with it."""
    manager = make_manager(FakeExecutor({"demo": DEMO_VERSION}))

    status = await manager.check_status("demo")

    assert status == ToolStatus.installed("2.3.1")
    assert manager.cached_status("demo") == status


@pytest.mark.asyncio
async def test_missing_executable_not_installed(make_manager):
    """Test that a missing executable yields NotInstalled."""
    manager = make_manager(FakeExecutor({"demo": not_found()}))

    status = await manager.check_status("demo")

    assert status.state == StatusState.NOT_INSTALLED


@pytest.mark.asyncio
async def test_second_check_within_ttl_does_not_probe(make_manager):
    """Test that two checks within the TTL run at most one probe."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    manager = make_manager(executor)

    first = await manager.check_status("demo")
    second = await manager.check_status("demo")

    assert first == second
    assert len(executor.calls_for("demo")) == 1


@pytest.mark.asyncio
async def test_force_refresh_probes_again(make_manager):
    """Test that force_refresh bypasses a fresh cache entry."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    manager = make_manager(executor)

    await manager.check_status("demo")
    await manager.check_status("demo", force_refresh=True)

    assert len(executor.calls_for("demo")) == 2


@pytest.mark.asyncio
async def test_concurrent_checks_share_one_probe(make_manager):
    """Test that simultaneous checks of one tool join the same probe."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    executor.gate = asyncio.Event()
    manager = make_manager(executor)

    tasks = [asyncio.ensure_future(manager.check_status("demo", force_refresh=True)) for _ in range(3)]
    await wait_until(lambda: len(executor.calls) == 1)
    executor.gate.set()
    statuses = await asyncio.gather(*tasks)

    assert statuses == [ToolStatus.installed("2.3.1")] * 3
    assert len(executor.calls) == 1


@pytest.mark.asyncio
async def test_stale_entry_returned_then_refreshed(make_manager):
    """Test that stale data is returned at once and refreshed in the background."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    cache = StatusCache(ttl=60)
    cache.set(
        "demo",
        ToolStatus.installed("2.0.0"),
        checked_at=datetime.now(timezone.utc) - timedelta(hours=2),
    )
    manager = make_manager(executor, cache)

    status = await manager.check_status("demo")
    assert status == ToolStatus.installed("2.0.0")

    await manager.wait_for_background()

    assert manager.cached_status("demo") == ToolStatus.installed("2.3.1")
    assert len(executor.calls_for("demo")) == 1


@pytest.mark.asyncio
async def test_probe_publishes_progress(make_manager):
    """Test that a probe publishes version-check events in phase order."""
    manager = make_manager(FakeExecutor({"demo": DEMO_VERSION}))
    subscription = manager.subscribe_progress()

    await manager.check_status("demo")

    events = subscription.drain()
    assert [e.phase for e in events] == [
        OperationPhase.PENDING,
        OperationPhase.IN_PROGRESS,
        OperationPhase.COMPLETED,
    ]
    assert all(e.operation == OperationKind.VERSION_CHECK for e in events)
    assert events[0].command == "demo --version"


@pytest.mark.asyncio
async def test_failed_version_check_attaches_error(make_manager):
    """Test that a version check ending in Error publishes a Failed event with its error."""
    manager = make_manager(FakeExecutor({"demo": result(stderr="boom", exit_code=1)}))
    subscription = manager.subscribe_progress()

    status = await manager.check_status("demo")

    assert status == ToolStatus.error("boom")
    last = subscription.drain()[-1]
    assert last.phase == OperationPhase.FAILED
    assert last.error_kind == ToolErrorKind.VERSION_CHECK_FAILED.value
    assert isinstance(last.error, VersionCheckFailedError)
    assert last.error.tool_id == "demo"


@pytest.mark.asyncio
async def test_probe_results_are_persisted(make_manager, tmp_path):
    """Test that probe results reach the cache document."""
    path = tmp_path / "status.json"
    manager = make_manager(FakeExecutor({"demo": DEMO_VERSION}), StatusCache(path))

    await manager.check_status("demo")

    document = json.loads(path.read_text())
    assert document["tools"]["demo"]["status"]["version"] == "2.3.1"


# =============================================================================
# Install / uninstall / update
# =============================================================================

@pytest.mark.asyncio
async def test_install_runs_command_and_reprobes(make_manager):
    """Test that a successful install updates the cached status."""
    installed = {"done": False}

    def probe(argv):
        return DEMO_VERSION if installed["done"] else not_found()

    def install(argv):
        installed["done"] = True
        return result()

    executor = FakeExecutor({"demo": probe, "npm": install})
    manager = make_manager(executor)
    subscription = manager.subscribe_progress()

    assert (await manager.check_status("demo")).state == StatusState.NOT_INSTALLED
    status = await manager.install("demo")

    assert status == ToolStatus.installed("2.3.1")
    assert manager.cached_status("demo") == status
    install_events = [e for e in subscription.drain() if e.operation == OperationKind.INSTALL]
    assert [e.phase for e in install_events] == [
        OperationPhase.PENDING,
        OperationPhase.IN_PROGRESS,
        OperationPhase.COMPLETED,
    ]
    assert manager.busy_operation("demo") is None


@pytest.mark.asyncio
async def test_install_failure_surfaces_stderr(make_manager):
    """Test that an install failing with 'permission denied' reports it."""
    executor = FakeExecutor({"npm": result(stderr="permission denied", exit_code=1)})
    manager = make_manager(executor)
    subscription = manager.subscribe_progress()

    with pytest.raises(InstallFailedError) as exc_info:
        await manager.install("demo")

    assert "permission denied" in exc_info.value.message
    failed = subscription.drain()[-1]
    assert failed.phase == OperationPhase.FAILED
    assert "permission denied" in failed.message
    assert manager.busy_operation("demo") is None
    assert executor.calls_for("demo") == []


@pytest.mark.asyncio
async def test_concurrent_install_rejected(make_manager):
    """Test that a second install while one runs is rejected and the first is unaffected."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    executor.gate = asyncio.Event()
    manager = make_manager(executor)
    subscription = manager.subscribe_progress()

    first = asyncio.ensure_future(manager.install("demo"))
    await wait_until(lambda: len(executor.calls_for("npm")) == 1)

    with pytest.raises(OperationInProgressError):
        await manager.install("demo")
    with pytest.raises(OperationInProgressError):
        await manager.uninstall("demo")

    executor.gate.set()
    status = await first

    assert status.is_installed
    install_events = [e for e in subscription.drain() if e.operation == OperationKind.INSTALL]
    assert [e.phase for e in install_events] == [
        OperationPhase.PENDING,
        OperationPhase.IN_PROGRESS,
        OperationPhase.COMPLETED,
    ]
    assert len(executor.calls_for("npm")) == 1


@pytest.mark.asyncio
async def test_different_tools_run_concurrently(make_manager):
    """Test that the operation lock is per tool."""
    executor = FakeExecutor({"demo": DEMO_VERSION, "custom": result(stdout="custom 1.0.0")})
    executor.gate = asyncio.Event()
    manager = make_manager(executor)

    first = asyncio.ensure_future(manager.install("demo"))
    second = asyncio.ensure_future(manager.install("custom"))
    await wait_until(lambda: len(executor.calls) == 2)
    assert manager.busy_operation("demo") == OperationKind.INSTALL
    assert manager.busy_operation("custom") == OperationKind.INSTALL

    executor.gate.set()
    await asyncio.gather(first, second)


@pytest.mark.asyncio
async def test_status_during_install_does_not_probe(make_manager):
    """Test that checking a tool being installed returns its last known status."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    executor.gate = asyncio.Event()
    manager = make_manager(executor)

    task = asyncio.ensure_future(manager.install("demo"))
    await wait_until(lambda: len(executor.calls_for("npm")) == 1)

    status = await manager.check_status("demo", force_refresh=True)

    assert status == ToolStatus.unknown()
    assert executor.calls_for("demo") == []
    executor.gate.set()
    await task


@pytest.mark.asyncio
async def test_cancel_running_install(make_manager):
    """Test that cancelling an install ends it with a cancelled Failed event."""
    executor = FakeExecutor()
    executor.gate = asyncio.Event()
    manager = make_manager(executor)
    subscription = manager.subscribe_progress()

    task = asyncio.ensure_future(manager.install("demo"))
    await wait_until(lambda: len(executor.calls_for("npm")) == 1)

    assert manager.cancel("demo") is True
    with pytest.raises(OperationCancelledError):
        await task

    failed = subscription.drain()[-1]
    assert failed.phase == OperationPhase.FAILED
    assert failed.error_kind == ToolErrorKind.CANCELLED.value
    assert manager.cancel("demo") is False


@pytest.mark.asyncio
async def test_install_waits_for_running_probe(make_manager):
    """Test that an install requested during a probe starts after it."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    executor.gate = asyncio.Event()
    manager = make_manager(executor)

    probe = asyncio.ensure_future(manager.check_status("demo"))
    await wait_until(lambda: len(executor.calls) == 1)
    install = asyncio.ensure_future(manager.install("demo"))
    await asyncio.sleep(0.05)
    assert executor.calls_for("npm") == []

    executor.gate.set()
    await probe
    await install

    assert len(executor.calls_for("npm")) == 1


@pytest.mark.asyncio
async def test_uninstall_then_not_installed(make_manager):
    """Test that a successful uninstall leaves the tool NotInstalled."""
    state = {"installed": True}

    def probe(argv):
        return result(stdout="custom 1.0.0") if state["installed"] else not_found("custom")

    def remove(argv):
        state["installed"] = False
        return result()

    executor = FakeExecutor({
        "custom": probe,
        ("custom-installer", "--remove"): remove,
    })
    manager = make_manager(executor)

    status = await manager.uninstall("custom")

    assert status == ToolStatus.not_installed()
    assert ["custom-installer", "--remove"] in executor.calls


@pytest.mark.asyncio
async def test_update_runs_update_command(make_manager):
    """Test that update runs the package manager's update command."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    manager = make_manager(executor)

    await manager.update("demo")

    assert ["npm", "install", "-g", "demo-pkg@latest"] in executor.calls


# =============================================================================
# Batch operations and the rest of the surface
# =============================================================================

@pytest.mark.asyncio
async def test_refresh_all_is_bounded(catalog_data, make_manager):
    """Test that refresh_all never runs more probes at once than allowed."""
    for i in range(6):
        catalog_data["tools"].append({
            "id": f"extra-{i}",
            "name": f"Extra {i}",
            "description": "extra",
            "command": f"extra-{i}",
            "install": {"linux": {"method": "npm", "package_name": f"extra-{i}"}},
        })
    executor = FakeExecutor(delay=0.05)
    manager = make_manager(executor)

    statuses = await manager.refresh_all(concurrency=2)

    assert len(statuses) == 10
    assert executor.max_active <= 2
    assert len(executor.calls) == 10


@pytest.mark.asyncio
async def test_refresh_all_uses_configured_bound(make_manager):
    """Test the default concurrency bound."""
    executor = FakeExecutor(delay=0.05)
    manager = make_manager(executor)

    await manager.refresh_all()

    assert executor.max_active <= manager.max_concurrent_checks


@pytest.mark.asyncio
async def test_check_updates_records_latest_hint(make_manager):
    """Test that update checks store the latest-version hint."""
    manager = make_manager(FakeExecutor({"demo": DEMO_VERSION}))

    async def fake_updates(tool, status=None, cancel_token=None):
        return VersionInfo(tool_id=tool.id, current=status.version, latest="2.4.0", update_available=True)

    manager.version_checker.check_updates = fake_updates

    info = await manager.check_updates("demo")

    assert info.update_available is True
    assert manager.cache.get("demo").latest_version == "2.4.0"
    assert manager.cached_status("demo") == ToolStatus.installed("2.3.1")


@pytest.mark.asyncio
async def test_check_all_updates_only_installed(make_manager):
    """Test that only installed tools are checked for updates."""
    manager = make_manager(FakeExecutor({
        "demo": DEMO_VERSION,
        "custom": not_found("custom"),
        "winonly": not_found("winonly"),
        "scripted": not_found("scripted"),
    }))
    checked = []

    async def fake_updates(tool, status=None, cancel_token=None):
        checked.append(tool.id)
        return VersionInfo(tool_id=tool.id, current=status.version)

    manager.version_checker.check_updates = fake_updates
    await manager.refresh_all()

    infos = await manager.check_all_updates()

    assert checked == ["demo"]
    assert [i.tool_id for i in infos] == ["demo"]


def test_reload_catalog(make_manager, catalog_data):
    """Test replacing the catalog at runtime."""
    manager = make_manager(FakeExecutor())
    catalog_data["tools"] = catalog_data["tools"][:1]

    manager.reload_catalog(catalog_data)

    assert [t.id for t in manager.tools()] == ["demo"]
    with pytest.raises(ToolNotFoundError):
        manager.get_tool("custom")


@pytest.mark.asyncio
async def test_progress_log_and_clear(make_manager):
    """Test reading and clearing tracked operations."""
    manager = make_manager(FakeExecutor({"demo": DEMO_VERSION}))

    await manager.install("demo")

    kinds = {e.operation for e in manager.progress_log("demo")}
    assert kinds == {OperationKind.INSTALL, OperationKind.VERSION_CHECK}
    assert manager.clear_progress("demo", OperationKind.INSTALL) == 1
    assert [e.operation for e in manager.progress_log("demo")] == [OperationKind.VERSION_CHECK]


@pytest.mark.asyncio
async def test_aclose_closes_subscriptions(make_manager):
    """Test that closing the manager ends subscriptions."""
    manager = make_manager(FakeExecutor())
    subscription = manager.subscribe_progress()

    await manager.aclose()

    assert subscription.closed


def test_from_config_falls_back_to_bundled_catalog(tmp_path):
    """Test that an unreadable configured catalog falls back to the bundled one."""
    config = ToolkeepConfig(
        config_path=tmp_path / "config.yaml",
        cache_path=tmp_path / "status.json",
        catalog_path=tmp_path / "missing.json",
    )

    manager = ToolManager.from_config(config)

    assert "gemini-cli" in manager.catalog


def test_from_config_loads_cache(tmp_path):
    """Test that the cache document is loaded on construction."""
    cache = StatusCache(tmp_path / "status.json")
    cache.set("gemini-cli", ToolStatus.installed("0.1.9"))
    cache.persist()
    config = ToolkeepConfig(config_path=tmp_path / "config.yaml", cache_path=tmp_path / "status.json")

    manager = ToolManager.from_config(config)

    assert manager.cached_status("gemini-cli") == ToolStatus.installed("0.1.9")


# =============================================================================
# Update checks under the operation lock
# =============================================================================

@pytest.mark.asyncio
async def test_check_updates_rejected_during_install(make_manager, catalog_data):
    """Test that no update lookup runs while the same tool is being installed."""
    catalog_data["tools"][0]["update_check"] = ["demo", "update", "--check"]
    executor = FakeExecutor({"demo": DEMO_VERSION})
    executor.gate = asyncio.Event()
    manager = make_manager(executor)

    install = asyncio.ensure_future(manager.install("demo"))
    await wait_until(lambda: len(executor.calls_for("npm")) == 1)

    with pytest.raises(OperationInProgressError):
        await manager.check_updates("demo")

    executor.gate.set()
    await install

    assert ["demo", "update", "--check"] not in executor.calls


@pytest.mark.asyncio
async def test_install_waits_for_update_check(make_manager):
    """Test that an install starts only after a running update lookup finishes."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    manager = make_manager(executor)
    await manager.check_status("demo")
    release = asyncio.Event()

    async def slow_updates(tool, status=None, cancel_token=None):
        await release.wait()
        return VersionInfo(tool_id=tool.id, current=status.version, latest="2.4.0", update_available=True)

    manager.version_checker.check_updates = slow_updates

    lookup = asyncio.ensure_future(manager.check_updates("demo"))
    await wait_until(lambda: manager.busy_operation("demo") == OperationKind.VERSION_CHECK)
    install = asyncio.ensure_future(manager.install("demo"))
    await asyncio.sleep(0.05)

    assert executor.calls_for("npm") == []

    release.set()
    info = await lookup
    status = await install

    assert info.latest == "2.4.0"
    assert status.is_installed
    assert len(executor.calls_for("npm")) == 1


@pytest.mark.asyncio
async def test_concurrent_update_checks_share_one_lookup(make_manager):
    """Test that simultaneous update checks of one tool run a single lookup."""
    manager = make_manager(FakeExecutor({"demo": DEMO_VERSION}))
    await manager.check_status("demo")
    lookups = []

    async def counting_updates(tool, status=None, cancel_token=None):
        lookups.append(tool.id)
        await asyncio.sleep(0.05)
        return VersionInfo(tool_id=tool.id, current=status.version, latest="2.3.1")

    manager.version_checker.check_updates = counting_updates

    infos = await asyncio.gather(manager.check_updates("demo"), manager.check_updates("demo"))

    assert lookups == ["demo"]
    assert infos[0] is infos[1]


@pytest.mark.asyncio
async def test_update_check_publishes_progress(make_manager):
    """Test that update lookups report their phases as version checks."""
    manager = make_manager(FakeExecutor({"demo": DEMO_VERSION}))
    await manager.check_status("demo")
    subscription = manager.subscribe_progress()

    async def fake_updates(tool, status=None, cancel_token=None):
        return VersionInfo(tool_id=tool.id, current=status.version, latest="2.4.0", update_available=True)

    manager.version_checker.check_updates = fake_updates

    await manager.check_updates("demo")

    events = [e for e in subscription.drain() if e.operation == OperationKind.VERSION_CHECK]
    assert [e.phase for e in events] == [
        OperationPhase.PENDING,
        OperationPhase.IN_PROGRESS,
        OperationPhase.COMPLETED,
    ]
    assert "2.4.0" in events[-1].message
    assert manager.busy_operation("demo") is None


# =============================================================================
# Running tools and help text
# =============================================================================

@pytest.mark.asyncio
async def test_execute_tool_runs_installed_tool(make_manager):
    """Test running an installed tool with arguments."""
    executor = FakeExecutor({
        "demo": DEMO_VERSION,
        ("demo", "--json"): result(stdout='{"ok": true}'),
    })
    manager = make_manager(executor)

    outcome = await manager.execute_tool("demo", ["--json"])

    assert outcome.stdout == '{"ok": true}'
    assert executor.calls[-1] == ["demo", "--json"]


@pytest.mark.asyncio
async def test_execute_tool_returns_non_zero_exit(make_manager):
    """Test that a failing run is returned rather than raised."""
    executor = FakeExecutor({
        "demo": DEMO_VERSION,
        ("demo", "bogus"): result(stderr="unknown command", exit_code=2),
    })
    manager = make_manager(executor)

    outcome = await manager.execute_tool("demo", ["bogus"])

    assert outcome.exit_code == 2
    assert outcome.stderr == "unknown command"


@pytest.mark.asyncio
async def test_execute_tool_refuses_missing_tool(make_manager):
    """Test that a tool that is not installed is never run."""
    executor = FakeExecutor({"demo": not_found()})
    manager = make_manager(executor)

    with pytest.raises(ToolNotInstalledError):
        await manager.execute_tool("demo", ["--json"])

    assert executor.calls == [["demo", "--version"]]


@pytest.mark.asyncio
async def test_execute_tool_rejected_during_install(make_manager):
    """Test that a tool cannot be run while it is being installed."""
    executor = FakeExecutor({"demo": DEMO_VERSION})
    executor.gate = asyncio.Event()
    manager = make_manager(executor)

    install = asyncio.ensure_future(manager.install("demo"))
    await wait_until(lambda: len(executor.calls_for("npm")) == 1)

    with pytest.raises(OperationInProgressError):
        await manager.execute_tool("demo", ["--json"])

    executor.gate.set()
    await install


@pytest.mark.asyncio
async def test_tool_help_is_cached(make_manager):
    """Test that help text is fetched once and then served from the cache."""
    executor = FakeExecutor({("demo", "--help"): result(stdout="usage: demo [options]\n")})
    manager = make_manager(executor)

    first = await manager.tool_help("demo")
    second = await manager.tool_help("demo")

    assert first == second == "usage: demo [options]\n"
    assert executor.calls == [["demo", "--help"]]

    await manager.tool_help("demo", refresh=True)
    assert len(executor.calls) == 2


@pytest.mark.asyncio
async def test_tool_help_tries_each_form(make_manager):
    """Test falling back from --help to help to -h."""
    executor = FakeExecutor({
        ("demo", "--help"): result(stderr="unknown option", exit_code=1),
        ("demo", "help"): result(stdout="   "),
        ("demo", "-h"): result(stdout="usage: demo -h"),
    })
    manager = make_manager(executor)

    text = await manager.tool_help("demo")

    assert text == "usage: demo -h"
    assert executor.calls == [["demo", "--help"], ["demo", "help"], ["demo", "-h"]]


@pytest.mark.asyncio
async def test_tool_help_unavailable(make_manager):
    """Test that a tool without any help output fails."""
    manager = make_manager(FakeExecutor({"demo": result(exit_code=1)}))

    with pytest.raises(ExecutionFailedError):
        await manager.tool_help("demo")


@pytest.mark.asyncio
async def test_tool_help_missing_executable(make_manager):
    """Test that help for a missing executable reports it as not installed."""
    manager = make_manager(FakeExecutor({"demo": not_found()}))

    with pytest.raises(ToolNotInstalledError):
        await manager.tool_help("demo")
