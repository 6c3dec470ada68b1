"""Test CLI commands."""

import json

import pytest
from typer.testing import CliRunner
from unittest.mock import patch

from conftest import FakeExecutor, not_found, result
from toolkeep.cli import _coerce, app
from toolkeep.config import ToolkeepConfig
from toolkeep.core.manager import ToolManager
from toolkeep.storage.cache import StatusCache
from toolkeep.tools.catalog import load_catalog
from toolkeep.tools.models import ConfigField, Platform


runner = CliRunner()


@pytest.fixture
def config(tmp_path, catalog_data):
    """Config pointing at a temporary catalog and cache."""
    catalog_path = tmp_path / "tools.json"
    catalog_path.write_text(json.dumps(catalog_data))
    return ToolkeepConfig(
        catalog_path=catalog_path,
        cache_path=tmp_path / "status.json",
        config_path=tmp_path / "config.yaml",
        auto_check_updates=False,
    )


@pytest.fixture
def cli_env(config):
    """Patch the CLI to use the temporary config and a fake executor.

    Yields a function that installs the executor to use for the next command.
    """
    executors = {"current": FakeExecutor()}

    def build_manager():
        return ToolManager(
            load_catalog(config.catalog_path),
            StatusCache(config.cache_path, ttl=config.status_ttl_seconds),
            executor=executors["current"],
            config=config,
            platform=Platform.LINUX,
        )

    def use(executor):
        executors["current"] = executor
        return executor

    with patch("toolkeep.cli._load_config", return_value=config), \
            patch("toolkeep.cli._build_manager", side_effect=build_manager):
        yield use


def test_version():
    """Test version option."""
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "0.3.0" in result.stdout


def test_list_shows_catalog_tools(cli_env):
    """Test listing tools without probing them."""
    executor = cli_env(FakeExecutor())

    outcome = runner.invoke(app, ["list"])

    assert outcome.exit_code == 0
    assert "demo" in outcome.stdout
    assert "custom" in outcome.stdout
    assert executor.calls == []


def test_status_single_tool(cli_env):
    """Test the detail view of one tool."""
    cli_env(FakeExecutor({"demo": result(stdout="demo version 2.3.1\n")}))

    outcome = runner.invoke(app, ["status", "demo"])

    assert outcome.exit_code == 0
    assert "Demo CLI" in outcome.stdout
    assert "2.3.1" in outcome.stdout


def test_status_unknown_tool(cli_env):
    """Test that an unknown tool id fails with exit code 1."""
    outcome = runner.invoke(app, ["status", "nope"])

    assert outcome.exit_code == 1
    assert "nope" in outcome.stdout


def test_refresh_probes_every_tool(cli_env):
    """Test that refresh probes all tools once."""
    executor = cli_env(FakeExecutor({
        "demo": result(stdout="demo 1.0.0"),
        "winonly": not_found("winonly"),
        "scripted": not_found("scripted"),
        "custom": not_found("custom"),
    }))

    outcome = runner.invoke(app, ["refresh"])

    assert outcome.exit_code == 0
    assert sorted(argv[0] for argv in executor.calls) == ["custom", "demo", "scripted", "winonly"]


def test_install_success(cli_env, config):
    """Test installing a tool and reporting its new status."""
    executor = cli_env(FakeExecutor({"demo": result(stdout="demo version 2.3.1\n")}))

    outcome = runner.invoke(app, ["install", "demo"])

    assert outcome.exit_code == 0
    assert "installed (2.3.1)" in outcome.stdout
    assert executor.calls_for("npm") == [["npm", "install", "-g", "demo-pkg"]]
    assert config.cache_path.exists()


def test_install_failure_exits_with_error(cli_env):
    """Test that a failing install command exits with code 1."""
    cli_env(FakeExecutor({"npm": result(stderr="permission denied", exit_code=243)}))

    outcome = runner.invoke(app, ["install", "demo"])

    assert outcome.exit_code == 1
    assert "permission denied" in outcome.stdout


def test_install_unsupported_platform(cli_env):
    """Test that a tool without a method for this platform cannot be installed."""
    executor = cli_env(FakeExecutor())

    outcome = runner.invoke(app, ["install", "winonly"])

    assert outcome.exit_code == 1
    assert executor.calls == []


def test_uninstall_with_yes(cli_env):
    """Test uninstalling without the confirmation prompt."""
    executor = cli_env(FakeExecutor({"custom": not_found("custom")}))

    outcome = runner.invoke(app, ["uninstall", "custom", "--yes"])

    assert outcome.exit_code == 0
    assert "not installed" in outcome.stdout
    assert ["custom-installer", "--remove"] in executor.calls


def test_uninstall_declined(cli_env):
    """Test that declining the prompt runs nothing."""
    executor = cli_env(FakeExecutor())

    with patch("toolkeep.cli.display.confirm", return_value=False):
        outcome = runner.invoke(app, ["uninstall", "custom"])

    assert outcome.exit_code == 0
    assert "Cancelled" in outcome.stdout
    assert executor.calls == []


def test_catalog_valid_file(cli_env, tmp_path, catalog_data):
    """Test validating a well-formed catalog."""
    path = tmp_path / "valid.json"
    path.write_text(json.dumps(catalog_data))

    outcome = runner.invoke(app, ["catalog", str(path)])

    assert outcome.exit_code == 0
    assert "Catalog is valid." in outcome.stdout


def test_catalog_with_broken_entry(cli_env, tmp_path, catalog_data):
    """Test that a malformed entry is reported and fails validation."""
    catalog_data["tools"].append({"id": "broken", "name": "Broken"})
    path = tmp_path / "broken.json"
    path.write_text(json.dumps(catalog_data))

    outcome = runner.invoke(app, ["catalog", str(path)])

    assert outcome.exit_code == 1
    assert "broken" in outcome.stdout


def test_catalog_unparseable_file(cli_env, tmp_path):
    """Test that an unreadable catalog document fails validation."""
    path = tmp_path / "garbage.json"
    path.write_text("{not json")

    outcome = runner.invoke(app, ["catalog", str(path)])

    assert outcome.exit_code == 1


def test_settings_masks_secrets(cli_env):
    """Test resolving tool settings with defaults and a masked secret."""
    outcome = runner.invoke(app, ["settings", "custom", "api_key=abc123", "retries=5"])

    assert outcome.exit_code == 0
    assert "abc123" not in outcome.stdout
    assert "********" in outcome.stdout
    assert "safe" in outcome.stdout


def test_settings_missing_required(cli_env):
    """Test that a missing required setting fails."""
    outcome = runner.invoke(app, ["settings", "custom", "retries=5"])

    assert outcome.exit_code == 1


def test_settings_rejects_malformed_pair(cli_env):
    """Test that an argument without '=' fails."""
    outcome = runner.invoke(app, ["settings", "custom", "api_key"])

    assert outcome.exit_code == 1


def test_coerce_by_field_type():
    """Test converting command-line strings by config field type."""
    assert _coerce(ConfigField("integer", "test"), "5") == 5
    assert _coerce(ConfigField("number", "test"), "1.5") == 1.5
    assert _coerce(ConfigField("boolean", "test"), "yes") is True
    assert _coerce(ConfigField("integer", "test"), "five") == "five"
    assert _coerce(None, "raw") == "raw"


def test_config_show(cli_env):
    """Test config show command."""
    outcome = runner.invoke(app, ["config", "--show"])

    assert outcome.exit_code == 0
    assert "debug" in outcome.stdout


def test_config_save(cli_env, config):
    """Test writing the configuration file."""
    outcome = runner.invoke(app, ["config", "--save"])

    assert outcome.exit_code == 0
    assert config.config_path.exists()


def test_exec_prints_tool_output(cli_env):
    """Test running a tool with pass-through arguments."""
    executor = cli_env(FakeExecutor({
        "demo": result(stdout="demo version 2.3.1\n"),
        ("demo", "--json"): result(stdout='{"ok": true}\n'),
    }))

    outcome = runner.invoke(app, ["exec", "demo", "--", "--json"])

    assert outcome.exit_code == 0
    assert '{"ok": true}' in outcome.stdout
    assert executor.calls[-1] == ["demo", "--json"]


def test_exec_passes_exit_code_through(cli_env):
    """Test that the tool's exit code becomes the command's exit code."""
    cli_env(FakeExecutor({
        "demo": result(stdout="demo version 2.3.1\n"),
        ("demo", "bogus"): result(stderr="unknown command", exit_code=3),
    }))

    outcome = runner.invoke(app, ["exec", "demo", "bogus"])

    assert outcome.exit_code == 3


def test_exec_missing_tool(cli_env):
    """Test that running a tool that is not installed fails with exit code 1."""
    executor = cli_env(FakeExecutor({"demo": not_found("demo")}))

    outcome = runner.invoke(app, ["exec", "demo", "--", "--json"])

    assert outcome.exit_code == 1
    assert ["demo", "--json"] not in executor.calls


def test_tool_help_prints_text(cli_env):
    """Test showing a tool's help text."""
    cli_env(FakeExecutor({("demo", "--help"): result(stdout="usage: demo [options]\n")}))

    outcome = runner.invoke(app, ["tool-help", "demo"])

    assert outcome.exit_code == 0
    assert "usage: demo [options]" in outcome.stdout


def test_tool_help_unavailable(cli_env):
    """Test that a tool without help output fails with exit code 1."""
    cli_env(FakeExecutor({"demo": result(exit_code=1)}))

    outcome = runner.invoke(app, ["tool-help", "demo"])

    assert outcome.exit_code == 1
