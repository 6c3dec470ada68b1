"""Test project structure and configuration."""

import tomli
from pathlib import Path


def test_pyproject_toml_exists():
    """Test that pyproject.toml exists."""
    project_root = Path(__file__).parent.parent
    pyproject_path = project_root / "pyproject.toml"
    assert pyproject_path.exists(), "pyproject.toml should exist"


def test_pyproject_toml_structure():
    """Test that pyproject.toml has the correct structure."""
    project_root = Path(__file__).parent.parent
    pyproject_path = project_root / "pyproject.toml"

    with open(pyproject_path, "rb") as f:
        data = tomli.load(f)

    assert "build-system" in data, "pyproject.toml should have [build-system] section"

    project = data["project"]
    assert project["name"] == "toolkeep", "Project name should be 'toolkeep'"
    assert project["version"] == "0.3.0", "Version should be 0.3.0"

    # Check required dependencies
    deps = " ".join(project["dependencies"])
    required_deps = ["typer", "rich", "pydantic-settings", "platformdirs", "pyyaml", "httpx"]
    for dep in required_deps:
        assert dep in deps, f"Missing required dependency: {dep}"

    # Check test dependencies
    test_deps = " ".join(project["optional-dependencies"]["test"])
    assert "pytest" in test_deps, "Should have pytest in test dependencies"
    assert "pytest-asyncio" in test_deps, "Should have pytest-asyncio in test dependencies"

    # Check dev dependencies
    dev_deps = data["tool"]["poetry"]["group"]["dev"]["dependencies"]
    assert "ruff" in dev_deps, "Should have ruff in dev dependencies"

    # Check scripts
    assert "toolkeep" in project["scripts"], "Should have toolkeep entry point"


def test_bundled_catalog_exists():
    """Test that the bundled tool catalog ships with the package."""
    project_root = Path(__file__).parent.parent
    assert (project_root / "toolkeep" / "data" / "tools.json").exists()
