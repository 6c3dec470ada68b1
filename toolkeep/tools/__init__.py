"""Tool catalog for toolkeep.

This module provides the tool definitions toolkeep manages and the loader
that reads them from the catalog document.
"""

from .catalog import CatalogIndex, default_catalog_path, load_catalog, resolve_tool_config
from .models import (
    CommandInstall,
    ConfigField,
    OperationKind,
    OperationPhase,
    OperationProgress,
    PackageManagerInstall,
    Platform,
    ScriptInstall,
    StatusState,
    ToolDefinition,
    ToolStatus,
)

__all__ = [
    # Catalog
    "CatalogIndex",
    "default_catalog_path",
    "load_catalog",
    "resolve_tool_config",
    # Models
    "CommandInstall",
    "ConfigField",
    "OperationKind",
    "OperationPhase",
    "OperationProgress",
    "PackageManagerInstall",
    "Platform",
    "ScriptInstall",
    "StatusState",
    "ToolDefinition",
    "ToolStatus",
]
