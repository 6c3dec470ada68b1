"""Tool catalog loading and validation.

The catalog is a JSON (or YAML) document listing every tool toolkeep can
manage:

    {
      "version": "1.0",
      "last_updated": "2025-01-01",
      "tools": [
        {
          "id": "gemini-cli",
          "name": "Gemini CLI",
          "description": "...",
          "command": "gemini",
          "version_check": ["--version"],
          "install": {
            "linux": {"method": "npm", "package_name": "@google/gemini-cli"}
          }
        }
      ]
    }

Malformed entries are skipped and recorded on the returned index; the rest of
the catalog still loads.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import yaml

from toolkeep.core.errors import CatalogError, CatalogLoadError, ToolConfigError
from .models import (
    CONFIG_FIELD_TYPES,
    CommandInstall,
    ConfigField,
    InstallMethod,
    PackageManagerInstall,
    Platform,
    ScriptInstall,
    ToolDefinition,
)


logger = logging.getLogger(__name__)

CatalogSource = Union[str, Path, dict]

# "method" values that are not package managers
SCRIPT_METHODS = ("script", "curl", "download")
COMMAND_METHODS = ("command", "custom", "manual")


@dataclass
class CatalogIndex:
    """Loaded catalog: valid tool definitions plus per-entry errors.

    Example:
        catalog = load_catalog(default_catalog_path())
        for error in catalog.errors:
            print(error)
        tool = catalog.get("gemini-cli")
    """

    tools: dict[str, ToolDefinition] = field(default_factory=dict)
    errors: list[CatalogError] = field(default_factory=list)
    version: str = "1.0"
    last_updated: Optional[str] = None
    source: Optional[str] = None

    def get(self, tool_id: str) -> Optional[ToolDefinition]:
        """Get a tool definition by id."""
        return self.tools.get(tool_id)

    def ids(self) -> list[str]:
        """Tool ids in catalog order."""
        return list(self.tools)

    @property
    def warnings(self) -> list[CatalogError]:
        return [e for e in self.errors if e.severity == "warning"]

    def __contains__(self, tool_id: object) -> bool:
        return tool_id in self.tools

    def __iter__(self) -> Iterator[ToolDefinition]:
        return iter(self.tools.values())

    def __len__(self) -> int:
        return len(self.tools)


def default_catalog_path() -> Path:
    """Path of the catalog bundled with the package."""
    return Path(__file__).resolve().parent.parent / "data" / "tools.json"


def load_catalog(source: CatalogSource) -> CatalogIndex:
    """Load and validate a catalog.

    Args:
        source: Path to a JSON/YAML file, a JSON/YAML string, or a parsed dict.

    Returns:
        CatalogIndex holding the valid entries and the per-entry errors.

    Raises:
        CatalogLoadError: If the document itself cannot be read or parsed.
    """
    document, origin = _read_document(source)

    raw_tools = document.get("tools", [])
    if not isinstance(raw_tools, list):
        raise CatalogLoadError(f"'tools' must be a list in {origin}")

    index = CatalogIndex(
        version=str(document.get("version", "1.0")),
        last_updated=_optional_str(document.get("last_updated")),
        source=origin,
    )

    for position, entry in enumerate(raw_tools):
        tool_id = entry.get("id") if isinstance(entry, dict) else None
        try:
            tool = parse_tool(entry, position, index.errors)
        except CatalogError as e:
            index.errors.append(e)
            logger.warning(f"Skipping catalog entry: {e}")
            continue

        if tool.id in index.tools:
            error = CatalogError(
                "duplicate id, keeping the first definition",
                tool_id=tool_id,
                severity="warning",
                index=position,
            )
            index.errors.append(error)
            logger.warning(f"Ignoring catalog entry: {error}")
            continue

        index.tools[tool.id] = tool

    logger.debug(
        f"Loaded {len(index)} tools from {origin} ({len(index.errors)} problems)"
    )
    return index


def _read_document(source: CatalogSource) -> tuple[dict, str]:
    """Turn a catalog source into a parsed mapping."""
    if isinstance(source, dict):
        return source, "<dict>"

    if isinstance(source, Path) or (
        isinstance(source, str) and "\n" not in source and not source.lstrip().startswith(("{", "["))
    ):
        path = Path(source)
        try:
            text = path.read_text(encoding="utf-8")
        except OSError as e:
            raise CatalogLoadError(f"Cannot read catalog {path}: {e}") from e
        use_yaml = path.suffix.lower() in (".yaml", ".yml")
        origin = str(path)
    else:
        text = source
        use_yaml = not text.lstrip().startswith(("{", "["))
        origin = "<string>"

    try:
        document = yaml.safe_load(text) if use_yaml else json.loads(text)
    except (json.JSONDecodeError, yaml.YAMLError) as e:
        raise CatalogLoadError(f"Cannot parse catalog {origin}: {e}") from e

    if not isinstance(document, dict):
        raise CatalogLoadError(f"Catalog {origin} must be a mapping with a 'tools' list")
    return document, origin


def parse_tool(
    data: Any,
    position: Optional[int] = None,
    warnings: Optional[list[CatalogError]] = None,
) -> ToolDefinition:
    """Validate one catalog entry and build its ToolDefinition.

    Args:
        data: Raw entry from the document.
        position: Index of the entry, used in error reports.
        warnings: Optional list receiving non-fatal problems.

    Returns:
        Validated tool definition.

    Raises:
        CatalogError: If the entry violates a catalog invariant.
    """
    if not isinstance(data, dict):
        raise CatalogError("entry is not a mapping", index=position)

    tool_id = _optional_str(data.get("id"))

    def fail(message: str) -> CatalogError:
        return CatalogError(message, tool_id=tool_id, index=position)

    if not tool_id:
        raise fail("missing id")

    for key in ("name", "description", "command"):
        if not _optional_str(data.get(key)):
            raise fail(f"missing {key}")

    version_check = data.get("version_check", ["--version"])
    if not _is_str_list(version_check):
        raise fail("version_check must be a list of strings")

    update_check = data.get("update_check")
    if update_check is not None and not _is_str_list(update_check):
        raise fail("update_check must be a list of strings")

    raw_install = data.get("install")
    if not isinstance(raw_install, dict) or not raw_install:
        raise fail("install map is empty")

    install: dict[Platform, InstallMethod] = {}
    for key, raw_method in raw_install.items():
        platform = Platform.parse(str(key))
        if platform is None:
            if warnings is not None:
                warnings.append(CatalogError(
                    f"unknown platform key '{key}' ignored",
                    tool_id=tool_id,
                    severity="warning",
                    index=position,
                ))
            continue
        install[platform] = parse_install_method(raw_method, tool_id, key)

    if not install:
        raise fail("install map has no recognised platform key")

    config_schema = {}
    raw_schema = data.get("config_schema")
    if raw_schema is not None:
        if not isinstance(raw_schema, dict):
            raise fail("config_schema must be a mapping")
        for name, raw_field in raw_schema.items():
            config_schema[str(name)] = parse_config_field(raw_field, tool_id, str(name))

    return ToolDefinition(
        id=tool_id,
        name=_optional_str(data["name"]),
        description=_optional_str(data["description"]),
        command=_optional_str(data["command"]),
        homepage=_optional_str(data.get("homepage") or data.get("website")) or "",
        version_check=tuple(version_check),
        update_check=tuple(update_check) if update_check is not None else None,
        install=install,
        config_schema=config_schema,
    )


def parse_install_method(data: Any, tool_id: Optional[str] = None, platform_key: str = "") -> InstallMethod:
    """Build the install method variant for one platform entry.

    Raises:
        CatalogError: If the entry is malformed.
    """
    where = f"install.{platform_key}" if platform_key else "install"
    if not isinstance(data, dict):
        raise CatalogError(f"{where} must be a mapping", tool_id=tool_id)

    method = _optional_str(data.get("method"))
    if not method:
        raise CatalogError(f"{where} is missing 'method'", tool_id=tool_id)
    method = method.lower()

    command = data.get("command")
    if command is not None and (not _is_str_list(command) or not command):
        raise CatalogError(f"{where}.command must be a non-empty list of strings", tool_id=tool_id)
    uninstall_command = data.get("uninstall_command")
    if uninstall_command is not None and (not _is_str_list(uninstall_command) or not uninstall_command):
        raise CatalogError(
            f"{where}.uninstall_command must be a non-empty list of strings", tool_id=tool_id
        )

    if method in SCRIPT_METHODS:
        url = _optional_str(data.get("url"))
        if not url:
            raise CatalogError(f"{where} script method requires a url", tool_id=tool_id)
        return ScriptInstall(
            url=url,
            checksum=_optional_str(data.get("checksum")),
            shell=_optional_str(data.get("shell")),
            uninstall_url=_optional_str(data.get("uninstall_url")),
            uninstall_command=tuple(uninstall_command) if uninstall_command else None,
        )

    if method in COMMAND_METHODS:
        if not command:
            raise CatalogError(f"{where} command method requires a command", tool_id=tool_id)
        return CommandInstall(
            command=tuple(command),
            uninstall_command=tuple(uninstall_command) if uninstall_command else None,
        )

    package_name = _optional_str(data.get("package_name"))
    if not package_name and not command:
        raise CatalogError(
            f"{where} {method} method requires package_name or command", tool_id=tool_id
        )
    return PackageManagerInstall(
        manager=method,
        package_name=package_name,
        command=tuple(command) if command else None,
        uninstall_command=tuple(uninstall_command) if uninstall_command else None,
    )


def parse_config_field(data: Any, tool_id: Optional[str], name: str) -> ConfigField:
    """Validate one config_schema field.

    Raises:
        CatalogError: If the field has no description, or is an enum without values.
    """
    where = f"config_schema.{name}"
    if not isinstance(data, dict):
        raise CatalogError(f"{where} must be a mapping", tool_id=tool_id)

    field_type = (_optional_str(data.get("field_type") or data.get("type")) or "string").lower()
    if field_type not in CONFIG_FIELD_TYPES:
        raise CatalogError(f"{where} has unknown type '{field_type}'", tool_id=tool_id)

    description = _optional_str(data.get("description"))
    if not description:
        raise CatalogError(f"{where} is missing a description", tool_id=tool_id)

    values = data.get("values") or []
    if not _is_str_list(values):
        raise CatalogError(f"{where}.values must be a list of strings", tool_id=tool_id)
    if field_type == "enum" and not values:
        raise CatalogError(f"{where} is an enum without values", tool_id=tool_id)

    return ConfigField(
        field_type=field_type,
        description=description,
        secret=bool(data.get("secret", False)),
        required=bool(data.get("required", False)),
        default=data.get("default"),
        values=tuple(values),
    )


def resolve_tool_config(tool: ToolDefinition, values: Optional[dict] = None) -> dict:
    """Merge user settings for a tool with the defaults of its config schema.

    Args:
        tool: Tool whose schema applies.
        values: User-supplied settings.

    Returns:
        Settings with defaults filled in.

    Raises:
        ToolConfigError: If a setting is unknown, missing, or of the wrong type.
    """
    values = dict(values or {})
    resolved: dict[str, Any] = {}

    unknown = sorted(set(values) - set(tool.config_schema))
    if unknown:
        raise ToolConfigError(f"Unknown settings: {', '.join(unknown)}", tool_id=tool.id)

    for name, spec in tool.config_schema.items():
        if name in values:
            value = values[name]
        elif spec.default is not None:
            value = spec.default
        elif spec.required:
            raise ToolConfigError(f"Missing required setting '{name}'", tool_id=tool.id)
        else:
            continue

        if not _matches_type(spec, value):
            raise ToolConfigError(
                f"Setting '{name}' must be of type {spec.field_type}", tool_id=tool.id
            )
        resolved[name] = value

    return resolved


def _matches_type(spec: ConfigField, value: Any) -> bool:
    if spec.field_type == "enum":
        return value in spec.values
    if spec.field_type == "boolean":
        return isinstance(value, bool)
    if spec.field_type == "integer":
        return isinstance(value, int) and not isinstance(value, bool)
    if spec.field_type == "number":
        return isinstance(value, (int, float)) and not isinstance(value, bool)
    return isinstance(value, str)


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _is_str_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) for v in value)
