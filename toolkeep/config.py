"""Configuration management for toolkeep using Pydantic Settings.

Loads configuration from environment variables and YAML config files.
Config file locations:
  - Linux: ~/.config/toolkeep/config.yaml
  - macOS: ~/Library/Application Support/toolkeep/config.yaml
  - Windows: %APPDATA%/toolkeep/config.yaml
"""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from platformdirs import user_config_dir, user_data_dir


APP_NAME = "toolkeep"


def default_config_path() -> Path:
    """Location of the YAML config file."""
    return Path(user_config_dir(APP_NAME, appauthor=False)) / "config.yaml"


def default_cache_path() -> Path:
    """Location of the status cache document."""
    return Path(user_data_dir(APP_NAME, appauthor=False)) / "status.json"


class ToolkeepConfig(BaseSettings):
    """Main configuration class for toolkeep.

    Configuration is loaded from:
    1. Environment variables (highest priority)
    2. Config file at ~/.config/toolkeep/config.yaml
    3. Default values (lowest priority)
    """

    model_config = SettingsConfigDict(
        env_prefix="TOOLKEEP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Catalog
    catalog_path: Optional[Path] = Field(
        default=None,
        description="Tool catalog file; the bundled catalog is used when unset"
    )

    # Status cache
    cache_path: Optional[Path] = Field(
        default=None,
        description="Path to the status cache document"
    )

    status_ttl_seconds: float = Field(
        default=3600,
        gt=0,
        description="Age in seconds after which a cached status is refreshed"
    )

    # Process limits
    probe_timeout: float = Field(
        default=30,
        gt=0,
        description="Time bound in seconds for version probes"
    )

    install_timeout: float = Field(
        default=600,
        gt=0,
        description="Time bound in seconds for install, uninstall and update commands"
    )

    max_concurrent_checks: int = Field(
        default=4,
        ge=1,
        description="Maximum number of tools probed at the same time"
    )

    # Update checks
    auto_check_updates: bool = Field(
        default=True,
        description="Look up latest versions when refreshing all tools"
    )

    # Application Settings
    config_path: Optional[Path] = Field(
        default=None,
        description="Custom config file path"
    )

    debug: bool = Field(
        default=False,
        description="Enable debug mode"
    )

    def __init__(self, **kwargs):
        """Initialize configuration with default paths."""
        super().__init__(**kwargs)

        if self.config_path is None:
            self.config_path = default_config_path()

        if self.cache_path is None:
            self.cache_path = default_cache_path()

    @classmethod
    def load_from_file(cls, config_path: Optional[Path] = None) -> "ToolkeepConfig":
        """Load configuration from YAML file.

        Args:
            config_path: Optional custom config file path

        Returns:
            ToolkeepConfig instance with loaded settings
        """
        import yaml

        if config_path is None:
            config_path = default_config_path()

        if config_path.exists():
            with open(config_path, "r") as f:
                data = yaml.safe_load(f) or {}
            data.setdefault("config_path", config_path)
            return cls(**data)

        return cls(config_path=config_path)

    def save_to_file(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to YAML file.

        Args:
            config_path: Optional custom config file path
        """
        import yaml

        if config_path is None:
            config_path = self.config_path

        # Ensure directory exists
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = self.model_dump(exclude_none=True)

        # Convert Path objects to strings for YAML serialization
        for key, value in data.items():
            if isinstance(value, Path):
                data[key] = str(value)

        with open(config_path, "w") as f:
            yaml.dump(data, f, default_flow_style=False)
