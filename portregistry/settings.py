"""Pydantic settings for opening a registry."""

from pathlib import Path
from typing import Any, Literal
import logging

import yaml
from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)


class RegistrySettings(BaseSettings):
    """Settings for the registry file and logging."""

    model_config = SettingsConfigDict(env_prefix="PORTREGISTRY_")

    base_path: Path = Field(
        Path("."),
        description="Base directory that relative paths are resolved under.",
    )

    registry_path: Path = Field(
        Path("registry.db"),
        description="Path to the registry database file.",
    )

    journal_mode: Literal["WAL", "DELETE", "TRUNCATE", "MEMORY"] = Field(
        "WAL",
        description="SQLite journal mode for the registry file.",
    )

    log_dir: Path = Field(
        Path("logs"),
        description="Directory for rotating log files.",
    )

    @model_validator(mode="after")
    def _apply_base_path(self) -> "RegistrySettings":
        self.registry_path = self._resolve_under_base(self.registry_path)
        self.log_dir = self._resolve_under_base(self.log_dir)
        return self

    def _resolve_under_base(self, path: Path) -> Path:
        if path.is_absolute() or str(path) == ":memory:":
            return path
        return self.base_path / path


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Config file must be a mapping: {path}")
    return data


def load_settings(config_path: Path | None = None) -> RegistrySettings:
    """Load settings from a YAML file, defaulting to env/default values.

    Values in the file take precedence over PORTREGISTRY_* environment
    variables.

    Raises:
        ValueError: If the file does not hold a mapping
        pydantic.ValidationError: If a value is invalid
    """
    if config_path is None:
        return RegistrySettings()
    if not config_path.exists():
        logger.warning(f"Config file not found at {config_path}, using default settings.")
        return RegistrySettings()
    return RegistrySettings(**_load_yaml(config_path))
