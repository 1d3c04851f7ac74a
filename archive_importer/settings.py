"""Archive importer settings.

Settings are layered, lowest precedence first:
1. Built-in defaults
2. User settings (~/.archive_importer/settings.yaml)
3. Project settings (.archive_importer/settings.yaml)
4. Environment variables (ARCHIVE_IMPORTER_*, CPAN_MIRROR)
5. Explicit overrides passed by the caller
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel
from pydantic import Field

logger = logging.getLogger(__name__)

DEFAULT_MIRROR = "https://www.cpan.org"
EXTRACT_DIR_NAME = ".archive_importer_extract"
SETTINGS_SECTION = "archive_importer"

# Environment variable -> settings field, first variable found wins per field
ENV_VARS: list[tuple[str, str]] = [
    ("ARCHIVE_IMPORTER_MIRROR", "mirror"),
    ("CPAN_MIRROR", "mirror"),
    ("ARCHIVE_IMPORTER_EXTRACT", "extract_dir"),
    ("ARCHIVE_IMPORTER_HOME", "home"),
    ("ARCHIVE_IMPORTER_DEBUG", "debug"),
]


class ArchiveImporterSettings(BaseModel):
    """Resolved configuration for one index build and its finder."""

    mirror: str = Field(DEFAULT_MIRROR, description="Repository mirror used to expand CPAN:// URLs")
    extract_dir: Path | None = Field(None, description="Extract resolved modules below this directory")
    home: Path | None = Field(None, description="Base for the default extraction directory")
    debug: bool = Field(False, description="Materialize modules on disk so debuggers can find them")
    module_suffixes: list[str] = Field(default_factory=lambda: [".py"], description="Module file suffixes")
    http_timeout: float | None = Field(30.0, description="Timeout in seconds for archive downloads")

    @property
    def extraction_enabled(self) -> bool:
        return self.extract_dir is not None or self.debug

    @property
    def extraction_root(self) -> Path:
        """Directory extracted modules are written below."""
        if self.extract_dir is not None:
            return self.extract_dir
        home = self.home if self.home is not None else Path.home()
        return home / EXTRACT_DIR_NAME


def user_settings_path() -> Path:
    return Path.home() / ".archive_importer" / "settings.yaml"


def project_settings_path() -> Path:
    return Path.cwd() / ".archive_importer" / "settings.yaml"


def _read_yaml_settings(config_path: Path) -> dict[str, Any]:
    """Read the archive_importer section from a YAML settings file.

    Args:
        config_path: Path to YAML settings file

    Returns:
        Settings dict, empty if the file is missing or unusable
    """
    if not config_path.exists():
        return {}

    try:
        with open(config_path, encoding="utf-8") as f:
            config = yaml.safe_load(f)
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to read {config_path}: {e}")
        return {}

    if not isinstance(config, dict):
        return {}

    section = config.get(SETTINGS_SECTION)
    if section is None:
        return {}
    if not isinstance(section, dict):
        logger.warning(f"Ignoring '{SETTINGS_SECTION}' in {config_path}: expected a mapping")
        return {}

    logger.debug(f"[settings] loaded {config_path}")
    return section


def _read_env_settings() -> dict[str, Any]:
    values: dict[str, Any] = {}
    for env_key, field_name in ENV_VARS:
        if field_name in values:
            continue
        if env_value := os.getenv(env_key):
            values[field_name] = env_value
    return values


def load_settings(overrides: dict[str, Any] | None = None) -> ArchiveImporterSettings:
    """Load settings from all layers.

    Args:
        overrides: Explicit values, highest precedence. None values are ignored.

    Returns:
        ArchiveImporterSettings instance

    Raises:
        pydantic.ValidationError: A layer supplied an invalid value
    """
    merged: dict[str, Any] = {}
    merged.update(_read_yaml_settings(user_settings_path()))
    merged.update(_read_yaml_settings(project_settings_path()))
    merged.update(_read_env_settings())
    if overrides:
        merged.update({key: value for key, value in overrides.items() if value is not None})

    return ArchiveImporterSettings(**merged)
