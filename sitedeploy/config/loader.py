"""Load sitedeploy.yaml and apply SITEDEPLOY_* environment overrides."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml  # type: ignore[import-untyped]
from pydantic import ValidationError as PydanticValidationError

from sitedeploy.config.models import SiteDeployConfig

CONFIG_FILENAME = "sitedeploy.yaml"
CONFIG_ENV_VAR = "SITEDEPLOY_CONFIG"


class ConfigLoadError(ValueError):
    """Raised when the configuration file is unreadable or invalid."""


def config_path(cli_path: str | None = None) -> Path:
    """Pick the config file: $SITEDEPLOY_CONFIG, then --config, then ./sitedeploy.yaml."""
    for candidate in (os.environ.get(CONFIG_ENV_VAR, ""), cli_path or ""):
        if candidate.strip():
            return Path(candidate.strip())
    return Path.cwd() / CONFIG_FILENAME


def read_settings_file(path: Path) -> dict[str, Any]:
    """Parse the YAML file into a mapping; an absent or blank file is an empty one."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return {}
    except OSError as exc:
        raise ConfigLoadError(f"Cannot read {path}: {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        mark = getattr(exc, "problem_mark", None)
        where = f"{path}:{mark.line + 1}:{mark.column + 1}" if mark is not None else str(path)
        raise ConfigLoadError(f"Invalid YAML at {where}") from exc
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigLoadError(f"Config root must be mapping: {path}")
    return data


def load_config(cli_path: str | None = None) -> SiteDeployConfig:
    """Build configuration from YAML plus ``SITEDEPLOY_*`` environment overrides.

    A relative ``paths.repo_root`` is resolved against the directory holding
    the config file, so the tool behaves the same from any working directory.
    """
    target = config_path(cli_path)
    try:
        config = SiteDeployConfig(**read_settings_file(target))
    except PydanticValidationError as exc:
        raise ConfigLoadError(f"Invalid configuration in {target}: {exc}") from exc
    root = config.paths.repo_root
    if not root.is_absolute():
        base = target.parent if target.exists() else Path.cwd()
        config.paths.repo_root = (base / root).resolve()
    return config
