"""
Configuration loader with deep merge.

Precedence order (lowest to highest):
1. Defaults (defined in the Pydantic schemas)
2. YAML file
3. Environment variables
4. CLI arguments
"""

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ..errors import ConfigError
from .schema import ToolkitConfig


def user_config_path() -> Path:
    return Path.home() / ".config" / "dsmj-ai" / "config.yaml"


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge dictionaries.

    Example:
        >>> deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"b": 99}, "e": 4})
        {'a': {'b': 99, 'c': 2}, 'e': 4}
    """
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_yaml_config(config_path: Path | None) -> dict[str, Any]:
    """Load configuration from a YAML file.

    An explicit path must exist. Without one, the per-user file is used
    when present.
    """
    if config_path is None:
        config_path = user_config_path()
        if not config_path.exists():
            return {}
    elif not config_path.exists():
        raise ConfigError(f"Configuration file not found: {config_path}")

    try:
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path}: top level must be a mapping")
    return data


def load_env_overrides() -> dict[str, Any]:
    """Load overrides from environment variables.

    Supported variables:
        DSMJ_AI_HOME: overrides paths.home
        DSMJ_AI_REPO_URL: overrides source.repo_url
        DSMJ_AI_LOG_LEVEL: overrides logging.level
    """
    overrides: dict[str, Any] = {}

    if home := os.environ.get("DSMJ_AI_HOME"):
        overrides.setdefault("paths", {})["home"] = home

    if repo_url := os.environ.get("DSMJ_AI_REPO_URL"):
        overrides.setdefault("source", {})["repo_url"] = repo_url

    if log_level := os.environ.get("DSMJ_AI_LOG_LEVEL"):
        overrides.setdefault("logging", {})["level"] = log_level.lower()

    return overrides


def apply_cli_overrides(config_dict: dict[str, Any], cli_args: dict[str, Any]) -> dict[str, Any]:
    """Apply overrides from CLI arguments."""
    overrides: dict[str, Any] = {}

    if cli_args.get("home"):
        overrides.setdefault("paths", {})["home"] = cli_args["home"]

    if cli_args.get("log_file"):
        overrides.setdefault("logging", {})["file"] = cli_args["log_file"]

    if cli_args.get("verbose") is not None:
        overrides.setdefault("logging", {})["verbose"] = cli_args["verbose"]

    return deep_merge(config_dict, overrides)


def load_config(
    config_path: Path | None = None,
    cli_args: dict[str, Any] | None = None,
) -> ToolkitConfig:
    """Load and validate the complete configuration.

    Raises:
        ConfigError: if the file is missing or the merged result is invalid
    """
    cli_args = cli_args or {}

    merged = deep_merge(load_yaml_config(config_path), load_env_overrides())
    merged = apply_cli_overrides(merged, cli_args)

    try:
        return ToolkitConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
