"""Configuration loader for crowdscan."""

from __future__ import annotations

import warnings
from functools import lru_cache
from pathlib import Path
from typing import Any

import tomllib

from crowdscan.base.exceptions import ConfigError

# Keyframe extraction defaults (used when no config file is found)
DEFAULT_KEYFRAMES: dict[str, Any] = {
    "max_frames": 20,
    "sample_rate": 2.0,
    "diff_threshold": None,
    "default_size": 800,
    "rotation": 0,
    "seek_timeout": 10.0,
    "jpeg_quality": 80,
    "work_size": 100,
}


def _find_config_file() -> Path | None:
    """Find the configuration file in current directory.

    Looks for:
    1. crowdscan.toml in current directory
    2. pyproject.toml in current directory

    Returns:
        Path to config file if found, None otherwise.
    """
    cwd = Path.cwd()

    crowdscan_toml = cwd / "crowdscan.toml"
    if crowdscan_toml.exists():
        return crowdscan_toml

    pyproject_toml = cwd / "pyproject.toml"
    if pyproject_toml.exists():
        return pyproject_toml

    return None


def _load_toml(path: Path) -> dict[str, Any]:
    """Load and parse a TOML file."""
    with open(path, "rb") as f:
        return tomllib.load(f)


def _extract_config(data: dict[str, Any], filename: str) -> dict[str, Any]:
    """Extract crowdscan config from parsed TOML data.

    Args:
        data: Parsed TOML data
        filename: Name of the file (to determine extraction method)

    Returns:
        The crowdscan configuration section, or empty dict if not found.
    """
    if filename == "crowdscan.toml":
        return data
    elif filename == "pyproject.toml":
        return data.get("tool", {}).get("crowdscan", {})
    return {}


@lru_cache(maxsize=1)
def _get_cached_config() -> dict[str, Any]:
    config_path = _find_config_file()
    if config_path is None:
        return {}

    try:
        data = _load_toml(config_path)
        return _extract_config(data, config_path.name)
    except tomllib.TOMLDecodeError as e:
        warnings.warn(f"Invalid TOML in config file {config_path}: {e}", RuntimeWarning)
        return {}
    except OSError as e:
        warnings.warn(f"Cannot read config file {config_path}: {e}", RuntimeWarning)
        return {}


def get_config() -> dict[str, Any]:
    """Get the current configuration.

    Returns:
        The configuration dictionary.
    """
    return _get_cached_config()


def get_keyframe_defaults() -> dict[str, Any]:
    """Get keyframe extraction defaults.

    Priority:
    1. `[keyframes]` table of the config file
    2. Hardcoded defaults

    Raises:
        ConfigError: If the `keyframes` section is not a table.
    """
    section = get_config().get("keyframes", {})
    if not isinstance(section, dict):
        raise ConfigError(f"'keyframes' config must be a table, got {type(section).__name__}")

    defaults = dict(DEFAULT_KEYFRAMES)
    for key, value in section.items():
        if key not in DEFAULT_KEYFRAMES:
            warnings.warn(f"Unknown keyframes config option '{key}' ignored", RuntimeWarning)
            continue
        defaults[key] = value
    return defaults


def clear_config_cache() -> None:
    """Clear the configuration cache. Useful for testing."""
    _get_cached_config.cache_clear()
