"""Configuration loading: YAML file, ${ENV} expansion, VIGIL_* overrides."""

from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

from vigil.config.schema import VigilConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATHS = [
    Path("vigil.yaml"),
    Path("~/.vigil/config.yaml"),
]

_ENV_PATTERN = re.compile(r"\$\{(\w+)\}")

# Environment variables applied on top of the file, as (section, key)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "VIGIL_DB_PATH": ("database", "path"),
    "VIGIL_STALE_HOURS": ("staleness", "stale_hours"),
    "VIGIL_TIMEOUT": ("evaluation", "timeout_seconds"),
}


def _expand_env_vars(value: Any) -> Any:
    """Recursively replace ${VAR} in strings; unset variables become ''."""
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), ""), value)
    if isinstance(value, dict):
        return {k: _expand_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_expand_env_vars(item) for item in value]
    return value


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    for var, (section, key) in ENV_OVERRIDES.items():
        value = os.environ.get(var)
        if not value:
            continue
        logger.debug("Config override from %s: %s.%s", var, section, key)
        current = raw.get(section)
        raw[section] = {**(current if isinstance(current, dict) else {}), key: value}
    return raw


def find_config_file(explicit_path: str | Path | None = None) -> Path | None:
    """Config file that ``load_config`` would read, or None for defaults."""
    if explicit_path is not None:
        path = Path(explicit_path).expanduser()
        if path.exists():
            return path
        logger.warning("Config file not found: %s", path)
        return None

    for candidate in DEFAULT_CONFIG_PATHS:
        resolved = candidate.expanduser()
        if resolved.exists():
            return resolved
    return None


def load_config(path: str | Path | None = None) -> VigilConfig:
    """Load and validate configuration.

    Resolution order:
    1. Explicit path argument (``--config`` / ``VIGIL_CONFIG``)
    2. vigil.yaml in the current directory
    3. ~/.vigil/config.yaml
    4. All defaults

    ``${VAR}`` references in string values are expanded, then the
    ``ENV_OVERRIDES`` variables replace individual keys.
    """
    config_path = find_config_file(path)

    raw: dict[str, Any] = {}
    if config_path is not None:
        logger.info("Loading config from %s", config_path)
        with open(config_path) as f:
            raw = _expand_env_vars(yaml.safe_load(f) or {})
    else:
        logger.info("No config file found, using defaults")

    config = VigilConfig.model_validate(_apply_env_overrides(raw))
    logger.debug("Config loaded: version=%d, database=%s", config.version, config.database.path)
    return config


def resolve_path(path_str: str) -> Path:
    """Absolute path for a configured file; ``:memory:`` is returned as-is."""
    if path_str == ":memory:":
        return Path(path_str)
    return Path(path_str).expanduser().resolve()
