"""
Configuration loader — reads hostprov.yml into a flat settings mapping.

The file is a flat YAML mapping of provisioning keys. Environment
variables named ``HOSTPROV_<KEY>`` override file values, so secrets
(``HOSTPROV_ENTERPRISE_TOKEN``, ``HOSTPROV_ADMIN_PASSWORD``) can stay
out of the file. Validation is not done here; see ``validation``.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml

from hostprov.core.config.validation import validate_config
from hostprov.core.models.config import ProvisionConfig

logger = logging.getLogger(__name__)

# Default config filename
CONFIG_FILE = "hostprov.yml"
ENV_PREFIX = "HOSTPROV_"

# Keys that cannot be expressed as a single environment string
_NON_ENV_KEYS = frozenset({"templates"})


class ConfigError(Exception):
    """Raised when the configuration file is missing or unreadable."""


def find_config_file(start_dir: Path | None = None) -> Path | None:
    """Search for hostprov.yml starting from the given directory, walking up.

    Args:
        start_dir: Directory to start searching from (default: cwd).

    Returns:
        Path to hostprov.yml, or None if not found.
    """
    current = (start_dir or Path.cwd()).resolve()

    for _ in range(20):  # safety limit
        candidate = current / CONFIG_FILE
        if candidate.is_file():
            return candidate
        parent = current.parent
        if parent == current:
            break  # filesystem root
        current = parent

    return None


def load_settings(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load raw settings from the config file and the environment.

    Args:
        path: Explicit config path. If None, searches upward; a missing
            file is allowed (environment and defaults only).
        environ: Environment mapping (default: ``os.environ``).

    Returns:
        Flat key/value mapping, not yet validated.

    Raises:
        ConfigError: If an explicit file is missing, or any file is
            unreadable or not a YAML mapping.
    """
    settings: dict[str, Any] = {}

    explicit = path is not None
    if path is None:
        path = find_config_file()

    if path is not None:
        if not path.is_file():
            if explicit:
                raise ConfigError(f"Config file not found: {path}")
        else:
            settings.update(_read_file(path))
    else:
        logger.info("No %s found, using environment and defaults", CONFIG_FILE)

    settings.update(env_overrides(environ if environ is not None else os.environ))
    return settings


def env_overrides(environ: Mapping[str, str]) -> dict[str, str]:
    """Settings given as ``HOSTPROV_<KEY>`` environment variables."""
    overrides: dict[str, str] = {}
    for field_name in ProvisionConfig.model_fields:
        if field_name in _NON_ENV_KEYS:
            continue
        value = environ.get(ENV_PREFIX + field_name.upper())
        if value is not None:
            overrides[field_name] = value
    if overrides:
        logger.debug("Environment overrides: %s", ", ".join(sorted(overrides)))
    return overrides


def _read_file(path: Path) -> dict[str, Any]:
    logger.debug("Loading settings from %s", path)

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read {path}: {e}") from e

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a YAML mapping in {path}, got {type(data).__name__}")

    # Template overrides are paths relative to the config file
    templates = data.get("templates")
    if isinstance(templates, dict):
        base = path.parent.resolve()
        data["templates"] = {
            str(name): str((base / str(tpl)).resolve()) for name, tpl in templates.items()
        }

    return {str(k): v for k, v in data.items()}


def load_config(
    path: Path | None = None,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> ProvisionConfig:
    """Load settings and validate them into a ProvisionConfig.

    ``overrides`` (CLI flags) win over both the file and the environment.

    Raises:
        ConfigError: Unreadable or malformed config file.
        ValidationError: Invalid settings (every problem at once).
    """
    settings = load_settings(path, environ)
    if overrides:
        settings.update({k: v for k, v in overrides.items() if v is not None})
    return validate_config(settings)
