"""Configuration loading utilities."""
from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import ValidationError

from bookhub import logging_manager

from .constants import DEFAULT_CONFIG_PATH, DEFAULT_LOCAL_CONFIG_PATH, SENSITIVE_CONFIG_KEYS
from .settings import BookHubSettings, apply_settings_updates, load_environment_overrides

logger = logging_manager.get_logger().getChild("config")

_ACTIVE_SETTINGS: Optional[BookHubSettings] = None


def _read_config_json(path: Optional[Path], label: str = "configuration") -> Dict[str, Any]:
    if not path:
        return {}
    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except FileNotFoundError:
        logger.debug(
            "No %s found at %s.", label, path, extra={"event": "config.file.missing"}
        )
        return {}
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning(
            "Error loading %s from %s: %s. Proceeding without it.",
            label,
            path,
            exc,
            extra={"event": "config.file.invalid"},
        )
        return {}
    if not isinstance(data, dict):
        logger.warning(
            "Ignoring %s at %s: top-level value is not an object.",
            label,
            path,
            extra={"event": "config.file.invalid"},
        )
        return {}
    logger.debug("Loaded %s from %s", label, path, extra={"event": "config.file.loaded"})
    return data


def _deep_merge_dict(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _deep_merge_dict(result[key], value)
        else:
            result[key] = value
    return result


def load_configuration(config_file: Optional[str] = None) -> BookHubSettings:
    """Load defaults, JSON config files and environment overrides.

    Args:
        config_file: Optional override file. When omitted,
            ``conf/config.local.json`` is layered over ``conf/config.json``
            if either exists.

    Returns:
        The validated settings, which also become the active settings.

    Raises:
        RuntimeError: If the merged payload fails validation.
    """

    global _ACTIVE_SETTINGS

    payload = _read_config_json(DEFAULT_CONFIG_PATH, label="default configuration")

    if config_file:
        override_path = Path(config_file).expanduser()
        if not override_path.is_absolute():
            override_path = (Path.cwd() / override_path).resolve()
    else:
        override_path = DEFAULT_LOCAL_CONFIG_PATH
    payload = _deep_merge_dict(
        payload, _read_config_json(override_path, label="local configuration")
    )

    try:
        settings = BookHubSettings.model_validate(payload)
    except ValidationError as exc:
        raise RuntimeError("Invalid configuration detected") from exc

    settings = apply_settings_updates(settings, load_environment_overrides())
    _ACTIVE_SETTINGS = settings
    return settings


def get_settings() -> BookHubSettings:
    """Return the currently loaded :class:`BookHubSettings` instance."""

    global _ACTIVE_SETTINGS
    if _ACTIVE_SETTINGS is None:
        settings = BookHubSettings()
        settings = apply_settings_updates(settings, load_environment_overrides())
        _ACTIVE_SETTINGS = settings
    return _ACTIVE_SETTINGS


def reset_settings() -> None:
    """Drop the active settings so the next :func:`get_settings` rebuilds them."""

    global _ACTIVE_SETTINGS
    _ACTIVE_SETTINGS = None


def export_settings(settings: BookHubSettings) -> Dict[str, Any]:
    """Return a dictionary view of ``settings`` without secret values."""

    return settings.model_dump(mode="json", exclude=set(SENSITIVE_CONFIG_KEYS))


__all__ = ["export_settings", "get_settings", "load_configuration", "reset_settings"]
