"""High-level configuration management for bookhub."""
from __future__ import annotations

from .constants import (
    CONF_DIR,
    DEFAULT_CONFIG_PATH,
    DEFAULT_EMBEDDING_DIMENSION,
    DEFAULT_LOCAL_CONFIG_PATH,
    DEFAULT_RECENTLY_VIEWED_CAPACITY,
    DEFAULT_S3_PREFIX,
    DEFAULT_SEARCH_RESULT_LIMIT,
    MAX_CACHED_RECOMMENDATIONS,
    SENSITIVE_CONFIG_KEYS,
)
from .loader import export_settings, get_settings, load_configuration, reset_settings
from .settings import (
    BookHubSettings,
    EnvironmentOverrides,
    ProviderSettings,
    apply_settings_updates,
    load_environment_overrides,
    secret_value,
)

__all__ = [
    "BookHubSettings",
    "CONF_DIR",
    "DEFAULT_CONFIG_PATH",
    "DEFAULT_EMBEDDING_DIMENSION",
    "DEFAULT_LOCAL_CONFIG_PATH",
    "DEFAULT_RECENTLY_VIEWED_CAPACITY",
    "DEFAULT_S3_PREFIX",
    "DEFAULT_SEARCH_RESULT_LIMIT",
    "EnvironmentOverrides",
    "MAX_CACHED_RECOMMENDATIONS",
    "ProviderSettings",
    "SENSITIVE_CONFIG_KEYS",
    "apply_settings_updates",
    "export_settings",
    "get_settings",
    "load_configuration",
    "load_environment_overrides",
    "reset_settings",
    "secret_value",
]
