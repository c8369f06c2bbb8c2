import json
from pathlib import Path

import pytest

from bookhub.config_manager import (
    BookHubSettings,
    export_settings,
    get_settings,
    load_configuration,
    load_environment_overrides,
    secret_value,
)
from bookhub.config_manager import loader

pytestmark = pytest.mark.metadata


@pytest.fixture
def config_paths(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    default_path = tmp_path / "config.json"
    local_path = tmp_path / "config.local.json"
    monkeypatch.setattr(loader, "DEFAULT_CONFIG_PATH", default_path)
    monkeypatch.setattr(loader, "DEFAULT_LOCAL_CONFIG_PATH", local_path)
    return default_path, local_path


class TestDefaults:
    """Settings built without any configuration files."""

    def test_provider_defaults(self) -> None:
        settings = BookHubSettings()

        assert settings.search_result_limit == 40
        assert settings.google_books.requests_per_second == 5.0
        assert settings.google_books.cooldown_seconds == 0.0
        assert settings.nyt.requests_per_minute == 10
        assert settings.embedding_provider == "ollama"

    def test_partial_provider_sections_keep_their_defaults(self) -> None:
        settings = BookHubSettings.model_validate({"openlibrary": {"failure_threshold": 2}})

        assert settings.openlibrary.failure_threshold == 2
        assert settings.openlibrary.base_url == "https://openlibrary.org"
        assert settings.openlibrary.cooldown_seconds == 300.0


class TestLoadConfiguration:
    def test_missing_files_fall_back_to_defaults(self, config_paths) -> None:
        settings = load_configuration()

        assert settings == BookHubSettings()
        assert get_settings() is settings

    def test_local_file_is_deep_merged_over_the_default(self, config_paths) -> None:
        default_path, local_path = config_paths
        default_path.write_text(
            json.dumps({"cache_ttl_hours": 1, "google_books": {"failure_threshold": 3}}),
            encoding="utf-8",
        )
        local_path.write_text(
            json.dumps({"google_books": {"timeout_seconds": 2}}), encoding="utf-8"
        )

        settings = load_configuration()

        assert settings.cache_ttl_hours == 1.0
        assert settings.google_books.failure_threshold == 3
        assert settings.google_books.timeout_seconds == 2.0
        assert settings.google_books.base_url == "https://www.googleapis.com/books/v1"

    def test_explicit_override_file(self, config_paths, tmp_path: Path) -> None:
        override = tmp_path / "custom.json"
        override.write_text(json.dumps({"search_result_limit": 10}), encoding="utf-8")

        assert load_configuration(str(override)).search_result_limit == 10

    def test_unreadable_files_are_ignored(self, config_paths) -> None:
        default_path, local_path = config_paths
        default_path.write_text("{broken", encoding="utf-8")
        local_path.write_text("[1, 2]", encoding="utf-8")

        assert load_configuration() == BookHubSettings()

    def test_invalid_values_raise(self, config_paths) -> None:
        default_path, _ = config_paths
        default_path.write_text(json.dumps({"search_result_limit": 0}), encoding="utf-8")

        with pytest.raises(RuntimeError):
            load_configuration()

    def test_environment_wins_over_files(self, config_paths, monkeypatch: pytest.MonkeyPatch) -> None:
        default_path, _ = config_paths
        default_path.write_text(json.dumps({"cache_dir": "from-file"}), encoding="utf-8")
        monkeypatch.setenv("BOOKHUB_CACHE_DIR", "from-env")
        monkeypatch.setenv("NYT_API_KEY", "nyt-secret")
        monkeypatch.setenv("BOOKHUB_EMBEDDING_PROVIDER", "openai")

        settings = load_configuration()

        assert settings.cache_dir == "from-env"
        assert secret_value(settings.nyt_api_key) == "nyt-secret"
        assert settings.embedding_provider == "openai"


class TestEnvironmentOverrides:
    def test_invalid_environment_values_are_dropped(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("BOOKHUB_EMBEDDING_PROVIDER", "word2vec")

        assert load_environment_overrides() == {}

    def test_unset_values_are_omitted(self) -> None:
        assert "redis_url" not in load_environment_overrides()


def test_export_hides_secrets() -> None:
    settings = BookHubSettings.model_validate(
        {"google_books_api_key": "secret", "redis_url": "redis://cache:6379/0"}
    )

    exported = export_settings(settings)

    assert "google_books_api_key" not in exported
    assert "redis_url" not in exported
    assert exported["search_result_limit"] == 40


def test_secret_value_maps_blank_to_none() -> None:
    settings = BookHubSettings.model_validate({"nyt_api_key": "   "})

    assert secret_value(settings.nyt_api_key) is None
    assert secret_value(None) is None
