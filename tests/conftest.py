from typing import Iterator

import pytest

from bookhub import logging_manager as log_mgr
from bookhub import observability
from bookhub.config_manager import reset_settings


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "metadata: book lookup pipeline tests")


@pytest.fixture(autouse=True)
def _isolate_global_state(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    for name in (
        "BOOKHUB_DEBUG",
        "BOOKHUB_LOG_DIR",
        "BOOKHUB_CACHE_DIR",
        "BOOKHUB_CACHE_TTL_HOURS",
        "DATABASE_URL",
        "BOOKHUB_DATABASE_URL",
        "REDIS_URL",
        "BOOKHUB_REDIS_URL",
        "S3_BUCKET",
        "BOOKHUB_S3_BUCKET",
        "BOOKHUB_S3_PREFIX",
        "S3_ENDPOINT_URL",
        "BOOKHUB_S3_ENDPOINT_URL",
        "AWS_REGION",
        "BOOKHUB_S3_REGION",
        "GOOGLE_BOOKS_API_KEY",
        "BOOKHUB_GOOGLE_BOOKS_API_KEY",
        "NYT_API_KEY",
        "BOOKHUB_NYT_API_KEY",
        "BOOKHUB_EXTERNAL_FALLBACK_ENABLED",
        "BOOKHUB_EMBEDDING_ENABLED",
        "EMBEDDING_SERVICE_URL",
        "BOOKHUB_EMBEDDING_URL",
        "OPENAI_API_KEY",
        "BOOKHUB_EMBEDDING_API_KEY",
        "BOOKHUB_EMBEDDING_PROVIDER",
    ):
        monkeypatch.delenv(name, raising=False)
    observability.reset_counters()
    reset_settings()
    log_mgr.clear_log_context()
    yield
    observability.reset_counters()
    reset_settings()
    log_mgr.clear_log_context()
