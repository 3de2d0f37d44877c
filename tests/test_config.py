"""Tests for configuration loading and service wiring."""

import asyncio

import pytest
from pydantic import ValidationError

from src.ci_status.config import StatusSettings, get_settings
from src.ci_status.events.emitter import EventSinkType, LoggingEventEmitter
from src.ci_status.jobs import PipelineRef
from src.ci_status.main import _redact_secret, build_status_service
from src.ci_status.store.memory import InMemoryJobStore
from src.ci_status.store.postgres import PostgresJobStore


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in (
        "CI_STATUS_DATABASE_URL",
        "CI_STATUS_DB_MIN_POOL_SIZE",
        "CI_STATUS_DB_MAX_POOL_SIZE",
        "CI_STATUS_HOOK_MAX_ATTEMPTS",
        "CI_STATUS_HOOK_RETRY_DELAY_SECONDS",
        "CI_STATUS_EVENT_SINKS",
        "CI_STATUS_LOG_LEVEL",
    ):
        monkeypatch.delenv(name, raising=False)


class TestStatusSettings:
    """Tests for StatusSettings."""

    def test_defaults(self):
        settings = get_settings()

        assert settings.database_url is None
        assert settings.hook_max_attempts == 3
        assert settings.hook_retry_delay_seconds == 1.0
        assert settings.event_sinks == [EventSinkType.LOGGING]
        assert settings.log_level == "INFO"

    def test_load_from_env(self, monkeypatch):
        monkeypatch.setenv("CI_STATUS_DATABASE_URL", "postgresql://ci:pw@db:5432/ci")
        monkeypatch.setenv("CI_STATUS_HOOK_MAX_ATTEMPTS", "5")
        monkeypatch.setenv("CI_STATUS_EVENT_SINKS", '["logging", "metrics"]')
        monkeypatch.setenv("CI_STATUS_LOG_LEVEL", "debug")

        settings = get_settings()

        assert settings.database_url == "postgresql://ci:pw@db:5432/ci"
        assert settings.hook_max_attempts == 5
        assert settings.event_sinks == [EventSinkType.LOGGING, EventSinkType.METRICS]
        assert settings.log_level == "DEBUG"

    @pytest.mark.parametrize(
        "overrides",
        [
            {"database_url": "mysql://db/ci"},
            {"database_url": "  "},
            {"hook_max_attempts": 0},
            {"hook_retry_delay_seconds": -0.5},
            {"db_min_pool_size": 0},
            {"db_min_pool_size": 5, "db_max_pool_size": 2},
            {"log_level": "chatty"},
        ],
    )
    def test_invalid_values_rejected(self, overrides):
        with pytest.raises(ValidationError):
            StatusSettings(**overrides)


class TestBuildStatusService:
    def test_in_memory_store_without_database_url(self):
        service = build_status_service(StatusSettings())

        assert isinstance(service.store, InMemoryJobStore)
        assert service.machine.store is service.store
        assert service.view.store is service.store
        assert service.machine.hooks is service.hooks
        assert isinstance(service.event_emitter, LoggingEventEmitter)

    def test_postgres_store_with_database_url(self):
        settings = StatusSettings(
            database_url="postgresql://ci:pw@db/ci",
            db_min_pool_size=1,
            db_max_pool_size=3,
        )
        service = build_status_service(settings)

        assert isinstance(service.store, PostgresJobStore)
        assert service.store.max_pool_size == 3

    def test_service_lifecycle_end_to_end(self):
        async def test():
            settings = StatusSettings(hook_retry_delay_seconds=0)
            async with build_status_service(settings) as service:
                await service.store.add_pipeline(PipelineRef(pipeline_id=1, sha="c0ffee" * 6))
                job = await service.machine.create(pipeline_id=1, name="rspec")
                await service.machine.succeed(await service.machine.run(job))
                assert await service.view.overall_status(1) == "success"

        asyncio.run(test())

    def test_redact_secret(self):
        assert _redact_secret("abc") == "***"
        assert _redact_secret("postgresql://ci:pw@db", 13) == "postgresql://" + "*" * 8
