import pytest
from pydantic import ValidationError

from leadenrich.core.config import Settings


def test_defaults():
    config = Settings(_env_file=None, ENVIRONMENT="testing")

    assert config.is_testing
    assert config.registry_rate_limit_points == 5
    assert config.registry_rate_limit_window_ms == 60000
    assert config.ingestion_batch_size == 3
    assert config.scheduler_concurrency == 5
    assert config.completed_job_retention_days == 7


def test_backoff_helpers():
    config = Settings(_env_file=None, ENVIRONMENT="testing")

    assert [config.enricher_backoff_ms(n) for n in range(1, 5)] == [90000, 180000, 360000, 720000]
    assert [config.scheduler_backoff_ms(n) for n in range(1, 4)] == [2000, 4000, 8000]


def test_poll_interval_below_one_second_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, REGISTRY_RATE_LIMIT_POLL_SECONDS=0.5)


def test_unknown_environment_rejected():
    with pytest.raises(ValidationError):
        Settings(_env_file=None, ENVIRONMENT="qa")


def test_log_level_normalised():
    assert Settings(_env_file=None, LOG_LEVEL="debug").log_level == "DEBUG"
