from pathlib import Path

import pytest

from dictstore.config import DEFAULT_DATABASE_PATH, ConfigError, Settings, load_settings

_ENV_KEYS = (
    "DATABASE_URL",
    "APP_ENV",
    "DATABASE_PATH",
    "DATABASE_POOL_MIN_SIZE",
    "DATABASE_POOL_MAX_SIZE",
    "LOG_LEVEL",
    "MAINTENANCE_INTERVAL_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setattr("dictstore.config.load_dotenv", lambda **kwargs: False)


def test_defaults_select_embedded_backend() -> None:
    settings = load_settings()
    assert settings.use_remote_backend is False
    assert settings.database_path == DEFAULT_DATABASE_PATH
    assert settings.log_level == "INFO"


def test_database_url_selects_remote_backend(monkeypatch) -> None:
    monkeypatch.setenv("DATABASE_URL", "postgresql://app:secret@db:5432/dictionary")
    monkeypatch.setenv("DATABASE_POOL_MIN_SIZE", "3")
    monkeypatch.setenv("DATABASE_POOL_MAX_SIZE", "2")

    settings = load_settings()

    assert settings.use_remote_backend is True
    assert settings.pool_min_size == 3
    assert settings.pool_max_size == 3
    assert "secret" not in str(settings.safe_log_values())


def test_production_requires_database_url(monkeypatch) -> None:
    monkeypatch.setenv("APP_ENV", "production")
    with pytest.raises(ConfigError):
        load_settings()


def test_invalid_numbers_fall_back_to_defaults(monkeypatch) -> None:
    monkeypatch.setenv("MAINTENANCE_INTERVAL_SECONDS", "soon")
    monkeypatch.setenv("DATABASE_PATH", "var/words.db")

    settings = load_settings()

    assert settings.maintenance_interval_seconds == 3600
    assert settings.database_path == Path("var/words.db")


def test_production_environment_forces_remote_backend() -> None:
    settings = Settings(database_url="postgresql://db/dictionary", environment="prod")
    assert settings.is_production is True
    assert settings.use_remote_backend is True
