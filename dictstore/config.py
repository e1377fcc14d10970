from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

DEFAULT_DATABASE_PATH = Path("data") / "dictionary.db"
_PRODUCTION_ENVIRONMENTS = frozenset({"production", "prod"})


class ConfigError(ValueError):
    """Raised when required environment configuration is missing."""


def _mask_secret(value: str | None) -> str:
    return "[redacted]" if value else ""


@dataclass(frozen=True)
class Settings:
    database_url: str | None = None
    database_path: Path = DEFAULT_DATABASE_PATH
    environment: str = "development"
    pool_min_size: int = 1
    pool_max_size: int = 4
    log_level: str = "INFO"
    maintenance_interval_seconds: int = 3600

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in _PRODUCTION_ENVIRONMENTS

    @property
    def use_remote_backend(self) -> bool:
        return bool(self.database_url) or self.is_production

    def safe_log_values(self) -> dict[str, str]:
        return {
            "database_url": _mask_secret(self.database_url),
            "database_path": str(self.database_path),
            "environment": self.environment,
            "backend": "postgres" if self.use_remote_backend else "sqlite",
            "pool_min_size": str(self.pool_min_size),
            "pool_max_size": str(self.pool_max_size),
            "log_level": self.log_level,
            "maintenance_interval_seconds": str(self.maintenance_interval_seconds),
        }


def _parse_int(name: str, default: int, *, minimum: int) -> int:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        return max(minimum, int(raw))
    except ValueError:
        return default


def load_settings() -> Settings:
    load_dotenv(override=False)
    database_url = os.getenv("DATABASE_URL", "").strip() or None
    environment = os.getenv("APP_ENV", "development").strip() or "development"
    if environment.lower() in _PRODUCTION_ENVIRONMENTS and not database_url:
        raise ConfigError("Missing required environment variable: DATABASE_URL")

    database_path_raw = os.getenv("DATABASE_PATH", "").strip()
    pool_min_size = _parse_int("DATABASE_POOL_MIN_SIZE", 1, minimum=1)
    pool_max_size = _parse_int("DATABASE_POOL_MAX_SIZE", 4, minimum=1)
    return Settings(
        database_url=database_url,
        database_path=Path(database_path_raw) if database_path_raw else DEFAULT_DATABASE_PATH,
        environment=environment,
        pool_min_size=pool_min_size,
        pool_max_size=max(pool_min_size, pool_max_size),
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
        maintenance_interval_seconds=_parse_int(
            "MAINTENANCE_INTERVAL_SECONDS", 3600, minimum=60
        ),
    )
