"""Application configuration objects and helpers."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    """Interpret environment variable values as booleans."""

    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    """Read an integer environment variable, failing loudly on garbage."""

    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {value!r}") from exc


class BaseConfig:
    """Base configuration shared across environments."""

    APP_NAME = "Ledgerwise"
    DB_FILENAME = "ledgerwise.db"
    ENV_PREFIX = "LEDGERWISE_"

    def __init__(self) -> None:
        self.DATA_DIR = self._resolve_data_dir()
        self.DEV_MODE = _env_bool("LEDGERWISE_DEV_MODE", default=True)
        self.DATABASE_URL = os.getenv("LEDGERWISE_DATABASE_URL", self._build_sqlite_url())
        self.DEFAULT_CURRENCY = os.getenv("LEDGERWISE_DEFAULT_CURRENCY", "CHF").upper()
        self.REMINDER_DAYS = _env_int("LEDGERWISE_REMINDER_DAYS", 7)
        self.SCHEDULER_HOUR = _env_int("LEDGERWISE_SCHEDULER_HOUR", 6)
        self.SCHEDULER_MINUTE = _env_int("LEDGERWISE_SCHEDULER_MINUTE", 0)
        if self.REMINDER_DAYS < 0:
            raise ValueError("LEDGERWISE_REMINDER_DAYS cannot be negative.")
        if not 0 <= self.SCHEDULER_HOUR <= 23 or not 0 <= self.SCHEDULER_MINUTE <= 59:
            raise ValueError("Scheduler time must be a valid HH:MM.")

    def _resolve_data_dir(self) -> Path:
        """Return the directory where the SQLite file and logs live."""

        data_root = os.getenv("LEDGERWISE_DATA_DIR", "instance")
        path = Path(data_root).expanduser().resolve()
        path.mkdir(parents=True, exist_ok=True)
        return path

    def _build_sqlite_url(self) -> str:
        """Construct the default SQLite URL inside the data directory."""

        return f"sqlite:///{self.DATA_DIR / self.DB_FILENAME}"

    @property
    def is_sqlite(self) -> bool:
        return self.DATABASE_URL.startswith("sqlite")

    def sqlalchemy_engine_options(self) -> dict[str, Any]:
        """Expose engine kwargs for SQLModel to consume."""

        engine_options: dict[str, Any] = {}
        if self.is_sqlite:
            engine_options["connect_args"] = {"check_same_thread": False, "timeout": 30}
        else:
            engine_options["pool_pre_ping"] = True
        return engine_options


class DevConfig(BaseConfig):
    """Development configuration using local SQLite."""

    DEBUG = True
    TESTING = False


class TestConfig(BaseConfig):
    """Configuration for test runs; points at a scratch SQLite file unless overridden."""

    DEBUG = True
    TESTING = True
    DB_FILENAME = "test.db"
    __test__ = False  # not a pytest class

    def __init__(self) -> None:
        super().__init__()
        self.DEV_MODE = True
