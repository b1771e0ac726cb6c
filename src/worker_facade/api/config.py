"""Dataclass-based configuration loader."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict

DEFAULT_SCHEDULED_PATH = "/__scheduled"
DEFAULT_SCHEDULED_SUCCESS_BODY = "Ran scheduled event"
DEFAULT_D1_BETA_PREFIX = "__D1_BETA__"


def _bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return bool(value)
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return False


def _optional_bool(value: Any):
    if value is None:
        return None
    if isinstance(value, str) and not value.strip():
        return None
    return _bool(value)


def _load_dotenv(path: Path) -> Dict[str, str]:
    values: Dict[str, str] = {}
    if not path.exists():
        return values
    try:
        for line in path.read_text().splitlines():
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            if "=" not in stripped:
                continue
            key, raw = stripped.split("=", 1)
            values[key.strip()] = raw.strip().strip('"').strip("'")
    except OSError:
        pass
    return values


@dataclass
class Settings:
    """
    Facade settings loaded from environment variables.

    **Local Development** (``ENVIRONMENT=development``, the default):
    - the scheduled testing bridge is mounted at ``scheduled_path`` unless
      ``TEST_SCHEDULED`` says otherwise
    - uncaught handler errors are rendered as JSON by the dev error formatter

    **Production:**
    - neither internal middleware is mounted; the bridge cannot be enabled
    """
    environment: str = "development"
    debug: bool = False

    log_level: str = "INFO"
    log_json: bool = True

    # None means "derive from environment"
    test_scheduled: Any = None
    scheduled_path: str = DEFAULT_SCHEDULED_PATH
    scheduled_success_body: str = DEFAULT_SCHEDULED_SUCCESS_BODY
    json_errors: Any = None

    d1_beta_prefix: str = DEFAULT_D1_BETA_PREFIX
    d1_base_url: str = "http://d1"

    def __post_init__(self) -> None:
        self.environment = (self.environment or "development").strip().lower()
        self.debug = _bool(self.debug)
        self.log_level = (self.log_level or "INFO").strip().upper()
        self.log_json = _bool(self.log_json)

        is_dev = self.environment == "development"
        test_scheduled = _optional_bool(self.test_scheduled)
        self.test_scheduled = is_dev if test_scheduled is None else test_scheduled
        json_errors = _optional_bool(self.json_errors)
        self.json_errors = is_dev if json_errors is None else json_errors

        if self.environment == "production" and self.test_scheduled:
            raise ValueError("TEST_SCHEDULED=true is not allowed in production")

        scheduled_path = (self.scheduled_path or DEFAULT_SCHEDULED_PATH).strip()
        self.scheduled_path = scheduled_path or DEFAULT_SCHEDULED_PATH
        if not self.scheduled_path.startswith("/"):
            raise ValueError(f"SCHEDULED_PATH must start with '/': {self.scheduled_path}")
        self.scheduled_success_body = self.scheduled_success_body or DEFAULT_SCHEDULED_SUCCESS_BODY

        if not self.d1_beta_prefix:
            raise ValueError("D1_BETA_PREFIX must not be empty")
        self.d1_base_url = (self.d1_base_url or "http://d1").rstrip("/")
        if not self.d1_base_url.startswith(("http://", "https://")):
            raise ValueError(f"D1_BASE_URL must be an http(s) origin: {self.d1_base_url}")

    @classmethod
    def from_env(cls, **overrides: Any) -> "Settings":
        dotenv_values: Dict[str, str] = {}
        if os.getenv("PYTEST_DISABLE_DOTENV") != "1":
            dotenv_values = _load_dotenv(Path(".env"))
        data: Dict[str, Any] = {}
        for field_info in fields(cls):
            name = field_info.name
            if name in overrides:
                data[name] = overrides[name]
                continue
            env_key = name.upper()
            if env_key in os.environ:
                data[name] = os.environ[env_key]
            elif env_key in dotenv_values:
                data[name] = dotenv_values[env_key]
        return cls(**data)


def replace_settings(new_settings: Settings) -> Settings:
    # Worker instances are single-threaded, no lock needed
    for info in fields(Settings):
        setattr(settings, info.name, getattr(new_settings, info.name))
    return settings


settings = Settings.from_env()
