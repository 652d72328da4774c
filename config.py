"""Environment configuration for the e-library API.

All settings come from environment variables with development defaults so the
app starts without any setup against a local MongoDB.
"""
import os
from typing import List, Optional

APP_NAME = "E-Library API"
APP_VERSION = "1.0.0"

DEFAULT_DATABASE_URL = "mongodb://localhost:27017"
DEFAULT_DATABASE_NAME = "elibrary"
DEFAULT_LOG_LEVEL = "INFO"
_TRUE = {"1", "true", "yes", "on"}


def _raw_env(name: str, default: Optional[str] = None) -> Optional[str]:
    val = os.getenv(name)
    return val if val is not None else default


def env_bool(name: str, default: bool = False) -> bool:
    raw = _raw_env(name)
    if raw is None:
        return default
    return raw.strip().lower() in _TRUE


def env_int(name: str, default: int) -> int:
    raw = _raw_env(name)
    if raw is None:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def database_url() -> str:
    return _raw_env("DATABASE_URL", DEFAULT_DATABASE_URL)


def database_name() -> str:
    return _raw_env("DATABASE_NAME", DEFAULT_DATABASE_NAME)


def secret_key() -> str:
    return _raw_env("SECRET_KEY", "dev-secret")


def token_ttl_hours() -> int:
    return env_int("TOKEN_TTL_HOURS", 24)


def log_level_name() -> str:
    return _raw_env("LOG_LEVEL", DEFAULT_LOG_LEVEL).upper()


def cors_origins() -> List[str]:
    raw = _raw_env("CORS_ORIGINS", "*")
    return [o.strip() for o in raw.split(",") if o.strip()] or ["*"]


def port() -> int:
    return env_int("PORT", 8000)
