"""Environment variable validation and management."""

import os
import logging
from pathlib import Path
from typing import Dict

logger = logging.getLogger(__name__)

DEFAULT_CURRICULUM_PATH = Path(__file__).resolve().parent / "catalog" / "curriculum.yaml"


class ConfigurationError(Exception):
    """Raised when environment variables are missing or invalid."""
    pass


def validate_environment() -> None:
    """Apply defaults and validate the service configuration.

    Raises ConfigurationError if validation fails.
    """
    defaults: Dict[str, str] = {
        "DB_PATH": "data.db",
        "DB_MAX_CONNECTIONS": "10",
        "API_PREFIX": "/server",
        "CURRICULUM_PATH": str(DEFAULT_CURRICULUM_PATH),
        "TOKEN_TTL_SECONDS": "3600",
        "CORS_ORIGINS": "*",
        "LOG_LEVEL": "INFO",
    }

    # Apply defaults before validation so dependent modules see consistent values.
    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    for var in ("DB_MAX_CONNECTIONS", "TOKEN_TTL_SECONDS"):
        get_env_int(var, int(defaults[var]), minimum=1)

    prefix = os.environ["API_PREFIX"]
    if not prefix.startswith("/") or (len(prefix) > 1 and prefix.endswith("/")):
        raise ConfigurationError(f"API_PREFIX must start with '/' and not end with one: {prefix}")

    catalog = Path(os.environ["CURRICULUM_PATH"])
    if not catalog.is_file():
        raise ConfigurationError(f"CURRICULUM_PATH does not point to a file: {catalog}")

    level = os.environ["LOG_LEVEL"].upper()
    if level not in logging.getLevelNamesMapping():
        raise ConfigurationError(f"Unknown LOG_LEVEL: {level}")


def get_api_prefix() -> str:
    prefix = os.getenv("API_PREFIX") or "/server"
    return "" if prefix == "/" else prefix


def get_cors_origins() -> list[str]:
    raw = os.getenv("CORS_ORIGINS") or "*"
    return [origin.strip() for origin in raw.split(",") if origin.strip()]


def get_env_bool(name: str, default: bool = False) -> bool:
    """Get boolean value from environment variable."""
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on", "enabled"}


def get_env_int(name: str, default: int, *, minimum: int | None = None) -> int:
    """Get integer value from environment variable."""
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        number = int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got '{value}'") from None
    if minimum is not None and number < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {number}")
    return number
