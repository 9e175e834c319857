"""Environment variable validation and typed readers."""

import os
import logging
from typing import Dict

logger = logging.getLogger(__name__)


class EnvironmentConfigError(Exception):
    """Raised when required environment variables are missing or invalid."""


def validate_environment() -> None:
    """Validate environment variables and apply defaults.

    Raises EnvironmentConfigError if validation fails.
    """
    required_vars: Dict[str, str] = {}

    defaults = {
        "DB_PATH": os.getenv("DB_PATH") or "finquest.db",
    }

    for var, value in defaults.items():
        if not os.getenv(var):
            os.environ[var] = value
            logger.info("Environment variable %s not set; using default '%s'", var, value)

    optional_vars = {
        "CONTENT_API_URL": "OpenAI-compatible chat completions endpoint",
        "CONTENT_API_KEY": "API key for the content endpoint",
        "CONTENT_MODEL": "Model name sent to the content endpoint",
    }

    missing = [
        f"{var} ({description})"
        for var, description in required_vars.items()
        if not os.getenv(var)
    ]
    if missing:
        raise EnvironmentConfigError(
            f"Missing required environment variables: {', '.join(missing)}"
        )

    for var in ("CONTENT_API_URL",):
        value = os.getenv(var)
        if value and not (value.startswith("http://") or value.startswith("https://")):
            raise EnvironmentConfigError(f"Invalid URL format for {var}: {value}")

    for var, description in optional_vars.items():
        if not os.getenv(var):
            logger.warning("Optional environment variable not set: %s (%s)", var, description)


def get_env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid float for %s: %r; using %s", name, raw, default)
        return default


def get_env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        logger.warning("Invalid int for %s: %r; using %s", name, raw, default)
        return default
