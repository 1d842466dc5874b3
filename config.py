import logging
import os

from settings import SETTINGS


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.strip().lower() in {"1", "true", "yes", "y", "on"}


def _env_int(name: str, default: int) -> int:
    v = (os.getenv(name) or "").strip()
    if not v:
        return default
    try:
        return int(v)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    v = (os.getenv(name) or "").strip()
    if not v:
        return default
    try:
        return float(v)
    except ValueError:
        return default


class Config:
    """Configuration overrides loaded from environment variables.

    Defaults come from ``settings.SETTINGS``. Values are read when this module
    is imported.
    """

    SECRET_KEY = os.getenv("SECRET_KEY", str(SETTINGS["SECRET_KEY"]))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", str(SETTINGS["LOG_LEVEL"])).upper()

    # Database
    DATABASE_URL: str = os.getenv("DATABASE_URL", str(SETTINGS["DATABASE_URL"]))

    # VAT verification
    VIES_URL: str = os.getenv("VIES_URL", str(SETTINGS["VIES_URL"]))
    VIES_TIMEOUT_S: float = _env_float(
        "VIES_TIMEOUT_S", float(SETTINGS["VIES_TIMEOUT_S"])  # type: ignore[arg-type]
    )

    # Caching
    ENABLE_CACHE: bool = _env_bool("ENABLE_CACHE", bool(SETTINGS["ENABLE_CACHE"]))
    CACHE_TTL_SECONDS: int = _env_int(
        "CACHE_TTL_SECONDS", int(SETTINGS["CACHE_TTL_SECONDS"])  # type: ignore[arg-type]
    )


def configure_logging(app_logger: logging.Logger, level_name: str) -> None:
    """Configure the Flask app logger in a simple, predictable way."""

    level = getattr(logging, level_name, logging.INFO)

    # Avoid duplicate handlers (e.g., in tests or reload scenarios)
    if app_logger.handlers:
        app_logger.setLevel(level)
        return

    handler = logging.StreamHandler()
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    handler.setFormatter(formatter)

    app_logger.addHandler(handler)
    app_logger.setLevel(level)
