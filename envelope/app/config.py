from __future__ import annotations

import logging
import os

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CORS_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def database_url() -> str:
    url = os.getenv("DATABASE_URL") or os.getenv("SQLALCHEMY_DATABASE_URL")
    if not url:
        raise RuntimeError(
            "DATABASE_URL or SQLALCHEMY_DATABASE_URL must be set to create the database engine."
        )
    return url


def cors_origins() -> list[str]:
    raw = os.getenv("CORS_ALLOW_ORIGINS")
    if raw is None:
        origins = list(DEFAULT_CORS_ORIGINS)
    else:
        origins = [origin.strip() for origin in raw.split(",") if origin.strip()]
    if not origins:
        raise RuntimeError("CORS_ALLOW_ORIGINS must not be empty.")
    if not any(origin in origins for origin in DEFAULT_CORS_ORIGINS):
        logger.warning("CORS allowlist does not include local dev origins: %s", origins)
    return origins


def seed_default_categories() -> bool:
    """Starter groups/categories on budget creation (ENVELOPE_SEED_DEFAULT_CATEGORIES)."""
    return _env_flag("ENVELOPE_SEED_DEFAULT_CATEGORIES", True)


def server_date_backstop() -> bool:
    """Reject future-dated transactions against the server date when the client sends no userDate."""
    return _env_flag("ENVELOPE_SERVER_DATE_BACKSTOP", True)


def log_level() -> int:
    raw = (os.getenv("ENVELOPE_LOG_LEVEL") or "INFO").strip().upper()
    level = logging.getLevelName(raw)
    if not isinstance(level, int):
        logger.warning("Unknown ENVELOPE_LOG_LEVEL %r, falling back to INFO", raw)
        return logging.INFO
    return level
