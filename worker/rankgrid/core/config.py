"""Application configuration helpers."""

import logging
import os
import secrets
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)


class ConfigError(RuntimeError):
    """Raised when mandatory configuration is missing."""


@dataclass(frozen=True)
class Settings:
    serpapi_api_key: str
    database_url: str
    session_secret: str
    worker_port: int = 9000
    max_concurrency: int = 5
    lookup_retry_limit: int = 2
    serpapi_zoom: int = 14
    geocoder_url: str = "https://nominatim.openstreetmap.org"
    geocoder_user_agent: str = "LocalRankGrid/1.0"
    geocode_cache_size: int = 256
    geocode_cache_ttl: int = 3600
    geocode_rate_per_minute: int = 30
    session_store_size: int = 1024
    session_ttl: int = 6 * 3600


def _int_env(name: str, default: int, minimum: int = 0) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("%s=%r is not an integer; using %d.", name, raw, default)
        return default
    if value < minimum:
        logger.warning("%s=%d is below %d; using %d.", name, value, minimum, default)
        return default
    return value


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    serpapi_api_key = os.getenv("SERPAPI_API_KEY", "")
    database_url = os.getenv("DATABASE_URL", "")
    session_secret = os.getenv("SESSION_SECRET", "")

    if not serpapi_api_key:
        logger.warning("SERPAPI_API_KEY is not configured; grid searches will fail.")
    if not database_url:
        logger.warning("DATABASE_URL is not set; favorites are kept in memory only.")
    if not session_secret:
        logger.warning("SESSION_SECRET is not set; browser sessions reset on restart.")
        session_secret = secrets.token_hex(32)

    return Settings(
        serpapi_api_key=serpapi_api_key,
        database_url=database_url,
        session_secret=session_secret,
        worker_port=_int_env("WORKER_PORT", 9000, minimum=1),
        max_concurrency=_int_env("MAX_CONCURRENCY", 5, minimum=1),
        lookup_retry_limit=_int_env("LOOKUP_RETRY_LIMIT", 2),
        serpapi_zoom=_int_env("SERPAPI_ZOOM", 14, minimum=3),
        geocoder_url=os.getenv("GEOCODER_URL", "https://nominatim.openstreetmap.org").rstrip("/"),
        geocoder_user_agent=os.getenv("GEOCODER_USER_AGENT", "LocalRankGrid/1.0"),
        geocode_cache_size=_int_env("GEOCODE_CACHE_SIZE", 256, minimum=1),
        geocode_cache_ttl=_int_env("GEOCODE_CACHE_TTL", 3600, minimum=1),
        geocode_rate_per_minute=_int_env("GEOCODE_RATE_PER_MINUTE", 30, minimum=1),
        session_store_size=_int_env("SESSION_STORE_SIZE", 1024, minimum=1),
        session_ttl=_int_env("SESSION_TTL", 6 * 3600, minimum=1),
    )
