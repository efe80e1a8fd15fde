"""
Application configuration for api-metal-prices.

Centralizes environment variables using python-dotenv.

Note:
- Feed definitions (which upstreams run, their URLs and dedup policy) live in MongoDB.
- The .env contains Mongo connection settings, pipeline thresholds and the
  bootstrap defaults used only when the `feeds` collection is still empty.
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


class Settings:
    """
    Configuration settings for the api-metal-prices service.
    """

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    APP_NAME: str = os.getenv("APP_NAME", "api-metal-prices")

    # Mongo
    MONGODB_URL: str = os.getenv("MONGODB_URL", "mongodb://mongo-metal-prices:27017")
    MONGODB_DB_NAME: str = os.getenv("MONGODB_DB_NAME", "api_metal_prices")

    # Upstream feeds (bootstrap defaults; used only if Mongo has no feeds yet)
    BOOTSTRAP_MCX_STREAM_URL: str = os.getenv("BOOTSTRAP_MCX_STREAM_URL", "http://148.135.138.22:5002/stream")
    BOOTSTRAP_LME_STREAM_URL: str = os.getenv("BOOTSTRAP_LME_STREAM_URL", "http://148.135.138.22:5007/stream")
    BOOTSTRAP_LME_DATA_URL: str = os.getenv("BOOTSTRAP_LME_DATA_URL", "http://148.135.138.22:5007/data")
    BOOTSTRAP_CASH_SETTLEMENT_STREAM_URL: str = os.getenv("BOOTSTRAP_CASH_SETTLEMENT_STREAM_URL", "")

    # Request rate limiting (per client IP, per feed)
    RATE_LIMIT_WINDOW_S: float = _float("RATE_LIMIT_WINDOW_S", 60.0)
    MAX_REQUESTS_PER_IP: int = _int("MAX_REQUESTS_PER_IP", 100)

    # Write throttling (per feed)
    MIN_UPDATE_INTERVAL_S: float = _float("MIN_UPDATE_INTERVAL_S", 5.0)
    MAX_DB_WRITES_PER_WINDOW: int = _int("MAX_DB_WRITES_PER_WINDOW", 10)

    # Response cache (per feed)
    CACHE_TTL_S: float = _float("CACHE_TTL_S", 30.0)
    MAX_CACHE_ITEMS: int = _int("MAX_CACHE_ITEMS", 100)
    POST_CACHE_TTL_S: float = _float("POST_CACHE_TTL_S", 2.0)

    # Memory safety valve
    MEMORY_CHECK_INTERVAL_S: float = _float("MEMORY_CHECK_INTERVAL_S", 60.0)
    MEMORY_CEILING_MB: float = _float("MEMORY_CEILING_MB", 512.0)

    # Deadlines
    DB_TIMEOUT_S: float = _float("DB_TIMEOUT_S", 5.0)
    OUTBOUND_TIMEOUT_S: float = _float("OUTBOUND_TIMEOUT_S", 8.0)
    MAINTENANCE_TIMEOUT_S: float = _float("MAINTENANCE_TIMEOUT_S", 30.0)
    STREAM_CONNECT_TIMEOUT_S: float = _float("STREAM_CONNECT_TIMEOUT_S", 10.0)
    STREAM_IDLE_TIMEOUT_S: float = _float("STREAM_IDLE_TIMEOUT_S", 60.0)

    # Reconnect / backoff
    RECONNECT_BASE_DELAY_S: float = _float("RECONNECT_BASE_DELAY_S", 10.0)
    RECONNECT_MAX_DELAY_S: float = _float("RECONNECT_MAX_DELAY_S", 30.0)
    MAX_RECONNECT_ATTEMPTS: int = _int("MAX_RECONNECT_ATTEMPTS", 10)
    CIRCUIT_BREAKER_TIMEOUT_S: float = _float("CIRCUIT_BREAKER_TIMEOUT_S", 60.0)

    # Duplicate detection
    MULTI_MONTH_DEDUP_WINDOW_S: float = _float("MULTI_MONTH_DEDUP_WINDOW_S", 300.0)
    SINGLE_VALUE_DEDUP_WINDOW_S: float = _float("SINGLE_VALUE_DEDUP_WINDOW_S", 60.0)
    GENERAL_VALUE_TOLERANCE: float = _float("GENERAL_VALUE_TOLERANCE", 0.001)
    MIN_SIGNIFICANT_CHANGE: float = _float("MIN_SIGNIFICANT_CHANGE", 0.05)
    SPOT_DUPLICATE_TOLERANCE: float = _float("SPOT_DUPLICATE_TOLERANCE", 0.01)

    # Retention
    RETENTION_DEFAULT_DAYS: int = _int("RETENTION_DEFAULT_DAYS", 7)
    RETENTION_MAX_DAYS: int = _int("RETENTION_MAX_DAYS", 30)


settings = Settings()
