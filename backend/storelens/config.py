"""
Application configuration with environment variable support.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Dict, List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Logging Configuration
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # CORS Configuration
    CORS_ALLOW_ORIGINS: List[str] = ["*"]

    # Timeouts (seconds)
    UPSTREAM_TIMEOUT_SECONDS: float = 15.0
    REQUEST_TIMEOUT_SECONDS: float = 120.0

    # Review pagination bounds
    MAX_APP_STORE_PAGES: int = 10
    MAX_PLAY_STORE_BATCHES: int = 5
    PLAY_STORE_PAGE_SIZE: int = 100

    # Request limits
    DEFAULT_REVIEW_LIMIT: int = 20
    MAX_REVIEW_LIMIT: int = 200
    DEFAULT_SENTIMENT_REVIEW_LIMIT: int = 100
    CSV_REVIEW_LIMIT: int = 200
    DEFAULT_LIST_LIMIT: int = 20
    MAX_LIST_LIMIT: int = 100
    SEARCH_LIMIT: int = 50

    # Sentiment service (OpenAI-compatible chat completions endpoint)
    SENTIMENT_API_KEY: str = ""
    SENTIMENT_API_BASE: str = "https://api.mistral.ai/v1"
    SENTIMENT_MODEL: str = "mistral-large-latest"
    SENTIMENT_TIMEOUT_SECONDS: float = 60.0
    SENTIMENT_MAX_REVIEWS: int = 200
    # 24 hours by default; 120 selects the five-day policy
    SENTIMENT_STALENESS_HOURS: float = 24.0

    # Sentiment cache storage
    CACHE_BACKEND: str = "memory"
    CACHE_DB_PATH: str = "storelens-cache.db"
    CACHE_MAX_AGE_HOURS: float = 24.0 * 7

    # App Store enrichment
    APPSTORE_AMP_TOKEN: str = ""
    APPSTORE_CHECK_AVAILABILITY: bool = True

    PORT: int = 8000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return the process-wide settings instance."""
    return Settings()


# Supported storefronts (ISO 3166-1 alpha-2 code -> display name)
SUPPORTED_COUNTRIES: Dict[str, str] = {
    "AE": "United Arab Emirates",
    "AU": "Australia",
    "BE": "Belgium",
    "BR": "Brazil",
    "CA": "Canada",
    "CH": "Switzerland",
    "CN": "China",
    "DE": "Germany",
    "DK": "Denmark",
    "ES": "Spain",
    "FI": "Finland",
    "FR": "France",
    "GB": "United Kingdom",
    "HK": "Hong Kong",
    "ID": "Indonesia",
    "IN": "India",
    "IT": "Italy",
    "JP": "Japan",
    "KR": "South Korea",
    "LU": "Luxembourg",
    "MX": "Mexico",
    "NL": "Netherlands",
    "NO": "Norway",
    "PL": "Poland",
    "RU": "Russia",
    "SA": "Saudi Arabia",
    "SE": "Sweden",
    "SG": "Singapore",
    "TR": "Turkey",
    "TW": "Taiwan",
    "US": "United States",
}

DEFAULT_COUNTRY = "US"
DEFAULT_LANG = "en"

# HTTP Client Configuration
USER_AGENT = (
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0 Safari/537.36"
)
HTTP_HEADERS = {"User-Agent": USER_AGENT}
