"""
Configuration settings for Mobile Feed Service
"""
from pydantic_settings import BaseSettings
from typing import List


class Settings(BaseSettings):
    """Application settings"""

    # Application
    APP_NAME: str = "Sacavia Mobile Feed Service"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8005

    # CMS (Payload REST API)
    CMS_API_URL: str = "http://localhost:3000"
    CMS_API_KEY: str = ""
    CMS_USERS_COLLECTION: str = "users"

    # Viewer tokens (issued by the CMS)
    JWT_SECRET_KEY: str = "your-secret-key-change-this-in-production"
    JWT_ALGORITHM: str = "HS256"

    # Redis (public feed cache)
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 2
    REDIS_PASSWORD: str = ""
    REDIS_ENABLED: bool = True

    # CORS
    CORS_ORIGINS: List[str] = ["*"]

    # Pagination
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 50

    # Source fetching
    SOURCE_FETCH_TIMEOUT: float = 4.0  # seconds per source
    REQUEST_TIMEOUT: float = 10.0  # seconds per request
    ENRICHMENT_CONCURRENCY: int = 8
    SOURCE_FETCH_MULTIPLIER: int = 2  # each source fetches limit * multiplier
    MAX_SOURCE_FETCH_LIMIT: int = 50

    # Ranking
    SEARCH_RESULT_LIMIT: int = 10
    PROXIMITY_RADIUS_MILES: float = 25.0
    TRENDING_WINDOW_DAYS: int = 7

    # Media hosts
    MEDIA_CANONICAL_HOST: str = "sacavia.com"
    MEDIA_ALIAS_HOST: str = "www.sacavia.com"

    # Cache TTL (seconds)
    FEED_CACHE_TTL: int = 30

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
