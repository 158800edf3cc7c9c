"""
Configuration management for the enrichment core
Environment-based settings with secure defaults
"""

from functools import lru_cache
from typing import Dict, List, Optional
from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "crm-enrichment"
    APP_ENV: str = "development"  # development, staging, production
    DEBUG: bool = False
    API_VERSION: str = "v1"
    LOG_LEVEL: str = "INFO"

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    WORKERS: int = 4

    # Database
    DATABASE_URL: str  # Required
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # Encryption (for stored API keys)
    ENCRYPTION_KEY: str  # Required - 32 bytes base64 encoded

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Daily quotas per metered service
    QUOTA_SCREENSHOTS_DAILY: int = 33
    QUOTA_PAGESPEED_DAILY: int = 800
    QUOTA_SERPAPI_DAILY: int = 3
    QUOTA_BUILTWITH_DAILY: int = 166
    QUOTA_CACHE_TTL: int = 60  # seconds
    QUOTA_ALERT_THRESHOLD: int = 80  # percent
    QUOTA_ERROR_MAX_LENGTH: int = 500

    # AI provider keys (read-only fallback when nothing is stored)
    OPENAI_API_KEY: Optional[str] = None
    GEMINI_API_KEY: Optional[str] = None
    GOOGLE_GEMINI_API_KEY: Optional[str] = None
    GROK_API_KEY: Optional[str] = None
    XAI_API_KEY: Optional[str] = None
    DEEPSEEK_API_KEY: Optional[str] = None

    # AI default models
    OPENAI_DEFAULT_MODEL: str = "gpt-4o-mini"
    GEMINI_DEFAULT_MODEL: str = "gemini-1.5-flash"
    GROK_DEFAULT_MODEL: str = "grok-beta"
    DEEPSEEK_DEFAULT_MODEL: str = "deepseek-chat"

    # AI execution settings
    AI_DEFAULT_TEMPERATURE: float = 0.3
    AI_DEFAULT_TOP_P: float = 0.9
    AI_DEFAULT_MAX_TOKENS: int = 2000
    AI_REQUEST_TIMEOUT: int = 60  # seconds

    # Enrichment behaviour
    ENRICHMENT_MATCH_MODE: str = "fuzzy"  # exact, fuzzy, broad
    ENRICHMENT_MIN_CONFIDENCE: float = 0.5
    ENRICHMENT_REQUIRE_VERIFICATION: bool = True
    ENRICHMENT_COOLDOWN_HOURS: int = 24
    ENRICHMENT_RESPONSE_LANGUAGE: str = "Spanish"
    ENRICHMENT_REGION_HINT: str = "Argentina or Latin America"

    # External data APIs
    SERPAPI_COUNTRY: str = "ar"
    SERPAPI_LANGUAGE: str = "es"
    EXTERNAL_MAX_EMAIL_CHECKS: int = 5

    # Retry / circuit breaker defaults
    RETRY_MAX_RETRIES: int = 3
    RETRY_BASE_DELAY: float = 0.2  # seconds
    CIRCUIT_FAILURE_THRESHOLD: int = 5
    CIRCUIT_RESET_TIMEOUT: float = 60.0  # seconds
    CIRCUIT_SUCCESS_THRESHOLD: int = 2

    # Screenshots
    SCREENSHOTS_DIR: str = "./public/screenshots"
    SCREENSHOT_RETENTION_DAYS: int = 30

    @field_validator("ENRICHMENT_MATCH_MODE")
    @classmethod
    def validate_match_mode(cls, v: str) -> str:
        if v not in ("exact", "fuzzy", "broad"):
            raise ValueError("ENRICHMENT_MATCH_MODE must be one of exact, fuzzy, broad")
        return v

    @property
    def cors_origins_list(self) -> List[str]:
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",")]

    @property
    def is_development(self) -> bool:
        return self.APP_ENV == "development"

    @property
    def quota_limits(self) -> Dict[str, int]:
        return {
            "screenshots": self.QUOTA_SCREENSHOTS_DAILY,
            "pagespeed": self.QUOTA_PAGESPEED_DAILY,
            "serpapi": self.QUOTA_SERPAPI_DAILY,
            "builtwith": self.QUOTA_BUILTWITH_DAILY,
        }

    @property
    def ai_env_keys(self) -> Dict[str, Optional[str]]:
        return {
            "openai": self.OPENAI_API_KEY,
            "gemini": self.GEMINI_API_KEY or self.GOOGLE_GEMINI_API_KEY,
            "grok": self.GROK_API_KEY or self.XAI_API_KEY,
            "deepseek": self.DEEPSEEK_API_KEY,
        }

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Cached settings loader"""
    return Settings()


# Services metered by a daily quota
QUOTA_SERVICES = ["screenshots", "pagespeed", "serpapi", "builtwith"]

# Fields the AI enrichment can return and a reviewer can resolve
ENRICHMENT_FIELDS = [
    "website",
    "emails",
    "phones",
    "address",
    "description",
    "industry",
    "companySize",
    "socialProfiles",
]

QUICK_ENRICHMENT_FIELDS = ["website", "emails", "phones", "description", "industry"]
