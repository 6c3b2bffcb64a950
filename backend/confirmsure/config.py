"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "ConfirmSure"
    ENV: str = "development"
    DEBUG: bool = True
    SECRET_KEY: str = "dev-secret-key-change-me"
    ALLOWED_ORIGINS: str = "http://localhost:3000"
    # Public host used to build verification URLs embedded in QR codes.
    PUBLIC_BASE_URL: str = "https://confirmsure.com"

    # Database
    DATABASE_URL: str = "sqlite:///./confirmsure.db"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Redis
    REDIS_URL: str = "redis://localhost:6379/0"

    # Proxy / client IP handling
    # Only trust X-Forwarded-* headers when running behind a trusted reverse proxy (e.g. nginx).
    TRUST_PROXY_HEADERS: bool = False

    # Rate limiting: "memory" is per-process; multi-process deployments must use "redis".
    RATE_LIMIT_BACKEND: str = "memory"
    RATE_LIMIT_SWEEP_SECONDS: int = 300

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # JWT
    JWT_SECRET_KEY: str = "dev-jwt-secret-change-me"
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 60
    JWT_LEEWAY_SECONDS: int = 30  # clock skew tolerance for exp validation
    AUTH_ACCESS_COOKIE_NAME: str = "access_token"

    # Password policy
    PASSWORD_MIN_LENGTH: int = 8
    PASSWORD_MAX_LENGTH: int = 128

    # QR identities
    QR_MAX_ATTEMPTS: int = 100
    QR_BATCH_MAX: int = 1000  # bulk ingestion ceiling
    QR_SYNC_BATCH_MAX: int = 100  # synchronous generation endpoint ceiling
    QR_DEFAULT_WIDTH: int = 256

    # Batch operations
    BATCH_MAX_ITEMS: int = 1000

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def cors_origins(self) -> list[str]:
        """Get CORS origins as list."""
        return [origin.strip() for origin in self.ALLOWED_ORIGINS.split(",")]

    @property
    def is_production(self) -> bool:
        return self.ENV.lower() == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
