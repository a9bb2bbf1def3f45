from functools import lru_cache
from typing import List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_CORS_ORIGINS = [
    "http://localhost:3001",
    "https://minitwt.vercel.app",
    "https://twtb.onrender.com",
]


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database Configuration - required
    DATABASE_URL: str
    DATABASE_SSL: bool = False

    LOG_LEVEL: str = "INFO"

    # Server binding
    HOST: str = "0.0.0.0"
    PORT: int = 3001

    # Cross-origin allow-list (JSON list in env)
    CORS_ORIGINS: List[str] = DEFAULT_CORS_ORIGINS

    @field_validator("DATABASE_URL")
    @classmethod
    def use_async_driver(cls, v: str) -> str:
        """Hosted Postgres providers hand out postgres:// URLs; point them at asyncpg."""
        for prefix in ("postgres://", "postgresql://"):
            if v.startswith(prefix):
                return "postgresql+asyncpg://" + v[len(prefix):]
        return v


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()
