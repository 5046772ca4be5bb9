import json
from functools import lru_cache
from typing import Any, List

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from a JSON list or a comma separated string"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        if v.startswith("["):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        return [origin.strip() for origin in v.split(",") if origin.strip()]
    return []


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Application
    APP_NAME: str = "Task Marketplace API"
    DEBUG: bool = False
    PORT: int = 8000
    CORS_ORIGINS: Any = ["http://localhost:3001"]

    # Database
    MONGODB_URI: str = "mongodb://127.0.0.1:27017"
    DATABASE_NAME: str = "obsidian_circle"
    MONGO_TIMEOUT_MS: int = 5000

    # Identity
    JWT_SECRET_KEY: str = "dev-secret-change-in-production"
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_DAYS: int = 30
    BCRYPT_ROUNDS: int = 12
    AUTH_COOKIE_NAME: str = "token"

    # Teams
    TEAM_CODE_LENGTH: int = 6
    TEAM_CODE_MAX_ATTEMPTS: int = 5
    LEAVE_MAX_ATTEMPTS: int = 5

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _split_origins(cls, v: Any) -> List[str]:
        return parse_cors_origins(v)

    @field_validator("LOG_FORMAT")
    @classmethod
    def _check_log_format(cls, v: str) -> str:
        v = v.lower()
        if v not in ("text", "json"):
            raise ValueError("LOG_FORMAT must be 'text' or 'json'")
        return v


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
