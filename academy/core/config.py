"""Configuration management for the Academy Progress Service."""

from typing import List, Optional
from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, field_validator
import json


class Settings(BaseSettings):
    """Application settings with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True
    )

    # Application
    APP_NAME: str = "Academy Progress Service"
    APP_VERSION: str = "1.0.0"
    ENVIRONMENT: str = Field(default="development", pattern="^(development|staging|production)$")
    SERVICE_NAME: str = "academy-progress"
    SERVICE_PORT: int = 8004

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://localhost:5432/academy"
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_ECHO: bool = False

    # Redis Cache
    REDIS_URL: str = "redis://localhost:6379"

    # JWT
    JWT_SECRET: str
    JWT_ALGORITHM: str = "HS256"
    JWT_EXPIRATION_MINUTES: int = 60

    # XP curve: xp_for_level(n) = floor(BASE * GROWTH ** (n - 1))
    XP_CURVE_BASE: int = Field(default=100, gt=0)
    XP_CURVE_GROWTH: float = Field(default=1.5, ge=1)

    # Minimum level for beginner, intermediate, advanced, expert,
    # master, grandmaster, legendary
    TIER_LEVEL_THRESHOLDS: List[int] = Field(default_factory=lambda: [1, 5, 10, 15, 20, 25, 30])

    # Progression
    STREAK_BONUS_XP: int = Field(default=5, ge=0)
    ENFORCE_CHAPTER_LOCKS: bool = True

    # Concurrency
    STORAGE_TIMEOUT_SECONDS: float = Field(default=5.0, gt=0)
    CONFLICT_MAX_RETRIES: int = Field(default=3, ge=0)
    CONFLICT_BACKOFF_MS: int = 20

    # Leaderboard
    LEADERBOARD_SIZE: int = 100
    LEADERBOARD_CACHE_TTL: int = 300  # 5 minutes
    PODIUM_SIZE: int = 3

    # Submission stats
    ACTIVITY_WINDOW_DAYS: int = 14

    # Logging
    LOG_LEVEL: str = Field(default="INFO", pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$")
    LOG_FORMAT: str = Field(default="json", pattern="^(json|plain)$")

    # CORS
    CORS_ORIGINS: List[str] = Field(default_factory=list)

    @field_validator("CORS_ORIGINS", mode="before")
    def parse_cors_origins(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [origin.strip() for origin in v.split(",")]
        return v

    @field_validator("TIER_LEVEL_THRESHOLDS", mode="before")
    def parse_tier_thresholds(cls, v):
        if isinstance(v, str):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                return [int(level.strip()) for level in v.split(",")]
        return v

    @field_validator("TIER_LEVEL_THRESHOLDS")
    def validate_tier_ladder(cls, v):
        if len(v) != 7:
            raise ValueError("TIER_LEVEL_THRESHOLDS needs exactly seven levels")
        if v[0] != 1:
            raise ValueError("the first tier must start at level 1")
        if any(lower >= upper for lower, upper in zip(v, v[1:])):
            raise ValueError("TIER_LEVEL_THRESHOLDS must be strictly increasing")
        return v

    # Monitoring
    ENABLE_METRICS: bool = True

    def is_production(self) -> bool:
        """Check if running in production."""
        return self.ENVIRONMENT == "production"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
