"""Application configuration using pydantic-settings."""
from functools import lru_cache

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from core.user_state_config import UserStateConfig


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Database (durable tier)
    database_url: str
    db_pool_size: int = Field(default=5, validation_alias="DB_POOL_SIZE")
    db_max_overflow: int = Field(default=10, validation_alias="DB_MAX_OVERFLOW")

    # Redis (cache tier) - runtime authority for presence and usernames
    redis_url: str = Field(default="redis://localhost:6379", validation_alias="REDIS_URL")
    redis_enabled: bool = Field(default=True, validation_alias="REDIS_ENABLED")
    redis_pool_size: int = Field(default=20, validation_alias="REDIS_POOL_SIZE")

    # Presence and bundle timing
    presence_ttl_seconds: int = Field(default=300, validation_alias="PRESENCE_TTL_SECONDS")
    bundle_ttl_seconds: int = Field(default=300, validation_alias="BUNDLE_TTL_SECONDS")
    heartbeat_interval_seconds: int = Field(
        default=25, validation_alias="HEARTBEAT_INTERVAL_SECONDS",
    )
    activity_throttle_seconds: int = Field(
        default=60, validation_alias="ACTIVITY_THROTTLE_SECONDS",
    )

    @model_validator(mode="after")
    def validate_presence_timing(self) -> "Settings":
        """
        Reject timing combinations that make presence flicker or never expire.

        The heartbeat summary must outlive the interval between heartbeats,
        otherwise a connected user shows as offline between two heartbeats.
        """
        ttls = {
            "PRESENCE_TTL_SECONDS": self.presence_ttl_seconds,
            "BUNDLE_TTL_SECONDS": self.bundle_ttl_seconds,
            "HEARTBEAT_INTERVAL_SECONDS": self.heartbeat_interval_seconds,
        }
        for name, value in ttls.items():
            if value <= 0:
                raise ValueError(f"{name} must be positive, got {value}")
        if self.activity_throttle_seconds < 0:
            raise ValueError(
                f"ACTIVITY_THROTTLE_SECONDS cannot be negative, got {self.activity_throttle_seconds}",
            )
        if self.presence_ttl_seconds <= self.heartbeat_interval_seconds:
            raise ValueError(
                f"PRESENCE_TTL_SECONDS ({self.presence_ttl_seconds}) must be greater than "
                f"HEARTBEAT_INTERVAL_SECONDS ({self.heartbeat_interval_seconds}).",
            )
        return self

    @property
    def user_state_config(self) -> UserStateConfig:
        """Frozen timing configuration injected into the user state components."""
        return UserStateConfig(
            presence_ttl_seconds=self.presence_ttl_seconds,
            bundle_ttl_seconds=self.bundle_ttl_seconds,
            activity_throttle_seconds=self.activity_throttle_seconds,
        )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
