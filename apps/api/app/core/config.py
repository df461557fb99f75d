"""Application configuration for the signaling relay."""
from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

ROOM_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    log_level: str = Field(default="INFO")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])

    auto_create_rooms: bool = Field(default=True)
    room_code_length: int = Field(default=6, ge=4)
    room_code_alphabet: str = Field(default=ROOM_CODE_ALPHABET, min_length=2)
    room_code_max_attempts: int = Field(default=10, ge=1)
    room_code_fallback_length: int = Field(default=8, ge=4)

    room_eviction: Literal["immediate", "sweep"] = Field(default="immediate")
    room_sweep_interval_seconds: float = Field(default=3600, gt=0)
    room_empty_ttl_seconds: float = Field(default=3600, ge=0)

    outbound_queue_size: int = Field(default=256, ge=1)
    shutdown_drain_seconds: float = Field(default=5.0, ge=0)

    @field_validator("cors_allow_origins", mode="before")
    @classmethod
    def _split_origins(cls, value: object) -> object:
        """Allow comma-separated env values for CORS origins."""

        if isinstance(value, str):
            parts = [item.strip() for item in value.split(",") if item.strip()]
            return parts
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
