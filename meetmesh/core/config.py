"""Application configuration for the signaling server."""
from __future__ import annotations

import json
from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Runtime configuration."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    app_env: str = Field(default="development")
    cors_allow_origins: Annotated[list[str], NoDecode] = Field(default_factory=lambda: ["*"])
    log_level: str = Field(default="INFO")

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=5000)

    database_url: str = Field(default="sqlite+aiosqlite:///./meetmesh.db")

    ice_servers: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: ["stun:stun.l.google.com:19302"]
    )

    end_room_policy: Literal["anyone", "host"] = Field(default="anyone")
    discard_empty_rooms: bool = Field(default=False)

    @field_validator("ice_servers", "cors_allow_origins", mode="before")
    @classmethod
    def _split_list(cls, value: object) -> object:
        """Allow JSON arrays or comma-separated env values for list settings."""

        if isinstance(value, str):
            stripped = value.strip()
            if stripped.startswith("["):
                return json.loads(stripped)
            return [item.strip() for item in stripped.split(",") if item.strip()]
        return value


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()


settings = get_settings()
