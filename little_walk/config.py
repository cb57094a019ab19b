"""Application configuration via pydantic settings."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Typed application configuration, read from LITTLE_WALK_* variables."""

    model_config = SettingsConfigDict(
        env_prefix="LITTLE_WALK_",
        env_file=".env",
        extra="ignore",
        case_sensitive=False,
    )

    app_name: str = "Little Walk"
    host: str = "0.0.0.0"
    port: int = 8000

    # Observability
    log_level: str = "INFO"
    log_format: Literal["text", "json"] = "text"

    # Listings
    default_page_size: int = Field(20, ge=1)
    max_page_size: int = Field(100, ge=1)
    default_nearby_radius: float = Field(1000.0, ge=0)

    @model_validator(mode="after")
    def _check_page_sizes(self) -> "Settings":
        if self.default_page_size > self.max_page_size:
            raise ValueError("default_page_size must not exceed max_page_size")
        return self


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return Settings()
