"""Application configuration via environment variables."""

from __future__ import annotations

import os

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for the organisation data engine."""

    # Application
    app_name: str = "orgdata"
    app_version: str = "1.0.0"
    debug: bool = False
    environment: str = Field(default="development", pattern=r"^(development|staging|production)$")
    log_level: str = "INFO"
    log_format: str = "json"

    # API
    api_prefix: str = "/api"
    allowed_origins: str = "http://localhost:3000"
    rate_limit_default: str = "100/minute"

    # Store
    database_url: str = "sqlite:///orgdata.db"
    database_echo: bool = False

    # Import pipeline
    supported_format_version: str = "2-0-0"
    batch_size: int = Field(default=500, ge=1, le=10000)
    nthreads: int = Field(default=0, ge=0, description="0 = one worker per CPU")

    # Search
    default_search_range_metres: int = Field(default=5000, gt=0)
    postcode_file: str = ""

    @property
    def allowed_origins_list(self) -> list[str]:
        return [o.strip() for o in self.allowed_origins.split(",")]

    @property
    def worker_count(self) -> int:
        return self.nthreads or os.cpu_count() or 1

    model_config = {"env_prefix": "ORGDATA_", "env_file": ".env", "extra": "ignore"}


def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
