"""
Centralized settings management using pydantic-settings.

All environment variables are read with the ``STOREFRONT_`` prefix.
Use get_settings() to access the singleton settings instance.
"""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    Optional environment variables:
        - STOREFRONT_CATALOG_PATH: CSV file with the product catalog
        - STOREFRONT_ORDERS_PATH: CSV file with user_id,product_id order lines
        - STOREFRONT_EXPERIMENTS_PATH: JSON file with experiment definitions
        - STOREFRONT_STATE_DIR: directory for durable visitor state
          (in-memory when unset)
        - STOREFRONT_GENERATOR_URL / STOREFRONT_GENERATOR_API_KEY: remote
          recommendation generator, disabled unless both are set
    """

    model_config = SettingsConfigDict(
        env_prefix="STOREFRONT_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = Field(default="development", description="Environment name")
    log_level: str = Field(default="INFO", description="Root log level")

    @property
    def is_production(self) -> bool:
        return self.environment.lower() in ("production", "prod")

    # Data sources
    catalog_path: Optional[Path] = Field(default=None, description="Catalog CSV")
    orders_path: Optional[Path] = Field(default=None, description="Orders CSV")
    experiments_path: Optional[Path] = Field(
        default=None, description="Experiment definitions JSON"
    )
    state_dir: Optional[Path] = Field(
        default=None, description="Directory for persisted visitor state"
    )
    catalog_limit: int = Field(
        default=100, ge=1, description="Catalog items considered per request"
    )

    # Remote recommendation generator
    generator_url: str = Field(default="", description="Chat completions endpoint")
    generator_api_key: str = Field(default="", description="Generator API key")
    generator_model: str = Field(
        default="gpt-4o-mini", description="Model name sent to the generator"
    )
    request_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Timeout for outbound HTTP calls"
    )

    # Background impression/conversion delivery
    event_queue_size: int = Field(
        default=1000, ge=1, description="Bounded queue size for telemetry writes"
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v

    @property
    def generator_enabled(self) -> bool:
        return bool(self.generator_url and self.generator_api_key)


@lru_cache()
def get_settings() -> Settings:
    """Return the cached settings instance."""
    return Settings()
