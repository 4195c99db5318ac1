from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class EngineSettings(BaseSettings):
    order_expiry_minutes: int = Field(
        default=30,
        ge=1,
        le=1440,
        description="Minutes an unassigned order stays open before the sweep cancels it",
    )
    expiring_soon_minutes: int = Field(default=5, ge=1, le=60)
    sweep_interval_seconds: float = Field(default=300.0, ge=1.0)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["text", "json"] = "text"
    environment: str = "development"

    model_config = SettingsConfigDict(env_prefix="ENGINE_")


class RoutingSettings(BaseSettings):
    base_url: str = "http://localhost:5000"
    timeout_seconds: float = Field(default=5.0, gt=0.0, le=60.0)

    # OSRM retry configuration
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_base_delay: float = Field(default=0.5, ge=0.0, le=5.0)
    retry_multiplier: float = Field(default=2.0, ge=1.0, le=5.0)

    cache_size: int = Field(default=1000, ge=0)

    model_config = SettingsConfigDict(env_prefix="OSRM_")

    @field_validator("base_url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError("OSRM base URL must start with http:// or https://")
        return v.rstrip("/")


class DatabaseSettings(BaseSettings):
    url: str = "sqlite:///data/parcel_engine.db"
    echo: bool = False

    model_config = SettingsConfigDict(env_prefix="DATABASE_")


class PricingSettings(BaseSettings):
    config_path: str = "config/pricing.json"

    model_config = SettingsConfigDict(env_prefix="PRICING_")


class Settings(BaseSettings):
    engine: EngineSettings = Field(default_factory=EngineSettings)
    routing: RoutingSettings = Field(default_factory=RoutingSettings)
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    pricing: PricingSettings = Field(default_factory=PricingSettings)

    model_config = SettingsConfigDict(
        env_nested_delimiter="__",
        case_sensitive=False,
    )


def get_settings() -> Settings:
    """Load and validate settings from environment variables."""
    return Settings()
