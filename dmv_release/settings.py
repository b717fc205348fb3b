"""
Configuration for the release automation service

Values come from ``DMV_RELEASE_*`` environment variables or a ``.env`` file.
Nested values use ``__``, e.g. ``DMV_RELEASE_SELLER__CITY=Cudahy``.
"""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class SellerIdentity(BaseModel):
    """The business entity releasing liability on every vehicle"""
    company_name: str = "Americas Auto Towing"
    address: str = "4735 Cecilia St"
    city: str = "Cudahy"
    state: str = "CA"
    zip: str = "90201"


class ReleaseSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DMV_RELEASE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    form_url: str = "https://www.dmv.ca.gov/wasapp/nrl/nrlApplication.do"
    seller: SellerIdentity = Field(default_factory=SellerIdentity)

    # Automation driver
    driver_backend: Literal["playwright", "selenium"] = "playwright"
    headless: bool = True
    action_timeout_seconds: float = Field(default=30.0, gt=0)
    step_timeout_seconds: float = Field(default=90.0, gt=0)
    settle_timeout_seconds: float = Field(default=30.0, gt=0)
    screenshot_format: Literal["png", "jpeg"] = "png"

    # Batch scheduling; 1 processes vehicles one at a time in input order
    max_concurrency: int = Field(default=1, ge=1, le=4)

    # Job record store
    store_backend: Literal["csv", "memory"] = "csv"
    store_path: str = "vehicles.csv"

    # Service
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    # In-flight batches get this long to finish when the service stops
    shutdown_timeout_seconds: float = Field(default=300.0, gt=0)
    log_level: str = "INFO"


@lru_cache
def get_settings() -> ReleaseSettings:
    return ReleaseSettings()
