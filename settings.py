# settings.py
from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field
from typing import Literal


PLAID_BASE_URLS = {
    "sandbox": "https://sandbox.plaid.com",
    "production": "https://production.plaid.com",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # -----------------------
    # DB
    # -----------------------
    DATABASE_URL: str = Field(default="postgresql://localhost:5432/billpay")

    # -----------------------
    # Transfer rail (Plaid)
    # -----------------------
    RAIL_MODE: Literal["plaid", "mock"] = "plaid"
    PLAID_ENV: Literal["sandbox", "production"] = "sandbox"
    PLAID_CLIENT_ID: str = ""
    PLAID_SECRET: str = ""
    PLAID_HTTP_TIMEOUT_S: float = 20.0

    # -----------------------
    # Event sync
    # -----------------------
    # Used only until the first cursor is stored
    START_SYNC_NUM: int = Field(default=0, ge=0)
    SYNC_BATCH_SIZE: int = Field(default=20, ge=1, le=500)
    SYNC_MAX_BATCHES: int = Field(default=500, ge=1)
    SYNC_INTERVAL_SECONDS: int = Field(default=300, ge=1)

    # -----------------------
    # Webhooks
    # -----------------------
    WEBHOOK_PORT: int = 8001
    WEBHOOK_VERIFICATION_ENABLED: bool = True
    WEBHOOK_MAX_AGE_SECONDS: int = Field(default=300, ge=1)
    WEBHOOK_KEY_CACHE_SECONDS: int = Field(default=3600, ge=1)

    @property
    def plaid_base_url(self) -> str:
        return PLAID_BASE_URLS[self.PLAID_ENV]


settings = Settings()
