from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Supabase; the in-memory stores are used when either is unset
    SUPABASE_URL: Optional[str] = None
    SUPABASE_SERVICE_ROLE_KEY: Optional[str] = None
    USERS_TABLE: str = "users"
    TRANSACTIONS_TABLE: str = "transactions"

    # Paystack
    PAYSTACK_SECRET_KEY: str = ""
    PAYSTACK_BASE_URL: str = "https://api.paystack.co"
    HTTP_TIMEOUT_SECONDS: float = 30.0

    # Activation
    WELCOME_BONUS: Decimal = Field(default=Decimal("3.00"), gt=0)

    # App
    APP_NAME: str = "activation-confirm"
    CORS_ALLOW_ORIGINS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["authorization", "x-client-info", "apikey", "content-type"]
    LOG_LEVEL: str = "INFO"
    LOG_JSON: bool = True

    @property
    def supabase_enabled(self) -> bool:
        return bool(self.SUPABASE_URL and self.SUPABASE_SERVICE_ROLE_KEY)


@lru_cache
def get_settings() -> Settings:
    return Settings()
