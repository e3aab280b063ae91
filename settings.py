from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: Optional[str] = None
    database_name: str = "marketplace"

    paystack_secret_key: Optional[str] = None
    paystack_public_key: Optional[str] = None
    paystack_base_url: str = "https://api.paystack.co"

    app_base_url: str = "http://localhost:3000"
    log_level: str = "INFO"
    rate_limit_enabled: bool = True
    # None: detect from the server topology when the app opens its own client
    mongo_transactions: Optional[bool] = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
