from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_ADMIN_API_KEY = "sf-admin-dev-key"
DEFAULT_SYSTEM_API_KEY = "sf-system-dev-key"
DEFAULT_CUSTOMER_TOKEN_SECRET = "storefront-dev-customer-token-secret-change-me"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_prefix="SF_", extra="ignore")

    app_name: str = "Storefront Orders"
    env: str = "dev"
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    database_url: str = "sqlite+pysqlite:///./storefront.db"

    log_level: str = "INFO"
    log_json: bool = False

    auth_enabled: bool = True
    admin_api_key: str = DEFAULT_ADMIN_API_KEY
    system_api_key: str = DEFAULT_SYSTEM_API_KEY
    admin_actor_id: str = "admin-001"
    system_actor_id: str = "system-001"
    customer_token_secret: str = Field(
        default=DEFAULT_CUSTOMER_TOKEN_SECRET,
        description="HMAC secret for customer bearer tokens",
    )
    customer_token_ttl_seconds: int = 3600

    checkout_rate_limit: int = 15
    checkout_rate_window_seconds: int = 60
    rate_limit_max_keys: int = 10_000

    transaction_attempts: int = 3
    default_currency: str = "USD"

    def model_post_init(self, __context) -> None:
        if self.env.lower() == "dev":
            return

        insecure_items: list[str] = []
        if self.admin_api_key == DEFAULT_ADMIN_API_KEY:
            insecure_items.append("SF_ADMIN_API_KEY")
        if self.system_api_key == DEFAULT_SYSTEM_API_KEY:
            insecure_items.append("SF_SYSTEM_API_KEY")
        if self.customer_token_secret == DEFAULT_CUSTOMER_TOKEN_SECRET:
            insecure_items.append("SF_CUSTOMER_TOKEN_SECRET")

        if insecure_items:
            raise ValueError(
                "insecure default secrets are not allowed outside dev mode; set env vars: "
                + ", ".join(sorted(insecure_items))
            )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
