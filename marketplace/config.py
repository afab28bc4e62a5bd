"""Service configuration from environment variables (prefix ``MARKETPLACE_``).

``get_settings()`` is cached, so one Settings instance exists per process.
"""

from decimal import Decimal
from functools import lru_cache
from typing import Literal, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MARKETPLACE_", env_file=".env", case_sensitive=False)

    # Persistence
    store_backend: Literal["memory", "mongo"] = "memory"
    mongo_uri: str = "mongodb://localhost:27017"
    mongo_database: str = "marketplace"
    mongo_username: Optional[str] = None
    mongo_password: Optional[str] = None
    mongo_timeout_ms: int = 5000

    # Black market
    rotation_enabled: bool = True
    rotation_interval_seconds: float = 3600
    rotation_batch_size: int = 5
    black_market_discount: Decimal = Decimal("0.5")
    buy_discount: Decimal = Decimal("1.0")
    sell_bonus: Decimal = Decimal("1.2")

    # Discord webhook (purchase log); unset means log-only notifications
    discord_webhook_url: Optional[str] = None
    discord_embed_title: str = "Transaction Log"
    discord_embed_color: str = "#00FF00"
    discord_embed_description: str = (
        "A purchase was made: {item} for ${price} at {time} by {buyer} from {seller}"
    )

    seed_on_startup: bool = False

    # Observability
    log_level: str = "INFO"
    log_json: bool = False

    @field_validator("black_market_discount", "buy_discount", "sell_bonus")
    @classmethod
    def _positive_multiplier(cls, v: Decimal) -> Decimal:
        if v <= 0:
            raise ValueError("multipliers must be positive")
        return v

    @field_validator("rotation_interval_seconds", "rotation_batch_size")
    @classmethod
    def _at_least_one(cls, v):
        if v < 1:
            raise ValueError("must be at least 1")
        return v


@lru_cache
def get_settings() -> Settings:
    return Settings()
