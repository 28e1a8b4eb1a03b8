"""
Runtime configuration for the TechCycle backend.

All tunables come from environment variables (or a local ``.env``), matched
case-insensitively against the field names: ``DATABASE_URL`` fills
``database_url`` and so on. Pricing constants (commission rate,
free-shipping threshold, flat shipping fee) are defined here only.
"""
from decimal import Decimal
from functools import lru_cache
from typing import Annotated, FrozenSet, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    database_url: Optional[str] = Field(None, description="MongoDB connection string")
    database_name: Optional[str] = None

    jwt_secret: str = "devsecret"
    jwt_algo: str = "HS256"
    token_ttl_days: int = 7

    commission_rate: Decimal = Decimal("0.03")
    free_shipping_threshold: Decimal = Decimal("5000")
    flat_shipping_fee: Decimal = Decimal("150")
    # whole pesos, as the storefront rounds
    currency_quantum: Decimal = Decimal("1")
    delivery_days: int = 3

    local_store_path: Optional[str] = None
    local_store_max_documents: Optional[int] = None
    storage_keep_recent: int = 200

    allow_verification_re_review: bool = False
    declined_payment_methods: Annotated[FrozenSet[str], NoDecode] = frozenset()

    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        extra="ignore",
    )

    @field_validator("declined_payment_methods", mode="before")
    @classmethod
    def parse_declined_methods(cls, value):
        if isinstance(value, str):
            return frozenset(m.strip() for m in value.split(",") if m.strip())
        return value

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value):
        return value.upper()


@lru_cache()
def get_settings() -> Settings:
    return Settings()
