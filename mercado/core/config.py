from decimal import Decimal
from typing import List

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    app_name: str = Field(default="Mercado PDV", alias="APP_NAME")
    app_env: str = Field(default="dev", alias="APP_ENV")
    app_version: str = Field(default="0.1.0", alias="APP_VERSION")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    database_url: str = Field(default="", alias="DB_URL")
    db_busy_timeout: int = Field(default=60, alias="DB_BUSY_TIMEOUT")

    # Recibo
    store_fallback_name: str = Field(default="SISTEMA PDV", alias="STORE_FALLBACK_NAME")
    currency_symbol: str = Field(default="R$", alias="CURRENCY_SYMBOL")
    receipt_width: int = Field(default=40, alias="RECEIPT_WIDTH")

    # Pagos
    payment_methods_csv: str = Field(default="cash,credit,debit,pix", alias="PAYMENT_METHODS")
    balance_tolerance: Decimal = Field(default=Decimal("0.01"), alias="BALANCE_TOLERANCE")
    max_installments: int = Field(default=12, alias="MAX_INSTALLMENTS")
    settle_timeout_seconds: float = Field(default=15.0, alias="SETTLE_TIMEOUT_SECONDS")

    # Catálogo
    search_min_chars: int = Field(default=2, alias="SEARCH_MIN_CHARS")
    search_limit: int = Field(default=20, alias="SEARCH_LIMIT")
    search_debounce_ms: int = Field(default=300, alias="SEARCH_DEBOUNCE_MS")

    idempotency_ttl: int = Field(default=3600, alias="IDEMPOTENCY_TTL")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("balance_tolerance", mode="before")
    @classmethod
    def _tolerance_to_decimal(cls, v):
        return Decimal(str(v))

    @property
    def payment_methods(self) -> List[str]:
        # PAYMENT_METHODS=cash,credit,pix
        return [m.strip().lower() for m in self.payment_methods_csv.split(",") if m.strip()]


settings = Settings()
