from __future__ import annotations

from decimal import Decimal
from typing import Protocol

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from backend.app.core.config import Settings, settings
from backend.app.services.cashier.money import tolerance_for

CASH_MODE = "cash"


class CashCounterConfig(BaseModel):
    """Cash counter settings for one store, immutable for a reconciliation."""

    model_config = ConfigDict(frozen=True)

    currency: str = "INR"
    denominations: tuple[Decimal, ...]
    payment_modes: tuple[str, ...] = ("cash", "card", "upi", "other")
    account_mappings: dict[str, str]
    clearing_account: str
    variance_threshold: Decimal = Decimal("0")

    @field_validator("currency")
    @classmethod
    def currency_code(cls, v: str) -> str:
        v = v.strip().upper()
        if len(v) != 3 or not v.isalpha():
            raise ValueError("Currency must be a three-letter ISO code")
        return v

    @field_validator("denominations")
    @classmethod
    def denominations_positive_unique(cls, v: tuple[Decimal, ...]) -> tuple[Decimal, ...]:
        if not v:
            raise ValueError("At least one denomination is required")
        if any(d <= 0 for d in v):
            raise ValueError("Denominations must be positive")
        if len(set(v)) != len(v):
            raise ValueError("Denominations must be unique")
        return tuple(sorted(v, reverse=True))

    @field_validator("payment_modes")
    @classmethod
    def modes_normalised(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        modes = tuple(m.strip().lower() for m in v)
        if len(set(modes)) != len(modes):
            raise ValueError("Payment modes must be unique")
        if CASH_MODE not in modes:
            modes = (CASH_MODE, *modes)
        return modes

    @field_validator("variance_threshold")
    @classmethod
    def threshold_non_negative(cls, v: Decimal) -> Decimal:
        if v < 0:
            raise ValueError("Variance threshold must be non-negative")
        return v

    @model_validator(mode="after")
    def cash_account_required(self) -> "CashCounterConfig":
        if not self.account_mappings.get(CASH_MODE):
            raise ValueError("Cash account is required")
        return self

    @property
    def tolerance(self) -> Decimal:
        return tolerance_for(self.currency)

    def account_for(self, mode: str) -> str | None:
        return self.account_mappings.get(mode)


class CashCounterConfigProvider(Protocol):
    def get(self, store_id: str | None = None) -> CashCounterConfig: ...


class StaticConfigProvider:
    def __init__(self, config: CashCounterConfig) -> None:
        self._config = config

    def get(self, store_id: str | None = None) -> CashCounterConfig:
        return self._config


class SettingsConfigProvider:
    """Builds the cash counter config from application settings.

    Settings are read once; the same store config is served for every
    ``store_id`` since a single deployment covers one store.
    """

    def __init__(self, app_settings: Settings = settings) -> None:
        self._config = CashCounterConfig(
            currency=app_settings.CASH_COUNTER_CURRENCY,
            denominations=tuple(Decimal(d) for d in app_settings.CASH_COUNTER_DENOMINATIONS),
            payment_modes=tuple(app_settings.CASH_COUNTER_PAYMENT_MODES),
            account_mappings=dict(app_settings.CASH_COUNTER_ACCOUNT_MAPPINGS),
            clearing_account=app_settings.CASH_COUNTER_CLEARING_ACCOUNT,
            variance_threshold=Decimal(app_settings.CASH_COUNTER_VARIANCE_THRESHOLD),
        )

    def get(self, store_id: str | None = None) -> CashCounterConfig:
        return self._config
