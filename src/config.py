from __future__ import annotations

from decimal import Decimal
from functools import cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

from domain.cost_basis import CostBasisMethod


class AppSettings(BaseSettings):
    reporting_currency: str = "SEK"
    tax_rate: Decimal = Decimal("0.30")
    cost_basis_method: CostBasisMethod = CostBasisMethod.FIFO
    rate_cache_ttl_hours: int = 24
    rate_cache_dir: Path = Path(".cache")
    coingecko_api_key: str | None = None
    riksbank_api_key: str | None = None

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")


@cache
def config() -> AppSettings:
    return AppSettings()
