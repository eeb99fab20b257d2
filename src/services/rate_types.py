from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal


@dataclass(frozen=True)
class RateQuote:
    """Units of `quote_currency` per one unit of `currency` on `rate_date`."""

    currency: str
    quote_currency: str
    rate_date: date
    rate: Decimal
    source: str
    fetched_at: datetime


__all__ = ["RateQuote"]
