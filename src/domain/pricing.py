from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Protocol


class RateUnavailable(Exception):
    def __init__(self, currency: str, timestamp: datetime, *, reason: str | None = None) -> None:
        self.currency = currency
        self.timestamp = timestamp
        self.reason = reason
        message = f"No rate available for currency={currency} on {timestamp.date().isoformat()}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class CurrencyConverter(Protocol):
    """Conversion into the reporting currency using historical rates."""

    reporting_currency: str

    def get_rate(self, currency: str, timestamp: datetime) -> Decimal: ...

    def convert(self, amount: Decimal, currency: str, timestamp: datetime) -> Decimal: ...
