from __future__ import annotations

from datetime import date
from typing import Any, Iterable, Protocol

from .rate_types import RateQuote

DEFAULT_FIAT_CODES = ("SEK", "USD", "EUR", "GBP", "JPY", "NOK", "DKK", "CHF")


class RateSourceError(Exception):
    def __init__(self, message: str, *, status_code: int | None = None, payload: Any | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class RateSource(Protocol):
    def fetch_rate(self, currency: str, quote_currency: str, rate_date: date) -> RateQuote: ...


class HybridRateSource(RateSource):
    """Route fiat currencies to a fiat source and everything else to a crypto source."""

    def __init__(
        self,
        *,
        crypto_source: RateSource,
        fiat_source: RateSource,
        fiat_currency_codes: Iterable[str] | None = None,
    ) -> None:
        self.crypto_source = crypto_source
        self.fiat_source = fiat_source
        codes = DEFAULT_FIAT_CODES if fiat_currency_codes is None else fiat_currency_codes
        fiat_codes = {code.upper() for code in codes}
        if not fiat_codes:
            msg = "fiat_currency_codes must contain at least one entry"
            raise ValueError(msg)
        self._fiat_codes = frozenset(fiat_codes)

    def fetch_rate(self, currency: str, quote_currency: str, rate_date: date) -> RateQuote:
        currency = currency.upper()
        quote_currency = quote_currency.upper()
        if self.is_fiat(currency):
            return self.fiat_source.fetch_rate(currency, quote_currency, rate_date)
        return self.crypto_source.fetch_rate(currency, quote_currency, rate_date)

    def is_fiat(self, currency: str) -> bool:
        return currency.upper() in self._fiat_codes


__all__ = [
    "DEFAULT_FIAT_CODES",
    "HybridRateSource",
    "RateSource",
    "RateSourceError",
]
