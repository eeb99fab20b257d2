from __future__ import annotations

import logging
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable

from domain.pricing import CurrencyConverter, RateUnavailable

from .coingecko_source import CoinGeckoSource
from .rate_sources import HybridRateSource, RateSource, RateSourceError
from .rate_store import JsonlRateStore, RateStore
from .rate_types import RateQuote
from .riksbank_source import RiksbankSource

logger = logging.getLogger(__name__)

DEFAULT_TTL = timedelta(hours=24)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CachingCurrencyConverter(CurrencyConverter):
    """Convert amounts into the reporting currency at the rate of a given day.

    Rates are looked up in an in-memory cache backed by `store`. Entries older
    than `ttl` are refreshed from `source`; if the refresh fails the stale
    entry is still served. Concurrent misses may fetch the same rate twice,
    the last write wins.
    """

    def __init__(
        self,
        *,
        source: RateSource,
        store: RateStore,
        reporting_currency: str = "SEK",
        ttl: timedelta = DEFAULT_TTL,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.source = source
        self.store = store
        self.reporting_currency = reporting_currency.upper()
        self.ttl = ttl
        self._clock = clock
        self._cache: dict[tuple[str, date], RateQuote] = {}

    def get_rate(self, currency: str, timestamp: datetime) -> Decimal:
        currency = currency.upper()
        if currency == self.reporting_currency:
            return Decimal("1")

        rate_date = self._rate_date(timestamp)
        cached = self._lookup(currency, rate_date)
        if cached is not None and not self._is_expired(cached):
            return cached.rate

        try:
            fetched = self.source.fetch_rate(currency, self.reporting_currency, rate_date)
        except RateSourceError as exc:
            if cached is not None:
                logger.warning(
                    "Failed to refresh %s/%s rate for %s, using expired cached rate from %s: %s",
                    currency,
                    self.reporting_currency,
                    rate_date.isoformat(),
                    cached.fetched_at.isoformat(),
                    exc,
                )
                return cached.rate
            raise RateUnavailable(currency, timestamp, reason=str(exc)) from exc

        quote = replace(fetched, fetched_at=self._clock())
        self._cache[(currency, rate_date)] = quote
        self.store.write(quote)
        return quote.rate

    def convert(self, amount: Decimal, currency: str, timestamp: datetime) -> Decimal:
        if currency.upper() == self.reporting_currency:
            return amount
        return amount * self.get_rate(currency, timestamp)

    def clear_cache(self) -> None:
        self._cache.clear()

    def _lookup(self, currency: str, rate_date: date) -> RateQuote | None:
        key = (currency, rate_date)
        cached = self._cache.get(key)
        if cached is None:
            cached = self.store.read(currency, self.reporting_currency, rate_date)
            if cached is not None:
                self._cache[key] = cached
        return cached

    def _is_expired(self, quote: RateQuote) -> bool:
        return self._clock() - quote.fetched_at > self.ttl

    @staticmethod
    def _rate_date(timestamp: datetime) -> date:
        if timestamp.tzinfo is None:
            return timestamp.date()
        return timestamp.astimezone(timezone.utc).date()


def build_default_converter(
    cache_dir: Path,
    *,
    reporting_currency: str = "SEK",
    ttl: timedelta = DEFAULT_TTL,
    store: RateStore | None = None,
) -> CachingCurrencyConverter:
    source = HybridRateSource(crypto_source=CoinGeckoSource(), fiat_source=RiksbankSource())
    return CachingCurrencyConverter(
        source=source,
        store=store or JsonlRateStore(root_dir=cache_dir),
        reporting_currency=reporting_currency,
        ttl=ttl,
    )


__all__ = ["CachingCurrencyConverter", "DEFAULT_TTL", "build_default_converter"]
