from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import requests
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from config import config

from .rate_sources import RateSource, RateSourceError
from .rate_types import RateQuote

# API docs: https://developer.api.riksbank.se/api-details#api=swea-api
SUPPORTED_CURRENCIES = frozenset({"USD", "EUR", "GBP", "JPY", "NOK", "DKK", "CHF"})
# Fixings for these are published as SEK per 100 units.
PER_HUNDRED_CURRENCIES = frozenset({"JPY", "NOK", "DKK"})


class RiksbankAPIError(RateSourceError):
    pass


class _RiksbankClient:
    def __init__(
        self,
        base_url: str = "https://api.riksbank.se/swea/v1",
        api_key: str | None = None,
        timeout: float = 10.0,
        session: requests.Session | None = None,
        retry_attempts: int = 5,
        retry_backoff_seconds: float = 1,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._session = session or requests.Session()

        retries = Retry(
            total=retry_attempts,
            backoff_factor=retry_backoff_seconds,
            status_forcelist=[429],
            allowed_methods=frozenset({"GET"}),
            raise_on_status=False,
        )
        adapter = HTTPAdapter(max_retries=retries)
        self._session.mount("https://", adapter)
        self._session.mount("http://", adapter)

    def get_observations(self, *, series_id: str, date_from: date, date_to: date) -> list[tuple[date, Decimal]]:
        path = f"/Observations/{series_id}/{date_from.isoformat()}/{date_to.isoformat()}"
        payload = self._request("GET", path)
        if not isinstance(payload, list):
            raise RiksbankAPIError("Riksbank returned unexpected payload type", payload=payload)

        observations: list[tuple[date, Decimal]] = []
        for item in payload:
            if not isinstance(item, dict) or item.get("date") is None or item.get("value") is None:
                raise RiksbankAPIError("Riksbank observation missing required fields", payload=item)
            try:
                observation = (date.fromisoformat(str(item["date"])), Decimal(str(item["value"])))
            except (ArithmeticError, ValueError) as exc:
                raise RiksbankAPIError("Riksbank observation is malformed", payload=item) from exc
            if not observation[1].is_finite() or observation[1] <= 0:
                raise RiksbankAPIError("Riksbank observation value must be positive", payload=item)
            observations.append(observation)
        return observations

    def _request(self, method: str, path: str) -> Any:
        url = f"{self.base_url}{path}"
        headers = {"Cache-Control": "no-cache"}
        if self.api_key:
            headers["Ocp-Apim-Subscription-Key"] = self.api_key
        try:
            response = self._session.request(method, url, headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            resp = exc.response
            status_code = getattr(resp, "status_code", None)
            payload: Any | None = None
            if resp is not None:
                try:
                    payload = resp.json()
                except ValueError:
                    payload = resp.text
            raise RiksbankAPIError("Riksbank request failed", status_code=status_code, payload=payload) from exc
        except requests.RequestException as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            raise RiksbankAPIError("Riksbank request failed", status_code=status_code) from exc

        try:
            return response.json()
        except ValueError as exc:
            raise RiksbankAPIError("Riksbank returned invalid JSON", payload=response.text) from exc


class RiksbankSource(RateSource):
    """Daily SEK fixing rates; other quote currencies are crossed through SEK.

    No fixing is published on weekends and bank holidays, so the latest
    observation within `lookback_days` before the requested date is used.
    """

    def __init__(
        self,
        *,
        client: _RiksbankClient | None = None,
        lookback_days: int = 7,
        source_name: str = "riksbank-swea",
    ) -> None:
        self.client = client or _RiksbankClient(api_key=config().riksbank_api_key)
        self.lookback_days = lookback_days
        self.source_name = source_name

    def fetch_rate(self, currency: str, quote_currency: str, rate_date: date) -> RateQuote:
        base = currency.upper()
        quote = quote_currency.upper()

        if base == quote:
            rate = Decimal("1")
        else:
            rate = self._sek_per_unit(base, rate_date) / self._sek_per_unit(quote, rate_date)

        return RateQuote(
            currency=base,
            quote_currency=quote,
            rate_date=rate_date,
            rate=rate,
            source=self.source_name,
            fetched_at=datetime.now(timezone.utc),
        )

    def _sek_per_unit(self, currency: str, rate_date: date) -> Decimal:
        if currency == "SEK":
            return Decimal("1")
        if currency not in SUPPORTED_CURRENCIES:
            raise RiksbankAPIError(f"Unsupported currency: {currency}")

        observations = self.client.get_observations(
            series_id=f"SEK{currency}PMI",
            date_from=rate_date - timedelta(days=self.lookback_days),
            date_to=rate_date,
        )
        eligible = [(obs_date, value) for obs_date, value in observations if obs_date <= rate_date]
        if not eligible:
            raise RiksbankAPIError(f"No Riksbank fixing for {currency} on or before {rate_date.isoformat()}")
        _, value = max(eligible, key=lambda obs: obs[0])
        if currency in PER_HUNDRED_CURRENCIES:
            return value / 100
        return value


__all__ = ["PER_HUNDRED_CURRENCIES", "RiksbankAPIError", "RiksbankSource", "SUPPORTED_CURRENCIES"]
