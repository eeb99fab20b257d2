from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

import requests
from requests import Response
from requests.adapters import HTTPAdapter
from urllib3.util import Retry

from config import config

from .rate_sources import RateSource, RateSourceError
from .rate_types import RateQuote

logger = logging.getLogger(__name__)

# API docs: https://docs.coingecko.com/v3.0.1/reference/coins-id-history
COIN_IDS: dict[str, str] = {
    "BTC": "bitcoin",
    "ETH": "ethereum",
    "BNB": "binancecoin",
    "ADA": "cardano",
    "XRP": "ripple",
    "DOGE": "dogecoin",
    "DOT": "polkadot",
    "UNI": "uniswap",
    "LTC": "litecoin",
    "LINK": "chainlink",
    "MATIC": "matic-network",
    "SOL": "solana",
    "AVAX": "avalanche-2",
    "ATOM": "cosmos",
    "ALGO": "algorand",
}


class CoinGeckoAPIError(RateSourceError):
    pass


class _CoinGeckoClient:
    def __init__(
        self,
        base_url: str = "https://api.coingecko.com/api/v3",
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

    def get_coin_history(self, *, coin_id: str, target_date: date) -> dict[str, Any]:
        params = {
            "date": target_date.strftime("%d-%m-%Y"),
            "localization": "false",
        }
        return self._request("GET", f"/coins/{coin_id}/history", params=params)

    def _request(self, method: str, path: str, *, params: Mapping[str, str]) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        headers = {"accept": "application/json"}
        if self.api_key:
            headers["x-cg-demo-api-key"] = self.api_key
        try:
            response = self._session.request(method, url, params=dict(params), headers=headers, timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as exc:
            resp = exc.response
            status_code = getattr(resp, "status_code", None)
            message, payload = self._extract_error(resp)
            raise CoinGeckoAPIError(message, status_code=status_code, payload=payload) from exc
        except requests.RequestException as exc:
            status_code = getattr(getattr(exc, "response", None), "status_code", None)
            raise CoinGeckoAPIError("CoinGecko request failed", status_code=status_code) from exc

        try:
            payload_raw = response.json()
        except ValueError as exc:
            raise CoinGeckoAPIError("CoinGecko returned invalid JSON", payload=response.text) from exc

        if not isinstance(payload_raw, dict):
            raise CoinGeckoAPIError("CoinGecko returned unexpected payload type", payload=payload_raw)

        if payload_raw.get("error"):
            raise CoinGeckoAPIError(str(payload_raw["error"]), payload=payload_raw)

        return payload_raw

    @staticmethod
    def _extract_error(response: Response | None) -> tuple[str, Any | None]:
        message = "CoinGecko request failed"
        payload: Any | None = None
        if response is None:
            return message, payload

        try:
            payload = response.json()
            if isinstance(payload, dict):
                message = payload.get("error") or payload.get("status", {}).get("error_message") or message
        except ValueError:
            payload = response.text
        return message, payload


class CoinGeckoSource(RateSource):
    def __init__(
        self,
        *,
        client: _CoinGeckoClient | None = None,
        coin_ids: Mapping[str, str] | None = None,
        source_name: str = "coingecko-history",
    ) -> None:
        self.client = client or _CoinGeckoClient(api_key=config().coingecko_api_key)
        self.coin_ids = {symbol.upper(): coin_id for symbol, coin_id in (coin_ids or COIN_IDS).items()}
        self.source_name = source_name

    def fetch_rate(self, currency: str, quote_currency: str, rate_date: date) -> RateQuote:
        symbol = currency.upper()
        quote = quote_currency.upper()
        coin_id = self.coin_ids.get(symbol)
        if coin_id is None:
            raise CoinGeckoAPIError(f"Unsupported cryptocurrency: {symbol}")

        payload = self.client.get_coin_history(coin_id=coin_id, target_date=rate_date)
        try:
            prices = (payload.get("market_data") or {}).get("current_price") or {}
            raw_rate = prices.get(quote.lower())
            rate = Decimal(str(raw_rate)) if raw_rate is not None else None
        except (ArithmeticError, ValueError, TypeError, AttributeError) as exc:
            raise CoinGeckoAPIError("CoinGecko returned a malformed price", payload=payload) from exc

        if rate is None:
            logger.info("CoinGecko has no %s price for %s on %s", quote, symbol, rate_date.isoformat())
            raise CoinGeckoAPIError(f"No {quote} price for {symbol} on {rate_date.isoformat()}", payload=payload)
        if not rate.is_finite() or rate < 0:
            raise CoinGeckoAPIError(f"CoinGecko price for {symbol} is not a valid rate: {raw_rate}", payload=payload)

        return RateQuote(
            currency=symbol,
            quote_currency=quote,
            rate_date=rate_date,
            rate=rate,
            source=self.source_name,
            fetched_at=datetime.now(timezone.utc),
        )


__all__ = ["COIN_IDS", "CoinGeckoAPIError", "CoinGeckoSource"]
