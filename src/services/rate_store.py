from __future__ import annotations

import json
import logging
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Protocol

from .rate_types import RateQuote

logger = logging.getLogger(__name__)


class RateStore(Protocol):
    def write(self, quote: RateQuote) -> None: ...

    def read(self, currency: str, quote_currency: str, rate_date: date) -> RateQuote | None: ...


class InMemoryRateStore(RateStore):
    def __init__(self) -> None:
        self._quotes: dict[tuple[str, str, date], RateQuote] = {}

    def write(self, quote: RateQuote) -> None:
        self._quotes[(quote.currency.upper(), quote.quote_currency.upper(), quote.rate_date)] = quote

    def read(self, currency: str, quote_currency: str, rate_date: date) -> RateQuote | None:
        return self._quotes.get((currency.upper(), quote_currency.upper(), rate_date))


class JsonlRateStore(RateStore):
    """Append-only JSONL files, one per currency pair. The latest record for a date wins."""

    def __init__(self, *, root_dir: Path) -> None:
        self.root_dir = root_dir

    def write(self, quote: RateQuote) -> None:
        path = self._file_path(quote.currency, quote.quote_currency)
        path.parent.mkdir(parents=True, exist_ok=True)
        record = {
            "currency": quote.currency,
            "quote_currency": quote.quote_currency,
            "rate_date": quote.rate_date.isoformat(),
            "rate": str(quote.rate),
            "source": quote.source,
            "fetched_at": quote.fetched_at.isoformat(),
        }
        with path.open("a", encoding="utf-8") as handle:
            handle.write(json.dumps(record))
            handle.write("\n")

    def read(self, currency: str, quote_currency: str, rate_date: date) -> RateQuote | None:
        path = self._file_path(currency, quote_currency)
        if not path.exists():
            return None

        best: RateQuote | None = None
        with path.open("r", encoding="utf-8") as handle:
            for line_number, line in enumerate(handle, start=1):
                line = line.strip()
                if not line:
                    continue
                try:
                    quote = self._parse_record(json.loads(line))
                except (ArithmeticError, ValueError, KeyError, TypeError):
                    logger.warning("Skipping corrupt rate cache line %s:%d", path, line_number)
                    continue
                if quote.rate_date == rate_date:
                    best = quote
        return best

    @staticmethod
    def _parse_record(record: dict[str, str]) -> RateQuote:
        return RateQuote(
            currency=record["currency"],
            quote_currency=record["quote_currency"],
            rate_date=date.fromisoformat(record["rate_date"]),
            rate=Decimal(record["rate"]),
            source=record["source"],
            fetched_at=datetime.fromisoformat(record["fetched_at"]),
        )

    def _file_path(self, currency: str, quote_currency: str) -> Path:
        return self.root_dir / "rates" / f"{currency.upper()}-{quote_currency.upper()}.jsonl"


__all__ = ["InMemoryRateStore", "JsonlRateStore", "RateStore"]
