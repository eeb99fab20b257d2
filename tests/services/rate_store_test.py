from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from pathlib import Path

import pytest

from services.rate_store import InMemoryRateStore, JsonlRateStore
from services.rate_types import RateQuote


def _quote(currency: str, quote: str, rate: str, rate_date: date) -> RateQuote:
    return RateQuote(
        currency=currency,
        quote_currency=quote,
        rate_date=rate_date,
        rate=Decimal(rate),
        source="test",
        fetched_at=datetime(2025, 1, 1, 12, tzinfo=timezone.utc),
    )


def test_jsonl_store_round_trips_exact_decimal(tmp_path: Path) -> None:
    store = JsonlRateStore(root_dir=tmp_path)
    store.write(_quote("BTC", "SEK", "412345.123456789012", date(2024, 1, 2)))

    result = store.read("btc", "sek", date(2024, 1, 2))

    assert result is not None
    assert result.rate == Decimal("412345.123456789012")
    assert result.fetched_at == datetime(2025, 1, 1, 12, tzinfo=timezone.utc)
    assert (tmp_path / "rates" / "BTC-SEK.jsonl").exists()


def test_jsonl_store_latest_record_wins(tmp_path: Path) -> None:
    store = JsonlRateStore(root_dir=tmp_path)
    store.write(_quote("USD", "SEK", "10.0", date(2024, 1, 2)))
    store.write(_quote("USD", "SEK", "10.5", date(2024, 1, 3)))
    store.write(_quote("USD", "SEK", "10.1", date(2024, 1, 2)))

    result = store.read("USD", "SEK", date(2024, 1, 2))

    assert result is not None
    assert result.rate == Decimal("10.1")


def test_jsonl_store_returns_none_for_unknown_pair_or_date(tmp_path: Path) -> None:
    store = JsonlRateStore(root_dir=tmp_path)
    store.write(_quote("USD", "SEK", "10.0", date(2024, 1, 2)))

    assert store.read("EUR", "SEK", date(2024, 1, 2)) is None
    assert store.read("USD", "SEK", date(2024, 1, 4)) is None


def test_in_memory_store_is_case_insensitive() -> None:
    store = InMemoryRateStore()
    store.write(_quote("usd", "sek", "10.0", date(2024, 1, 2)))

    result = store.read("USD", "SEK", date(2024, 1, 2))

    assert result is not None
    assert result.rate == Decimal("10.0")
    assert store.read("USD", "EUR", date(2024, 1, 2)) is None


def test_jsonl_store_skips_corrupt_lines(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    store = JsonlRateStore(root_dir=tmp_path)
    store.write(_quote("USD", "SEK", "10.0", date(2024, 1, 2)))
    path = tmp_path / "rates" / "USD-SEK.jsonl"
    with path.open("a", encoding="utf-8") as handle:
        handle.write('{"currency": "USD", "rate_da\n')
        handle.write('{"currency": "USD", "rate_date": "2024-01-02"}\n')

    result = store.read("USD", "SEK", date(2024, 1, 2))

    assert result is not None
    assert result.rate == Decimal("10.0")
    assert "corrupt rate cache line" in caplog.text
