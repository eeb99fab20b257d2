from __future__ import annotations

from datetime import date
from decimal import Decimal
from unittest.mock import Mock

import pytest
import requests

from services.riksbank_source import RiksbankAPIError, RiksbankSource, _RiksbankClient
from tests.constants import EUR, SEK, USD


def _mock_response(payload: object, status_code: int = 200) -> Mock:
    response = Mock()
    response.status_code = status_code
    response.json.return_value = payload
    response.text = "payload"
    response.raise_for_status.return_value = None
    return response


def _source(session: Mock) -> RiksbankSource:
    return RiksbankSource(client=_RiksbankClient(session=session))


def test_fetch_rate_uses_requested_fixing() -> None:
    session = Mock()
    session.request.return_value = _mock_response(
        [
            {"date": "2024-03-14", "value": 10.21},
            {"date": "2024-03-15", "value": 10.34},
        ]
    )

    quote = _source(session).fetch_rate("usd", SEK, date(2024, 3, 15))

    assert quote.currency == USD
    assert quote.quote_currency == SEK
    assert quote.rate == Decimal("10.34")
    url = session.request.call_args.args[1]
    assert url.endswith("/Observations/SEKUSDPMI/2024-03-08/2024-03-15")


def test_weekend_falls_back_to_latest_earlier_fixing() -> None:
    session = Mock()
    session.request.return_value = _mock_response(
        [
            {"date": "2024-03-14", "value": 10.21},
            {"date": "2024-03-15", "value": 10.34},
        ]
    )

    quote = _source(session).fetch_rate(USD, SEK, date(2024, 3, 17))

    assert quote.rate == Decimal("10.34")
    assert quote.rate_date == date(2024, 3, 17)


def test_non_sek_quote_is_crossed_through_sek() -> None:
    session = Mock()
    session.request.side_effect = [
        _mock_response([{"date": "2024-03-15", "value": 10}]),
        _mock_response([{"date": "2024-03-15", "value": 11}]),
    ]

    quote = _source(session).fetch_rate(USD, EUR, date(2024, 3, 15))

    assert quote.rate == Decimal(10) / Decimal(11)
    urls = [call.args[1] for call in session.request.call_args_list]
    assert "SEKUSDPMI" in urls[0]
    assert "SEKEURPMI" in urls[1]


def test_no_observations_raises() -> None:
    session = Mock()
    session.request.return_value = _mock_response([])

    with pytest.raises(RiksbankAPIError, match="No Riksbank fixing"):
        _source(session).fetch_rate(USD, SEK, date(2024, 3, 15))


def test_unsupported_currency_raises_without_request() -> None:
    session = Mock()

    with pytest.raises(RiksbankAPIError, match="Unsupported"):
        _source(session).fetch_rate("XYZ", SEK, date(2024, 3, 15))

    session.request.assert_not_called()


def test_malformed_observation_raises() -> None:
    session = Mock()
    session.request.return_value = _mock_response([{"date": "2024-03-15"}])

    with pytest.raises(RiksbankAPIError):
        _source(session).fetch_rate(USD, SEK, date(2024, 3, 15))


def test_http_error_is_wrapped() -> None:
    session = Mock()
    error_response = _mock_response({"message": "not found"}, status_code=404)
    error_response.raise_for_status.side_effect = requests.HTTPError(response=error_response)
    session.request.return_value = error_response

    with pytest.raises(RiksbankAPIError) as exc_info:
        _source(session).fetch_rate(USD, SEK, date(2024, 3, 15))

    assert exc_info.value.status_code == 404
    assert exc_info.value.payload == {"message": "not found"}


@pytest.mark.parametrize("currency", ["JPY", "NOK", "DKK"])
def test_per_hundred_fixings_are_scaled_to_one_unit(currency: str) -> None:
    session = Mock()
    session.request.return_value = _mock_response([{"date": "2024-03-15", "value": 97.12}])

    quote = _source(session).fetch_rate(currency, SEK, date(2024, 3, 15))

    assert quote.rate == Decimal("0.9712")


@pytest.mark.parametrize(
    "observation",
    [
        {"date": "2024-03-15", "value": "n/a"},
        {"date": "not-a-date", "value": 10.3},
        {"date": "2024-03-15", "value": 0},
        {"date": "2024-03-15", "value": "NaN"},
    ],
)
def test_unusable_observation_raises_source_error(observation: dict) -> None:
    session = Mock()
    session.request.return_value = _mock_response([observation])

    with pytest.raises(RiksbankAPIError):
        _source(session).fetch_rate(USD, SEK, date(2024, 3, 15))
