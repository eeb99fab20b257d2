from datetime import datetime, timezone
from random import Random

from domain.events import EventKind
from tests.constants import ETH
from tests.helpers.time_utils import TimeGenerator, make_event


def test_time_generator_increases_with_seed() -> None:
    rng = Random(42)
    gen = TimeGenerator(_rng=rng)

    ts1 = gen()
    ts2 = gen()
    ts3 = gen()

    assert ts1 < ts2 < ts3
    gaps = [(ts2 - ts1).total_seconds(), (ts3 - ts2).total_seconds()]
    for gap in gaps:
        assert 5 <= gap <= 60

    # Deterministic given the same seed
    gen_again = TimeGenerator(_rng=Random(42))
    ts1_b, ts2_b, ts3_b = gen_again(), gen_again(), gen_again()
    gaps_b = [(ts2_b - ts1_b).total_seconds(), (ts3_b - ts2_b).total_seconds()]
    assert gaps == gaps_b


def test_make_event_uses_generator_when_timestamp_missing() -> None:
    gen = TimeGenerator(_rng=Random(1))

    event1 = make_event(kind=EventKind.STAKING_REWARD, asset=ETH, amount=1, ts_gen=gen)
    event2 = make_event(kind=EventKind.STAKING_REWARD, asset=ETH, amount=1, ts_gen=gen)

    assert event1.timestamp < event2.timestamp
    assert event1.timestamp.tzinfo == timezone.utc
    assert event1.id != event2.id


def test_make_event_respects_provided_timestamp() -> None:
    explicit_ts = datetime(2024, 2, 1, tzinfo=timezone.utc)

    event = make_event(kind=EventKind.STAKING_REWARD, asset=ETH, amount=1, timestamp=explicit_ts)

    assert event.timestamp == explicit_ts


def test_default_generator_is_reset_between_tests() -> None:
    # After the autouse reset, we should start from the same baseline.
    first = make_event(kind=EventKind.BUY, asset=ETH, amount=1)
    second = make_event(kind=EventKind.BUY, asset=ETH, amount=1)

    assert first.timestamp < second.timestamp
    assert first.timestamp.date() == datetime(2024, 1, 1).date()
