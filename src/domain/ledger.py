from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel, ConfigDict, Field

from .base_types import AssetId, EventId
from .events import Event, EventDirection, EventKind, normalize_symbol, sort_events
from .pricing import CurrencyConverter

logger = logging.getLogger(__name__)


class EventOrderError(ValueError):
    def __init__(self, event: Event, last_timestamp: datetime) -> None:
        self.event = event
        self.last_timestamp = last_timestamp
        super().__init__(
            f"Event {event.id} @{event.timestamp.isoformat()} is older than the last processed event "
            f"@{last_timestamp.isoformat()}; rebuild the ledger from the merged event list instead"
        )


@dataclass(frozen=True)
class NegativeBalanceWarning:
    event_id: EventId
    asset: AssetId
    timestamp: datetime
    balance_after: Decimal


class LedgerEntry(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime
    event_id: EventId
    asset: AssetId
    signed_change: Decimal
    balance_after: Decimal
    average_cost_after: Decimal | None = None
    platform: str
    kind: EventKind
    negative_balance: bool = False


class AssetLedger(BaseModel):
    asset: AssetId
    entries: list[LedgerEntry] = Field(default_factory=list)
    current_balance: Decimal = Decimal(0)
    # Weighted mean acquisition price of the units currently held; None while nothing is held.
    average_cost: Decimal | None = None


@dataclass(frozen=True)
class AssetState:
    balance: Decimal = Decimal(0)
    average_cost: Decimal | None = None


def advance(state: AssetState, event: Event) -> tuple[AssetState, LedgerEntry]:
    """Apply one event to an asset's running state.

    Pure: returns the next state and the ledger entry describing the step.
    """
    signed_change = event.signed_amount
    new_balance = state.balance + signed_change

    if new_balance <= 0:
        average_cost = None
    elif event.kind.direction == EventDirection.DISPOSE:
        average_cost = state.average_cost
    else:
        average_cost = _acquisition_average(state, event)

    entry = LedgerEntry(
        id=f"{event.id}-ledger",
        timestamp=event.timestamp,
        event_id=event.id,
        asset=event.asset,
        signed_change=signed_change,
        balance_after=new_balance,
        average_cost_after=average_cost,
        platform=event.platform,
        kind=event.kind,
        negative_balance=new_balance < 0,
    )
    return AssetState(balance=new_balance, average_cost=average_cost), entry


def _acquisition_average(state: AssetState, event: Event) -> Decimal:
    held = max(state.balance, Decimal(0))
    previous_average = state.average_cost if state.average_cost is not None else Decimal(0)
    if event.unit_price is None:
        # Unpriced units join at the current average.
        return previous_average

    total_units = held + event.amount
    if total_units == 0:
        return previous_average
    return (held * previous_average + event.amount * event.unit_price) / total_units


class LedgerEngine:
    """Running per-asset ledger fed one event at a time in chronological order.

    New or late events are never patched in: call `rebuild` with the merged list.
    """

    def __init__(self, *, converter: CurrencyConverter | None = None, reporting_currency: str = "SEK") -> None:
        self.converter = converter
        self.reporting_currency = (converter.reporting_currency if converter else reporting_currency).upper()
        self._ledgers: dict[AssetId, AssetLedger] = {}
        self._last_timestamp: datetime | None = None
        self.warnings: list[NegativeBalanceWarning] = []

    @classmethod
    def rebuild(
        cls,
        events: Iterable[Event],
        *,
        converter: CurrencyConverter | None = None,
        reporting_currency: str = "SEK",
    ) -> LedgerEngine:
        engine = cls(converter=converter, reporting_currency=reporting_currency)
        for event in sort_events(events):
            engine.process_event(event)
        return engine

    def process_event(self, event: Event) -> LedgerEntry:
        if self._last_timestamp is not None and event.timestamp < self._last_timestamp:
            raise EventOrderError(event, self._last_timestamp)

        ledger = self._ledgers.get(event.asset)
        if ledger is None:
            ledger = AssetLedger(asset=event.asset)
            self._ledgers[event.asset] = ledger

        state = AssetState(balance=ledger.current_balance, average_cost=ledger.average_cost)
        state, entry = advance(state, self._in_reporting_currency(event))

        ledger.entries.append(entry)
        ledger.current_balance = state.balance
        ledger.average_cost = state.average_cost
        self._last_timestamp = event.timestamp

        if entry.negative_balance:
            warning = NegativeBalanceWarning(
                event_id=event.id,
                asset=event.asset,
                timestamp=event.timestamp,
                balance_after=entry.balance_after,
            )
            self.warnings.append(warning)
            logger.warning(
                "Negative balance for asset=%s after event=%s @%s: %s",
                event.asset,
                event.id,
                event.timestamp.isoformat(),
                entry.balance_after,
            )
        return entry

    def get_ledger(self, asset: str) -> AssetLedger | None:
        ledger = self._ledgers.get(AssetId(normalize_symbol(asset)))
        if ledger is None:
            return None
        return ledger.model_copy(deep=True)

    def get_all_ledgers(self) -> list[AssetLedger]:
        return [self._ledgers[asset].model_copy(deep=True) for asset in sorted(self._ledgers)]

    def _in_reporting_currency(self, event: Event) -> Event:
        """Express an acquisition's unit price in the reporting currency.

        Without a converter a foreign price cannot be used and the units join
        at the current average, like an unpriced acquisition.
        """
        currency = event.price_currency
        if event.kind.direction == EventDirection.DISPOSE:
            return event
        if event.unit_price is None or currency is None or currency == self.reporting_currency:
            return event
        if self.converter is None:
            logger.warning(
                "Ignoring %s unit price of event=%s for asset=%s: no converter to %s",
                currency,
                event.id,
                event.asset,
                self.reporting_currency,
            )
            return event.model_copy(update={"unit_price": None, "price_currency": None})
        unit_price = self.converter.convert(event.unit_price, currency, event.timestamp)
        return event.model_copy(update={"unit_price": unit_price, "price_currency": self.reporting_currency})


__all__ = [
    "AssetLedger",
    "AssetState",
    "EventOrderError",
    "LedgerEngine",
    "LedgerEntry",
    "NegativeBalanceWarning",
    "advance",
]
