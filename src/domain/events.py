from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .base_types import AssetId, CurrencyCode, EventId

logger = logging.getLogger(__name__)


def normalize_symbol(value: str) -> str:
    return value.strip().upper()


class EventDirection(StrEnum):
    ACQUIRE = "ACQUIRE"
    DISPOSE = "DISPOSE"


class EventKind(StrEnum):
    BUY = "BUY"
    TRANSFER_IN = "TRANSFER_IN"
    STAKING_REWARD = "STAKING_REWARD"
    AIRDROP = "AIRDROP"
    MINING = "MINING"
    SELL = "SELL"
    TRANSFER_OUT = "TRANSFER_OUT"
    FEE = "FEE"

    @property
    def direction(self) -> EventDirection:
        if self in _DISPOSE_KINDS:
            return EventDirection.DISPOSE
        return EventDirection.ACQUIRE

    @property
    def is_income(self) -> bool:
        return self in INCOME_KINDS

    @property
    def is_taxable(self) -> bool:
        """Whether the kind opens or consumes cost basis.

        Transfers only move units between the owner's wallets.
        """
        return self not in _TRANSFER_KINDS


_DISPOSE_KINDS = frozenset({EventKind.SELL, EventKind.TRANSFER_OUT, EventKind.FEE})
_TRANSFER_KINDS = frozenset({EventKind.TRANSFER_IN, EventKind.TRANSFER_OUT})
INCOME_KINDS = frozenset({EventKind.STAKING_REWARD, EventKind.AIRDROP, EventKind.MINING})


class Event(BaseModel):
    """Canonical financial event as delivered by the import adapters.

    `amount` is always a magnitude; the direction comes from `kind`.
    `unit_price` is denominated in `price_currency`, or in the reporting
    currency when `price_currency` is not set.
    """

    model_config = ConfigDict(frozen=True)

    id: EventId
    timestamp: datetime
    kind: EventKind
    asset: AssetId
    amount: Decimal
    unit_price: Decimal | None = None
    price_currency: CurrencyCode | None = None
    fee_amount: Decimal | None = None
    fee_currency: CurrencyCode | None = None
    platform: str = ""

    @field_validator("timestamp")
    @classmethod
    def _ensure_timezone(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    @field_validator("asset", "price_currency", "fee_currency")
    @classmethod
    def _normalize_symbol(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return normalize_symbol(value)

    @model_validator(mode="after")
    def _validate_fields(self) -> Event:
        if not self.id:
            raise ValueError("Event.id must be non-empty")
        if not self.asset:
            raise ValueError("Event.asset must be non-empty")
        if self.amount < 0:
            raise ValueError("Event.amount must be >= 0")
        if self.unit_price is not None and self.unit_price < 0:
            raise ValueError("Event.unit_price must be >= 0")
        if self.fee_amount is not None and self.fee_amount < 0:
            raise ValueError("Event.fee_amount must be >= 0")
        return self

    @property
    def signed_amount(self) -> Decimal:
        if self.kind.direction == EventDirection.DISPOSE:
            return -self.amount
        return self.amount


@dataclass(frozen=True)
class UnparseableEvent:
    """Raw record rejected while building canonical events."""

    index: int
    record_id: str | None
    reason: str


def parse_events(records: Iterable[Mapping[str, Any]]) -> tuple[list[Event], list[UnparseableEvent]]:
    """Validate raw records into events, skipping the malformed ones."""
    events: list[Event] = []
    rejected: list[UnparseableEvent] = []
    for index, record in enumerate(records):
        try:
            events.append(Event.model_validate(record))
        except ValidationError as exc:
            record_id = record.get("id") if isinstance(record, Mapping) else None
            warning = UnparseableEvent(
                index=index,
                record_id=str(record_id) if record_id is not None else None,
                reason="; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors()),
            )
            logger.warning("Skipping unparseable event #%d (id=%s): %s", index, warning.record_id, warning.reason)
            rejected.append(warning)
    return events, rejected


def sort_events(events: Iterable[Event]) -> list[Event]:
    """Order events by timestamp; ties keep their arrival order."""
    return sorted(events, key=lambda event: event.timestamp)


def ensure_chronological(events: Iterable[Event]) -> None:
    previous: Event | None = None
    for event in events:
        if previous is not None and event.timestamp < previous.timestamp:
            msg = (
                f"Event {event.id} @{event.timestamp.isoformat()} precedes "
                f"{previous.id} @{previous.timestamp.isoformat()}"
            )
            raise ValueError(msg)
        previous = event


__all__ = [
    "INCOME_KINDS",
    "Event",
    "EventDirection",
    "EventKind",
    "UnparseableEvent",
    "ensure_chronological",
    "normalize_symbol",
    "parse_events",
    "sort_events",
]
