from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Iterable, Protocol

from pydantic import BaseModel, computed_field

from .base_types import AssetId, EventId
from .events import Event, EventDirection, ensure_chronological

logger = logging.getLogger(__name__)


class CostBasisMethod(StrEnum):
    FIFO = "FIFO"
    AVERAGE = "AVERAGE"


@dataclass
class Lot:
    event_id: EventId
    acquired_timestamp: datetime
    unit_cost: Decimal
    remaining_amount: Decimal


@dataclass
class AverageCostState:
    running_amount: Decimal = Decimal(0)
    running_cost_total: Decimal = Decimal(0)

    @property
    def average_unit_cost(self) -> Decimal | None:
        if self.running_amount <= 0:
            return None
        return self.running_cost_total / self.running_amount


@dataclass(frozen=True)
class InsufficientLotsWarning:
    event_id: EventId
    asset: AssetId
    timestamp: datetime
    requested: Decimal
    shortfall: Decimal


class LotConsumption(BaseModel):
    lot_event_id: EventId
    acquired_timestamp: datetime
    amount: Decimal
    unit_cost: Decimal

    @computed_field  # type: ignore[prop-decorator]
    @property
    def cost(self) -> Decimal:
        return self.amount * self.unit_cost


class DisposalResult(BaseModel):
    event_id: EventId
    asset: AssetId
    timestamp: datetime
    amount: Decimal
    proceeds: Decimal
    cost_basis_consumed: Decimal
    consumed_lots: list[LotConsumption] = []
    # Quantity costed at zero basis because no open lots were left.
    shortfall: Decimal = Decimal(0)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def realized_gain(self) -> Decimal:
        return self.proceeds - self.cost_basis_consumed


class OpenLotSnapshot(BaseModel):
    event_id: EventId
    acquired_timestamp: datetime
    unit_cost: Decimal
    remaining_amount: Decimal


class AverageCostSnapshot(BaseModel):
    running_amount: Decimal
    running_cost_total: Decimal
    average_unit_cost: Decimal | None


class CostBasisResult(BaseModel):
    asset: AssetId
    method: CostBasisMethod
    disposals: list[DisposalResult]
    open_lots: list[OpenLotSnapshot] = []
    average_state: AverageCostSnapshot | None = None
    warnings: list[InsufficientLotsWarning] = []


class CostBasisTracker(Protocol):
    def acquire(self, event: Event) -> None: ...

    def dispose(self, event: Event) -> DisposalResult: ...


def _proceeds(event: Event) -> Decimal:
    if event.unit_price is None:
        return Decimal(0)
    return event.amount * event.unit_price


class FifoCostBasis(CostBasisTracker):
    """Open-lot queue per asset, consumed oldest first."""

    def __init__(self) -> None:
        self.lots: deque[Lot] = deque()
        self.warnings: list[InsufficientLotsWarning] = []

    def acquire(self, event: Event) -> None:
        if event.unit_price is None:
            logger.debug("Skipping unpriced acquisition %s for asset=%s", event.id, event.asset)
            return
        if event.amount == 0:
            return
        self.lots.append(
            Lot(
                event_id=event.id,
                acquired_timestamp=event.timestamp,
                unit_cost=event.unit_price,
                remaining_amount=event.amount,
            )
        )

    def dispose(self, event: Event) -> DisposalResult:
        to_consume = event.amount
        cost_basis = Decimal(0)
        consumed_lots: list[LotConsumption] = []

        while to_consume > 0 and self.lots:
            lot = self.lots[0]
            consumed = min(to_consume, lot.remaining_amount)
            cost_basis += consumed * lot.unit_cost
            lot.remaining_amount -= consumed
            to_consume -= consumed
            if consumed > 0:
                consumed_lots.append(
                    LotConsumption(
                        lot_event_id=lot.event_id,
                        acquired_timestamp=lot.acquired_timestamp,
                        amount=consumed,
                        unit_cost=lot.unit_cost,
                    )
                )
            if lot.remaining_amount == 0:
                self.lots.popleft()

        if to_consume > 0:
            warning = InsufficientLotsWarning(
                event_id=event.id,
                asset=event.asset,
                timestamp=event.timestamp,
                requested=event.amount,
                shortfall=to_consume,
            )
            self.warnings.append(warning)
            logger.warning(
                "Not enough open lots for asset=%s event=%s @%s: %s of %s costed at zero basis",
                event.asset,
                event.id,
                event.timestamp.isoformat(),
                to_consume,
                event.amount,
            )

        return DisposalResult(
            event_id=event.id,
            asset=event.asset,
            timestamp=event.timestamp,
            amount=event.amount,
            proceeds=_proceeds(event),
            cost_basis_consumed=cost_basis,
            consumed_lots=consumed_lots,
            shortfall=to_consume,
        )

    def open_lots(self) -> list[OpenLotSnapshot]:
        return [
            OpenLotSnapshot(
                event_id=lot.event_id,
                acquired_timestamp=lot.acquired_timestamp,
                unit_cost=lot.unit_cost,
                remaining_amount=lot.remaining_amount,
            )
            for lot in self.lots
        ]


class AverageCostBasis(CostBasisTracker):
    """Single blended unit cost across all currently held units."""

    def __init__(self) -> None:
        self.state = AverageCostState()

    def acquire(self, event: Event) -> None:
        if event.unit_price is None:
            logger.debug("Skipping unpriced acquisition %s for asset=%s", event.id, event.asset)
            return
        self.state.running_cost_total += event.amount * event.unit_price
        self.state.running_amount += event.amount

    def dispose(self, event: Event) -> DisposalResult:
        average = self.state.average_unit_cost
        if average is None:
            logger.debug("No held units for asset=%s at event=%s, cost basis is zero", event.asset, event.id)
            average = Decimal(0)

        cost_basis = event.amount * average
        self.state.running_amount = max(Decimal(0), self.state.running_amount - event.amount)
        # Re-based on the remaining units; reaching zero resets the average.
        self.state.running_cost_total = self.state.running_amount * average

        return DisposalResult(
            event_id=event.id,
            asset=event.asset,
            timestamp=event.timestamp,
            amount=event.amount,
            proceeds=_proceeds(event),
            cost_basis_consumed=cost_basis,
        )

    def snapshot(self) -> AverageCostSnapshot:
        return AverageCostSnapshot(
            running_amount=self.state.running_amount,
            running_cost_total=self.state.running_cost_total,
            average_unit_cost=self.state.average_unit_cost,
        )


class CostBasisEngine:
    """Match disposals of one asset against its acquisitions."""

    def __init__(self, method: CostBasisMethod = CostBasisMethod.FIFO) -> None:
        self.method = CostBasisMethod(method)

    def process(self, events: Iterable[Event]) -> CostBasisResult:
        """Caller must provide the events of a single asset in chronological order."""
        events = list(events)
        ensure_chronological(events)
        assets = {event.asset for event in events}
        if len(assets) > 1:
            msg = f"CostBasisEngine.process expects a single asset, got {sorted(assets)}"
            raise ValueError(msg)
        asset = AssetId(next(iter(assets), ""))

        tracker: FifoCostBasis | AverageCostBasis
        if self.method == CostBasisMethod.FIFO:
            tracker = FifoCostBasis()
        else:
            tracker = AverageCostBasis()

        disposals: list[DisposalResult] = []
        for event in events:
            if not event.kind.is_taxable:
                continue
            if event.kind.direction == EventDirection.ACQUIRE:
                tracker.acquire(event)
            else:
                disposals.append(tracker.dispose(event))

        if isinstance(tracker, FifoCostBasis):
            return CostBasisResult(
                asset=asset,
                method=self.method,
                disposals=disposals,
                open_lots=tracker.open_lots(),
                warnings=list(tracker.warnings),
            )
        return CostBasisResult(
            asset=asset,
            method=self.method,
            disposals=disposals,
            average_state=tracker.snapshot(),
        )


__all__ = [
    "AverageCostBasis",
    "AverageCostSnapshot",
    "AverageCostState",
    "CostBasisEngine",
    "CostBasisMethod",
    "CostBasisResult",
    "CostBasisTracker",
    "DisposalResult",
    "FifoCostBasis",
    "InsufficientLotsWarning",
    "Lot",
    "LotConsumption",
    "OpenLotSnapshot",
]
