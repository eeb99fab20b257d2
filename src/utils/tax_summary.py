from __future__ import annotations

import logging
import threading
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import Iterable

from pydantic import BaseModel, Field

from domain.base_types import AssetId
from domain.cost_basis import CostBasisEngine, CostBasisMethod, DisposalResult, InsufficientLotsWarning
from domain.events import INCOME_KINDS, Event, EventKind, sort_events
from domain.pricing import CurrencyConverter, RateUnavailable

logger = logging.getLogger(__name__)

DEFAULT_TAX_RATE = Decimal("0.30")


class TaxReportError(Exception):
    def __init__(self, message: str, *, asset: str, year: int, timestamp: datetime | None = None) -> None:
        super().__init__(message)
        self.asset = asset
        self.year = year
        self.timestamp = timestamp


class ReportCancelled(Exception):
    def __init__(self, *, year: int, completed_assets: list[str]) -> None:
        super().__init__(f"Tax report for {year} cancelled after {len(completed_assets)} asset(s)")
        self.year = year
        self.completed_assets = completed_assets


class TaxYearSummary(BaseModel):
    year: int
    method: CostBasisMethod
    reporting_currency: str
    realized_gains: Decimal = Decimal(0)
    realized_losses: Decimal = Decimal(0)
    proceeds: Decimal = Decimal(0)
    cost_basis: Decimal = Decimal(0)
    fees: Decimal = Decimal(0)
    other_costs: Decimal = Decimal(0)
    other_income: Decimal = Decimal(0)
    income_by_kind: dict[EventKind, Decimal] = Field(
        default_factory=lambda: {kind: Decimal(0) for kind in sorted(INCOME_KINDS)}
    )
    total_income: Decimal = Decimal(0)
    net_capital_gains: Decimal = Decimal(0)
    taxable_amount: Decimal = Decimal(0)


class TaxReportRow(BaseModel):
    year: int
    asset: AssetId
    proceeds: Decimal
    cost_basis: Decimal
    realized_gain: Decimal
    taxable_amount: Decimal


class TaxReport(BaseModel):
    summary: TaxYearSummary
    rows: list[TaxReportRow]
    disposals: list[DisposalResult]
    warnings: list[InsufficientLotsWarning]


class TaxReportBuilder:
    """Aggregate realized gains, fees and income of one fiscal year.

    Every unit price is converted into the reporting currency at the rate of
    its own event date before lot matching, so proceeds are valued at the
    disposal date and cost basis at the acquisition date.
    """

    def __init__(
        self,
        *,
        converter: CurrencyConverter,
        tax_rate: Decimal = DEFAULT_TAX_RATE,
        resolve_missing_prices: bool = True,
    ) -> None:
        self.converter = converter
        self.tax_rate = tax_rate
        self.resolve_missing_prices = resolve_missing_prices

    @property
    def reporting_currency(self) -> str:
        return self.converter.reporting_currency.upper()

    def build_summary(self, events: Iterable[Event], year: int, method: CostBasisMethod) -> TaxYearSummary:
        return self.build_report(events, year, method).summary

    def build_report(
        self,
        events: Iterable[Event],
        year: int,
        method: CostBasisMethod,
        *,
        cancel: threading.Event | None = None,
    ) -> TaxReport:
        method = CostBasisMethod(method)
        by_asset: dict[AssetId, list[Event]] = defaultdict(list)
        for event in sort_events(events):
            if event.timestamp.year <= year:
                by_asset[event.asset].append(event)

        summary = TaxYearSummary(year=year, method=method, reporting_currency=self.reporting_currency)
        rows: list[TaxReportRow] = []
        disposals: list[DisposalResult] = []
        warnings: list[InsufficientLotsWarning] = []
        engine = CostBasisEngine(method)
        completed: list[str] = []

        for asset in sorted(by_asset):
            if cancel is not None and cancel.is_set():
                raise ReportCancelled(year=year, completed_assets=completed)

            asset_events = by_asset[asset]
            priced_events = [self._price_event(event, year) for event in asset_events]
            result = engine.process(priced_events)

            year_disposals = [disposal for disposal in result.disposals if disposal.timestamp.year == year]
            year_events = [event for event in priced_events if event.timestamp.year == year]

            for disposal in year_disposals:
                gain = disposal.realized_gain
                summary.realized_gains += max(Decimal(0), gain)
                summary.realized_losses += max(Decimal(0), -gain)
                summary.proceeds += disposal.proceeds
                summary.cost_basis += disposal.cost_basis_consumed

            for event in year_events:
                summary.fees += self._convert_fee(event, year)
                if event.kind.is_income and event.unit_price is not None:
                    income = event.amount * event.unit_price
                    summary.other_income += income
                    summary.income_by_kind[event.kind] += income

            if year_disposals:
                rows.append(self._row(asset, year, year_disposals))
            disposals.extend(year_disposals)
            warnings.extend(warning for warning in result.warnings if warning.timestamp.year == year)
            completed.append(asset)

        summary.net_capital_gains = (
            summary.realized_gains - summary.realized_losses - summary.fees - summary.other_costs
        )
        summary.total_income = sum(summary.income_by_kind.values(), start=Decimal(0))
        summary.taxable_amount = sum((row.taxable_amount for row in rows), start=Decimal(0))
        rows.sort(key=lambda row: (-row.cost_basis, row.asset))

        logger.info(
            "Built %s tax report for %d: %d asset row(s), %d disposal(s), %d warning(s)",
            method,
            year,
            len(rows),
            len(disposals),
            len(warnings),
        )
        return TaxReport(summary=summary, rows=rows, disposals=disposals, warnings=warnings)

    def _row(self, asset: AssetId, year: int, disposals: list[DisposalResult]) -> TaxReportRow:
        proceeds = sum((disposal.proceeds for disposal in disposals), start=Decimal(0))
        cost_basis = sum((disposal.cost_basis_consumed for disposal in disposals), start=Decimal(0))
        realized_gain = proceeds - cost_basis
        return TaxReportRow(
            year=year,
            asset=asset,
            proceeds=proceeds,
            cost_basis=cost_basis,
            realized_gain=realized_gain,
            taxable_amount=realized_gain * self.tax_rate,
        )

    def _price_event(self, event: Event, year: int) -> Event:
        """Return the event with its unit price expressed in the reporting currency."""
        if not event.kind.is_taxable:
            return event

        try:
            if event.unit_price is not None:
                currency = event.price_currency or self.reporting_currency
                unit_price = self.converter.convert(event.unit_price, currency, event.timestamp)
            elif self.resolve_missing_prices:
                unit_price = self.converter.get_rate(event.asset, event.timestamp)
            else:
                return event
        except RateUnavailable as exc:
            raise self._rate_error(exc, event, year) from exc

        return event.model_copy(update={"unit_price": unit_price, "price_currency": self.reporting_currency})

    def _convert_fee(self, event: Event, year: int) -> Decimal:
        if not event.fee_amount:
            return Decimal(0)
        currency = event.fee_currency or event.asset
        try:
            return self.converter.convert(event.fee_amount, currency, event.timestamp)
        except RateUnavailable as exc:
            raise self._rate_error(exc, event, year) from exc

    @staticmethod
    def _rate_error(exc: RateUnavailable, event: Event, year: int) -> TaxReportError:
        return TaxReportError(
            f"Cannot build {year} tax report for asset={event.asset}: no {exc.currency} rate "
            f"for event={event.id} @{event.timestamp.isoformat()}",
            asset=event.asset,
            year=year,
            timestamp=event.timestamp,
        )


def build_summary(
    events: Iterable[Event],
    year: int,
    method: CostBasisMethod,
    converter: CurrencyConverter,
    *,
    tax_rate: Decimal = DEFAULT_TAX_RATE,
) -> TaxYearSummary:
    return TaxReportBuilder(converter=converter, tax_rate=tax_rate).build_summary(events, year, method)


__all__ = [
    "DEFAULT_TAX_RATE",
    "ReportCancelled",
    "TaxReport",
    "TaxReportBuilder",
    "TaxReportError",
    "TaxReportRow",
    "TaxYearSummary",
    "build_summary",
]
