from __future__ import annotations

import csv
from pathlib import Path
from typing import Iterable

from .formatting import format_currency
from .tax_summary import TaxReportRow, TaxYearSummary

ROW_COLUMNS = ("year", "asset", "proceeds", "cost_basis", "realized_gain", "taxable_amount")


def write_rows_csv(rows: Iterable[TaxReportRow], path: Path) -> int:
    """Write the per-asset rows in their report order. Returns the number of rows written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    written = 0
    with path.open("w", encoding="utf-8", newline="") as handle:
        writer = csv.writer(handle)
        writer.writerow(ROW_COLUMNS)
        for row in rows:
            writer.writerow(
                [
                    row.year,
                    row.asset,
                    format_currency(row.proceeds),
                    format_currency(row.cost_basis),
                    format_currency(row.realized_gain),
                    format_currency(row.taxable_amount),
                ]
            )
            written += 1
    return written


def render_tax_summary(summary: TaxYearSummary, rows: Iterable[TaxReportRow]) -> None:
    rows_list = list(rows)
    currency = summary.reporting_currency
    print(f"Tax summary {summary.year} ({summary.method}, {currency}):")

    totals = [
        ("Proceeds", summary.proceeds),
        ("Cost basis", summary.cost_basis),
        ("Realized gains", summary.realized_gains),
        ("Realized losses", summary.realized_losses),
        ("Fees", summary.fees),
        ("Other costs", summary.other_costs),
        ("Net capital gains", summary.net_capital_gains),
        ("Other income", summary.other_income),
        *((f"  {kind.value.replace('_', ' ').lower()}", value) for kind, value in summary.income_by_kind.items()),
        ("Taxable amount", summary.taxable_amount),
    ]
    label_width = max(len(label) for label, _ in totals)
    value_width = max(len(format_currency(value)) for _, value in totals)
    for label, value in totals:
        print(f"  {label:<{label_width}} {format_currency(value):>{value_width}}")

    if not rows_list:
        print("  (no disposals)")
        return

    headers = ("Asset", "Proceeds", "Cost basis", "Gain/Loss", "Taxable")
    table = [
        (
            row.asset,
            format_currency(row.proceeds),
            format_currency(row.cost_basis),
            format_currency(row.realized_gain),
            format_currency(row.taxable_amount),
        )
        for row in rows_list
    ]
    widths = [max(len(headers[idx]), max(len(line[idx]) for line in table)) for idx in range(len(headers))]

    header = f"{headers[0]:<{widths[0]}} " + " ".join(
        f"{title:>{width}}" for title, width in zip(headers[1:], widths[1:])
    )
    lines = [header, "-" * len(header)]
    for line in table:
        lines.append(
            f"{line[0]:<{widths[0]}} " + " ".join(f"{cell:>{width}}" for cell, width in zip(line[1:], widths[1:]))
        )
    print("\n".join(lines))
