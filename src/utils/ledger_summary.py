from __future__ import annotations

from typing import Iterable

from domain.ledger import AssetLedger

from .formatting import format_currency, format_decimal


def render_ledgers(ledgers: Iterable[AssetLedger]) -> None:
    print("Asset ledgers:")
    rows: list[tuple[str, str, str, str, str]] = []
    for ledger in ledgers:
        flagged = sum(1 for entry in ledger.entries if entry.negative_balance)
        average = format_currency(ledger.average_cost) if ledger.average_cost is not None else "-"
        rows.append(
            (
                ledger.asset,
                str(len(ledger.entries)),
                format_decimal(ledger.current_balance),
                average,
                str(flagged) if flagged else "",
            )
        )

    if not rows:
        print("  (empty)")
        return

    headers = ("Asset", "Entries", "Balance", "Avg cost", "Negative")
    widths = [max(len(headers[idx]), max(len(row[idx]) for row in rows)) for idx in range(len(headers))]

    header = f"{headers[0]:<{widths[0]}} " + " ".join(
        f"{title:>{width}}" for title, width in zip(headers[1:], widths[1:])
    )
    lines = [header, "-" * len(header)]
    for row in rows:
        lines.append(f"{row[0]:<{widths[0]}} " + " ".join(f"{cell:>{width}}" for cell, width in zip(row[1:], widths[1:])))

    lines.append("-" * len(header))
    print("\n".join(lines))
