from __future__ import annotations

import argparse
import json
import logging
from datetime import timedelta
from decimal import Decimal
from pathlib import Path
from typing import Any, Sequence

from config import config
from db.db import init_db
from db.repositories import SqlRateStore
from domain.cost_basis import CostBasisMethod
from domain.events import parse_events
from domain.ledger import LedgerEngine
from domain.pricing import CurrencyConverter
from services.currency_converter import build_default_converter
from utils.ledger_summary import render_ledgers
from utils.tax_export import render_tax_summary, write_rows_csv
from utils.tax_summary import TaxReport, TaxReportBuilder

logger = logging.getLogger(__name__)


def load_event_records(path: Path) -> list[dict[str, Any]]:
    """Read canonical event records from a JSON array or a JSONL file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix == ".jsonl":
        return [json.loads(line) for line in text.splitlines() if line.strip()]
    payload = json.loads(text)
    if not isinstance(payload, list):
        msg = f"{path} must contain a JSON array of events"
        raise ValueError(msg)
    return payload


def build_converter(cache_dir: Path, *, rate_cache_db: Path | None) -> CurrencyConverter:
    settings = config()
    store = SqlRateStore(init_db(rate_cache_db)) if rate_cache_db is not None else None
    return build_default_converter(
        cache_dir,
        reporting_currency=settings.reporting_currency,
        ttl=timedelta(hours=settings.rate_cache_ttl_hours),
        store=store,
    )


def run(
    events_path: Path,
    *,
    year: int,
    method: CostBasisMethod,
    converter: CurrencyConverter,
    tax_rate: Decimal,
    export_csv: Path | None = None,
) -> TaxReport:
    records = load_event_records(events_path)
    events, rejected = parse_events(records)
    logger.info("Loaded %d events from %s (%d rejected)", len(events), events_path, len(rejected))

    ledger_engine = LedgerEngine.rebuild(events, converter=converter)
    builder = TaxReportBuilder(converter=converter, tax_rate=tax_rate)
    report = builder.build_report(events, year, method)

    print(f"Imported {len(events)} events from {events_path}")
    if rejected:
        print(f"  Skipped {len(rejected)} unparseable record(s)")
    if ledger_engine.warnings:
        print(f"  {len(ledger_engine.warnings)} disposal(s) drove a balance negative")
    render_ledgers(ledger_engine.get_all_ledgers())
    render_tax_summary(report.summary, report.rows)

    if export_csv is not None:
        written = write_rows_csv(report.rows, export_csv)
        print(f"Wrote {written} row(s) to {export_csv}")
    return report


def main(argv: Sequence[str] | None = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    settings = config()
    parser = argparse.ArgumentParser(description="Rebuild asset ledgers and compute a yearly tax report.")
    parser.add_argument("--events", type=Path, required=True, help="JSON array or JSONL file of canonical events")
    parser.add_argument("--year", type=int, required=True)
    parser.add_argument(
        "--method",
        type=str.upper,
        choices=[method.value for method in CostBasisMethod],
        default=settings.cost_basis_method.value,
    )
    parser.add_argument("--export-csv", type=Path, default=None)
    parser.add_argument("--rate-cache-dir", type=Path, default=settings.rate_cache_dir)
    parser.add_argument("--rate-cache-db", type=Path, default=None, help="Use a sqlite rate cache instead of JSONL")
    args = parser.parse_args(argv)

    converter = build_converter(args.rate_cache_dir, rate_cache_db=args.rate_cache_db)
    run(
        args.events,
        year=args.year,
        method=CostBasisMethod(args.method),
        converter=converter,
        tax_rate=settings.tax_rate,
        export_csv=args.export_csv,
    )


if __name__ == "__main__":
    main()
