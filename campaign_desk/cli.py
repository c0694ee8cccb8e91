"""
Command-line interface for Campaign Desk.

Administrative helpers for running the dashboard backend without the UI:
creating the schema, exporting tables to CSV page by page, recording an
adjustment and printing the dashboard metrics.

    campaign-desk init-db
    campaign-desk export invoices --status overdue --pages 3 --output-dir out/
    campaign-desk adjust <line-item-id> -250.00 --comment "Make-good credit"
    campaign-desk metrics --preset last30days
"""

from __future__ import annotations

import argparse
import json
import logging
import os
from functools import partial
from typing import Optional, Sequence

from . import adjustments, campaigns, change_log, csv_export, db, invoices, line_items, metrics
from .filters import (
    DATE_RANGE_PRESETS,
    CampaignFilters,
    ChangeLogFilters,
    InvoiceFilters,
    LineItemFilters,
    date_range_from_preset,
)
from .table_session import TableSession

# entity -> (data access module, filter class, CSV columns)
ENTITIES = {
    "campaigns": (campaigns, CampaignFilters, csv_export.CAMPAIGN_COLUMNS),
    "invoices": (invoices, InvoiceFilters, csv_export.INVOICE_COLUMNS),
    "line-items": (line_items, LineItemFilters, csv_export.LINE_ITEM_COLUMNS),
    "change-logs": (change_log, ChangeLogFilters, csv_export.CHANGE_LOG_COLUMNS),
}


def _configure_logging() -> None:
    level = os.getenv("CAMPAIGN_DESK_LOG_LEVEL", "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_filters(entity: str, args: argparse.Namespace):
    _, filter_cls, _ = ENTITIES[entity]
    date_range = date_range_from_preset(args.preset) if args.preset else None
    kwargs = {}
    if args.page_size:
        kwargs["page_size"] = args.page_size
    if entity == "campaigns":
        kwargs.update(name=args.name, statuses=tuple(args.status or ()), created_date_range=date_range)
    elif entity == "invoices":
        kwargs.update(
            campaign_id=args.campaign_id,
            statuses=tuple(args.status or ()),
            created_date_range=date_range,
        )
    elif entity == "line-items":
        kwargs.update(name=args.name, campaign_id=args.campaign_id, created_date_range=date_range)
    else:
        kwargs.update(
            campaign_id=args.campaign_id,
            start_date=date_range.from_ if date_range else None,
            end_date=date_range.to if date_range else None,
        )
    return filter_cls(**kwargs)


def cmd_init_db(args: argparse.Namespace) -> None:
    db.configure(args.database_url)
    print("Database initialised")


def cmd_export(args: argparse.Namespace) -> None:
    module, _, columns = ENTITIES[args.entity]
    if args.bucket:
        sink = csv_export.S3Sink(args.bucket, os.getenv("EXPORT_PREFIX", "exports"))
    elif args.output_dir:
        sink = csv_export.DirectorySink(args.output_dir)
    else:
        sink = csv_export.default_sink()
    base_name = args.filename or csv_export.dated_filename(args.entity)

    db.configure(args.database_url)
    session = db.get_db_session()
    try:
        table = TableSession(partial(module.get_by_filter, session), _build_filters(args.entity, args))
        table.load()
        exported = 0
        for number in range(1, args.pages + 1):
            if not table.records:
                break
            name = base_name if args.pages == 1 else f"{base_name}-page-{number}"
            table.export_csv(name, columns=columns, sink=sink)
            exported += 1
            print(f"Exported {len(table.records)} {args.entity} to {csv_export.csv_filename(name)}")
            if not table.has_next_page:
                break
            table.next_page()
        if not exported:
            print(f"No {args.entity} match the given filters")
    finally:
        session.close()


def cmd_adjust(args: argparse.Namespace) -> None:
    db.configure(args.database_url)
    session = db.get_db_session()
    apply = adjustments.apply_invoice_adjustment if args.invoice else adjustments.apply_line_item_adjustment
    try:
        result = apply(session, args.id, args.amount, args.comment, user_name=args.user)
    except adjustments.AdjustmentError as exc:
        raise SystemExit(f"Adjustment rejected: {exc}")
    finally:
        session.close()
    entry = result.entry
    print(
        f"{entry.change_type}: {result.previous_amount} -> {result.new_amount} "
        f"on invoice {entry.invoice_number} (total now {result.invoice.total_amount})"
    )


def cmd_metrics(args: argparse.Namespace) -> None:
    db.configure(args.database_url)
    session = db.get_db_session()
    try:
        date_range = date_range_from_preset(args.preset) if args.preset else None
        data = metrics.load_dashboard_metrics(session, date_range)
    finally:
        session.close()
    print(json.dumps(data, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    presets = [key for key, _ in DATE_RANGE_PRESETS]
    parser = argparse.ArgumentParser(prog="campaign-desk", description="Campaign Desk administration")
    parser.add_argument("--database-url", default=os.environ.get("DATABASE_URL"), help="SQLAlchemy database URL")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init-db", help="Create the database tables")
    init.set_defaults(func=cmd_init_db)

    export = sub.add_parser("export", help="Export a table to CSV, one file per page")
    export.add_argument("entity", choices=sorted(ENTITIES))
    export.add_argument("--filename", help="Base file name (default <entity>-<today>)")
    export.add_argument("--page-size", type=int, help="Rows per page")
    export.add_argument("--pages", type=int, default=1, help="Number of pages to export")
    export.add_argument("--output-dir", help="Directory to save the CSV files into")
    export.add_argument("--bucket", help="S3 bucket to upload the CSV files to")
    export.add_argument("--name", help="Name contains (campaigns, line items)")
    export.add_argument("--campaign-id")
    export.add_argument("--status", action="append", help="Status filter, may be repeated")
    export.add_argument("--preset", choices=presets, help="Created date range preset")
    export.set_defaults(func=cmd_export)

    adjust = sub.add_parser("adjust", help="Set the adjustment on a line item or invoice")
    adjust.add_argument("id", help="Line item id (or invoice id with --invoice)")
    adjust.add_argument("amount", help="New adjustment value")
    adjust.add_argument("--comment", default="", help="Reason for the change")
    adjust.add_argument("--user", default="System", help="Name recorded in the change log")
    adjust.add_argument("--invoice", action="store_true", help="Adjust the invoice itself")
    adjust.set_defaults(func=cmd_adjust)

    metric = sub.add_parser("metrics", help="Print dashboard metrics as JSON")
    metric.add_argument("--preset", choices=presets, help="Created date range preset")
    metric.set_defaults(func=cmd_metrics)
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    _configure_logging()
    args = build_parser().parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
