"""
Invoice queries and mutations.

Mutations commit their own transaction and roll back on any failure, so a
caller never observes half of a multi-document write (for example a move that
updated the source invoice but not the destination).
"""

from __future__ import annotations

import datetime as _dt
import logging
import time
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from . import change_log, line_items as line_item_store
from .filters import MAX_IN_VALUES, InvoiceFilters
from .models import INVOICE_STATUSES, Campaign, Invoice, LineItem
from .querying import Page, date_range_conditions, paginate

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")

SORT_FIELDS = {
    "created_at": Invoice.created_at,
    "issue_date": Invoice.issue_date,
    "due_date": Invoice.due_date,
}


class InvoiceError(Exception):
    pass


class InvoiceNotFound(InvoiceError):
    pass


def money(value) -> Decimal:
    if value is None:
        return Decimal("0.00")
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


def _conditions(filters: InvoiceFilters):
    conditions = []
    if filters.campaign_id:
        conditions.append(Invoice.campaign_id == filters.campaign_id)
    if filters.status:
        conditions.append(Invoice.status == filters.status)
    if filters.statuses:
        conditions.append(Invoice.status.in_(list(filters.statuses)[:MAX_IN_VALUES]))

    # only one date range applies: issue > due > paid > created
    range_column = None
    for column, date_range in (
        (Invoice.issue_date, filters.issue_date_range),
        (Invoice.due_date, filters.due_date_range),
        (Invoice.paid_date, filters.paid_date_range),
        (Invoice.created_at, filters.created_date_range),
    ):
        if date_range is not None and date_range.is_set:
            conditions.extend(date_range_conditions(column, date_range))
            if column is Invoice.paid_date:
                conditions.append(Invoice.paid_date.is_not(None))
            range_column = column
            break
    return conditions, range_column


def get_by_id(session: Session, invoice_id: str) -> Optional[Invoice]:
    return session.get(Invoice, invoice_id)


def require(session: Session, invoice_id: str) -> Invoice:
    invoice = get_by_id(session, invoice_id)
    if invoice is None:
        raise InvoiceNotFound(f"Invoice {invoice_id} not found")
    return invoice


def get_total_count(session: Session, filters: Optional[InvoiceFilters] = None) -> int:
    conditions, _ = _conditions(filters or InvoiceFilters())
    return session.scalar(select(func.count()).select_from(Invoice).where(*conditions))


def get_by_filter(session: Session, filters: InvoiceFilters) -> Page[Invoice]:
    conditions, range_column = _conditions(filters)
    if range_column is not None:
        order = [range_column, Invoice.id]
    elif filters.sort_by:
        if filters.sort_by not in SORT_FIELDS:
            raise ValueError(f"cannot sort invoices by {filters.sort_by!r}")
        order = [SORT_FIELDS[filters.sort_by], Invoice.id]
    else:
        order = [Invoice.id]
    return paginate(
        session,
        select(Invoice).where(*conditions),
        order,
        descending=filters.sort_order == "desc" and len(order) > 1,
        fingerprint=filters.fingerprint(),
        page_size=filters.page_size,
        cursor=filters.cursor,
    )


def recalculate_amounts(session: Session, invoice: Invoice, overrides: Optional[dict] = None) -> Invoice:
    """Re-derive the invoice totals from its line items.

    ``overrides`` maps line item id -> adjustment to use instead of the stored
    value.  Nothing is committed.
    """
    overrides = overrides or {}
    booked = actual = adjustments = Decimal("0")
    for item in line_item_store.get_by_ids(session, invoice.line_item_ids or []):
        booked += money(item.booked_amount)
        actual += money(item.actual_amount)
        adjustments += money(overrides.get(item.id, item.adjustments))
    adjustments += money(invoice.invoice_adjustment)
    invoice.booked_amount = money(booked)
    invoice.actual_amount = money(actual)
    invoice.total_adjustments = money(adjustments)
    invoice.total_amount = money(actual + adjustments)
    session.add(invoice)
    return invoice


def update_amounts(
    session: Session,
    invoice_id: str,
    *,
    booked_amount,
    actual_amount,
    total_adjustments,
    total_amount,
) -> Invoice:
    invoice = require(session, invoice_id)
    invoice.booked_amount = money(booked_amount)
    invoice.actual_amount = money(actual_amount)
    invoice.total_adjustments = money(total_adjustments)
    invoice.total_amount = money(total_amount)
    _commit(session)
    return invoice


def update_status(
    session: Session, invoice_id: str, status: str, paid_date: Optional[_dt.date] = None
) -> Invoice:
    if status not in INVOICE_STATUSES:
        raise InvoiceError(f"Unknown invoice status {status!r}")
    invoice = require(session, invoice_id)
    invoice.status = status
    if status == "paid":
        if paid_date is not None:
            invoice.paid_date = paid_date
    else:
        invoice.paid_date = None
    _commit(session)
    return invoice


def _next_invoice_number(session: Session) -> str:
    millis = int(time.time() * 1000)
    while session.scalar(select(Invoice.id).where(Invoice.invoice_number == f"INV-{millis}")):
        millis += 1
    return f"INV-{millis}"


def _load_line_items(session: Session, line_item_ids: Sequence[str]) -> List[LineItem]:
    if not line_item_ids:
        raise InvoiceError("No line items selected")
    items = line_item_store.get_by_ids(session, line_item_ids)
    missing = set(line_item_ids) - {li.id for li in items}
    if missing:
        raise InvoiceError(f"Line items not found: {', '.join(sorted(missing))}")
    if len({li.campaign_id for li in items}) > 1:
        raise InvoiceError("Line items must be from the same campaign")
    return items


def create_from_line_items(
    session: Session,
    *,
    line_item_ids: Sequence[str],
    client_name: str,
    client_email: str,
    issue_date: _dt.date,
    due_date: _dt.date,
    currency: str = "USD",
) -> Invoice:
    """Create a draft invoice billing ``line_item_ids`` and link everything up."""
    items = _load_line_items(session, line_item_ids)
    already = [li for li in items if li.invoice_id]
    if already:
        raise InvoiceError(
            f"{len(already)} line item{'s are' if len(already) > 1 else ' is'} already on an invoice"
        )
    campaign_id = items[0].campaign_id
    try:
        invoice = Invoice(
            campaign_id=campaign_id,
            invoice_number=_next_invoice_number(session),
            line_item_ids=[li.id for li in items],
            adjustment_ids=[],
            currency=currency,
            issue_date=issue_date,
            due_date=due_date,
            status="draft",
            client_name=client_name,
            client_email=client_email,
        )
        session.add(invoice)
        session.flush()
        for item in items:
            item.invoice_id = invoice.id
        recalculate_amounts(session, invoice)
        campaign = session.get(Campaign, campaign_id)
        if campaign is not None:
            campaign.invoice_ids = list(campaign.invoice_ids or []) + [invoice.id]
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info("Created invoice %s with %d line items", invoice.invoice_number, len(items))
    return invoice


def add_line_items(session: Session, invoice_id: str, line_item_ids: Sequence[str]) -> Invoice:
    invoice = require(session, invoice_id)
    current = list(invoice.line_item_ids or [])
    new_ids = [i for i in line_item_ids if i not in current]
    if not new_ids:
        raise InvoiceError("All selected line items are already in this invoice")
    items = _load_line_items(session, new_ids)
    if any(li.campaign_id != invoice.campaign_id for li in items):
        raise InvoiceError("Line items must be from the invoice's campaign")
    if any(li.invoice_id and li.invoice_id != invoice.id for li in items):
        raise InvoiceError("Some line items are already on another invoice")
    invoice.line_item_ids = current + new_ids
    for item in items:
        item.invoice_id = invoice.id
    recalculate_amounts(session, invoice)
    _commit(session)
    return invoice


def move_line_items(
    session: Session,
    from_invoice_id: str,
    to_invoice_id: str,
    line_item_ids: Sequence[str],
    *,
    user_name: str = "System",
) -> Invoice:
    """Move line items between invoices, logging one entry per moved item."""
    source = get_by_id(session, from_invoice_id)
    if source is None:
        raise InvoiceNotFound("Source invoice not found")
    destination = get_by_id(session, to_invoice_id)
    if destination is None:
        raise InvoiceNotFound("Destination invoice not found")
    source_ids = list(source.line_item_ids or [])
    destination_ids = list(destination.line_item_ids or [])
    if any(i not in source_ids for i in line_item_ids):
        raise InvoiceError("Some line items are not in the source invoice")
    if any(i in destination_ids for i in line_item_ids):
        raise InvoiceError("Some line items are already in the destination invoice")
    items = _load_line_items(session, line_item_ids)

    try:
        source.line_item_ids = [i for i in source_ids if i not in line_item_ids]
        destination.line_item_ids = destination_ids + list(line_item_ids)
        for item in items:
            item.invoice_id = destination.id
            change_log.create(
                session,
                entity_type="line_item",
                entity_id=item.id,
                change_type="line_item_moved",
                field="invoice_id",
                previous_amount=money(item.adjustments),
                new_amount=money(item.adjustments),
                difference=Decimal("0.00"),
                booked_amount_at_time=money(item.booked_amount),
                actual_amount_at_time=money(item.actual_amount),
                comment=(
                    f"Line item moved from invoice {source.invoice_number} "
                    f"to {destination.invoice_number}"
                ),
                user_name=user_name,
                invoice_id=destination.id,
                invoice_number=destination.invoice_number,
                campaign_id=item.campaign_id or source.campaign_id,
                line_item_name=item.name,
                previous_invoice_id=source.id,
                previous_invoice_number=source.invoice_number,
            )
        recalculate_amounts(session, source)
        recalculate_amounts(session, destination)
        session.commit()
    except Exception:
        session.rollback()
        raise
    logger.info(
        "Moved %d line items from %s to %s",
        len(items), source.invoice_number, destination.invoice_number,
    )
    return destination


def remove_line_items(session: Session, invoice_id: str, line_item_ids: Sequence[str]) -> Invoice:
    invoice = require(session, invoice_id)
    current = list(invoice.line_item_ids or [])
    if any(i not in current for i in line_item_ids):
        raise InvoiceError("Some line items are not in this invoice")
    invoice.line_item_ids = [i for i in current if i not in line_item_ids]
    for item in line_item_store.get_by_ids(session, line_item_ids):
        item.invoice_id = None
    recalculate_amounts(session, invoice)
    _commit(session)
    return invoice


def _commit(session: Session) -> None:
    try:
        session.commit()
    except Exception:
        session.rollback()
        raise
