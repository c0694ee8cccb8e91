"""
Adjustment workflow.

An adjustment sets (it does not increment) the manual correction on a line
item or an invoice.  Each one writes, in a single transaction:

* the new adjustment value,
* exactly one change-log entry with the previous value, the new value and the
  reason given by the user,
* the owning invoice's recomputed totals and its ``adjustment_ids`` list.

If anything fails, including the commit itself, the transaction is rolled
back and no change-log entry survives.  Large changes are announced in Slack
once the write is committed.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Callable, Optional

from sqlalchemy.orm import Session

from . import change_log, invoices, line_items
from .invoices import money
from .models import ChangeLogEntry, Invoice, LineItem
from .utils import send_slack_message

logger = logging.getLogger(__name__)

EDITABLE_INVOICE_STATUSES = ("draft", "overdue")
MAX_COMMENT_LENGTH = 500
SIGNIFICANT_AMOUNT = Decimal("1000")
SIGNIFICANT_RATIO = Decimal("0.2")


class AdjustmentError(Exception):
    """The adjustment was rejected before anything was written."""


class AdjustmentNotFound(AdjustmentError):
    pass


class AdjustmentWriteError(AdjustmentError):
    """The write failed and was rolled back."""


@dataclass
class AdjustmentResult:
    entry: ChangeLogEntry
    invoice: Invoice
    previous_amount: Decimal
    new_amount: Decimal
    difference: Decimal
    significant: bool


Notifier = Callable[[AdjustmentResult], None]


def change_type_for(previous: Decimal, new: Decimal) -> str:
    if previous == 0:
        return "adjustment_created"
    if new == 0:
        return "adjustment_deleted"
    return "adjustment_updated"


def is_significant(difference: Decimal, actual_amount: Decimal) -> bool:
    """More than 1000 in absolute terms or more than 20 % of the actual amount."""
    return abs(difference) > SIGNIFICANT_AMOUNT or abs(difference) > abs(actual_amount) * SIGNIFICANT_RATIO


def _parse_amount(value) -> Decimal:
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise AdjustmentError("Please enter a valid number") from None
    if not amount.is_finite():
        raise AdjustmentError("Please enter a valid number")
    return money(amount)


def _clean_comment(comment: Optional[str]) -> str:
    # an empty reason is accepted
    text = (comment or "").strip()
    if len(text) > MAX_COMMENT_LENGTH:
        raise AdjustmentError(f"Comment must be {MAX_COMMENT_LENGTH} characters or less")
    return text


def _editable_invoice(session: Session, invoice_id: Optional[str]) -> Invoice:
    if not invoice_id:
        raise AdjustmentError("Line item is not on an invoice")
    invoice = invoices.get_by_id(session, invoice_id)
    if invoice is None:
        raise AdjustmentNotFound(f"Invoice {invoice_id} not found")
    if invoice.status not in EDITABLE_INVOICE_STATUSES:
        raise AdjustmentError(f"Adjustments cannot be edited on a {invoice.status} invoice")
    return invoice


def slack_notifier(result: AdjustmentResult) -> None:
    """Post significant adjustments to ``SLACK_WEBHOOK_URL`` when it is set."""
    webhook = os.getenv("SLACK_WEBHOOK_URL")
    if not webhook or not result.significant:
        return
    entry = result.entry
    subject = entry.line_item_name or f"invoice {entry.invoice_number}"
    text = (
        f"Significant adjustment on {subject} (invoice {entry.invoice_number}): "
        f"{result.previous_amount} -> {result.new_amount} ({result.difference:+}) by {entry.user_name}"
    )
    attachments = [
        {
            "text": entry.comment or "No reason given.",
            "fallback": text,
            "color": "#E8A317",
        }
    ]
    send_slack_message(webhook, text, attachments=attachments)


def _commit_entry(session: Session, invoice: Invoice, write: Callable[[], ChangeLogEntry]) -> ChangeLogEntry:
    try:
        entry = write()
        invoice.adjustment_ids = list(invoice.adjustment_ids or []) + [entry.id]
        invoices.recalculate_amounts(session, invoice)
        session.commit()
    except Exception as exc:
        session.rollback()
        logger.error("Adjustment on invoice %s rolled back: %s", invoice.id, exc)
        raise AdjustmentWriteError("Failed to update adjustment") from exc
    return entry


def _finish(result: AdjustmentResult, notifier: Optional[Notifier]) -> AdjustmentResult:
    logger.info(
        "Adjustment %s on %s %s: %s -> %s",
        result.entry.change_type, result.entry.entity_type, result.entry.entity_id,
        result.previous_amount, result.new_amount,
    )
    notify = notifier or slack_notifier
    try:
        notify(result)
    except Exception:
        # the adjustment is already committed; a failed notification does not undo it
        logger.exception("Adjustment notification failed for change log entry %s", result.entry.id)
    return result


def apply_line_item_adjustment(
    session: Session,
    line_item_id: str,
    new_adjustment,
    comment: Optional[str] = "",
    *,
    user_name: str = "System",
    user_id: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> AdjustmentResult:
    item: Optional[LineItem] = line_items.get_by_id(session, line_item_id)
    if item is None:
        raise AdjustmentNotFound(f"Line item {line_item_id} not found")
    invoice = _editable_invoice(session, item.invoice_id)
    new = _parse_amount(new_adjustment)
    reason = _clean_comment(comment)
    previous = money(item.adjustments)
    if new == previous:
        raise AdjustmentError("Adjustment value has not changed")
    difference = new - previous
    booked, actual = money(item.booked_amount), money(item.actual_amount)

    def write() -> ChangeLogEntry:
        entry = change_log.create(
            session,
            entity_type="line_item",
            entity_id=item.id,
            change_type=change_type_for(previous, new),
            field="adjustments",
            previous_amount=previous,
            new_amount=new,
            difference=difference,
            booked_amount_at_time=booked,
            actual_amount_at_time=actual,
            comment=reason,
            user_id=user_id,
            user_name=user_name,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            campaign_id=invoice.campaign_id,
            line_item_name=item.name,
        )
        line_items.update_adjustments(session, item, new)
        return entry

    entry = _commit_entry(session, invoice, write)
    result = AdjustmentResult(
        entry=entry,
        invoice=invoice,
        previous_amount=previous,
        new_amount=new,
        difference=difference,
        significant=is_significant(difference, actual),
    )
    return _finish(result, notifier)


def apply_invoice_adjustment(
    session: Session,
    invoice_id: str,
    new_adjustment,
    comment: Optional[str] = "",
    *,
    user_name: str = "System",
    user_id: Optional[str] = None,
    notifier: Optional[Notifier] = None,
) -> AdjustmentResult:
    """Set the invoice-level adjustment that sits on top of its line items."""
    invoice = _editable_invoice(session, invoice_id)
    new = _parse_amount(new_adjustment)
    reason = _clean_comment(comment)
    previous = money(invoice.invoice_adjustment)
    if new == previous:
        raise AdjustmentError("Adjustment value has not changed")
    difference = new - previous
    booked, actual = money(invoice.booked_amount), money(invoice.actual_amount)

    def write() -> ChangeLogEntry:
        entry = change_log.create(
            session,
            entity_type="invoice",
            entity_id=invoice.id,
            change_type=change_type_for(previous, new),
            field="invoice_adjustment",
            previous_amount=previous,
            new_amount=new,
            difference=difference,
            booked_amount_at_time=booked,
            actual_amount_at_time=actual,
            comment=reason,
            user_id=user_id,
            user_name=user_name,
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            campaign_id=invoice.campaign_id,
        )
        invoice.invoice_adjustment = new
        return entry

    entry = _commit_entry(session, invoice, write)
    result = AdjustmentResult(
        entry=entry,
        invoice=invoice,
        previous_amount=previous,
        new_amount=new,
        difference=difference,
        significant=is_significant(difference, actual),
    )
    return _finish(result, notifier)
