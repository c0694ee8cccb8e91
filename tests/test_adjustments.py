from decimal import Decimal

import pytest
import requests
from sqlalchemy import select

from campaign_desk import adjustments, change_log, invoices
from campaign_desk.adjustments import (
    AdjustmentError,
    AdjustmentNotFound,
    AdjustmentWriteError,
    apply_invoice_adjustment,
    apply_line_item_adjustment,
)
from campaign_desk.filters import ChangeLogFilters
from campaign_desk.models import ChangeLogEntry


def quiet(result):
    pass


def test_first_adjustment_is_created(session, draft_invoice):
    item = draft_invoice.items[0]
    result = apply_line_item_adjustment(
        session, item.id, "150", "  Make-good for underdelivery  ", user_name="Jo", notifier=quiet
    )
    entry = result.entry
    assert entry.change_type == "adjustment_created"
    assert entry.entity_type == "line_item"
    assert entry.entity_id == item.id
    assert entry.field == "adjustments"
    assert entry.previous_amount == Decimal("0.00")
    assert entry.new_amount == Decimal("150.00")
    assert entry.difference == Decimal("150.00")
    assert entry.booked_amount_at_time == Decimal("1000.00")
    assert entry.actual_amount_at_time == Decimal("900.00")
    assert entry.comment == "Make-good for underdelivery"
    assert entry.user_name == "Jo"
    assert entry.invoice_number == draft_invoice.invoice.invoice_number
    assert entry.line_item_name == "Display"

    invoice = result.invoice
    assert item.adjustments == Decimal("150.00")
    assert invoice.total_adjustments == Decimal("150.00")
    assert invoice.total_amount == Decimal("3150.00")
    assert invoice.adjustment_ids == [entry.id]
    assert result.significant is False


def test_adjustment_sets_rather_than_increments(session, draft_invoice):
    item = draft_invoice.items[0]
    apply_line_item_adjustment(session, item.id, 150, notifier=quiet)
    result = apply_line_item_adjustment(session, item.id, -50, "Credit", notifier=quiet)
    assert result.entry.change_type == "adjustment_updated"
    assert result.entry.previous_amount == Decimal("150.00")
    assert result.entry.difference == Decimal("-200.00")
    assert item.adjustments == Decimal("-50.00")
    assert result.invoice.total_amount == Decimal("2950.00")
    assert len(result.invoice.adjustment_ids) == 2


def test_setting_zero_deletes_adjustment(session, draft_invoice):
    item = draft_invoice.items[1]
    apply_line_item_adjustment(session, item.id, 100, notifier=quiet)
    result = apply_line_item_adjustment(session, item.id, "0", notifier=quiet)
    assert result.entry.change_type == "adjustment_deleted"
    assert result.invoice.total_adjustments == Decimal("0.00")


def test_history_is_newest_first(session, draft_invoice):
    item = draft_invoice.items[0]
    for amount in (10, 20, 30):
        apply_line_item_adjustment(session, item.id, amount, f"set to {amount}", notifier=quiet)
    history = change_log.get_by_line_item(session, item.id)
    assert [e.comment for e in history] == ["set to 30", "set to 20", "set to 10"]
    assert [e.comment for e in change_log.get_by_line_item(session, item.id, limit=1)] == ["set to 30"]
    assert len(change_log.get_by_invoice(session, draft_invoice.invoice.id)) == 3


def test_unchanged_value_is_rejected(session, draft_invoice):
    with pytest.raises(AdjustmentError, match="not changed"):
        apply_line_item_adjustment(session, draft_invoice.items[0].id, "0.00", notifier=quiet)


@pytest.mark.parametrize("amount", ["abc", "", "NaN", "Infinity"])
def test_invalid_amount_is_rejected(session, draft_invoice, amount):
    with pytest.raises(AdjustmentError, match="valid number"):
        apply_line_item_adjustment(session, draft_invoice.items[0].id, amount, notifier=quiet)


def test_reason_may_be_empty_but_not_too_long(session, draft_invoice):
    item = draft_invoice.items[0]
    assert apply_line_item_adjustment(session, item.id, 5, "", notifier=quiet).entry.comment == ""
    apply_line_item_adjustment(session, item.id, 6, "x" * 500, notifier=quiet)
    with pytest.raises(AdjustmentError, match="500 characters"):
        apply_line_item_adjustment(session, item.id, 7, "x" * 501, notifier=quiet)


def test_only_draft_or_overdue_invoices_are_editable(session, draft_invoice):
    invoices.update_status(session, draft_invoice.invoice.id, "sent")
    with pytest.raises(AdjustmentError, match="sent invoice"):
        apply_line_item_adjustment(session, draft_invoice.items[0].id, 10, notifier=quiet)
    invoices.update_status(session, draft_invoice.invoice.id, "overdue")
    apply_line_item_adjustment(session, draft_invoice.items[0].id, 10, notifier=quiet)


def test_line_item_must_be_invoiced(session, draft_invoice):
    with pytest.raises(AdjustmentError, match="not on an invoice"):
        apply_line_item_adjustment(session, draft_invoice.spare.id, 10, notifier=quiet)


def test_missing_line_item(session):
    with pytest.raises(AdjustmentNotFound):
        apply_line_item_adjustment(session, "missing", 10, notifier=quiet)


def test_commit_failure_leaves_no_change_log_entry(session, draft_invoice, monkeypatch):
    item = draft_invoice.items[0]

    def failing_commit():
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(session, "commit", failing_commit)
    with pytest.raises(AdjustmentWriteError):
        apply_line_item_adjustment(session, item.id, 250, "Doomed change", notifier=quiet)
    monkeypatch.undo()

    logged = session.scalars(select(ChangeLogEntry).where(ChangeLogEntry.comment == "Doomed change")).all()
    assert logged == []
    assert change_log.get_total_count(session) == 0
    assert session.get(type(item), item.id).adjustments == Decimal("0.00")
    assert invoices.get_by_id(session, draft_invoice.invoice.id).adjustment_ids == []


def test_invoice_level_adjustment(session, draft_invoice):
    result = apply_invoice_adjustment(
        session, draft_invoice.invoice.id, "-300", "Volume discount", notifier=quiet
    )
    entry = result.entry
    assert entry.entity_type == "invoice"
    assert entry.field == "invoice_adjustment"
    assert entry.line_item_name is None
    assert result.invoice.invoice_adjustment == Decimal("-300.00")
    assert result.invoice.total_adjustments == Decimal("-300.00")
    assert result.invoice.total_amount == Decimal("2700.00")

    # line item adjustments add on top of the invoice-level one
    apply_line_item_adjustment(session, draft_invoice.items[0].id, 100, notifier=quiet)
    assert result.invoice.total_amount == Decimal("2800.00")


def test_missing_invoice(session):
    with pytest.raises(AdjustmentNotFound):
        apply_invoice_adjustment(session, "missing", 10, notifier=quiet)


@pytest.mark.parametrize(
    "difference, actual, expected",
    [
        ("1000.01", "100000", True),
        ("1000.00", "100000", False),
        ("181", "900", True),
        ("180", "900", False),
        ("-500", "1000", True),
    ],
)
def test_is_significant(difference, actual, expected):
    assert adjustments.is_significant(Decimal(difference), Decimal(actual)) is expected


def test_significant_change_is_announced(session, draft_invoice):
    notified = []
    apply_line_item_adjustment(session, draft_invoice.items[0].id, 2000, "Big fix", notifier=notified.append)
    assert len(notified) == 1
    assert notified[0].significant is True


def test_slack_notifier_posts_significant_changes(session, draft_invoice, monkeypatch):
    sent = []
    monkeypatch.setenv("SLACK_WEBHOOK_URL", "https://hooks.slack.test/T000")
    monkeypatch.setattr(
        adjustments, "send_slack_message", lambda url, text, attachments=None: sent.append((url, text, attachments))
    )
    apply_line_item_adjustment(session, draft_invoice.items[0].id, 10, "small")
    assert sent == []
    apply_line_item_adjustment(session, draft_invoice.items[0].id, 5000, "Big fix", user_name="Jo")
    assert len(sent) == 1
    url, text, attachments = sent[0]
    assert url == "https://hooks.slack.test/T000"
    assert "Display" in text and "by Jo" in text
    assert attachments[0]["text"] == "Big fix"


def test_slack_notifier_without_webhook_does_nothing(session, draft_invoice, monkeypatch):
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    monkeypatch.setattr(adjustments, "send_slack_message", pytest.fail)
    apply_line_item_adjustment(session, draft_invoice.items[0].id, 5000)


def test_notification_failure_keeps_adjustment(session, draft_invoice):
    def broken(result):
        raise requests.ConnectionError("slack down")

    result = apply_line_item_adjustment(session, draft_invoice.items[0].id, 5000, notifier=broken)
    assert result.entry.id in invoices.get_by_id(session, draft_invoice.invoice.id).adjustment_ids
    assert change_log.get_total_count(session) == 1


def test_change_log_queries(session, draft_invoice):
    first, second = draft_invoice.items
    apply_line_item_adjustment(session, first.id, 10, "one", notifier=quiet)
    apply_line_item_adjustment(session, second.id, 20, "two", notifier=quiet)
    apply_invoice_adjustment(session, draft_invoice.invoice.id, 30, "three", notifier=quiet)

    assert [e.comment for e in change_log.get_recent(session, limit=2)] == ["three", "two"]
    assert len(change_log.get_by_campaign(session, draft_invoice.campaign.id)) == 3

    filters = ChangeLogFilters(entity_type="line_item", page_size=1)
    page = change_log.get_by_filter(session, filters)
    assert [e.comment for e in page.records] == ["two"]
    page = change_log.get_by_filter(session, filters.with_page(1, 1, page.next_cursor))
    assert [e.comment for e in page.records] == ["one"]
    assert change_log.get_total_count(session, filters) == 2
    assert change_log.get_total_count(session, ChangeLogFilters(change_type="adjustment_updated")) == 0


def test_change_log_rejects_unknown_types(session, draft_invoice):
    with pytest.raises(ValueError):
        change_log.create(session, entity_type="campaign", change_type="adjustment_created")
    with pytest.raises(ValueError):
        change_log.create(session, entity_type="invoice", change_type="renamed")
