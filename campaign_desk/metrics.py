"""Dashboard metrics computed from invoices, campaigns and line items."""

from __future__ import annotations

import datetime as _dt
from collections import Counter, defaultdict
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from .filters import DateRange
from .invoices import money
from .models import Campaign, Invoice, LineItem, utcnow
from .querying import date_range_conditions

ZERO = Decimal("0.00")


def _total(invoices) -> Decimal:
    return money(sum((money(inv.total_amount) for inv in invoices), ZERO))


def _within_week(day: Optional[_dt.date], today: _dt.date) -> bool:
    return day is not None and today <= day <= today + _dt.timedelta(days=7)


def compute_dashboard_metrics(
    invoices: Iterable[Invoice],
    campaigns: Iterable[Campaign],
    line_items: Iterable[LineItem],
    now: Optional[_dt.datetime] = None,
) -> dict:
    invoices = list(invoices)
    campaigns = list(campaigns)
    line_items = list(line_items)
    today = (now or utcnow()).date()

    paid = [inv for inv in invoices if inv.status == "paid"]
    outstanding = [inv for inv in invoices if inv.status in ("sent", "overdue")]
    overdue = [inv for inv in invoices if inv.status == "overdue"]

    total_revenue = _total(paid)
    total_invoiced = _total(inv for inv in invoices if inv.status != "cancelled")
    collection_rate = float(total_revenue / total_invoiced * 100) if total_invoiced > 0 else 0.0

    total_booked = money(sum((money(inv.booked_amount) for inv in invoices), ZERO))
    total_actual = money(sum((money(inv.actual_amount) for inv in invoices), ZERO))
    total_adjustments = money(sum((money(inv.total_adjustments) for inv in invoices), ZERO))

    by_month = defaultdict(lambda: {"revenue": ZERO, "count": 0})
    for inv in paid:
        if inv.paid_date is None:
            continue
        bucket = by_month[(inv.paid_date.year, inv.paid_date.month)]
        bucket["revenue"] += money(inv.total_amount)
        bucket["count"] += 1
    revenue_by_month = [
        {
            "month": _dt.date(year, month, 1).strftime("%b %Y"),
            "revenue": bucket["revenue"],
            "count": bucket["count"],
        }
        for (year, month), bucket in sorted(by_month.items())[-12:]
    ]

    campaign_names = {c.id: c.name for c in campaigns}
    campaign_revenue = defaultdict(lambda: ZERO)
    for inv in paid:
        campaign_revenue[inv.campaign_id] += money(inv.total_amount)
    top_campaigns = [
        {"id": cid, "name": campaign_names.get(cid, cid), "revenue": revenue}
        for cid, revenue in sorted(campaign_revenue.items(), key=lambda kv: kv[1], reverse=True)[:5]
    ]

    recent_payments = [
        {
            "id": inv.id,
            "invoice_number": inv.invoice_number,
            "client_name": inv.client_name,
            "amount": money(inv.total_amount),
            "paid_date": inv.paid_date,
        }
        for inv in sorted(
            (inv for inv in paid if inv.paid_date), key=lambda inv: inv.paid_date, reverse=True
        )[:5]
    ]

    due_this_week = [
        inv for inv in invoices if inv.status == "sent" and _within_week(inv.due_date, today)
    ]

    return {
        "total_revenue": total_revenue,
        "outstanding_revenue": _total(outstanding),
        "overdue_revenue": _total(overdue),
        "overdue_count": len(overdue),
        "collection_rate": collection_rate,
        "total_booked": total_booked,
        "total_actual": total_actual,
        "total_variance": total_actual - total_booked,
        "total_adjustments": total_adjustments,
        "active_campaigns": sum(1 for c in campaigns if c.status == "active"),
        "campaigns_by_status": dict(Counter(c.status for c in campaigns)),
        "invoices_by_status": dict(Counter(inv.status for inv in invoices)),
        "uninvoiced_line_items": sum(1 for li in line_items if not li.invoice_id),
        "revenue_by_month": revenue_by_month,
        "top_campaigns": top_campaigns,
        "recent_payments": recent_payments,
        "invoices_due_this_week": len(due_this_week),
        "invoices_due_this_week_amount": _total(due_this_week),
        "campaigns_ending_this_week": sum(
            1 for c in campaigns if c.status == "active" and _within_week(c.end_date, today)
        ),
    }


def load_dashboard_metrics(
    session: Session, date_range: Optional[DateRange] = None, now: Optional[_dt.datetime] = None
) -> dict:
    """Metrics over every record, or those created within ``date_range``."""

    def _all(model):
        stmt = select(model).where(*date_range_conditions(model.created_at, date_range))
        return session.scalars(stmt).all()

    return compute_dashboard_metrics(_all(Invoice), _all(Campaign), _all(LineItem), now=now)
