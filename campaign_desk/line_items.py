"""Line item queries and the adjustment write."""

from __future__ import annotations

from decimal import Decimal
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .filters import NOT_INVOICED, LineItemFilters
from .models import LineItem
from .querying import Page, date_range_conditions, paginate

SORT_FIELDS = {
    "created_at": LineItem.created_at,
    "name": LineItem.name,
}


def _conditions(filters: LineItemFilters):
    conditions = []
    if filters.name:
        conditions.append(func.lower(LineItem.name).contains(filters.name.lower()))
    if filters.campaign_id:
        conditions.append(LineItem.campaign_id == filters.campaign_id)
    if filters.invoice_id == NOT_INVOICED:
        conditions.append(LineItem.invoice_id.is_(None))
    elif filters.invoice_id:
        conditions.append(LineItem.invoice_id == filters.invoice_id)
    range_conditions = date_range_conditions(LineItem.created_at, filters.created_date_range)
    conditions.extend(range_conditions)
    return conditions, (LineItem.created_at if range_conditions else None)


def get_by_id(session: Session, line_item_id: str) -> Optional[LineItem]:
    return session.get(LineItem, line_item_id)


def get_by_ids(session: Session, ids: Sequence[str]) -> List[LineItem]:
    """Line items for ``ids`` in the order given; unknown ids are skipped."""
    if not ids:
        return []
    found = {li.id: li for li in session.scalars(select(LineItem).where(LineItem.id.in_(list(ids))))}
    return [found[i] for i in ids if i in found]


def get_total_count(session: Session, filters: Optional[LineItemFilters] = None) -> int:
    conditions, _ = _conditions(filters or LineItemFilters())
    return session.scalar(select(func.count()).select_from(LineItem).where(*conditions))


def get_by_filter(session: Session, filters: LineItemFilters) -> Page[LineItem]:
    conditions, range_column = _conditions(filters)
    if range_column is not None:
        order = [range_column, LineItem.id]
    elif filters.sort_by:
        if filters.sort_by not in SORT_FIELDS:
            raise ValueError(f"cannot sort line items by {filters.sort_by!r}")
        order = [SORT_FIELDS[filters.sort_by], LineItem.id]
    else:
        order = [LineItem.id]
    return paginate(
        session,
        select(LineItem).where(*conditions),
        order,
        descending=filters.sort_order == "desc" and len(order) > 1,
        fingerprint=filters.fingerprint(),
        page_size=filters.page_size,
        cursor=filters.cursor,
    )


def update_adjustments(session: Session, line_item: LineItem, adjustments: Decimal) -> LineItem:
    """Set (not increment) the line item's adjustment.  The caller commits."""
    line_item.adjustments = adjustments
    session.add(line_item)
    return line_item
