"""Campaign queries."""

from __future__ import annotations

from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .filters import MAX_IN_VALUES, CampaignFilters
from .models import Campaign
from .querying import Page, date_range_conditions, paginate

SORT_FIELDS = {
    "created_at": Campaign.created_at,
    "start_date": Campaign.start_date,
    "end_date": Campaign.end_date,
}


def _conditions(filters: CampaignFilters):
    """WHERE conditions plus the date column a range filter was applied to."""
    conditions = []
    if filters.name:
        conditions.append(func.lower(Campaign.name).contains(filters.name.lower()))
    if filters.statuses:
        conditions.append(Campaign.status.in_(list(filters.statuses)[:MAX_IN_VALUES]))

    # only one date range applies: created > start > end
    range_column = None
    for column, date_range in (
        (Campaign.created_at, filters.created_date_range),
        (Campaign.start_date, filters.start_date_range),
        (Campaign.end_date, filters.end_date_range),
    ):
        if date_range is not None and date_range.is_set:
            conditions.extend(date_range_conditions(column, date_range))
            range_column = column
            break
    return conditions, range_column


def get_by_id(session: Session, campaign_id: str) -> Optional[Campaign]:
    return session.get(Campaign, campaign_id)


def get_total_count(session: Session, filters: Optional[CampaignFilters] = None) -> int:
    conditions, _ = _conditions(filters or CampaignFilters())
    stmt = select(func.count()).select_from(Campaign).where(*conditions)
    return session.scalar(stmt)


def get_by_filter(session: Session, filters: CampaignFilters) -> Page[Campaign]:
    conditions, range_column = _conditions(filters)
    if range_column is not None:
        order = [range_column, Campaign.id]
    elif filters.sort_by:
        if filters.sort_by not in SORT_FIELDS:
            raise ValueError(f"cannot sort campaigns by {filters.sort_by!r}")
        order = [SORT_FIELDS[filters.sort_by], Campaign.id]
    else:
        order = [Campaign.id]
    return paginate(
        session,
        select(Campaign).where(*conditions),
        order,
        descending=filters.sort_order == "desc" and len(order) > 1,
        fingerprint=filters.fingerprint(),
        page_size=filters.page_size,
        cursor=filters.cursor,
    )
