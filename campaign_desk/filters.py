"""
Filter shapes shared by every table in the dashboard.

Each entity has its own filter dataclass, but they all follow the same shape:
field filters, optional date ranges, optional sorting, and the pagination
triple ``page`` / ``page_size`` / ``cursor``.  ``fingerprint()`` hashes the
non-pagination part; cursors are bound to it so a cursor never survives a
filter change.
"""

from __future__ import annotations

import calendar
import dataclasses
import datetime as _dt
import hashlib
import json
import os
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

PAGINATION_FIELDS = ("page", "page_size", "cursor")
MAX_IN_VALUES = 10  # document stores cap "in" queries at ten values


def default_page_size() -> int:
    return int(os.getenv("DEFAULT_PAGE_SIZE", "10"))


@dataclass(frozen=True)
class DateRange:
    """Inclusive range of days; either end may be open."""

    from_: Optional[_dt.date] = None
    to: Optional[_dt.date] = None

    @property
    def is_set(self) -> bool:
        return self.from_ is not None or self.to is not None


class _Filters:
    """Mixin with the helpers every filter dataclass shares."""

    def data_filters(self) -> dict:
        values = dataclasses.asdict(self)
        for name in PAGINATION_FIELDS:
            values.pop(name, None)
        return values

    def fingerprint(self) -> str:
        payload = json.dumps(self.data_filters(), sort_keys=True, default=str)
        return hashlib.sha256(payload.encode("utf-8")).hexdigest()[:16]

    def with_page(self, page: int, page_size: int, cursor: Optional[str]):
        return dataclasses.replace(self, page=page, page_size=page_size, cursor=cursor)


@dataclass(frozen=True)
class CampaignFilters(_Filters):
    name: Optional[str] = None
    statuses: Tuple[str, ...] = ()
    start_date_range: Optional[DateRange] = None
    end_date_range: Optional[DateRange] = None
    created_date_range: Optional[DateRange] = None
    sort_by: Optional[str] = None  # created_at, start_date, end_date
    sort_order: str = "desc"
    page: int = 0
    page_size: int = field(default_factory=default_page_size)
    cursor: Optional[str] = None


@dataclass(frozen=True)
class InvoiceFilters(_Filters):
    campaign_id: Optional[str] = None
    status: Optional[str] = None
    statuses: Tuple[str, ...] = ()
    issue_date_range: Optional[DateRange] = None
    due_date_range: Optional[DateRange] = None
    paid_date_range: Optional[DateRange] = None
    created_date_range: Optional[DateRange] = None
    sort_by: Optional[str] = None
    sort_order: str = "desc"
    page: int = 0
    page_size: int = field(default_factory=default_page_size)
    cursor: Optional[str] = None


NOT_INVOICED = "not-invoiced"


@dataclass(frozen=True)
class LineItemFilters(_Filters):
    name: Optional[str] = None
    campaign_id: Optional[str] = None
    invoice_id: Optional[str] = None  # NOT_INVOICED selects items without an invoice
    created_date_range: Optional[DateRange] = None
    sort_by: Optional[str] = None
    sort_order: str = "desc"
    page: int = 0
    page_size: int = field(default_factory=default_page_size)
    cursor: Optional[str] = None


@dataclass(frozen=True)
class ChangeLogFilters(_Filters):
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    invoice_id: Optional[str] = None
    campaign_id: Optional[str] = None
    change_type: Optional[str] = None
    start_date: Optional[_dt.date] = None
    end_date: Optional[_dt.date] = None
    page: int = 0
    page_size: int = field(default_factory=default_page_size)
    cursor: Optional[str] = None


# --- date range presets ---

DATE_RANGE_PRESETS: List[Tuple[str, str]] = [
    ("all", "All time"),
    ("last7days", "Last 7 days"),
    ("last30days", "Last 30 days"),
    ("last3months", "Last 3 months"),
    ("last6months", "Last 6 months"),
    ("lastYear", "Last year"),
    ("thisMonth", "This month"),
    ("thisQuarter", "This quarter"),
    ("thisYear", "This year"),
    ("custom", "Custom range"),
]


def _months_back(day: _dt.date, months: int) -> _dt.date:
    month_index = day.year * 12 + (day.month - 1) - months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return _dt.date(year, month, min(day.day, last_day))


def _month_end(year: int, month: int) -> _dt.date:
    return _dt.date(year, month, calendar.monthrange(year, month)[1])


def date_range_from_preset(preset: str, today: Optional[_dt.date] = None) -> Optional[DateRange]:
    """Translate a dashboard preset into a concrete range.

    ``all``, ``custom`` and unknown presets return None: the caller either
    applies no range or supplies its own.
    """
    today = today or _dt.date.today()
    if preset == "last7days":
        return DateRange(today - _dt.timedelta(days=7), today)
    if preset == "last30days":
        return DateRange(today - _dt.timedelta(days=30), today)
    if preset == "last3months":
        return DateRange(_months_back(today, 3), today)
    if preset == "last6months":
        return DateRange(_months_back(today, 6), today)
    if preset == "lastYear":
        return DateRange(_months_back(today, 12), today)
    if preset == "thisMonth":
        return DateRange(today.replace(day=1), _month_end(today.year, today.month))
    if preset == "thisQuarter":
        first_month = (today.month - 1) // 3 * 3 + 1
        return DateRange(
            _dt.date(today.year, first_month, 1), _month_end(today.year, first_month + 2)
        )
    if preset == "thisYear":
        return DateRange(_dt.date(today.year, 1, 1), _dt.date(today.year, 12, 31))
    return None
