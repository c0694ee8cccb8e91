"""
Append-only change log.

Entries are only ever inserted; the model refuses updates and deletes.  Every
reader returns entries newest first.
"""

from __future__ import annotations

from typing import List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .filters import ChangeLogFilters, DateRange
from .models import CHANGE_TYPES, ENTITY_TYPES, ChangeLogEntry, utcnow
from .querying import Page, date_range_conditions, paginate


def create(session: Session, **fields) -> ChangeLogEntry:
    """Add an entry to the session with its timestamp assigned now.

    The entry becomes durable when the caller commits, together with the
    write it documents.
    """
    if fields.get("entity_type") not in ENTITY_TYPES:
        raise ValueError(f"unknown entity type {fields.get('entity_type')!r}")
    if fields.get("change_type") not in CHANGE_TYPES:
        raise ValueError(f"unknown change type {fields.get('change_type')!r}")
    fields.pop("timestamp", None)
    entry = ChangeLogEntry(timestamp=utcnow(), **fields)
    session.add(entry)
    session.flush()
    return entry


def _conditions(filters: ChangeLogFilters) -> list:
    conditions = []
    if filters.entity_id:
        conditions.append(ChangeLogEntry.entity_id == filters.entity_id)
    if filters.entity_type:
        conditions.append(ChangeLogEntry.entity_type == filters.entity_type)
    if filters.invoice_id:
        conditions.append(ChangeLogEntry.invoice_id == filters.invoice_id)
    if filters.campaign_id:
        conditions.append(ChangeLogEntry.campaign_id == filters.campaign_id)
    if filters.change_type:
        conditions.append(ChangeLogEntry.change_type == filters.change_type)
    conditions.extend(
        date_range_conditions(ChangeLogEntry.timestamp, DateRange(filters.start_date, filters.end_date))
    )
    return conditions


def _newest_first(*conditions, limit: Optional[int] = None):
    stmt = (
        select(ChangeLogEntry)
        .where(*conditions)
        .order_by(ChangeLogEntry.timestamp.desc(), ChangeLogEntry.id.desc())
    )
    if limit is not None:
        stmt = stmt.limit(limit)
    return stmt


def get_by_filter(session: Session, filters: ChangeLogFilters) -> Page[ChangeLogEntry]:
    return paginate(
        session,
        select(ChangeLogEntry).where(*_conditions(filters)),
        [ChangeLogEntry.timestamp, ChangeLogEntry.id],
        descending=True,
        fingerprint=filters.fingerprint(),
        page_size=filters.page_size,
        cursor=filters.cursor,
    )


def get_total_count(session: Session, filters: Optional[ChangeLogFilters] = None) -> int:
    conditions = _conditions(filters or ChangeLogFilters())
    return session.scalar(select(func.count()).select_from(ChangeLogEntry).where(*conditions))


def get_by_invoice(session: Session, invoice_id: str) -> List[ChangeLogEntry]:
    return list(session.scalars(_newest_first(ChangeLogEntry.invoice_id == invoice_id)))


def get_by_line_item(session: Session, line_item_id: str, limit: Optional[int] = None) -> List[ChangeLogEntry]:
    stmt = _newest_first(
        ChangeLogEntry.entity_type == "line_item",
        ChangeLogEntry.entity_id == line_item_id,
        limit=limit,
    )
    return list(session.scalars(stmt))


def get_by_campaign(session: Session, campaign_id: str) -> List[ChangeLogEntry]:
    return list(session.scalars(_newest_first(ChangeLogEntry.campaign_id == campaign_id)))


def get_recent(session: Session, limit: int = 10) -> List[ChangeLogEntry]:
    return list(session.scalars(_newest_first(limit=limit)))
