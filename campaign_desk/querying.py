"""
Keyset ("cursor") pagination over SQLAlchemy selects.

Cursors are opaque URL-safe base64 strings.  Each one carries the sort-key
values of the last record on a page together with the fingerprint of the
filters and the page size that produced it; decoding it under any other
filter set or page size fails with :class:`InvalidCursorError`.
"""

from __future__ import annotations

import base64
import binascii
import datetime as _dt
import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Generic, List, Optional, Sequence, TypeVar

from sqlalchemy import DateTime, and_, or_
from sqlalchemy.orm import Session

T = TypeVar("T")


class InvalidCursorError(ValueError):
    """The cursor is malformed or belongs to a different filter set / page size."""


@dataclass
class Page(Generic[T]):
    records: List[T] = field(default_factory=list)
    next_cursor: Optional[str] = None


def _dump(value: Any) -> Any:
    if isinstance(value, _dt.datetime):
        return {"dt": value.isoformat()}
    if isinstance(value, _dt.date):
        return {"d": value.isoformat()}
    if isinstance(value, Decimal):
        return {"n": str(value)}
    return value


def _load(value: Any) -> Any:
    if isinstance(value, dict):
        if "dt" in value:
            return _dt.datetime.fromisoformat(value["dt"])
        if "d" in value:
            return _dt.date.fromisoformat(value["d"])
        if "n" in value:
            return Decimal(value["n"])
        raise InvalidCursorError("unknown cursor value type")
    return value


def encode_cursor(values: Sequence[Any], fingerprint: str, page_size: int) -> str:
    payload = {"k": [_dump(v) for v in values], "f": fingerprint, "s": page_size}
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def decode_cursor(token: str, fingerprint: str, page_size: int) -> List[Any]:
    try:
        padded = token + "=" * (-len(token) % 4)
        payload = json.loads(base64.urlsafe_b64decode(padded.encode("ascii")))
        keys = payload["k"]
        cursor_fingerprint = payload["f"]
        cursor_page_size = payload["s"]
    except (binascii.Error, ValueError, KeyError, TypeError, UnicodeError) as exc:
        raise InvalidCursorError("malformed cursor") from exc
    if cursor_fingerprint != fingerprint or cursor_page_size != page_size:
        raise InvalidCursorError("cursor was issued for a different filter set or page size")
    try:
        if not isinstance(keys, list):
            raise InvalidCursorError("malformed cursor")
        return [_load(v) for v in keys]
    except InvalidCursorError:
        raise
    except (ValueError, TypeError, ArithmeticError) as exc:
        raise InvalidCursorError("malformed cursor") from exc


def date_range_conditions(column, date_range) -> list:
    """WHERE conditions for an inclusive day range on a Date or DateTime column."""
    if date_range is None or not date_range.is_set:
        return []
    conditions = []
    is_timestamp = isinstance(column.type, DateTime)
    if date_range.from_ is not None:
        start = date_range.from_
        if is_timestamp:
            start = _dt.datetime.combine(start, _dt.time.min)
        conditions.append(column >= start)
    if date_range.to is not None:
        if is_timestamp:
            # through the end of the "to" day
            end = _dt.datetime.combine(date_range.to + _dt.timedelta(days=1), _dt.time.min)
            conditions.append(column < end)
        else:
            conditions.append(column <= date_range.to)
    return conditions


def _after(columns, values, descending: bool):
    """Keyset condition selecting rows strictly after ``values`` in sort order."""
    clauses = []
    for i, column in enumerate(columns):
        equal_prefix = [columns[j] == values[j] for j in range(i)]
        step = column < values[i] if descending else column > values[i]
        clauses.append(and_(*equal_prefix, step))
    return or_(*clauses)


def _check_value_types(columns, values) -> None:
    for column, value in zip(columns, values):
        try:
            expected = column.type.python_type
        except NotImplementedError:
            continue
        if value is not None and not isinstance(value, expected):
            raise InvalidCursorError(f"cursor value for {column.key} has the wrong type")


def paginate(
    session: Session,
    stmt,
    order_columns: Sequence,
    *,
    descending: bool,
    fingerprint: str,
    page_size: int,
    cursor: Optional[str] = None,
) -> Page:
    """Run ``stmt`` one page at a time, ordered by ``order_columns``.

    The last order column must be unique (the primary key) so the keyset
    order is total.
    """
    if page_size < 1:
        raise ValueError("page_size must be at least 1")
    if cursor:
        values = decode_cursor(cursor, fingerprint, page_size)
        if len(values) != len(order_columns):
            raise InvalidCursorError("cursor does not match the sort order")
        _check_value_types(order_columns, values)
        stmt = stmt.where(_after(order_columns, values, descending))
    ordering = [c.desc() if descending else c.asc() for c in order_columns]
    stmt = stmt.order_by(*ordering).limit(page_size)
    records = list(session.scalars(stmt).all())
    next_cursor = None
    if records:
        last = records[-1]
        next_cursor = encode_cursor(
            [getattr(last, c.key) for c in order_columns], fingerprint, page_size
        )
    return Page(records=records, next_cursor=next_cursor)
