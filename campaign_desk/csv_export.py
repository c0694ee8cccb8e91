"""
CSV export of dashboard tables.

``render_csv`` turns a list of uniform records into CSV text; ``export_to_csv``
renders and hands the file to a download sink (a local directory or an S3
bucket).  Exporting an empty list does nothing at all.
"""

from __future__ import annotations

import dataclasses
import datetime as _dt
import json
import logging
import os
import re
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, List, Mapping, Optional, Sequence, Union

from . import utils

logger = logging.getLogger(__name__)

MEDIA_TYPE = "text/csv;charset=utf-8"
DATE_FORMAT = "%m/%d/%Y"  # en-US short date with the full year


@dataclass(frozen=True)
class Column:
    key: str
    header: str


ColumnSpec = Union[Column, Sequence[str]]

CAMPAIGN_COLUMNS = [
    Column("name", "Campaign Name"),
    Column("status", "Status"),
    Column("start_date", "Start Date"),
    Column("end_date", "End Date"),
    Column("invoice_ids", "Invoices"),
    Column("created_at", "Created At"),
]

INVOICE_COLUMNS = [
    Column("invoice_number", "Invoice Number"),
    Column("campaign_id", "Campaign"),
    Column("client_name", "Client"),
    Column("client_email", "Client Email"),
    Column("status", "Status"),
    Column("currency", "Currency"),
    Column("booked_amount", "Booked Amount"),
    Column("actual_amount", "Actual Amount"),
    Column("total_adjustments", "Adjustments"),
    Column("total_amount", "Total Amount"),
    Column("issue_date", "Issue Date"),
    Column("due_date", "Due Date"),
    Column("paid_date", "Paid Date"),
]

LINE_ITEM_COLUMNS = [
    Column("name", "Line Item Name"),
    Column("campaign_id", "Campaign"),
    Column("booked_amount", "Booked Amount"),
    Column("actual_amount", "Actual Amount"),
    Column("adjustments", "Adjustments"),
    Column("created_at", "Created At"),
]

CHANGE_LOG_COLUMNS = [
    Column("timestamp", "Date & Time"),
    Column("change_type", "Change Type"),
    Column("entity_type", "Entity Type"),
    Column("line_item_name", "Line Item"),
    Column("invoice_number", "Invoice"),
    Column("previous_amount", "Previous Amount"),
    Column("new_amount", "New Amount"),
    Column("difference", "Difference"),
    Column("comment", "Comment"),
]


def header_for(key: str) -> str:
    """``lastLoginDate`` / ``last_login_date`` -> ``Last Login Date``."""
    spaced = re.sub(r"([a-z0-9])([A-Z])", r"\1 \2", key).replace("_", " ")
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split())


def _as_mapping(record: Any) -> Mapping[str, Any]:
    if isinstance(record, Mapping):
        return record
    if hasattr(record, "to_dict"):
        return record.to_dict()
    if dataclasses.is_dataclass(record):
        return dataclasses.asdict(record)
    return vars(record)


def _quote(text: str) -> str:
    return '"' + text.replace('"', '""') + '"'


def _plain(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (_dt.date, _dt.datetime)):
        return value.strftime(DATE_FORMAT)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def format_value(value: Any) -> str:
    """Serialize one field following the dashboard's CSV rules."""
    if isinstance(value, (list, tuple, set, frozenset)):
        return _quote("; ".join(_plain(v) for v in value))
    if isinstance(value, Mapping):
        return _quote(json.dumps(value, separators=(",", ":"), default=str))
    text = _plain(value)
    if "," in text or '"' in text or "\n" in text:
        return _quote(text)
    return text


def _columns(first: Mapping[str, Any], columns: Optional[Sequence[ColumnSpec]]) -> List[Column]:
    if not columns:
        return [Column(key, header_for(key)) for key in first.keys()]
    return [c if isinstance(c, Column) else Column(*c) for c in columns]


def render_csv(records: Iterable[Any], columns: Optional[Sequence[ColumnSpec]] = None) -> str:
    rows = [_as_mapping(r) for r in records]
    if not rows:
        return ""
    cols = _columns(rows[0], columns)
    lines = [",".join(c.header for c in cols)]
    for row in rows:
        lines.append(",".join(format_value(row.get(c.key)) for c in cols))
    return "\n".join(lines)


def csv_filename(name: str) -> str:
    return f"{name}.csv"


def dated_filename(prefix: str, today: Optional[_dt.date] = None) -> str:
    return f"{prefix}-{(today or _dt.date.today()).isoformat()}"


class DirectorySink:
    """Saves downloads into a local directory.

    The file is written under a temporary name and renamed into place, so a
    reader never sees a partial export; the temporary file is removed on
    every path.
    """

    def __init__(self, directory: Union[str, Path]) -> None:
        self.directory = Path(directory)

    def deliver(self, filename: str, content: bytes, media_type: str = MEDIA_TYPE) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(prefix=".export-", suffix=".part", dir=self.directory)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(content)
            os.replace(tmp_path, self.directory / filename)
        finally:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)

    def __repr__(self) -> str:
        return f"<DirectorySink {self.directory}>"


class S3Sink:
    """Archives downloads in an S3 bucket under ``prefix/filename``."""

    def __init__(self, bucket: str, prefix: str = "exports") -> None:
        self.bucket = bucket
        self.prefix = prefix.strip("/")

    def deliver(self, filename: str, content: bytes, media_type: str = MEDIA_TYPE) -> None:
        key = f"{self.prefix}/{filename}" if self.prefix else filename
        utils.upload_file_to_s3(content, self.bucket, key, content_type=media_type)

    def __repr__(self) -> str:
        return f"<S3Sink s3://{self.bucket}/{self.prefix}>"


def default_sink():
    bucket = os.getenv("EXPORT_BUCKET")
    if bucket:
        return S3Sink(bucket, os.getenv("EXPORT_PREFIX", "exports"))
    return DirectorySink(os.getenv("EXPORT_DIR") or os.getcwd())


def export_to_csv(
    records: Iterable[Any],
    filename: str,
    columns: Optional[Sequence[ColumnSpec]] = None,
    sink=None,
) -> None:
    """Render ``records`` and deliver them as ``<filename>.csv``."""
    records = list(records)
    if not records:
        return
    content = render_csv(records, columns).encode("utf-8")
    target = sink or default_sink()
    target.deliver(csv_filename(filename), content, MEDIA_TYPE)
    logger.info("Exported %d rows to %s via %r", len(records), csv_filename(filename), target)
