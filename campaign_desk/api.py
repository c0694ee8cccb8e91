"""
FastAPI application serving the Campaign Desk dashboard.

Every table endpoint takes the entity's filters as query parameters plus the
pagination triple ``page`` / ``page_size`` / ``cursor`` and answers with
``{"data": [...], "next_cursor": ...}``.  The ``next_cursor`` is opaque; send
it back unchanged, with the same filters and page size, to get the next page.
The matching ``/export`` endpoints return the same page as a CSV download.

To run locally::

    uvicorn campaign_desk.api:app --reload

Set ``DATABASE_URL`` to point at the database (a local SQLite file is used
otherwise) and ``SLACK_WEBHOOK_URL`` to announce significant adjustments.
"""

from __future__ import annotations

import datetime as _dt
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response, StreamingResponse
from pydantic import BaseModel

from sqlalchemy.orm import Session

from . import adjustments, campaigns, change_log, csv_export, invoices, line_items, metrics
from .db import session_scope
from .filters import (
    CampaignFilters,
    ChangeLogFilters,
    DateRange,
    InvoiceFilters,
    LineItemFilters,
    date_range_from_preset,
)
from .querying import Page

app = FastAPI(title="Campaign Desk")

# Allow CORS during development; in production restrict origins appropriately
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# --- request bodies ---


class CreateInvoiceRequest(BaseModel):
    line_item_ids: List[str]
    client_name: str
    client_email: str
    issue_date: _dt.date
    due_date: _dt.date
    currency: str = "USD"


class StatusUpdate(BaseModel):
    status: str
    paid_date: Optional[_dt.date] = None


class LineItemSelection(BaseModel):
    line_item_ids: List[str]


class MoveLineItemsRequest(BaseModel):
    to_invoice_id: str
    line_item_ids: List[str]
    user_name: str = "System"


class AdjustmentRequest(BaseModel):
    amount: Decimal
    comment: str = ""
    user_name: str = "System"
    user_id: Optional[str] = None


# --- query parameter parsing ---


def _range(from_: Optional[_dt.date], to: Optional[_dt.date]) -> Optional[DateRange]:
    if from_ is None and to is None:
        return None
    return DateRange(from_, to)


def _paging(page: int, page_size: Optional[int], cursor: Optional[str]) -> Dict[str, Any]:
    values: Dict[str, Any] = {"page": page, "cursor": cursor}
    if page_size is not None:
        values["page_size"] = page_size
    return values


def campaign_filters(
    name: Optional[str] = None,
    status: Optional[List[str]] = Query(None),
    created_from: Optional[_dt.date] = None,
    created_to: Optional[_dt.date] = None,
    start_from: Optional[_dt.date] = None,
    start_to: Optional[_dt.date] = None,
    end_from: Optional[_dt.date] = None,
    end_to: Optional[_dt.date] = None,
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
) -> CampaignFilters:
    return CampaignFilters(
        name=name,
        statuses=tuple(status or ()),
        created_date_range=_range(created_from, created_to),
        start_date_range=_range(start_from, start_to),
        end_date_range=_range(end_from, end_to),
        sort_by=sort_by,
        sort_order=sort_order,
        **_paging(page, page_size, cursor),
    )


def invoice_filters(
    campaign_id: Optional[str] = None,
    status: Optional[List[str]] = Query(None),
    issue_from: Optional[_dt.date] = None,
    issue_to: Optional[_dt.date] = None,
    due_from: Optional[_dt.date] = None,
    due_to: Optional[_dt.date] = None,
    paid_from: Optional[_dt.date] = None,
    paid_to: Optional[_dt.date] = None,
    created_from: Optional[_dt.date] = None,
    created_to: Optional[_dt.date] = None,
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
) -> InvoiceFilters:
    statuses = tuple(status or ())
    return InvoiceFilters(
        campaign_id=campaign_id,
        status=statuses[0] if len(statuses) == 1 else None,
        statuses=statuses if len(statuses) > 1 else (),
        issue_date_range=_range(issue_from, issue_to),
        due_date_range=_range(due_from, due_to),
        paid_date_range=_range(paid_from, paid_to),
        created_date_range=_range(created_from, created_to),
        sort_by=sort_by,
        sort_order=sort_order,
        **_paging(page, page_size, cursor),
    )


def line_item_filters(
    name: Optional[str] = None,
    campaign_id: Optional[str] = None,
    invoice_id: Optional[str] = None,
    created_from: Optional[_dt.date] = None,
    created_to: Optional[_dt.date] = None,
    sort_by: Optional[str] = None,
    sort_order: str = Query("desc", pattern="^(asc|desc)$"),
    page: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
) -> LineItemFilters:
    return LineItemFilters(
        name=name,
        campaign_id=campaign_id,
        invoice_id=invoice_id,
        created_date_range=_range(created_from, created_to),
        sort_by=sort_by,
        sort_order=sort_order,
        **_paging(page, page_size, cursor),
    )


def change_log_filters(
    entity_id: Optional[str] = None,
    entity_type: Optional[str] = None,
    invoice_id: Optional[str] = None,
    campaign_id: Optional[str] = None,
    change_type: Optional[str] = None,
    start_date: Optional[_dt.date] = None,
    end_date: Optional[_dt.date] = None,
    page: int = Query(0, ge=0),
    page_size: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = None,
) -> ChangeLogFilters:
    return ChangeLogFilters(
        entity_id=entity_id,
        entity_type=entity_type,
        invoice_id=invoice_id,
        campaign_id=campaign_id,
        change_type=change_type,
        start_date=start_date,
        end_date=end_date,
        **_paging(page, page_size, cursor),
    )


# --- helpers ---


def _fetch(get_by_filter: Callable[[Session, Any], Page], session: Session, filters) -> Page:
    try:
        return get_by_filter(session, filters)
    except ValueError as exc:
        # invalid cursors and unknown sort fields
        raise HTTPException(status_code=400, detail=str(exc))


def _paged(page: Page) -> dict:
    return {"data": [r.to_dict() for r in page.records], "next_cursor": page.next_cursor}


def _csv_download(page: Page, columns, filename: str) -> Response:
    if not page.records:
        return Response(status_code=204)
    content = csv_export.render_csv(page.records, columns)
    return StreamingResponse(
        iter([content]),
        media_type=csv_export.MEDIA_TYPE,
        headers={"Content-Disposition": f"attachment; filename={csv_export.csv_filename(filename)}"},
    )


def _not_found(entity) -> None:
    if entity is None:
        raise HTTPException(status_code=404, detail="Not found")


def _invoice_call(fn, *args, **kwargs):
    try:
        return fn(*args, **kwargs)
    except invoices.InvoiceNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except invoices.InvoiceError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def _adjust(fn, session: Session, entity_id: str, body: AdjustmentRequest) -> dict:
    try:
        result = fn(
            session,
            entity_id,
            body.amount,
            body.comment,
            user_name=body.user_name,
            user_id=body.user_id,
        )
    except adjustments.AdjustmentNotFound as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except adjustments.AdjustmentWriteError as exc:
        raise HTTPException(status_code=409, detail=str(exc))
    except adjustments.AdjustmentError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return {
        "entry": result.entry.to_dict(),
        "invoice": result.invoice.to_dict(),
        "significant": result.significant,
    }


# --- routes ---


@app.get("/health")
def health():
    return {"ok": True}


@app.get("/campaigns")
def list_campaigns(
    filters: CampaignFilters = Depends(campaign_filters), session: Session = Depends(session_scope)
):
    return _paged(_fetch(campaigns.get_by_filter, session, filters))


@app.get("/campaigns/count")
def count_campaigns(
    filters: CampaignFilters = Depends(campaign_filters), session: Session = Depends(session_scope)
):
    return {"count": campaigns.get_total_count(session, filters)}


@app.get("/campaigns/export")
def export_campaigns(
    filename: Optional[str] = None,
    filters: CampaignFilters = Depends(campaign_filters),
    session: Session = Depends(session_scope),
) -> Response:
    page = _fetch(campaigns.get_by_filter, session, filters)
    return _csv_download(page, csv_export.CAMPAIGN_COLUMNS, filename or csv_export.dated_filename("campaigns"))


@app.get("/campaigns/{campaign_id}")
def get_campaign(campaign_id: str, session: Session = Depends(session_scope)):
    campaign = campaigns.get_by_id(session, campaign_id)
    _not_found(campaign)
    return campaign.to_dict()


@app.get("/invoices")
def list_invoices(
    filters: InvoiceFilters = Depends(invoice_filters), session: Session = Depends(session_scope)
):
    return _paged(_fetch(invoices.get_by_filter, session, filters))


@app.get("/invoices/count")
def count_invoices(
    filters: InvoiceFilters = Depends(invoice_filters), session: Session = Depends(session_scope)
):
    return {"count": invoices.get_total_count(session, filters)}


@app.get("/invoices/export")
def export_invoices(
    filename: Optional[str] = None,
    filters: InvoiceFilters = Depends(invoice_filters),
    session: Session = Depends(session_scope),
) -> Response:
    page = _fetch(invoices.get_by_filter, session, filters)
    return _csv_download(page, csv_export.INVOICE_COLUMNS, filename or csv_export.dated_filename("invoices"))


@app.post("/invoices", status_code=201)
def create_invoice(body: CreateInvoiceRequest, session: Session = Depends(session_scope)):
    invoice = _invoice_call(
        invoices.create_from_line_items,
        session,
        line_item_ids=body.line_item_ids,
        client_name=body.client_name,
        client_email=body.client_email,
        issue_date=body.issue_date,
        due_date=body.due_date,
        currency=body.currency,
    )
    return invoice.to_dict()


@app.get("/invoices/{invoice_id}")
def get_invoice(invoice_id: str, session: Session = Depends(session_scope)):
    invoice = invoices.get_by_id(session, invoice_id)
    _not_found(invoice)
    return invoice.to_dict()


@app.patch("/invoices/{invoice_id}/status")
def update_invoice_status(
    invoice_id: str, body: StatusUpdate, session: Session = Depends(session_scope)
):
    invoice = _invoice_call(invoices.update_status, session, invoice_id, body.status, body.paid_date)
    return invoice.to_dict()


@app.post("/invoices/{invoice_id}/line-items")
def add_invoice_line_items(
    invoice_id: str, body: LineItemSelection, session: Session = Depends(session_scope)
):
    return _invoice_call(invoices.add_line_items, session, invoice_id, body.line_item_ids).to_dict()


@app.post("/invoices/{invoice_id}/line-items/move")
def move_invoice_line_items(
    invoice_id: str, body: MoveLineItemsRequest, session: Session = Depends(session_scope)
):
    destination = _invoice_call(
        invoices.move_line_items,
        session,
        invoice_id,
        body.to_invoice_id,
        body.line_item_ids,
        user_name=body.user_name,
    )
    return destination.to_dict()


@app.post("/invoices/{invoice_id}/line-items/remove")
def remove_invoice_line_items(
    invoice_id: str, body: LineItemSelection, session: Session = Depends(session_scope)
):
    return _invoice_call(invoices.remove_line_items, session, invoice_id, body.line_item_ids).to_dict()


@app.post("/invoices/{invoice_id}/adjustment")
def adjust_invoice(
    invoice_id: str, body: AdjustmentRequest, session: Session = Depends(session_scope)
):
    return _adjust(adjustments.apply_invoice_adjustment, session, invoice_id, body)


@app.get("/invoices/{invoice_id}/change-logs")
def invoice_change_logs(invoice_id: str, session: Session = Depends(session_scope)):
    return {"data": [e.to_dict() for e in change_log.get_by_invoice(session, invoice_id)]}


@app.get("/line-items")
def list_line_items(
    filters: LineItemFilters = Depends(line_item_filters), session: Session = Depends(session_scope)
):
    return _paged(_fetch(line_items.get_by_filter, session, filters))


@app.get("/line-items/count")
def count_line_items(
    filters: LineItemFilters = Depends(line_item_filters), session: Session = Depends(session_scope)
):
    return {"count": line_items.get_total_count(session, filters)}


@app.get("/line-items/export")
def export_line_items(
    filename: Optional[str] = None,
    filters: LineItemFilters = Depends(line_item_filters),
    session: Session = Depends(session_scope),
) -> Response:
    page = _fetch(line_items.get_by_filter, session, filters)
    return _csv_download(page, csv_export.LINE_ITEM_COLUMNS, filename or csv_export.dated_filename("line-items"))


@app.get("/line-items/{line_item_id}")
def get_line_item(line_item_id: str, session: Session = Depends(session_scope)):
    item = line_items.get_by_id(session, line_item_id)
    _not_found(item)
    return item.to_dict()


@app.post("/line-items/{line_item_id}/adjustment")
def adjust_line_item(
    line_item_id: str, body: AdjustmentRequest, session: Session = Depends(session_scope)
):
    return _adjust(adjustments.apply_line_item_adjustment, session, line_item_id, body)


@app.get("/change-logs")
def list_change_logs(
    filters: ChangeLogFilters = Depends(change_log_filters), session: Session = Depends(session_scope)
):
    return _paged(_fetch(change_log.get_by_filter, session, filters))


@app.get("/change-logs/count")
def count_change_logs(
    filters: ChangeLogFilters = Depends(change_log_filters), session: Session = Depends(session_scope)
):
    return {"count": change_log.get_total_count(session, filters)}


@app.get("/change-logs/export")
def export_change_logs(
    filename: Optional[str] = None,
    filters: ChangeLogFilters = Depends(change_log_filters),
    session: Session = Depends(session_scope),
) -> Response:
    page = _fetch(change_log.get_by_filter, session, filters)
    return _csv_download(page, csv_export.CHANGE_LOG_COLUMNS, filename or csv_export.dated_filename("change-history"))


@app.get("/dashboard/metrics")
def dashboard_metrics(
    preset: Optional[str] = None,
    created_from: Optional[_dt.date] = None,
    created_to: Optional[_dt.date] = None,
    session: Session = Depends(session_scope),
):
    date_range = _range(created_from, created_to)
    if date_range is None and preset:
        date_range = date_range_from_preset(preset)
    return metrics.load_dashboard_metrics(session, date_range)
