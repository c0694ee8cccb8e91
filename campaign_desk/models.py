"""
Database models for Campaign Desk.

These SQLAlchemy models define the document-style schema behind the dashboard:
campaigns, invoices, line items and the append-only change log.  Ids are
string document ids and membership lists (invoice ids, line item ids) live as
JSON arrays on the owning document.  Migrations are intentionally omitted; the
schema can be initialised via SQLAlchemy's metadata create functions.
"""

import datetime as _dt
import uuid

from sqlalchemy import (
    Column,
    String,
    Date,
    DateTime,
    Numeric,
    ForeignKey,
    JSON,
    Text,
    event,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()

CAMPAIGN_STATUSES = ("draft", "active", "completed", "cancelled")
INVOICE_STATUSES = ("draft", "sent", "paid", "overdue", "cancelled")
ENTITY_TYPES = ("line_item", "invoice")
CHANGE_TYPES = (
    "adjustment_created",
    "adjustment_updated",
    "adjustment_deleted",
    "line_item_moved",
)


def _new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> _dt.datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return _dt.datetime.now(_dt.timezone.utc).replace(tzinfo=None)


class ChangeLogImmutableError(Exception):
    """Raised when code tries to update or delete a persisted change-log entry."""


class Campaign(Base):
    """An advertising campaign that owns line items and invoices."""

    __tablename__ = "campaigns"

    id = Column(String(32), primary_key=True, default=_new_id)
    name = Column(String, nullable=False)
    status = Column(String, nullable=False, default="draft")  # draft, active, completed, cancelled
    start_date = Column(Date, nullable=False)
    end_date = Column(Date, nullable=False)
    invoice_ids = Column(JSON, nullable=False, default=list)
    line_item_ids = Column(JSON, nullable=False, default=list)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    invoices = relationship("Invoice", back_populates="campaign")
    line_items = relationship("LineItem", back_populates="campaign")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "invoice_ids": list(self.invoice_ids or []),
            "line_item_ids": list(self.line_item_ids or []),
        }

    def __repr__(self) -> str:
        return f"<Campaign id={self.id} name={self.name} status={self.status}>"


class Invoice(Base):
    """An invoice billing a set of a campaign's line items."""

    __tablename__ = "invoices"

    id = Column(String(32), primary_key=True, default=_new_id)
    campaign_id = Column(String(32), ForeignKey("campaigns.id"), nullable=False, index=True)
    invoice_number = Column(String, nullable=False, unique=True)
    line_item_ids = Column(JSON, nullable=False, default=list)
    adjustment_ids = Column(JSON, nullable=False, default=list)
    booked_amount = Column(Numeric(12, 2), nullable=False, default=0)
    actual_amount = Column(Numeric(12, 2), nullable=False, default=0)
    total_adjustments = Column(Numeric(12, 2), nullable=False, default=0)
    invoice_adjustment = Column(Numeric(12, 2), nullable=False, default=0)
    total_amount = Column(Numeric(12, 2), nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    issue_date = Column(Date, nullable=False)
    due_date = Column(Date, nullable=False)
    paid_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default="draft")  # draft, sent, paid, overdue, cancelled
    client_name = Column(String, nullable=False)
    client_email = Column(String, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    campaign = relationship("Campaign", back_populates="invoices")
    line_items = relationship("LineItem", back_populates="invoice")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "invoice_number": self.invoice_number,
            "line_item_ids": list(self.line_item_ids or []),
            "adjustment_ids": list(self.adjustment_ids or []),
            "booked_amount": self.booked_amount,
            "actual_amount": self.actual_amount,
            "total_adjustments": self.total_adjustments,
            "invoice_adjustment": self.invoice_adjustment,
            "total_amount": self.total_amount,
            "currency": self.currency,
            "issue_date": self.issue_date,
            "due_date": self.due_date,
            "paid_date": self.paid_date,
            "status": self.status,
            "client_name": self.client_name,
            "client_email": self.client_email,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number} status={self.status}>"


class LineItem(Base):
    """A booked unit of campaign delivery, optionally attached to an invoice."""

    __tablename__ = "line_items"

    id = Column(String(32), primary_key=True, default=_new_id)
    campaign_id = Column(String(32), ForeignKey("campaigns.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    booked_amount = Column(Numeric(12, 2), nullable=False, default=0)
    actual_amount = Column(Numeric(12, 2), nullable=False, default=0)
    adjustments = Column(Numeric(12, 2), nullable=False, default=0)
    invoice_id = Column(String(32), ForeignKey("invoices.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    campaign = relationship("Campaign", back_populates="line_items")
    invoice = relationship("Invoice", back_populates="line_items")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "campaign_id": self.campaign_id,
            "name": self.name,
            "booked_amount": self.booked_amount,
            "actual_amount": self.actual_amount,
            "adjustments": self.adjustments,
            "invoice_id": self.invoice_id,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }

    def __repr__(self) -> str:
        return (
            f"<LineItem id={self.id} campaign_id={self.campaign_id} adjustments={self.adjustments}>"
        )


class ChangeLogEntry(Base):
    """Immutable audit record of a single adjustment or line item move."""

    __tablename__ = "change_logs"

    id = Column(String(32), primary_key=True, default=_new_id)
    timestamp = Column(DateTime, default=utcnow, nullable=False, index=True)
    entity_type = Column(String, nullable=False)  # line_item, invoice
    entity_id = Column(String(32), nullable=False, index=True)
    change_type = Column(String, nullable=False)
    field = Column(String, nullable=False, default="adjustments")

    previous_amount = Column(Numeric(12, 2), nullable=False, default=0)
    new_amount = Column(Numeric(12, 2), nullable=False, default=0)
    difference = Column(Numeric(12, 2), nullable=False, default=0)
    booked_amount_at_time = Column(Numeric(12, 2), nullable=False, default=0)
    actual_amount_at_time = Column(Numeric(12, 2), nullable=False, default=0)

    comment = Column(Text, nullable=False, default="")
    user_id = Column(String, nullable=True)
    user_name = Column(String, nullable=False, default="System")

    invoice_id = Column(String(32), nullable=False, index=True)
    invoice_number = Column(String, nullable=False)
    campaign_id = Column(String(32), nullable=False, index=True)
    line_item_name = Column(String, nullable=True)
    previous_invoice_id = Column(String(32), nullable=True)
    previous_invoice_number = Column(String, nullable=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "timestamp": self.timestamp,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "change_type": self.change_type,
            "field": self.field,
            "previous_amount": self.previous_amount,
            "new_amount": self.new_amount,
            "difference": self.difference,
            "booked_amount_at_time": self.booked_amount_at_time,
            "actual_amount_at_time": self.actual_amount_at_time,
            "comment": self.comment,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "invoice_id": self.invoice_id,
            "invoice_number": self.invoice_number,
            "campaign_id": self.campaign_id,
            "line_item_name": self.line_item_name,
            "previous_invoice_id": self.previous_invoice_id,
            "previous_invoice_number": self.previous_invoice_number,
        }

    def __repr__(self) -> str:
        return f"<ChangeLogEntry id={self.id} entity={self.entity_type}:{self.entity_id} type={self.change_type}>"


@event.listens_for(ChangeLogEntry, "before_update")
def _refuse_change_log_update(mapper, connection, target):
    raise ChangeLogImmutableError(f"change log entry {target.id} cannot be modified")


@event.listens_for(ChangeLogEntry, "before_delete")
def _refuse_change_log_delete(mapper, connection, target):
    raise ChangeLogImmutableError(f"change log entry {target.id} cannot be deleted")
