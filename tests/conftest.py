"""
Pytest configuration for Campaign Desk tests.

This conftest ensures the repository root is added to ``sys.path`` so that
the ``campaign_desk`` package can be imported by test files without being
installed, and provides an in-memory database plus small factories for the
documents most tests need.
"""

import datetime as dt
import os
import sys
from decimal import Decimal
from types import SimpleNamespace

import pytest

# Compute the repository root relative to this file (tests directory is one level deep)
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), os.pardir))

# Prepend the root directory to sys.path if it's not already present
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from campaign_desk import invoices  # noqa: E402
from campaign_desk.models import Base, Campaign, LineItem  # noqa: E402


@pytest.fixture
def engine():
    # in-memory SQLite shared by every connection of the test
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    session = sessionmaker(bind=engine, expire_on_commit=False)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def make_campaign(session):
    def _make(name="Spring Launch", status="active", start=dt.date(2024, 1, 1), end=dt.date(2024, 3, 31), **kwargs):
        campaign = Campaign(name=name, status=status, start_date=start, end_date=end, **kwargs)
        session.add(campaign)
        session.commit()
        return campaign

    return _make


@pytest.fixture
def make_line_item(session):
    def _make(campaign, name="Display", booked="1000.00", actual="1000.00", **kwargs):
        item = LineItem(
            campaign_id=campaign.id,
            name=name,
            booked_amount=Decimal(booked),
            actual_amount=Decimal(actual),
            **kwargs,
        )
        session.add(item)
        session.flush()
        campaign.line_item_ids = list(campaign.line_item_ids or []) + [item.id]
        session.commit()
        return item

    return _make


@pytest.fixture
def draft_invoice(session, make_campaign, make_line_item):
    """A draft invoice billing two line items (booked 3000, actual 3000)."""
    campaign = make_campaign()
    items = [
        make_line_item(campaign, "Display", "1000.00", "900.00"),
        make_line_item(campaign, "Video", "2000.00", "2100.00"),
    ]
    spare = make_line_item(campaign, "Audio", "500.00", "450.00")
    invoice = invoices.create_from_line_items(
        session,
        line_item_ids=[li.id for li in items],
        client_name="Acme Corp",
        client_email="billing@acme.test",
        issue_date=dt.date(2024, 4, 1),
        due_date=dt.date(2024, 5, 1),
    )
    return SimpleNamespace(campaign=campaign, items=items, spare=spare, invoice=invoice)
