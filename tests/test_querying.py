import base64
import datetime as dt
import json
from decimal import Decimal

import pytest

from campaign_desk import campaigns
from campaign_desk.filters import CampaignFilters, DateRange
from campaign_desk.querying import InvalidCursorError, decode_cursor, encode_cursor


def test_cursor_round_trip_keeps_value_types():
    values = [dt.datetime(2024, 1, 2, 3, 4, 5), dt.date(2024, 1, 2), Decimal("1.50"), "abc", 7]
    token = encode_cursor(values, "fp", 10)
    assert "=" not in token
    assert decode_cursor(token, "fp", 10) == values


def test_cursor_bound_to_fingerprint_and_page_size():
    token = encode_cursor(["abc"], "fp", 10)
    with pytest.raises(InvalidCursorError):
        decode_cursor(token, "other", 10)
    with pytest.raises(InvalidCursorError):
        decode_cursor(token, "fp", 20)


@pytest.mark.parametrize("token", ["not a cursor", "e30", "!!!"])
def test_malformed_cursor(token):
    with pytest.raises(InvalidCursorError):
        decode_cursor(token, "fp", 10)


def _forge(keys, fingerprint="fp", page_size=10):
    raw = json.dumps({"k": keys, "f": fingerprint, "s": page_size}).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


@pytest.mark.parametrize(
    "keys",
    [[{"d": 5}, "x"], [{"dt": "yesterday"}], [{"n": "lots"}], [{"n": [1]}], [{"q": 1}], "not a list"],
)
def test_cursor_with_matching_fingerprint_but_bad_keys(keys):
    with pytest.raises(InvalidCursorError):
        decode_cursor(_forge(keys), "fp", 10)


@pytest.fixture
def five_campaigns(make_campaign):
    return [
        make_campaign(
            name=f"Campaign {i}",
            status="active" if i % 2 else "draft",
            created_at=dt.datetime(2024, 1, i, 15, 0),
            start=dt.date(2024, 2, i),
        )
        for i in range(1, 6)
    ]


def _all_pages(session, filters):
    names, cursor = [], None
    while True:
        page = campaigns.get_by_filter(session, filters.with_page(0, filters.page_size, cursor))
        if not page.records:
            return names
        names.append([c.name for c in page.records])
        cursor = page.next_cursor


def test_pages_are_disjoint_and_ordered(session, five_campaigns):
    filters = CampaignFilters(sort_by="created_at", page_size=2)
    assert _all_pages(session, filters) == [
        ["Campaign 5", "Campaign 4"],
        ["Campaign 3", "Campaign 2"],
        ["Campaign 1"],
    ]


def test_ascending_order(session, five_campaigns):
    filters = CampaignFilters(sort_by="start_date", sort_order="asc", page_size=3)
    assert _all_pages(session, filters) == [
        ["Campaign 1", "Campaign 2", "Campaign 3"],
        ["Campaign 4", "Campaign 5"],
    ]


def test_empty_page_has_no_cursor(session, five_campaigns):
    page = campaigns.get_by_filter(session, CampaignFilters(name="nothing matches"))
    assert page.records == []
    assert page.next_cursor is None


def test_cursor_rejected_after_filter_change(session, five_campaigns):
    first = campaigns.get_by_filter(session, CampaignFilters(sort_by="created_at", page_size=2))
    changed = CampaignFilters(sort_by="created_at", statuses=("active",), page_size=2, cursor=first.next_cursor)
    with pytest.raises(InvalidCursorError):
        campaigns.get_by_filter(session, changed)


def test_created_range_includes_whole_last_day(session, five_campaigns):
    filters = CampaignFilters(created_date_range=DateRange(dt.date(2024, 1, 2), dt.date(2024, 1, 3)))
    page = campaigns.get_by_filter(session, filters)
    assert sorted(c.name for c in page.records) == ["Campaign 2", "Campaign 3"]
    assert campaigns.get_total_count(session, filters) == 2


def test_status_and_name_filters(session, five_campaigns):
    filters = CampaignFilters(name="CAMPAIGN", statuses=("active",))
    assert sorted(c.name for c in campaigns.get_by_filter(session, filters).records) == [
        "Campaign 1",
        "Campaign 3",
        "Campaign 5",
    ]
    assert campaigns.get_total_count(session, filters) == 3
    assert campaigns.get_total_count(session) == 5


def test_unknown_sort_field(session):
    with pytest.raises(ValueError):
        campaigns.get_by_filter(session, CampaignFilters(sort_by="budget"))


def test_page_size_must_be_positive(session):
    with pytest.raises(ValueError):
        campaigns.get_by_filter(session, CampaignFilters(page_size=0))


def test_cursor_values_must_match_sort_columns(session, five_campaigns):
    filters = CampaignFilters(sort_by="created_at", page_size=2)
    cursor = _forge(["x", "y"], filters.fingerprint(), 2)
    with pytest.raises(InvalidCursorError):
        campaigns.get_by_filter(session, filters.with_page(1, 2, cursor))
