import datetime as dt
import json
from decimal import Decimal

import pytest

from campaign_desk import cli, db
from campaign_desk.models import Campaign, ChangeLogEntry, Invoice, LineItem


@pytest.fixture
def db_url(tmp_path, monkeypatch):
    monkeypatch.delenv("SLACK_WEBHOOK_URL", raising=False)
    monkeypatch.delenv("EXPORT_BUCKET", raising=False)
    return f"sqlite:///{tmp_path / 'cli.db'}"


@pytest.fixture
def seeded(db_url):
    db.configure(db_url)
    session = db.get_db_session()
    campaign = Campaign(name="Spring Launch", status="active", start_date=dt.date(2024, 1, 1), end_date=dt.date(2024, 3, 31))
    session.add(campaign)
    session.flush()
    invoice = Invoice(
        campaign_id=campaign.id,
        invoice_number="INV-1",
        issue_date=dt.date(2024, 4, 1),
        due_date=dt.date(2024, 5, 1),
        client_name="Acme Corp",
        client_email="billing@acme.test",
    )
    session.add(invoice)
    session.flush()
    items = [
        LineItem(campaign_id=campaign.id, name=f"Placement {i}", booked_amount=100, actual_amount=100, invoice_id=invoice.id)
        for i in range(3)
    ]
    session.add_all(items)
    session.flush()
    invoice.line_item_ids = [li.id for li in items]
    session.commit()
    ids = {"invoice": invoice.id, "items": [li.id for li in items]}
    session.close()
    return ids


def test_init_db(db_url, capsys):
    cli.main(["--database-url", db_url, "init-db"])
    assert "Database initialised" in capsys.readouterr().out


def test_export_writes_one_file_per_page(db_url, seeded, tmp_path, capsys):
    out = tmp_path / "out"
    cli.main([
        "--database-url", db_url,
        "export", "line-items",
        "--page-size", "2", "--pages", "5",
        "--output-dir", str(out), "--filename", "items",
    ])
    assert sorted(p.name for p in out.iterdir()) == ["items-page-1.csv", "items-page-2.csv"]
    first = (out / "items-page-1.csv").read_text(encoding="utf-8").split("\n")
    assert first[0].startswith("Line Item Name,")
    assert len(first) == 3
    assert "Exported 1 line-items to items-page-2.csv" in capsys.readouterr().out


def test_export_with_no_matches(db_url, seeded, tmp_path, capsys):
    out = tmp_path / "out"
    cli.main(["--database-url", db_url, "export", "campaigns", "--name", "nothing", "--output-dir", str(out)])
    assert "No campaigns match" in capsys.readouterr().out
    assert not out.exists()


def test_adjust_line_item(db_url, seeded, capsys):
    item_id = seeded["items"][0]
    cli.main(["--database-url", db_url, "adjust", item_id, "-25.50", "--comment", "Credit", "--user", "Jo"])
    assert "adjustment_created: 0.00 -> -25.50" in capsys.readouterr().out

    session = db.get_db_session()
    try:
        entry = session.query(ChangeLogEntry).one()
        assert entry.user_name == "Jo"
        assert session.get(Invoice, seeded["invoice"]).total_amount == Decimal("274.50")
    finally:
        session.close()


def test_adjust_rejection_exits(db_url, seeded):
    with pytest.raises(SystemExit, match="Adjustment rejected"):
        cli.main(["--database-url", db_url, "adjust", "missing", "10"])


def test_metrics_prints_json(db_url, seeded, capsys):
    cli.main(["--database-url", db_url, "metrics"])
    data = json.loads(capsys.readouterr().out)
    assert data["invoices_by_status"] == {"draft": 1}
    assert data["uninvoiced_line_items"] == 0
