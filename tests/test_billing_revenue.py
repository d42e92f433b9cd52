from datetime import timedelta
from decimal import Decimal
from io import BytesIO

import pytest
from openpyxl import load_workbook

from billing_ledger.services.billing_errors import ValidationError
from billing_ledger.services.billing_payment_service import record_payment
from billing_ledger.services.billing_refunds import refund_invoice
from billing_ledger.services.billing_revenue import (
    resolve_range,
    revenue_report,
)
from billing_ledger.services.billing_service import create_or_merge_invoice
from billing_ledger.services.billing_workflows import cancel_invoice
from billing_ledger.services.excel_export import build_revenue_report_excel
from billing_ledger.utils.timezone import today_local


@pytest.fixture
def activity(db, lab_invoice, patients):
    """Billed 700 (+300 cancelled), paid 700, refunded 200."""
    record_payment(db, invoice_id=lab_invoice.id, amount=700)
    refund_invoice(db, invoice_id=lab_invoice.id, amount=200)
    other, _ = create_or_merge_invoice(db, patient_id=patients["P2"].id,
                                       invoice_type="misc", amount=300)
    cancel_invoice(db, invoice_id=other.id)
    db.commit()


class TestRevenueReport:

    def test_daily_without_range_lists_active_days(self, db, activity):
        rep = revenue_report(db, period="day")
        assert rep["date_from"] is None
        assert len(rep["rows"]) == 1
        row = rep["rows"][0]
        assert row["date"] == today_local().isoformat()
        assert row["total_billed"] == Decimal("700")
        assert row["total_paid"] == Decimal("700")
        assert row["total_refunds"] == Decimal("200")
        assert row["net_collected"] == Decimal("500")

    def test_monthly_bucket(self, db, activity):
        rep = revenue_report(db, period="month")
        assert [r["date"] for r in rep["rows"]] == [
            today_local().strftime("%Y-%m")
        ]
        assert rep["totals"]["total_billed"] == Decimal("700")

    def test_range_is_zero_filled(self, db, activity):
        today = today_local()
        rep = revenue_report(db, period="day",
                             date_from=today - timedelta(days=2),
                             date_to=today)
        assert [r["date"] for r in rep["rows"]] == [
            (today - timedelta(days=2)).isoformat(),
            (today - timedelta(days=1)).isoformat(),
            today.isoformat(),
        ]
        assert rep["rows"][0]["total_billed"] == Decimal("0")
        assert rep["rows"][2]["total_paid"] == Decimal("700")

    def test_range_excludes_outside_activity(self, db, activity):
        past = today_local() - timedelta(days=10)
        rep = revenue_report(db, date_from=past, date_to=past)
        assert rep["totals"]["total_billed"] == Decimal("0")
        assert len(rep["rows"]) == 1

    def test_empty_ledger(self, db, patients):
        rep = revenue_report(db)
        assert rep["rows"] == []
        assert rep["totals"]["net_collected"] == Decimal("0")

    def test_bad_period(self, db):
        with pytest.raises(ValidationError):
            revenue_report(db, period="week")


class TestResolveRange:

    def test_open_start_defaults_to_month_start(self):
        to = today_local().replace(day=20)
        assert resolve_range(None, to) == (to.replace(day=1), to)

    def test_reversed_range_is_swapped(self):
        a = today_local()
        b = a - timedelta(days=5)
        assert resolve_range(a, b) == (b, a)

    def test_no_range(self):
        assert resolve_range(None, None) is None


def test_revenue_export_workbook(db, activity):
    bio = BytesIO()
    build_revenue_report_excel(bio, revenue_report(db, period="month"))
    bio.seek(0)
    ws = load_workbook(bio).active
    assert ws.title == "Monthly Revenue"
    assert [c.value for c in ws[1]] == [
        "Date", "Billed", "Paid", "Refunds", "Net Collected"
    ]
    assert ws.cell(row=ws.max_row, column=1).value == "TOTAL"
    assert ws.cell(row=ws.max_row, column=5).value == 500
