# FILE: billing_ledger/services/billing_revenue.py
from __future__ import annotations

from collections import OrderedDict
from datetime import date, datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Optional, Tuple

from sqlalchemy.orm import Session

from billing_ledger.models.billing import (
    Invoice,
    InvoiceStatus,
    Payment,
    Refund,
)
from billing_ledger.services.billing_errors import ValidationError
from billing_ledger.utils.timezone import local_tz, to_local_date, today_local

PERIODS = ("day", "month")

D0 = Decimal("0.00")


def _d(v: Any) -> Decimal:
    return Decimal(str(v if v is not None else 0))


def _bucket_key(d: date, period: str) -> str:
    if period == "month":
        return d.strftime("%Y-%m")
    return d.isoformat()


def _iter_buckets(df: date, dt: date, period: str) -> Iterator[str]:
    if period == "month":
        y, m = df.year, df.month
        while (y, m) <= (dt.year, dt.month):
            yield f"{y:04d}-{m:02d}"
            m += 1
            if m > 12:
                y, m = y + 1, 1
        return
    d = df
    while d <= dt:
        yield d.isoformat()
        d += timedelta(days=1)


def _utc_bounds(df: date, dt: date) -> Tuple[datetime, datetime]:
    """Local calendar range -> [lo, hi) in naive UTC, matching stored columns."""
    tz = local_tz()
    lo = datetime.combine(df, time.min, tzinfo=tz).astimezone(timezone.utc)
    hi = datetime.combine(dt + timedelta(days=1), time.min,
                          tzinfo=tz).astimezone(timezone.utc)
    return lo.replace(tzinfo=None), hi.replace(tzinfo=None)


def resolve_range(
        date_from: Optional[date],
        date_to: Optional[date]) -> Optional[Tuple[date, date]]:
    if date_from is None and date_to is None:
        return None
    if date_to is None:
        date_to = today_local()
    if date_from is None:
        date_from = date_to.replace(day=1)
    if date_to < date_from:
        date_from, date_to = date_to, date_from
    return date_from, date_to


def revenue_report(
    db: Session,
    *,
    period: str = "day",
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Billed / collected / refunded per calendar day or month.

    Basis:
    - Billed: Invoice.total_payable by created_at (cancelled invoices excluded)
    - Paid: Payment.amount by recorded_at
    - Refunds: Refund.amount by created_at

    Buckets use the hospital's local calendar. When a date range is given
    every bucket in it is emitted (zero rows included); without a range only
    buckets with activity appear. Read-only.
    """
    period = (period or "day").strip().lower()
    if period not in PERIODS:
        raise ValidationError(f"period must be one of {PERIODS}")

    rng = resolve_range(date_from, date_to)

    inv_q = db.query(Invoice.created_at, Invoice.total_payable).filter(
        Invoice.status != InvoiceStatus.CANCELLED)
    pay_q = db.query(Payment.recorded_at, Payment.amount)
    ref_q = db.query(Refund.created_at, Refund.amount)

    if rng:
        lo, hi = _utc_bounds(*rng)
        inv_q = inv_q.filter(Invoice.created_at >= lo, Invoice.created_at < hi)
        pay_q = pay_q.filter(Payment.recorded_at >= lo,
                             Payment.recorded_at < hi)
        ref_q = ref_q.filter(Refund.created_at >= lo, Refund.created_at < hi)

    buckets: "OrderedDict[str, Dict[str, Decimal]]" = OrderedDict()
    if rng:
        for key in _iter_buckets(rng[0], rng[1], period):
            buckets[key] = {"billed": D0, "paid": D0, "refunds": D0}

    def _add(ts: datetime, amount: Any, field: str) -> None:
        key = _bucket_key(to_local_date(ts), period)
        row = buckets.setdefault(key, {
            "billed": D0,
            "paid": D0,
            "refunds": D0
        })
        row[field] += _d(amount)

    for ts, amt in inv_q.all():
        _add(ts, amt, "billed")
    for ts, amt in pay_q.all():
        _add(ts, amt, "paid")
    for ts, amt in ref_q.all():
        _add(ts, amt, "refunds")

    rows: List[Dict[str, Any]] = []
    totals = {"billed": D0, "paid": D0, "refunds": D0}
    for key in sorted(buckets):
        b = buckets[key]
        rows.append({
            "date": key,
            "total_billed": b["billed"],
            "total_paid": b["paid"],
            "total_refunds": b["refunds"],
            "net_collected": b["paid"] - b["refunds"],
        })
        for k in totals:
            totals[k] += b[k]

    return {
        "period": period,
        "date_from": rng[0] if rng else None,
        "date_to": rng[1] if rng else None,
        "rows": rows,
        "totals": {
            "total_billed": totals["billed"],
            "total_paid": totals["paid"],
            "total_refunds": totals["refunds"],
            "net_collected": totals["paid"] - totals["refunds"],
        },
    }
