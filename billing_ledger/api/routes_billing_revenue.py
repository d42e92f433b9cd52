# FILE: billing_ledger/api/routes_billing_revenue.py
from __future__ import annotations

from datetime import date
from io import BytesIO
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse
from sqlalchemy.orm import Session

from billing_ledger.api.deps import CurrentUser, current_user, get_db
from billing_ledger.api.response import ok
from billing_ledger.services.billing_errors import ValidationError
from billing_ledger.services.billing_revenue import revenue_report
from billing_ledger.services.excel_export import build_revenue_report_excel

router = APIRouter(prefix="/billing/reports", tags=["Billing Revenue"])


def _parse_date(s: Optional[str]) -> Optional[date]:
    if not s:
        return None
    try:
        return date.fromisoformat(s)
    except ValueError:
        raise ValidationError(f"Invalid date {s!r} (expected YYYY-MM-DD)")


def _report(db: Session, period: str, date_from: Optional[str],
            date_to: Optional[str]) -> Dict[str, Any]:
    return revenue_report(db,
                          period=period,
                          date_from=_parse_date(date_from),
                          date_to=_parse_date(date_to))


@router.get("/revenue")
def revenue(
        period: str = Query(default="day"),
        date_from: Optional[str] = Query(default=None, alias="from"),
        date_to: Optional[str] = Query(default=None, alias="to"),
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    rep = _report(db, period, date_from, date_to)
    return ok(
        rep["rows"],
        meta={
            "period": rep["period"],
            "from": rep["date_from"],
            "to": rep["date_to"],
            "totals": rep["totals"],
        },
    )


@router.get("/revenue/export")
def revenue_export(
        period: str = Query(default="day"),
        date_from: Optional[str] = Query(default=None, alias="from"),
        date_to: Optional[str] = Query(default=None, alias="to"),
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    rep = _report(db, period, date_from, date_to)

    bio = BytesIO()
    build_revenue_report_excel(bio, rep)
    bio.seek(0)

    suffix = ""
    if rep["date_from"] and rep["date_to"]:
        suffix = f"_{rep['date_from']}_{rep['date_to']}"
    filename = f"revenue_{rep['period']}{suffix}.xlsx"
    return StreamingResponse(
        bio,
        media_type=
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
