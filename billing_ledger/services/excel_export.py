from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter


def _money(x) -> float:
    return float(Decimal(str(x or "0")))


def build_revenue_report_excel(fp, report: Dict[str, Any]) -> None:
    """Write a revenue_report() result as a one-sheet workbook into fp."""
    wb = Workbook()
    ws = wb.active
    period = report.get("period", "day")
    ws.title = "Monthly Revenue" if period == "month" else "Daily Revenue"

    headers = ["Date", "Billed", "Paid", "Refunds", "Net Collected"]
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)

    for r in report.get("rows", []):
        ws.append([
            r["date"],
            _money(r["total_billed"]),
            _money(r["total_paid"]),
            _money(r["total_refunds"]),
            _money(r["net_collected"]),
        ])

    t = report.get("totals") or {}
    ws.append([
        "TOTAL",
        _money(t.get("total_billed")),
        _money(t.get("total_paid")),
        _money(t.get("total_refunds")),
        _money(t.get("net_collected")),
    ])
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)

    for col in range(2, len(headers) + 1):
        for row in ws.iter_rows(min_row=2, min_col=col, max_col=col):
            row[0].number_format = "#,##0.00"

    for col in range(1, len(headers) + 1):
        ws.column_dimensions[get_column_letter(col)].width = 18

    wb.save(fp)
