# FILE: billing_ledger/api/routes_billing_payments.py
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from billing_ledger.api.deps import (
    CurrentUser,
    current_user,
    get_db,
    require_money_role,
)
from billing_ledger.api.response import ok
from billing_ledger.schemas.billing import (
    InvoiceOut,
    PaymentIn,
    PaymentLogOut,
    PaymentOut,
)
from billing_ledger.services.billing_payment_service import (
    list_payments,
    record_payment,
)
from billing_ledger.services.billing_reconcile import (
    list_payment_logs,
    reconcile_payment_log,
)
from billing_ledger.services.billing_service import get_invoice

router = APIRouter(tags=["Billing Payments"])


def _pay(p) -> dict:
    return PaymentOut.model_validate(p).model_dump(mode="json")


@router.post("/billing/invoices/{invoice_id}/payments")
def invoice_pay(
        invoice_id: int,
        inp: PaymentIn,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(require_money_role),
):
    pay = record_payment(db,
                         invoice_id=invoice_id,
                         amount=inp.amount,
                         method=inp.method,
                         reference_no=inp.reference_no,
                         notes=inp.notes,
                         user_id=user.id)
    db.commit()
    db.refresh(pay)
    inv = pay.invoice
    return ok(
        {
            "payment": _pay(pay),
            "invoice": InvoiceOut.from_invoice(inv).model_dump(mode="json"),
        },
        status_code=201,
    )


@router.get("/billing/invoices/{invoice_id}/payments")
def invoice_payments(
        invoice_id: int,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    inv = get_invoice(db, invoice_id)
    rows = list_payments(db, invoice_id=int(inv.id))
    return ok([_pay(p) for p in rows], meta={"count": len(rows)})


@router.get("/payments")
def payments_list(
        patient_id: Optional[int] = Query(default=None),
        invoice_id: Optional[int] = Query(default=None),
        limit: int = Query(default=500, ge=1, le=5000),
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    rows = list_payments(db,
                         invoice_id=invoice_id,
                         patient_id=patient_id,
                         limit=limit)
    return ok([_pay(p) for p in rows], meta={"count": len(rows)})


# ---------------------------------------------------------------------
# Gateway logs / reconciliation
# ---------------------------------------------------------------------
@router.get("/payments/logs")
def payment_logs_list(
        status: Optional[str] = Query(default=None),
        matched: Optional[bool] = Query(default=None),
        limit: int = Query(default=500, ge=1, le=5000),
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    rows = list_payment_logs(db, status=status, matched=matched, limit=limit)
    return ok([PaymentLogOut.model_validate(r).model_dump(mode="json")
               for r in rows],
              meta={"count": len(rows)})


@router.post("/payments/logs/{log_id}/reconcile")
def payment_log_reconcile(
        log_id: int,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(require_money_role),
):
    res = reconcile_payment_log(db, log_id=log_id, user_id=user.id)
    db.commit()
    db.refresh(res.log)
    return ok(
        {
            "log": PaymentLogOut.model_validate(res.log).model_dump(mode="json"),
            "payment": _pay(res.payment) if res.payment else None,
            "invoice": (InvoiceOut.from_invoice(res.invoice).model_dump(
                mode="json") if res.invoice else None),
        },
        meta={"already_matched": res.already_matched},
    )
