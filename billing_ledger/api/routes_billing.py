# FILE: billing_ledger/api/routes_billing.py
from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, Query
from sqlalchemy.orm import Session

from billing_ledger.api.deps import (
    CurrentUser,
    current_user,
    get_db,
    require_money_role,
)
from billing_ledger.api.response import ok
from billing_ledger.schemas.billing import (
    CancelIn,
    DischargeIn,
    InvoiceCreate,
    InvoiceDetailOut,
    InvoiceOut,
    LineItemsUpdate,
    RefundIn,
    RefundOut,
)
from billing_ledger.services.billing_refunds import list_refunds, refund_invoice
from billing_ledger.services.billing_service import (
    create_or_merge_invoice,
    get_invoice,
    list_invoices,
    patient_id_from_appointment,
    update_line_items,
)
from billing_ledger.services.billing_workflows import (
    cancel_invoice,
    discharge_patient,
    finalize_invoice,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/billing", tags=["Billing"])


def _inv(inv) -> dict:
    return InvoiceOut.from_invoice(inv).model_dump(mode="json")


def _inv_detail(inv) -> dict:
    return InvoiceDetailOut.from_invoice(inv).model_dump(mode="json")


# ---------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------
@router.post("/invoices")
def create_invoice(
        inp: InvoiceCreate,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    patient_id = inp.patient_id
    if patient_id is None:
        patient_id = patient_id_from_appointment(db, inp.appointment_id)

    inv, merged = create_or_merge_invoice(
        db,
        patient_id=patient_id,
        invoice_type=inp.type,
        items=inp.items,
        amount=inp.amount,
        description=inp.description,
        notes=inp.notes,
        user_id=user.id,
    )
    db.commit()
    db.refresh(inv)
    return ok(_inv_detail(inv),
              meta={"merged": merged},
              status_code=200 if merged else 201)


@router.get("/invoices")
def invoices_list(
        patient_id: Optional[int] = Query(default=None),
        status: Optional[str] = Query(default=None),
        invoice_type: Optional[str] = Query(default=None),
        limit: int = Query(default=200, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    rows = list_invoices(db,
                         patient_id=patient_id,
                         status=status,
                         invoice_type=invoice_type,
                         limit=limit,
                         offset=offset)
    return ok([_inv(r) for r in rows],
              meta={
                  "count": len(rows),
                  "limit": limit,
                  "offset": offset
              })


@router.get("/invoices/{invoice_id}")
def invoice_get(
        invoice_id: int,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    return ok(_inv_detail(get_invoice(db, invoice_id)))


@router.put("/invoices/{invoice_id}/items")
def invoice_items_update(
        invoice_id: int,
        inp: LineItemsUpdate,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    inv = update_line_items(db,
                            invoice_id=invoice_id,
                            items=inp.items,
                            header_discount=inp.header_discount,
                            user_id=user.id)
    db.commit()
    db.refresh(inv)
    return ok(_inv_detail(inv))


@router.put("/invoices/{invoice_id}/finalize")
def invoice_finalize(
        invoice_id: int,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(require_money_role),
):
    inv = finalize_invoice(db, invoice_id=invoice_id, user_id=user.id)
    db.commit()
    db.refresh(inv)
    return ok(_inv_detail(inv))


@router.put("/invoices/{invoice_id}/cancel")
def invoice_cancel(
        invoice_id: int,
        inp: Optional[CancelIn] = Body(default=None),
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(require_money_role),
):
    inv = cancel_invoice(db,
                         invoice_id=invoice_id,
                         reason=inp.reason if inp else None,
                         user_id=user.id)
    db.commit()
    db.refresh(inv)
    return ok(_inv_detail(inv))


# ---------------------------------------------------------------------
# Refunds
# ---------------------------------------------------------------------
@router.post("/invoices/{invoice_id}/refunds")
def invoice_refund(
        invoice_id: int,
        inp: RefundIn,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(require_money_role),
):
    ref = refund_invoice(db,
                         invoice_id=invoice_id,
                         amount=inp.amount,
                         reason=inp.reason,
                         user_id=user.id)
    db.commit()
    db.refresh(ref)
    return ok(
        {
            "refund": RefundOut.model_validate(ref).model_dump(mode="json"),
            "invoice": _inv(ref.invoice),
        },
        status_code=201,
    )


@router.get("/refunds")
def refunds_list(
        invoice_id: Optional[int] = Query(default=None),
        limit: int = Query(default=500, ge=1, le=5000),
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(current_user),
):
    rows = list_refunds(db, invoice_id=invoice_id, limit=limit)
    return ok([RefundOut.model_validate(r).model_dump(mode="json")
               for r in rows],
              meta={"count": len(rows)})


# ---------------------------------------------------------------------
# Discharge hook
# ---------------------------------------------------------------------
@router.post("/discharge")
def discharge(
        inp: DischargeIn,
        db: Session = Depends(get_db),
        user: CurrentUser = Depends(require_money_role),
):
    inv = discharge_patient(db,
                            patient_id=inp.patient_id,
                            charges=inp.charges,
                            user_id=user.id)
    db.commit()
    db.refresh(inv)
    logger.info("Discharge billed for patient %s on %s", inp.patient_id,
                inv.invoice_number)
    return ok(_inv_detail(inv))
