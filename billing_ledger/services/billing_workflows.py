# FILE: billing_ledger/services/billing_workflows.py
from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from sqlalchemy.orm import Session

from billing_ledger.models.billing import Invoice, InvoiceStatus, InvoiceType
from billing_ledger.services.audit_logger import invoice_snapshot, log_audit
from billing_ledger.services.billing_errors import (
    InvalidStateError,
    ValidationError,
)
from billing_ledger.services.billing_service import (
    _d,
    _enum_value,
    create_or_merge_invoice,
    flush,
    get_patient,
    lock_invoice,
    touch,
)
from billing_ledger.utils.timezone import utcnow_naive

logger = logging.getLogger(__name__)


# ------------------------------------------------------------
# Finalize (lock line items)
# ------------------------------------------------------------
def finalize_invoice(db: Session,
                     *,
                     invoice_id: int,
                     user_id: Optional[str] = None) -> Invoice:
    """
    pending -> finalized.

    Idempotent: an already finalized (or already paid, hence already
    locked) invoice is returned unchanged.
    """
    inv = lock_invoice(db, invoice_id)
    st = inv.status

    if st in (InvoiceStatus.FINALIZED, InvoiceStatus.PAID):
        return inv

    if st != InvoiceStatus.PENDING:
        raise InvalidStateError(
            f"Invoice {inv.invoice_number} is {_enum_value(st)} and cannot be finalized"
        )

    if not inv.items:
        raise ValidationError("Cannot finalize invoice with no line items")

    before = invoice_snapshot(inv)
    inv.status = InvoiceStatus.FINALIZED
    inv.finalized_at = utcnow_naive()
    inv.finalized_by = user_id
    touch(inv)
    flush(db)

    log_audit(db,
              user_id=user_id,
              action="FINALIZE",
              table_name="billing_invoices",
              record_id=inv.id,
              invoice_id=int(inv.id),
              old_values=before,
              new_values=invoice_snapshot(inv))
    logger.info("Invoice %s finalized by %s", inv.invoice_number, user_id)
    return inv


# ------------------------------------------------------------
# Cancel (terminal)
# ------------------------------------------------------------
def cancel_invoice(db: Session,
                   *,
                   invoice_id: int,
                   reason: Optional[str] = None,
                   user_id: Optional[str] = None) -> Invoice:
    inv = lock_invoice(db, invoice_id)
    st = inv.status

    if st not in (InvoiceStatus.PENDING, InvoiceStatus.FINALIZED):
        raise InvalidStateError(
            f"Invoice {inv.invoice_number} is {_enum_value(st)} and cannot be cancelled"
        )

    if _d(inv.amount_paid) != 0:
        raise InvalidStateError(
            f"Invoice {inv.invoice_number} has {inv.amount_paid} paid; "
            "refund the payments before cancelling")

    before = invoice_snapshot(inv)
    inv.status = InvoiceStatus.CANCELLED
    inv.cancelled_at = utcnow_naive()
    inv.cancelled_by = user_id
    inv.cancel_reason = (str(reason)[:255] if reason else None)
    touch(inv)
    flush(db)

    log_audit(db,
              user_id=user_id,
              action="CANCEL",
              table_name="billing_invoices",
              record_id=inv.id,
              invoice_id=int(inv.id),
              old_values=before,
              new_values={
                  **invoice_snapshot(inv), "reason": inv.cancel_reason
              })
    return inv


# ------------------------------------------------------------
# Discharge hook: bill admission charges, then lock the bill
# ------------------------------------------------------------
def discharge_patient(
    db: Session,
    *,
    patient_id: int,
    charges: Iterable[Any],
    user_id: Optional[str] = None,
) -> Invoice:
    """
    Called by the discharge workflow with a flat list of priced charges.
    Nothing about admissions or wards is needed here: the charges are
    merged into the patient's pending admission invoice (or a new one)
    and the invoice is finalized, all in the caller's transaction.
    """
    get_patient(db, patient_id)
    charges = list(charges or [])

    if charges:
        inv, _merged = create_or_merge_invoice(
            db,
            patient_id=int(patient_id),
            invoice_type=InvoiceType.ADMISSION,
            items=charges,
            user_id=user_id,
        )
    else:
        inv = (db.query(Invoice).filter(
            Invoice.patient_id == int(patient_id),
            Invoice.invoice_type == InvoiceType.ADMISSION,
            Invoice.status == InvoiceStatus.PENDING,
        ).order_by(Invoice.id.asc()).first())
        if not inv:
            raise ValidationError(
                "No discharge charges given and no pending admission invoice to close"
            )

    return finalize_invoice(db, invoice_id=int(inv.id), user_id=user_id)
