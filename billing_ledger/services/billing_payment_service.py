# FILE: billing_ledger/services/billing_payment_service.py
from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from billing_ledger.models.billing import (
    TERMINAL_STATUSES,
    Invoice,
    Payment,
    PayMethod,
)
from billing_ledger.services.audit_logger import invoice_snapshot, log_audit
from billing_ledger.services.billing_errors import (
    InvalidStateError,
    ValidationError,
)
from billing_ledger.services.billing_math import money2
from billing_ledger.services.billing_numbers import next_receipt_number
from billing_ledger.services.billing_service import (
    _d,
    _enum_value,
    apply_paid_status,
    flush,
    lock_invoice,
    touch,
)
from billing_ledger.utils.timezone import utcnow_naive

logger = logging.getLogger(__name__)


def coerce_pay_method(value: Any) -> PayMethod:
    try:
        return PayMethod(str(_enum_value(value) or "").strip().lower())
    except ValueError:
        allowed = ", ".join(m.value for m in PayMethod)
        raise ValidationError(
            f"Unknown payment method {value!r} (expected one of: {allowed})")


def record_payment(
    db: Session,
    *,
    invoice_id: int,
    amount: Any,
    method: Any = PayMethod.CASH,
    reference_no: Optional[str] = None,
    notes: Optional[str] = None,
    source_log_id: Optional[int] = None,
    user_id: Optional[str] = None,
) -> Payment:
    amt = money2(amount)
    if amt <= 0:
        raise ValidationError("Payment amount must be > 0")
    pay_method = coerce_pay_method(method)

    inv = lock_invoice(db, invoice_id)
    if inv.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Invoice {inv.invoice_number} is {_enum_value(inv.status)}; "
            "payments are not accepted")

    before = invoice_snapshot(inv)

    pay = Payment(
        invoice=inv,
        amount=amt,
        method=pay_method,
        receipt_number=next_receipt_number(db),
        reference_no=(reference_no or None),
        notes=(notes or None),
        source_log_id=source_log_id,
        recorded_by=user_id,
        recorded_at=utcnow_naive(),
    )
    db.add(pay)

    inv.amount_paid = money2(_d(inv.amount_paid) + amt)
    apply_paid_status(inv)
    touch(inv)
    flush(db)

    if _d(inv.amount_paid) > _d(inv.total_payable):
        # kept as credit on the invoice, never auto-refunded
        logger.info("Invoice %s overpaid by %s", inv.invoice_number,
                    inv.credit_balance)

    log_audit(db,
              user_id=user_id,
              action="PAYMENT",
              table_name="billing_payments",
              record_id=pay.id,
              invoice_id=int(inv.id),
              old_values=before,
              new_values={
                  **invoice_snapshot(inv),
                  "payment": {
                      "amount": str(amt),
                      "method": pay_method.value,
                      "receipt_number": pay.receipt_number,
                      "source_log_id": source_log_id,
                  },
              })
    return pay


def list_payments(
    db: Session,
    *,
    invoice_id: Optional[int] = None,
    patient_id: Optional[int] = None,
    limit: int = 500,
) -> List[Payment]:
    q = db.query(Payment)
    if invoice_id is not None:
        q = q.filter(Payment.invoice_id == int(invoice_id))
    if patient_id is not None:
        q = q.join(Invoice, Invoice.id == Payment.invoice_id).filter(
            Invoice.patient_id == int(patient_id))
    return q.order_by(Payment.recorded_at.desc(),
                      Payment.id.desc()).limit(limit).all()
