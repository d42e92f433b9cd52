# FILE: billing_ledger/services/billing_refunds.py
from __future__ import annotations

import logging
from typing import Any, List, Optional

from sqlalchemy.orm import Session

from billing_ledger.models.billing import (
    TERMINAL_STATUSES,
    InvoiceStatus,
    Refund,
)
from billing_ledger.services.audit_logger import invoice_snapshot, log_audit
from billing_ledger.services.billing_errors import (
    InvalidStateError,
    ValidationError,
)
from billing_ledger.services.billing_math import money2
from billing_ledger.services.billing_numbers import next_refund_number
from billing_ledger.services.billing_service import (
    _d,
    _enum_value,
    flush,
    lock_invoice,
    touch,
)
from billing_ledger.utils.timezone import utcnow_naive

logger = logging.getLogger(__name__)


def refund_invoice(
    db: Session,
    *,
    invoice_id: int,
    amount: Any,
    reason: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Refund:
    """
    Give money back against an invoice.

    - 0 < amount <= amount_paid, otherwise rejected (never clamped)
    - refund that brings amount_paid to zero voids the bill: status -> refunded.
      This also applies to a pending invoice that was only partly paid, so
      refund(amount == amount_paid) always ends in refunded and the bill
      never reopens for payment after its money went back.
    - partial refund keeps the current status with a reduced amount_paid
    """
    amt = money2(amount)
    if amt <= 0:
        raise ValidationError("Refund amount must be > 0")

    inv = lock_invoice(db, invoice_id)
    if inv.status in TERMINAL_STATUSES:
        raise InvalidStateError(
            f"Invoice {inv.invoice_number} is {_enum_value(inv.status)}; "
            "nothing can be refunded")

    paid = money2(inv.amount_paid)
    if amt > paid:
        raise ValidationError(
            f"Refund {amt} exceeds amount paid {paid} on invoice {inv.invoice_number}"
        )

    before = invoice_snapshot(inv)

    ref = Refund(
        invoice=inv,
        refund_number=next_refund_number(db),
        amount=amt,
        reason=(str(reason)[:255] if reason else None),
        processed_by=user_id,
        created_at=utcnow_naive(),
    )
    db.add(ref)

    inv.amount_paid = money2(paid - amt)
    if _d(inv.amount_paid) == 0 and amt == paid:
        inv.status = InvoiceStatus.REFUNDED
    touch(inv)
    flush(db)

    log_audit(db,
              user_id=user_id,
              action="REFUND",
              table_name="billing_refunds",
              record_id=ref.id,
              invoice_id=int(inv.id),
              old_values=before,
              new_values={
                  **invoice_snapshot(inv),
                  "refund": {
                      "amount": str(amt),
                      "reason": ref.reason,
                      "refund_number": ref.refund_number,
                  },
              })
    logger.info("Refund %s of %s on invoice %s (status now %s)",
                ref.refund_number, amt, inv.invoice_number,
                _enum_value(inv.status))
    return ref


def list_refunds(db: Session,
                 *,
                 invoice_id: Optional[int] = None,
                 limit: int = 500) -> List[Refund]:
    q = db.query(Refund)
    if invoice_id is not None:
        q = q.filter(Refund.invoice_id == int(invoice_id))
    return q.order_by(Refund.created_at.desc(),
                      Refund.id.desc()).limit(limit).all()
