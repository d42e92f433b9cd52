# FILE: billing_ledger/services/billing_reconcile.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional

from sqlalchemy.orm import Session

from billing_ledger.core.config import settings
from billing_ledger.models.billing import (
    Invoice,
    Payment,
    PaymentLog,
    PaymentLogStatus,
    PayMethod,
)
from billing_ledger.services.audit_logger import log_audit
from billing_ledger.services.billing_errors import (
    AmbiguousMatchError,
    NotFoundError,
    NotReconcilableError,
    ValidationError,
)
from billing_ledger.services.billing_payment_service import record_payment
from billing_ledger.services.billing_service import (
    _enum_value,
    flush,
    get_invoice_by_number,
)
from billing_ledger.utils.timezone import utcnow_naive

logger = logging.getLogger(__name__)


@dataclass
class ReconcileResult:
    log: PaymentLog
    invoice: Optional[Invoice]
    payment: Optional[Payment]
    already_matched: bool


def _lock_log(db: Session, log_id: int) -> PaymentLog:
    log = (db.query(PaymentLog).filter(
        PaymentLog.id == int(log_id)).with_for_update().populate_existing().
           first())
    if not log:
        raise NotFoundError(f"Payment log {log_id} not found")
    return log


def _method_for(log: PaymentLog) -> PayMethod:
    raw = (log.method or "").strip().lower()
    try:
        return PayMethod(raw or settings.RECONCILE_DEFAULT_METHOD)
    except ValueError:
        logger.warning("Payment log %s has unknown method %r; using %s",
                       log.id, log.method, settings.RECONCILE_DEFAULT_METHOD)
        return PayMethod(settings.RECONCILE_DEFAULT_METHOD)


def resolve_invoice(db: Session, log: PaymentLog) -> Invoice:
    """
    invoice_number (what the payer typed / the gateway echoed) wins over a
    stored invoice_id. Never matched by amount.
    """
    inv = get_invoice_by_number(db, log.invoice_number or "")
    if inv:
        return inv
    if log.invoice_id:
        inv = db.get(Invoice, int(log.invoice_id))
        if inv:
            return inv
    raise AmbiguousMatchError(
        f"Payment log {log.id} (txn {log.transaction_id}) does not reference a known invoice; "
        "reconcile it manually",
        details={
            "transaction_id": log.transaction_id,
            "invoice_number": log.invoice_number,
            "invoice_id": log.invoice_id,
        },
    )


def reconcile_payment_log(db: Session,
                          *,
                          log_id: int,
                          user_id: Optional[str] = None) -> ReconcileResult:
    """
    Apply one successful gateway callback to its invoice, exactly once.

    Re-running on an already matched log is a successful no-op, which makes
    duplicate webhook delivery harmless. On any failure the log is left
    untouched so it stays available for manual reconciliation.
    """
    log = _lock_log(db, log_id)

    if log.status != PaymentLogStatus.SUCCESS:
        raise NotReconcilableError(
            f"Payment log {log.id} is {_enum_value(log.status)}; only successful payments can be reconciled"
        )

    existing = db.query(Payment).filter(Payment.source_log_id == log.id).first()
    if log.matched_at is not None or existing is not None:
        inv = existing.invoice if existing else (
            db.get(Invoice, int(log.invoice_id)) if log.invoice_id else None)
        logger.info("Payment log %s already reconciled; skipping", log.id)
        return ReconcileResult(log=log,
                               invoice=inv,
                               payment=existing,
                               already_matched=True)

    inv = resolve_invoice(db, log)

    pay = record_payment(
        db,
        invoice_id=int(inv.id),
        amount=log.amount,
        method=_method_for(log),
        reference_no=log.transaction_id,
        notes=f"Reconciled from gateway log #{log.id}",
        source_log_id=int(log.id),
        user_id=user_id,
    )

    log.invoice_id = int(inv.id)
    log.matched_at = utcnow_naive()
    log.matched_by = user_id
    flush(db)

    log_audit(db,
              user_id=user_id,
              action="RECONCILE",
              table_name="payment_logs",
              record_id=log.id,
              invoice_id=int(inv.id),
              new_values={
                  "transaction_id": log.transaction_id,
                  "payment_id": int(pay.id),
                  "amount": str(pay.amount),
                  "invoice_number": inv.invoice_number,
              })
    logger.info("Reconciled txn %s -> invoice %s (%s)", log.transaction_id,
                inv.invoice_number, pay.amount)
    return ReconcileResult(log=log,
                           invoice=inv,
                           payment=pay,
                           already_matched=False)


def list_payment_logs(
    db: Session,
    *,
    status: Optional[str] = None,
    matched: Optional[bool] = None,
    limit: int = 500,
) -> List[PaymentLog]:
    q = db.query(PaymentLog)
    if status:
        try:
            wanted = PaymentLogStatus(str(status).lower())
        except ValueError:
            raise ValidationError(f"Unknown payment log status {status!r}")
        q = q.filter(PaymentLog.status == wanted)
    if matched is True:
        q = q.filter(PaymentLog.matched_at.isnot(None))
    elif matched is False:
        q = q.filter(PaymentLog.matched_at.is_(None))
    return q.order_by(PaymentLog.created_at.desc(),
                      PaymentLog.id.desc()).limit(limit).all()
