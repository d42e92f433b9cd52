# File: billing_ledger/services/billing_service.py
from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from billing_ledger.models.billing import (
    EDITABLE_STATUSES,
    Invoice,
    InvoiceLineItem,
    InvoiceStatus,
    InvoiceType,
)
from billing_ledger.models.patient import Appointment, Patient
from billing_ledger.services.audit_logger import invoice_snapshot, log_audit
from billing_ledger.services.billing_errors import (
    ConcurrentUpdateError,
    InvoiceLockedError,
    NotFoundError,
    ValidationError,
)
from billing_ledger.services.billing_math import compute_line_amounts, money2
from billing_ledger.services.billing_numbers import next_invoice_number
from billing_ledger.utils.timezone import today_local, utcnow_naive

logger = logging.getLogger(__name__)


# ============================================================
# Small helpers
# ============================================================
def _d(x: Any) -> Decimal:
    return Decimal(str(x if x is not None else 0))


def _enum_value(x):
    return x.value if hasattr(x, "value") else x


def _get(obj: Any, key: str, default=None):
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def flush(db: Session) -> None:
    """
    Flush pending changes. A version mismatch on an invoice row means
    another transaction changed it after we read it.
    """
    try:
        db.flush()
    except StaleDataError as exc:
        db.rollback()
        raise ConcurrentUpdateError(
            "Invoice was modified by another request. Reload and retry."
        ) from exc


def touch(inv: Invoice) -> None:
    # always bump updated_at so the row UPDATE (and version check) happens
    inv.updated_at = utcnow_naive()


def coerce_invoice_type(value: Any) -> InvoiceType:
    try:
        return InvoiceType(_enum_value(value))
    except ValueError:
        allowed = ", ".join(t.value for t in InvoiceType)
        raise ValidationError(
            f"Unknown invoice type {value!r} (expected one of: {allowed})")


def coerce_invoice_status(value: Any) -> InvoiceStatus:
    try:
        return InvoiceStatus(_enum_value(value))
    except ValueError:
        allowed = ", ".join(s.value for s in InvoiceStatus)
        raise ValidationError(
            f"Unknown invoice status {value!r} (expected one of: {allowed})")


# ============================================================
# References (patients / appointments are not owned here)
# ============================================================
def get_patient(db: Session, patient_id: int) -> Patient:
    patient = db.get(Patient, int(patient_id))
    if not patient or not patient.is_active:
        raise NotFoundError(f"Patient {patient_id} not found")
    return patient


def patient_id_from_appointment(db: Session, appointment_id: int) -> int:
    appt = db.get(Appointment, int(appointment_id))
    if not appt:
        raise NotFoundError(f"Appointment {appointment_id} not found")
    return int(appt.patient_id)


# ============================================================
# Reads
# ============================================================
def get_invoice(db: Session, invoice_id: int) -> Invoice:
    inv = db.get(Invoice, int(invoice_id))
    if not inv:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return inv


def lock_invoice(db: Session, invoice_id: int) -> Invoice:
    """
    Load an invoice for a read-modify-write. The row lock (where the
    database supports it) plus the version counter serialize writers
    per invoice.
    """
    inv = (db.query(Invoice).filter(
        Invoice.id == int(invoice_id)).with_for_update().populate_existing().
           first())
    if not inv:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return inv


def get_invoice_by_number(db: Session,
                          invoice_number: str) -> Optional[Invoice]:
    number = (invoice_number or "").strip()
    if not number:
        return None
    return db.query(Invoice).filter(Invoice.invoice_number == number).first()


def list_invoices(
    db: Session,
    *,
    patient_id: Optional[int] = None,
    status: Optional[Any] = None,
    invoice_type: Optional[Any] = None,
    limit: int = 200,
    offset: int = 0,
) -> List[Invoice]:
    q = db.query(Invoice)
    if patient_id is not None:
        q = q.filter(Invoice.patient_id == int(patient_id))
    if status:
        q = q.filter(Invoice.status == coerce_invoice_status(status))
    if invoice_type:
        q = q.filter(Invoice.invoice_type == coerce_invoice_type(invoice_type))
    return (q.order_by(Invoice.created_at.desc(),
                       Invoice.id.desc()).offset(offset).limit(limit).all())


# ============================================================
# Line items
# ============================================================
def build_line_items(items: Iterable[Any],
                     *,
                     start_seq: int = 1) -> List[InvoiceLineItem]:
    rows: List[InvoiceLineItem] = []
    seq = start_seq
    for raw in items or []:
        desc = (str(_get(raw, "description") or "")).strip()
        if not desc:
            raise ValidationError("Line item description is required")

        qty = _get(raw, "qty")
        amounts = compute_line_amounts(1 if qty is None else qty,
                                       _get(raw, "amount"),
                                       _get(raw, "less"))

        service_date = _get(raw, "date") or _get(raw, "service_date")
        if service_date is not None and not isinstance(service_date, date):
            try:
                service_date = date.fromisoformat(str(service_date)[:10])
            except ValueError:
                raise ValidationError(
                    f"Invalid line item date: {service_date!r}")

        rows.append(
            InvoiceLineItem(
                seq=seq,
                description=desc[:300],
                category=(_get(raw, "category") or None),
                service_date=service_date or today_local(),
                qty=amounts["qty"],
                amount=amounts["amount"],
                less=amounts["less"],
                line_total=amounts["line_total"],
            ))
        seq += 1
    return rows


def _items_from_amount(invoice_type: InvoiceType, amount: Any,
                       description: Optional[str]) -> List[Dict[str, Any]]:
    amt = money2(amount)
    if amt < 0:
        raise ValidationError("amount must be >= 0")
    label = (description or "").strip() or (
        f"{invoice_type.value.capitalize()} charges")
    return [{
        "description": label,
        "category": invoice_type.value,
        "qty": 1,
        "amount": amt,
    }]


def apply_paid_status(inv: Invoice) -> None:
    """
    pending/finalized -> paid once amount_paid covers total_payable.
    Overpayment stays on the invoice as credit.
    """
    if inv.status not in (InvoiceStatus.PENDING, InvoiceStatus.FINALIZED):
        return
    paid = _d(inv.amount_paid)
    if paid > 0 and paid >= _d(inv.total_payable):
        inv.status = InvoiceStatus.PAID


# ============================================================
# Create / merge
# ============================================================
def find_pending_invoices(db: Session, *, patient_id: int,
                          invoice_type: InvoiceType) -> List[Invoice]:
    return (db.query(Invoice).filter(
        Invoice.patient_id == int(patient_id),
        Invoice.invoice_type == invoice_type,
        Invoice.status == InvoiceStatus.PENDING,
    ).order_by(Invoice.id.asc()).with_for_update().populate_existing().all())


def create_or_merge_invoice(
    db: Session,
    *,
    patient_id: int,
    invoice_type: Any,
    items: Optional[Iterable[Any]] = None,
    amount: Optional[Any] = None,
    description: Optional[str] = None,
    notes: Optional[str] = None,
    user_id: Optional[str] = None,
) -> Tuple[Invoice, bool]:
    """
    Bill a charge for a patient.

    Merge key: same patient + same type + status pending. When such an
    invoice exists the new lines are appended to it (one bill per
    encounter, even when lab / pharmacy add lines at different times);
    otherwise a new pending invoice is opened with the next number.

    Returns (invoice, merged).
    """
    inv_type = coerce_invoice_type(invoice_type)

    if items is None and amount is None:
        raise ValidationError("Provide line items or an amount")
    raw_items = list(items) if items is not None else _items_from_amount(
        inv_type, amount, description)
    if not raw_items:
        raise ValidationError("At least one line item is required")

    # validate before touching any row
    build_line_items(raw_items)
    get_patient(db, patient_id)

    candidates = find_pending_invoices(db,
                                       patient_id=int(patient_id),
                                       invoice_type=inv_type)

    if len(candidates) > 1:
        numbers = [c.invoice_number for c in candidates]
        logger.warning(
            "Multiple pending %s invoices for patient %s: %s; merging into %s",
            inv_type.value, patient_id, numbers, numbers[0])
        log_audit(
            db,
            user_id=user_id,
            action="WARNING",
            table_name="billing_invoices",
            record_id=candidates[0].id,
            invoice_id=int(candidates[0].id),
            new_values={
                "warning": "duplicate_pending_invoices",
                "patient_id": int(patient_id),
                "invoice_type": inv_type.value,
                "invoice_numbers": numbers,
            },
        )

    if candidates:
        inv = candidates[0]
        before = invoice_snapshot(inv)
        next_seq = max([int(it.seq or 0) for it in inv.items] or [0]) + 1
        for row in build_line_items(raw_items, start_seq=next_seq):
            inv.items.append(row)
        if notes:
            inv.notes = notes
        inv.recalc()
        apply_paid_status(inv)
        touch(inv)
        flush(db)

        log_audit(db,
                  user_id=user_id,
                  action="MERGE",
                  table_name="billing_invoices",
                  record_id=inv.id,
                  invoice_id=int(inv.id),
                  old_values=before,
                  new_values=invoice_snapshot(inv))
        logger.info("Merged %d line(s) into invoice %s", len(raw_items),
                    inv.invoice_number)
        return inv, True

    inv = Invoice(
        invoice_number=next_invoice_number(db),
        patient_id=int(patient_id),
        invoice_type=inv_type,
        status=InvoiceStatus.PENDING,
        notes=notes,
        header_discount_amount=Decimal("0"),
        amount_paid=Decimal("0"),
        created_by=user_id,
    )
    inv.items = build_line_items(raw_items)
    inv.recalc()
    db.add(inv)
    flush(db)

    log_audit(db,
              user_id=user_id,
              action="CREATE",
              table_name="billing_invoices",
              record_id=inv.id,
              invoice_id=int(inv.id),
              new_values=invoice_snapshot(inv))
    logger.info("Created invoice %s for patient %s (%s)", inv.invoice_number,
                patient_id, inv_type.value)
    return inv, False


# ============================================================
# Edit (pending only)
# ============================================================
def update_line_items(
    db: Session,
    *,
    invoice_id: int,
    items: Iterable[Any],
    header_discount: Optional[Any] = None,
    user_id: Optional[str] = None,
) -> Invoice:
    """
    Replace the whole line-item array (last write wins) and recompute.
    Rejected once the invoice is finalized, paid, cancelled or refunded.
    """
    inv = lock_invoice(db, invoice_id)
    if inv.status not in EDITABLE_STATUSES:
        raise InvoiceLockedError(
            f"Invoice {inv.invoice_number} is {_enum_value(inv.status)}; "
            "line items can no longer be edited")

    new_rows = build_line_items(items)

    # an omitted discount keeps the stored one, which must still fit
    hdr = money2(inv.header_discount_amount if header_discount is None else
                 header_discount)
    if hdr < 0:
        raise ValidationError("Invoice discount must be >= 0")
    net_of_lines = sum((_d(r.line_total) for r in new_rows), Decimal("0"))
    if hdr > net_of_lines:
        raise ValidationError(
            f"Invoice discount {hdr} exceeds billable amount {net_of_lines}")

    before = invoice_snapshot(inv)

    inv.items.clear()
    inv.items.extend(new_rows)
    inv.header_discount_amount = hdr

    inv.recalc()
    apply_paid_status(inv)
    touch(inv)
    flush(db)

    log_audit(db,
              user_id=user_id,
              action="UPDATE_ITEMS",
              table_name="billing_invoices",
              record_id=inv.id,
              invoice_id=int(inv.id),
              old_values=before,
              new_values=invoice_snapshot(inv))
    return inv
