# FILE: billing_ledger/services/billing_numbers.py
from __future__ import annotations

from sqlalchemy.orm import Session

from billing_ledger.core.config import settings
from billing_ledger.models.billing import BillingNumberSeries, NumberDocType


def _series_row(db: Session, *, doc_type: NumberDocType,
                prefix: str) -> BillingNumberSeries | None:
    return (db.query(BillingNumberSeries).filter(
        BillingNumberSeries.doc_type == doc_type).filter(
            BillingNumberSeries.prefix == (prefix or "")).filter(
                BillingNumberSeries.is_active.is_(True)).with_for_update().
            populate_existing().first())


def next_number(
    db: Session,
    *,
    doc_type: NumberDocType,
    prefix: str,
    padding: int = 6,
) -> str:
    """
    Take the next number of a series. The row stays locked until the
    caller's transaction ends, which is the single global serialization
    point of the ledger. Numbers never reset and are never reused.
    """
    row = _series_row(db, doc_type=doc_type, prefix=prefix)

    if not row:
        row = BillingNumberSeries(
            doc_type=doc_type,
            prefix=prefix or "",
            padding=padding,
            next_number=1,
            is_active=True,
        )
        db.add(row)
        db.flush()

    n = int(row.next_number or 1)
    row.next_number = n + 1
    db.flush()

    return f"{row.prefix}{str(n).zfill(int(row.padding or padding))}"


def next_invoice_number(db: Session) -> str:
    return next_number(
        db,
        doc_type=NumberDocType.INVOICE,
        prefix=settings.INVOICE_NUMBER_PREFIX,
        padding=settings.INVOICE_NUMBER_PADDING,
    )


def next_receipt_number(db: Session) -> str:
    return next_number(db,
                       doc_type=NumberDocType.RECEIPT,
                       prefix=settings.RECEIPT_NUMBER_PREFIX)


def next_refund_number(db: Session) -> str:
    return next_number(db,
                       doc_type=NumberDocType.REFUND,
                       prefix=settings.REFUND_NUMBER_PREFIX)


def ensure_series(db: Session) -> None:
    """Create the counter rows up front so the first invoice never races on INSERT."""
    wanted = [
        (NumberDocType.INVOICE, settings.INVOICE_NUMBER_PREFIX,
         settings.INVOICE_NUMBER_PADDING),
        (NumberDocType.RECEIPT, settings.RECEIPT_NUMBER_PREFIX, 6),
        (NumberDocType.REFUND, settings.REFUND_NUMBER_PREFIX, 6),
    ]
    for doc_type, prefix, padding in wanted:
        exists = (db.query(BillingNumberSeries.id).filter(
            BillingNumberSeries.doc_type == doc_type,
            BillingNumberSeries.prefix == prefix,
        ).first())
        if not exists:
            db.add(
                BillingNumberSeries(doc_type=doc_type,
                                    prefix=prefix,
                                    padding=padding,
                                    next_number=1,
                                    is_active=True))
    db.flush()
