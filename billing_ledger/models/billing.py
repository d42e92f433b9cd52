# FILE: billing_ledger/models/billing.py
from __future__ import annotations

import enum
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import (
    Column,
    Integer,
    String,
    Numeric,
    Boolean,
    Date,
    DateTime,
    Index,
    ForeignKey,
    UniqueConstraint,
    Text,
    JSON,
    Enum,
)
from sqlalchemy.orm import relationship

from billing_ledger.db.base import Base
from billing_ledger.utils.timezone import utcnow_naive


def _values(enum_cls):
    return [m.value for m in enum_cls]


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------
class InvoiceStatus(str, enum.Enum):
    PENDING = "pending"
    FINALIZED = "finalized"
    PAID = "paid"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"


class InvoiceType(str, enum.Enum):
    TREATMENT = "treatment"
    PRESCRIPTION = "prescription"
    LAB = "lab"
    ADMISSION = "admission"
    MISC = "misc"


class PayMethod(str, enum.Enum):
    CASH = "cash"
    CARD = "card"
    MPESA = "mpesa"
    INSURANCE = "insurance"
    BANK = "bank"


class PaymentLogStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class NumberDocType(str, enum.Enum):
    INVOICE = "INVOICE"
    RECEIPT = "RECEIPT"
    REFUND = "REFUND"


# line items may only change while the invoice is in one of these
EDITABLE_STATUSES = {InvoiceStatus.PENDING}

# no money may move once an invoice reaches one of these
TERMINAL_STATUSES = {InvoiceStatus.CANCELLED, InvoiceStatus.REFUNDED}


class BillingNumberSeries(Base):
    """
    Durable counter per document type (invoice / receipt / refund).
    Rows are locked FOR UPDATE while a number is taken, so concurrent
    creations never receive the same number and numbers are never reused.
    """
    __tablename__ = "billing_number_series"
    __table_args__ = (UniqueConstraint("doc_type",
                                       "prefix",
                                       name="uq_billing_number_series"), )

    id = Column(Integer, primary_key=True, index=True)
    doc_type = Column(Enum(NumberDocType, name="billing_number_doc_type"),
                      nullable=False)
    prefix = Column(String(20), nullable=False, default="")
    padding = Column(Integer, nullable=False, default=6)
    next_number = Column(Integer, nullable=False, default=1)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime,
                        default=utcnow_naive,
                        onupdate=utcnow_naive)


class Invoice(Base):
    """
    One billable record per patient encounter / category.

    Totals are never edited directly; they are derived from the line items
    by `recalc()` on every mutation:
      subtotal       = sum(qty * amount)
      discount_total = sum(line less) + header_discount_amount
      total_payable  = subtotal - discount_total   (never negative)

    amount_paid = sum(payments) - sum(refunds), kept as a running column and
    protected by the `version` compare-and-swap counter.
    """

    __tablename__ = "billing_invoices"
    __table_args__ = (Index("ix_billing_invoices_merge_key", "patient_id",
                            "invoice_type", "status"), )

    id = Column(Integer, primary_key=True, index=True)

    # INV-0001 etc. taken from billing_number_series
    invoice_number = Column(String(32),
                            unique=True,
                            index=True,
                            nullable=False)

    patient_id = Column(
        Integer,
        ForeignKey("patients.id"),
        nullable=False,
        index=True,
    )

    invoice_type = Column(Enum(InvoiceType,
                               name="billing_invoice_type",
                               values_callable=_values),
                          nullable=False,
                          default=InvoiceType.MISC)

    status = Column(Enum(InvoiceStatus,
                         name="billing_invoice_status",
                         values_callable=_values),
                    nullable=False,
                    default=InvoiceStatus.PENDING,
                    index=True)

    notes = Column(Text, nullable=True)

    # Totals
    subtotal = Column(Numeric(12, 2), nullable=False, default=0)
    # invoice-level discount, on top of per-line "less"
    header_discount_amount = Column(Numeric(12, 2), nullable=False, default=0)
    discount_total = Column(Numeric(12, 2), nullable=False, default=0)
    total_payable = Column(Numeric(12, 2), nullable=False, default=0)

    amount_paid = Column(Numeric(12, 2), nullable=False, default=0)

    finalized_by = Column(String(64), nullable=True)
    finalized_at = Column(DateTime, nullable=True)

    cancelled_by = Column(String(64), nullable=True)
    cancelled_at = Column(DateTime, nullable=True)
    cancel_reason = Column(String(255), nullable=True)

    created_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow_naive, nullable=False)
    updated_at = Column(
        DateTime,
        default=utcnow_naive,
        onupdate=utcnow_naive,
        nullable=False,
    )

    version = Column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": version}

    patient = relationship("Patient")

    items = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceLineItem.seq",
    )
    payments = relationship(
        "Payment",
        back_populates="invoice",
        order_by="Payment.id",
    )
    refunds = relationship(
        "Refund",
        back_populates="invoice",
        order_by="Refund.id",
    )

    # ---------- Billing math helpers ----------
    @staticmethod
    def _d(v) -> Decimal:
        if v is None:
            return Decimal("0")
        return Decimal(str(v))

    @staticmethod
    def _q2(v: Decimal) -> Decimal:
        return v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    def recalc(self) -> None:
        """
        Recalculate invoice totals from items.

        Item math:
          base = qty * amount
          line_total = base - less

        Header discount is capped so total_payable never goes negative.

        Updates:
          subtotal, discount_total, total_payable (and each item's line_total)
        """
        _d = self._d
        _q2 = self._q2

        subtotal = Decimal("0")
        line_less = Decimal("0")

        for it in (self.items or []):
            base = _q2(_d(it.qty) * _d(it.amount))
            less = _q2(_d(it.less))
            if less > base:
                less = base
            it.less = less
            it.line_total = _q2(base - less)

            subtotal += base
            line_less += less

        subtotal = _q2(subtotal)
        line_less = _q2(line_less)

        hdr = _q2(_d(self.header_discount_amount))
        if hdr > subtotal - line_less:
            hdr = subtotal - line_less
        self.header_discount_amount = hdr

        self.subtotal = subtotal
        self.discount_total = _q2(line_less + hdr)
        self.total_payable = _q2(subtotal - self.discount_total)

    @property
    def balance_due(self) -> Decimal:
        due = self._d(self.total_payable) - self._d(self.amount_paid)
        return due if due > 0 else Decimal("0.00")

    @property
    def credit_balance(self) -> Decimal:
        over = self._d(self.amount_paid) - self._d(self.total_payable)
        return over if over > 0 else Decimal("0.00")

    @property
    def is_locked(self) -> bool:
        return self.status not in EDITABLE_STATUSES


class InvoiceLineItem(Base):
    __tablename__ = "billing_invoice_items"
    __table_args__ = (Index("ix_billing_items_invoice", "invoice_id"), )

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    # S.no order for UI/print
    seq = Column(Integer, nullable=False, default=1)

    description = Column(String(300), nullable=False)
    # free-form grouping label for report sections (Lab, Ward, Pharmacy ...)
    category = Column(String(80), nullable=True)
    service_date = Column(Date, nullable=True)

    qty = Column(Integer, nullable=False, default=1)
    # unit price
    amount = Column(Numeric(12, 2), nullable=False, default=0)
    # per-line discount
    less = Column(Numeric(12, 2), nullable=False, default=0)
    # qty * amount - less
    line_total = Column(Numeric(12, 2), nullable=False, default=0)

    created_at = Column(DateTime, default=utcnow_naive)

    invoice = relationship("Invoice", back_populates="items")


class Payment(Base):
    """
    Money received against an invoice. Append-only: corrections are made
    through a Refund, never by editing or deleting a payment row.
    """

    __tablename__ = "billing_payments"
    __table_args__ = (Index("ix_billing_payments_invoice", "invoice_id"),
                      Index("ix_billing_payments_recorded_at",
                            "recorded_at"))

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id"),
        nullable=False,
    )

    amount = Column(Numeric(12, 2), nullable=False)
    method = Column(Enum(PayMethod,
                         name="billing_pay_method",
                         values_callable=_values),
                    nullable=False)
    receipt_number = Column(String(32), unique=True, nullable=True)
    reference_no = Column(String(100), nullable=True)
    notes = Column(String(255), nullable=True)

    # set only when the payment came from gateway reconciliation;
    # unique so one log can never pay twice
    source_log_id = Column(Integer,
                           ForeignKey("payment_logs.id"),
                           unique=True,
                           nullable=True)

    recorded_by = Column(String(64), nullable=True)
    recorded_at = Column(DateTime, default=utcnow_naive, nullable=False)

    invoice = relationship("Invoice", back_populates="payments")
    source_log = relationship("PaymentLog")


class Refund(Base):
    __tablename__ = "billing_refunds"
    __table_args__ = (Index("ix_billing_refunds_invoice", "invoice_id"),
                      Index("ix_billing_refunds_created_at", "created_at"))

    id = Column(Integer, primary_key=True, index=True)
    invoice_id = Column(
        Integer,
        ForeignKey("billing_invoices.id"),
        nullable=False,
    )
    refund_number = Column(String(32), unique=True, nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    reason = Column(String(255), nullable=True)
    processed_by = Column(String(64), nullable=True)
    created_at = Column(DateTime, default=utcnow_naive, nullable=False)

    invoice = relationship("Invoice", back_populates="refunds")


class PaymentLog(Base):
    """
    Normalized payment-gateway callback (M-Pesa, card, bank ...).

    Persisted upstream by the ingestion pipeline; the ledger only reads it
    and, on reconciliation, writes back the matched invoice_id + matched_at.
    """

    __tablename__ = "payment_logs"
    __table_args__ = (Index("ix_payment_logs_invoice_number",
                            "invoice_number"), )

    id = Column(Integer, primary_key=True, index=True)
    transaction_id = Column(String(100),
                            unique=True,
                            index=True,
                            nullable=False)
    # gateway-supplied account reference (usually our invoice number)
    invoice_number = Column(String(32), nullable=True)
    # stored invoice reference; also where the matched invoice is recorded
    invoice_id = Column(Integer,
                        ForeignKey("billing_invoices.id"),
                        nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    status = Column(Enum(PaymentLogStatus,
                         name="payment_log_status",
                         values_callable=_values),
                    nullable=False,
                    default=PaymentLogStatus.PENDING)
    method = Column(String(20), nullable=True)
    raw_payload = Column(JSON, nullable=True)

    matched_at = Column(DateTime, nullable=True)
    matched_by = Column(String(64), nullable=True)

    created_at = Column(DateTime, default=utcnow_naive, nullable=False)

    invoice = relationship("Invoice")
