# billing_ledger/models/__init__.py
from .patient import Patient, Appointment
from .billing import (
    BillingNumberSeries,
    Invoice,
    InvoiceLineItem,
    Payment,
    Refund,
    PaymentLog,
)
from .audit import BillingAuditLog

__all__ = [
    "Patient",
    "Appointment",
    "BillingNumberSeries",
    "Invoice",
    "InvoiceLineItem",
    "Payment",
    "Refund",
    "PaymentLog",
    "BillingAuditLog",
]
