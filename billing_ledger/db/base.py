# billing_ledger/db/base.py
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """All ledger tables (invoices, payments, refunds, logs) inherit from this."""
    pass
