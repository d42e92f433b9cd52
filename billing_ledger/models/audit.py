from sqlalchemy import (
    Column,
    Integer,
    String,
    DateTime,
    JSON,
    Index,
)

from billing_ledger.db.base import Base
from billing_ledger.utils.timezone import utcnow_naive


class BillingAuditLog(Base):
    """
    Ledger audit trail.
    Every invoice / payment / refund / reconciliation mutation writes here,
    inside the same transaction as the change itself.
    """
    __tablename__ = "billing_audit_logs"
    __table_args__ = (Index("ix_billing_audit_invoice", "invoice_id"), {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    })

    id = Column(Integer, primary_key=True, index=True)

    # system jobs (discharge hook, gateway pipeline) may be null
    user_id = Column(String(64), nullable=True)
    # CREATE / MERGE / UPDATE_ITEMS / PAYMENT / FINALIZE / CANCEL / REFUND / RECONCILE / WARNING
    action = Column(String(32), nullable=False)

    table_name = Column(String(64), nullable=False)
    record_id = Column(String(100), nullable=False)
    invoice_id = Column(Integer, nullable=True)

    old_values = Column(JSON, nullable=True)
    new_values = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow_naive, nullable=False)
