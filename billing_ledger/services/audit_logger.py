from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from billing_ledger.models.audit import BillingAuditLog


def log_audit(
    db: Session,
    *,
    user_id: Optional[str],
    action: str,  # "CREATE" | "MERGE" | "PAYMENT" | "REFUND" | ...
    table_name: str,
    record_id: Any,
    invoice_id: Optional[int] = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
) -> BillingAuditLog:
    """
    Add one audit event to the caller's transaction.
    It commits or rolls back together with the change it describes.
    """
    log = BillingAuditLog(
        user_id=str(user_id) if user_id is not None else None,
        action=action,
        table_name=table_name,
        record_id=str(record_id),
        invoice_id=invoice_id,
        old_values=old_values,
        new_values=new_values,
    )
    db.add(log)
    db.flush()
    return log


def invoice_snapshot(inv) -> Dict[str, Any]:
    return {
        "invoice_number": inv.invoice_number,
        "status": getattr(inv.status, "value", inv.status),
        "subtotal": str(inv.subtotal),
        "discount_total": str(inv.discount_total),
        "total_payable": str(inv.total_payable),
        "amount_paid": str(inv.amount_paid),
        "items": len(inv.items or []),
    }
