# FILE: billing_ledger/services/billing_errors.py
from __future__ import annotations

from typing import Any, Optional


class BillingError(RuntimeError):
    """
    Base for every ledger failure. Carries the HTTP status + stable code the
    API layer renders, so services never import FastAPI.
    """
    status_code = 400
    code = "billing_error"

    def __init__(self, msg: str, *, details: Optional[Any] = None):
        super().__init__(msg)
        self.msg = msg
        self.details = details


class ValidationError(BillingError):
    status_code = 400
    code = "validation_error"


class NotFoundError(BillingError):
    status_code = 404
    code = "not_found"


class InvalidStateError(BillingError):
    status_code = 409
    code = "invalid_state"


class InvoiceLockedError(InvalidStateError):
    code = "invoice_locked"


class ConcurrentUpdateError(BillingError):
    status_code = 409
    code = "concurrent_update"


class AmbiguousMatchError(BillingError):
    status_code = 422
    code = "ambiguous_match"


class NotReconcilableError(BillingError):
    status_code = 422
    code = "not_reconcilable"
