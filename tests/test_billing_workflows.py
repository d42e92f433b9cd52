from decimal import Decimal

import pytest

from billing_ledger.models import BillingAuditLog, Invoice
from billing_ledger.models.billing import InvoiceStatus, InvoiceType
from billing_ledger.services.billing_errors import (
    InvalidStateError,
    ValidationError,
)
from billing_ledger.services.billing_payment_service import record_payment
from billing_ledger.services.billing_service import (
    create_or_merge_invoice,
)
from billing_ledger.services.billing_workflows import (
    cancel_invoice,
    discharge_patient,
    finalize_invoice,
)


class TestFinalize:

    def test_finalize_sets_lock_info(self, db, lab_invoice):
        inv = finalize_invoice(db, invoice_id=lab_invoice.id, user_id="dr-k")
        assert inv.status == InvoiceStatus.FINALIZED
        assert inv.finalized_by == "dr-k"
        assert inv.finalized_at is not None
        assert inv.is_locked

    def test_finalize_is_idempotent(self, db, lab_invoice):
        first = finalize_invoice(db, invoice_id=lab_invoice.id, user_id="a")
        stamp = first.finalized_at
        again = finalize_invoice(db, invoice_id=lab_invoice.id, user_id="b")
        assert again.finalized_at == stamp
        assert again.finalized_by == "a"
        assert (db.query(BillingAuditLog).filter(
            BillingAuditLog.action == "FINALIZE").count() == 1)

    def test_paid_invoice_finalize_is_noop(self, db, lab_invoice):
        record_payment(db, invoice_id=lab_invoice.id, amount=700)
        inv = finalize_invoice(db, invoice_id=lab_invoice.id)
        assert inv.status == InvoiceStatus.PAID

    def test_cancelled_invoice_cannot_be_finalized(self, db, lab_invoice):
        cancel_invoice(db, invoice_id=lab_invoice.id)
        with pytest.raises(InvalidStateError):
            finalize_invoice(db, invoice_id=lab_invoice.id)


class TestCancel:

    def test_cancel_pending(self, db, lab_invoice):
        inv = cancel_invoice(db, invoice_id=lab_invoice.id,
                             reason="entered twice", user_id="u-9")
        assert inv.status == InvoiceStatus.CANCELLED
        assert inv.cancel_reason == "entered twice"
        assert inv.cancelled_by == "u-9"

    def test_cancel_finalized_without_payments(self, db, lab_invoice):
        finalize_invoice(db, invoice_id=lab_invoice.id)
        inv = cancel_invoice(db, invoice_id=lab_invoice.id)
        assert inv.status == InvoiceStatus.CANCELLED

    def test_cancel_with_payments_rejected(self, db, lab_invoice):
        record_payment(db, invoice_id=lab_invoice.id, amount=100)
        with pytest.raises(InvalidStateError):
            cancel_invoice(db, invoice_id=lab_invoice.id)
        assert lab_invoice.status == InvoiceStatus.PENDING

    def test_cancel_is_terminal(self, db, lab_invoice):
        cancel_invoice(db, invoice_id=lab_invoice.id)
        with pytest.raises(InvalidStateError):
            cancel_invoice(db, invoice_id=lab_invoice.id)

    def test_cancelled_invoice_not_merged_into(self, db, lab_invoice):
        cancel_invoice(db, invoice_id=lab_invoice.id)
        inv, merged = create_or_merge_invoice(
            db, patient_id=lab_invoice.patient_id, invoice_type="lab",
            items=[{"description": "CBC", "amount": 500}])
        assert not merged and inv.id != lab_invoice.id


class TestDischarge:

    def test_discharge_bills_and_finalizes(self, db, patients):
        pid = patients["P1"].id
        inv = discharge_patient(
            db,
            patient_id=pid,
            charges=[
                {"description": "Ward (General)", "category": "ward",
                 "qty": 4, "amount": 2500},
                {"description": "Nursing", "amount": 1500},
            ],
            user_id="nurse-1",
        )
        assert inv.invoice_type == InvoiceType.ADMISSION
        assert inv.status == InvoiceStatus.FINALIZED
        assert inv.total_payable == Decimal("11500")
        assert inv.finalized_by == "nurse-1"

    def test_discharge_merges_into_running_admission_bill(self, db,
                                                          patients):
        pid = patients["P1"].id
        running, _ = create_or_merge_invoice(
            db, patient_id=pid, invoice_type="admission",
            items=[{"description": "Admission fee", "amount": 1000}])
        inv = discharge_patient(
            db, patient_id=pid,
            charges=[{"description": "Ward", "qty": 2, "amount": 2500}])
        assert inv.id == running.id
        assert inv.total_payable == Decimal("6000")
        assert inv.status == InvoiceStatus.FINALIZED
        assert db.query(Invoice).count() == 1

    def test_discharge_without_charges_closes_pending_bill(self, db,
                                                           patients):
        pid = patients["P2"].id
        running, _ = create_or_merge_invoice(
            db, patient_id=pid, invoice_type="admission", amount=3000)
        inv = discharge_patient(db, patient_id=pid, charges=[])
        assert inv.id == running.id
        assert inv.status == InvoiceStatus.FINALIZED

    def test_discharge_without_anything_to_bill(self, db, patients):
        with pytest.raises(ValidationError):
            discharge_patient(db, patient_id=patients["P2"].id, charges=[])
