import logging
from decimal import Decimal

import pytest

from billing_ledger.models import BillingAuditLog, Invoice, InvoiceLineItem
from billing_ledger.models.billing import InvoiceStatus, InvoiceType
from billing_ledger.services.billing_errors import (
    InvoiceLockedError,
    NotFoundError,
    ValidationError,
)
from billing_ledger.services.billing_payment_service import record_payment
from billing_ledger.services.billing_service import (
    create_or_merge_invoice,
    list_invoices,
    patient_id_from_appointment,
    update_line_items,
)
from billing_ledger.services.billing_workflows import finalize_invoice


class TestCreateOrMerge:

    def test_new_invoice_gets_number_and_totals(self, db, patients):
        inv, merged = create_or_merge_invoice(
            db,
            patient_id=patients["P1"].id,
            invoice_type="lab",
            items=[{"description": "CBC", "amount": "500"}],
        )
        assert merged is False
        assert inv.invoice_number == "INV-0001"
        assert inv.status == InvoiceStatus.PENDING
        assert inv.subtotal == Decimal("500")
        assert inv.total_payable == Decimal("500")
        assert inv.amount_paid == Decimal("0")
        assert inv.finalized_at is None

    def test_second_charge_merges_into_pending_invoice(self, db, patients):
        pid = patients["P1"].id
        first, _ = create_or_merge_invoice(
            db, patient_id=pid, invoice_type="lab",
            items=[{"description": "CBC", "amount": 500}])
        second, merged = create_or_merge_invoice(
            db, patient_id=pid, invoice_type="lab",
            items=[{"description": "Glucose", "amount": 200}])
        db.commit()

        assert merged is True
        assert second.id == first.id
        assert [it.description for it in second.items] == ["CBC", "Glucose"]
        assert [it.seq for it in second.items] == [1, 2]
        assert second.subtotal == Decimal("700")
        assert db.query(Invoice).count() == 1

    def test_other_type_or_patient_opens_new_invoice(self, db, patients):
        a, _ = create_or_merge_invoice(
            db, patient_id=patients["P1"].id, invoice_type="lab",
            items=[{"description": "CBC", "amount": 500}])
        b, merged_b = create_or_merge_invoice(
            db, patient_id=patients["P1"].id, invoice_type="prescription",
            items=[{"description": "Amoxicillin", "amount": 150}])
        c, merged_c = create_or_merge_invoice(
            db, patient_id=patients["P2"].id, invoice_type="lab",
            items=[{"description": "CBC", "amount": 500}])

        assert not merged_b and not merged_c
        assert len({a.id, b.id, c.id}) == 3
        assert [a.invoice_number, b.invoice_number, c.invoice_number] == [
            "INV-0001", "INV-0002", "INV-0003"
        ]

    def test_finalized_invoice_is_not_a_merge_target(self, db, lab_invoice):
        finalize_invoice(db, invoice_id=lab_invoice.id, user_id="u-1")
        inv, merged = create_or_merge_invoice(
            db, patient_id=lab_invoice.patient_id, invoice_type="lab",
            items=[{"description": "Urinalysis", "amount": 300}])
        assert merged is False
        assert inv.id != lab_invoice.id

    def test_amount_only_creates_single_line(self, db, patients):
        inv, _ = create_or_merge_invoice(db,
                                         patient_id=patients["P2"].id,
                                         invoice_type="treatment",
                                         amount="1200")
        assert len(inv.items) == 1
        assert inv.items[0].description == "Treatment charges"
        assert inv.total_payable == Decimal("1200")

    def test_unknown_patient(self, db, patients):
        with pytest.raises(NotFoundError):
            create_or_merge_invoice(db, patient_id=9999, invoice_type="lab",
                                    items=[{"description": "CBC",
                                            "amount": 1}])

    @pytest.mark.parametrize("item", [
        {"description": "CBC", "amount": -5},
        {"description": "CBC", "amount": 100, "qty": 0},
        {"description": "CBC", "amount": 100, "qty": "1.5"},
        {"description": "CBC", "amount": 100, "less": 101},
        {"description": " ", "amount": 100},
    ])
    def test_invalid_line_rejected_without_side_effects(self, db, patients,
                                                         item):
        with pytest.raises(ValidationError):
            create_or_merge_invoice(db, patient_id=patients["P1"].id,
                                    invoice_type="lab", items=[item])
        assert db.query(Invoice).count() == 0

    def test_unknown_type(self, db, patients):
        with pytest.raises(ValidationError):
            create_or_merge_invoice(db, patient_id=patients["P1"].id,
                                    invoice_type="surgery", amount=10)

    def test_duplicate_pending_invoices_merge_into_oldest_with_warning(
            self, db, patients, caplog):
        pid = patients["P1"].id
        oldest, _ = create_or_merge_invoice(
            db, patient_id=pid, invoice_type="lab",
            items=[{"description": "CBC", "amount": 500}])
        dup = Invoice(invoice_number="INV-9000",
                      patient_id=pid,
                      invoice_type=InvoiceType.LAB,
                      status=InvoiceStatus.PENDING)
        dup.items = [
            InvoiceLineItem(seq=1, description="ESR", qty=1,
                            amount=Decimal("100"))
        ]
        dup.recalc()
        db.add(dup)
        db.flush()

        with caplog.at_level(logging.WARNING):
            inv, merged = create_or_merge_invoice(
                db, patient_id=pid, invoice_type="lab",
                items=[{"description": "Glucose", "amount": 200}])

        assert merged and inv.id == oldest.id
        assert "Multiple pending lab invoices" in caplog.text
        warning = (db.query(BillingAuditLog).filter(
            BillingAuditLog.action == "WARNING").one())
        assert warning.new_values["invoice_numbers"] == [
            oldest.invoice_number, "INV-9000"
        ]


class TestLineItems:

    def test_update_replaces_items_and_recomputes(self, db, lab_invoice):
        inv = update_line_items(
            db,
            invoice_id=lab_invoice.id,
            items=[
                {"description": "CBC", "amount": 500, "less": 50},
                {"description": "Ward day", "amount": 1000, "qty": 3},
            ],
            header_discount=100,
        )
        assert inv.subtotal == Decimal("3500")
        assert inv.discount_total == Decimal("150")
        assert inv.total_payable == Decimal("3350")
        assert inv.items[1].line_total == Decimal("3000")
        assert inv.subtotal - inv.discount_total == inv.total_payable

    def test_header_discount_larger_than_bill_rejected(self, db, lab_invoice):
        with pytest.raises(ValidationError):
            update_line_items(db,
                              invoice_id=lab_invoice.id,
                              items=[{"description": "CBC", "amount": 500}],
                              header_discount=600)
        db.rollback()
        assert len(db.get(Invoice, lab_invoice.id).items) == 2

    def test_finalized_invoice_is_locked(self, db, lab_invoice):
        finalize_invoice(db, invoice_id=lab_invoice.id, user_id="u-1")
        with pytest.raises(InvoiceLockedError):
            update_line_items(db,
                              invoice_id=lab_invoice.id,
                              items=[{"description": "CBC", "amount": 1}])

    def test_fully_paid_pending_invoice_is_locked(self, db, lab_invoice):
        record_payment(db, invoice_id=lab_invoice.id, amount=700)
        assert lab_invoice.status == InvoiceStatus.PAID
        assert lab_invoice.finalized_at is None
        with pytest.raises(InvoiceLockedError):
            update_line_items(db,
                              invoice_id=lab_invoice.id,
                              items=[{"description": "CBC", "amount": 1}])
        assert lab_invoice.total_payable == Decimal("700")

    def test_stored_discount_kept_when_omitted(self, db, lab_invoice):
        update_line_items(db, invoice_id=lab_invoice.id,
                          items=[{"description": "CBC", "amount": 500}],
                          header_discount=100)
        inv = update_line_items(
            db, invoice_id=lab_invoice.id,
            items=[{"description": "CBC", "amount": 500},
                   {"description": "ESR", "amount": 100}])
        assert inv.header_discount_amount == Decimal("100")
        assert inv.total_payable == Decimal("500")

    def test_stored_discount_larger_than_new_lines_rejected(
            self, db, lab_invoice):
        update_line_items(db, invoice_id=lab_invoice.id,
                          items=[{"description": "CBC", "amount": 500}],
                          header_discount=300)
        db.commit()
        with pytest.raises(ValidationError):
            update_line_items(db, invoice_id=lab_invoice.id,
                              items=[{"description": "ESR", "amount": 200}])
        db.rollback()
        inv = db.get(Invoice, lab_invoice.id)
        assert inv.header_discount_amount == Decimal("300")
        assert inv.total_payable == Decimal("200")

    def test_update_writes_audit_row(self, db, lab_invoice):
        update_line_items(db, invoice_id=lab_invoice.id,
                          items=[{"description": "CBC", "amount": 450}],
                          user_id="u-2")
        row = (db.query(BillingAuditLog).filter(
            BillingAuditLog.action == "UPDATE_ITEMS").one())
        assert row.user_id == "u-2"
        assert row.old_values["total_payable"] == "700.00"
        assert row.new_values["total_payable"] == "450.00"


class TestReads:

    def test_list_filters(self, db, lab_invoice, patients):
        create_or_merge_invoice(db, patient_id=patients["P2"].id,
                                invoice_type="misc", amount=50)
        assert [i.id for i in list_invoices(
            db, patient_id=patients["P1"].id)] == [lab_invoice.id]
        assert len(list_invoices(db, invoice_type="misc")) == 1
        assert len(list_invoices(db, status="pending")) == 2
        with pytest.raises(ValidationError):
            list_invoices(db, status="open")

    def test_appointment_resolves_patient(self, db, patients):
        appt = patients["appointment"]
        assert patient_id_from_appointment(db, appt.id) == patients["P1"].id
        with pytest.raises(NotFoundError):
            patient_id_from_appointment(db, 12345)
