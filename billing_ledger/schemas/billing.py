# FILE: billing_ledger/schemas/billing.py
from __future__ import annotations

from datetime import date as dt_date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

InvoiceTypeLit = Literal["treatment", "prescription", "lab", "admission",
                         "misc"]


class LineItemIn(BaseModel):
    description: str
    category: Optional[str] = None
    date: Optional[dt_date] = None
    qty: int = 1
    amount: Decimal
    less: Decimal = Decimal("0")

    @field_validator("description")
    def _desc(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("description is required")
        return v


class InvoiceCreate(BaseModel):
    """
    Create-or-merge payload. Either patient_id or appointment_id, and either
    items or a single amount.
    """
    patient_id: Optional[int] = None
    appointment_id: Optional[int] = None
    type: InvoiceTypeLit = "misc"
    items: Optional[List[LineItemIn]] = None
    amount: Optional[Decimal] = None
    description: Optional[str] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def _refs(self):
        if self.patient_id is None and self.appointment_id is None:
            raise ValueError("patient_id or appointment_id is required")
        if self.items is None and self.amount is None:
            raise ValueError("items or amount is required")
        return self


class LineItemsUpdate(BaseModel):
    items: List[LineItemIn]
    header_discount: Optional[Decimal] = None


class PaymentIn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    amount: Decimal
    method: str = "cash"
    reference_no: Optional[str] = None
    notes: Optional[str] = None


class CancelIn(BaseModel):
    reason: Optional[str] = None


class RefundIn(BaseModel):
    amount: Decimal
    reason: Optional[str] = None


class DischargeIn(BaseModel):
    patient_id: int
    charges: List[LineItemIn] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Outputs
# ---------------------------------------------------------------------------
class LineItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    seq: int
    description: str
    category: Optional[str] = None
    date: Optional[dt_date] = Field(default=None, validation_alias="service_date")
    qty: int
    amount: Decimal
    less: Decimal
    line_total: Decimal


class PaymentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    amount: Decimal
    method: str
    receipt_number: Optional[str] = None
    reference_no: Optional[str] = None
    notes: Optional[str] = None
    source_log_id: Optional[int] = None
    recorded_by: Optional[str] = None
    recorded_at: datetime

    @field_validator("method", mode="before")
    def _enum_str(cls, v):
        return getattr(v, "value", v)


class RefundOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_id: int
    refund_number: Optional[str] = None
    amount: Decimal
    reason: Optional[str] = None
    processed_by: Optional[str] = None
    created_at: datetime


class FinalizationInfo(BaseModel):
    locked_by: Optional[str] = None
    locked_at: datetime


class InvoiceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    patient_id: int
    type: str = Field(validation_alias="invoice_type")
    status: str
    notes: Optional[str] = None

    subtotal: Decimal
    header_discount_amount: Decimal
    discount: Decimal = Field(validation_alias="discount_total")
    total_payable: Decimal
    amount_paid: Decimal
    balance_due: Decimal
    credit_balance: Decimal

    finalization_info: Optional[FinalizationInfo] = None
    cancelled_at: Optional[datetime] = None
    cancel_reason: Optional[str] = None

    created_at: datetime
    updated_at: datetime

    line_items: List[LineItemOut] = Field(default_factory=list,
                                          validation_alias="items")

    @field_validator("type", "status", mode="before")
    def _enum_str(cls, v):
        return getattr(v, "value", v)

    @classmethod
    def from_invoice(cls, inv) -> "InvoiceOut":
        out = cls.model_validate(inv)
        if inv.finalized_at is not None:
            out.finalization_info = FinalizationInfo(
                locked_by=inv.finalized_by, locked_at=inv.finalized_at)
        return out


class InvoiceDetailOut(InvoiceOut):
    payments: List[PaymentOut] = Field(default_factory=list)
    refunds: List[RefundOut] = Field(default_factory=list)


class PaymentLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: str
    invoice_number: Optional[str] = None
    invoice_id: Optional[int] = None
    amount: Decimal
    status: str
    method: Optional[str] = None
    matched_at: Optional[datetime] = None
    created_at: datetime

    @field_validator("status", mode="before")
    def _enum_str(cls, v):
        return getattr(v, "value", v)
