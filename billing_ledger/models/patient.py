# FILE: billing_ledger/models/patient.py
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    DateTime,
    ForeignKey,
)
from sqlalchemy.orm import relationship

from billing_ledger.db.base import Base
from billing_ledger.utils.timezone import utcnow_naive


class Patient(Base):
    """
    Reference-only view of the patient registry.
    The ledger never writes here; rows are owned by the patients module.
    """
    __tablename__ = "patients"
    __table_args__ = {
        "mysql_engine": "InnoDB",
        "mysql_charset": "utf8mb4",
        "mysql_collate": "utf8mb4_unicode_ci",
    }

    id = Column(Integer, primary_key=True, index=True)
    uhid = Column(String(32), index=True, nullable=True)
    first_name = Column(String(120), nullable=False)
    last_name = Column(String(120), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow_naive)


class Appointment(Base):
    """Only the appointment -> patient link is needed for billing."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)
    patient_id = Column(Integer,
                        ForeignKey("patients.id"),
                        nullable=False,
                        index=True)
    status = Column(String(20), nullable=True)

    patient = relationship("Patient")
