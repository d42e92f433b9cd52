import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("JWT_SECRET", "test-secret")

from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from billing_ledger.api.deps import get_db
from billing_ledger.core.config import settings
from billing_ledger.db.init_db import init_db
from billing_ledger.main import app
from billing_ledger.models import Appointment, Patient
from billing_ledger.services.billing_service import create_or_merge_invoice


@pytest.fixture
def engine():
    eng = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine,
                        autocommit=False,
                        autoflush=False,
                        future=True)


@pytest.fixture
def file_session_factory(tmp_path):
    """Two sessions on one file database behave like two app workers."""
    eng = create_engine(
        f"sqlite:///{tmp_path / 'ledger.db'}",
        connect_args={"check_same_thread": False},
        future=True,
    )
    init_db(eng)
    yield sessionmaker(bind=eng,
                       autocommit=False,
                       autoflush=False,
                       future=True)
    eng.dispose()


@pytest.fixture
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture
def patients(db):
    p1 = Patient(uhid="P1", first_name="Amina", last_name="Otieno")
    p2 = Patient(uhid="P2", first_name="Brian", last_name="Mwangi")
    db.add_all([p1, p2])
    db.flush()
    appt = Appointment(patient_id=p1.id, status="completed")
    db.add(appt)
    db.commit()
    return {"P1": p1, "P2": p2, "appointment": appt}


@pytest.fixture
def lab_invoice(db, patients):
    """P1 lab invoice: CBC 500 + Glucose 200 = 700."""
    inv, _ = create_or_merge_invoice(
        db,
        patient_id=patients["P1"].id,
        invoice_type="lab",
        items=[
            {"description": "CBC", "amount": "500"},
            {"description": "Glucose", "amount": "200"},
        ],
        user_id="u-1",
    )
    db.commit()
    assert inv.total_payable == Decimal("700.00")
    return inv


def make_token(sub="u-fin", role="finance"):
    return jwt.encode({"sub": sub, "role": role},
                      settings.JWT_SECRET,
                      algorithm=settings.JWT_ALG)


@pytest.fixture
def client(session_factory):

    def _get_db():
        s = session_factory()
        try:
            yield s
        except Exception:
            s.rollback()
            raise
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    with TestClient(app, raise_server_exceptions=False) as c:
        c.headers.update({"Authorization": f"Bearer {make_token()}"})
        yield c
    app.dependency_overrides.clear()
