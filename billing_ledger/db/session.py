# billing_ledger/db/session.py
from typing import Any, Dict

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from billing_ledger.core.config import settings


def _engine_kwargs(db_uri: str) -> Dict[str, Any]:
    kwargs: Dict[str, Any] = {"pool_pre_ping": True, "future": True}
    if db_uri.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        return kwargs
    kwargs.update(pool_recycle=280, pool_size=10, max_overflow=20)
    return kwargs


def make_engine(db_uri: str) -> Engine:
    return create_engine(db_uri, **_engine_kwargs(db_uri))


engine: Engine = make_engine(settings.SQLALCHEMY_DATABASE_URI)

SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    future=True,
)
