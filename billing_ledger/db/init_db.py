# billing_ledger/db/init_db.py
from __future__ import annotations

import argparse
import logging
from typing import Optional

from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from billing_ledger.db.base import Base
from billing_ledger.db.session import engine as default_engine

# Import all models so metadata is complete
from billing_ledger import models  # noqa: F401
from billing_ledger.services.billing_numbers import ensure_series

logger = logging.getLogger(__name__)


def init_db(bind: Optional[Engine] = None, *, fresh: bool = False) -> None:
    """Create missing ledger tables and seed the number series."""
    eng = bind or default_engine
    if fresh:
        logger.warning("Dropping ALL ledger tables (dev only)")
        Base.metadata.drop_all(bind=eng)

    Base.metadata.create_all(bind=eng)
    logger.info("Tables: %s", sorted(inspect(eng).get_table_names()))

    try:
        with Session(eng) as db:
            ensure_series(db)
            db.commit()
    except SQLAlchemyError:
        logger.exception("Seeding billing number series failed")
        raise


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(
        description="Initialize ledger DB (create tables, seed number series).")
    parser.add_argument(
        "--fresh",
        action="store_true",
        help="Drop & recreate all tables (DEV ONLY).",
    )
    args = parser.parse_args()
    init_db(fresh=args.fresh)
