# FILE: billing_ledger/utils/timezone.py
from __future__ import annotations

from datetime import datetime, date, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from billing_ledger.core.config import settings


def utcnow_naive() -> datetime:
    """
    Naive UTC "now". All DateTime columns in the ledger are naive UTC.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def local_tz() -> ZoneInfo:
    return ZoneInfo(settings.TIMEZONE)


def to_local_date(dt: Optional[datetime]) -> Optional[date]:
    """Calendar date of a stored (naive UTC) timestamp in the hospital's zone."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(local_tz()).date()


def today_local() -> date:
    return datetime.now(local_tz()).date()
