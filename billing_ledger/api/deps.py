# billing_ledger/api/deps.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Generator, Optional

from fastapi import Depends, Header, HTTPException
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from billing_ledger.core.config import settings
from billing_ledger.db.session import SessionLocal


@dataclass
class CurrentUser:
    id: str
    role: str = ""
    name: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


# =========================================================
# DB (per request)
# =========================================================
def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


# =========================================================
# AUTH HELPERS
# =========================================================
def _extract_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization:
        return None
    parts = authorization.split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    return None


def _decode_token(raw_token: str) -> dict:
    try:
        return jwt.decode(raw_token,
                          settings.JWT_SECRET,
                          algorithms=[settings.JWT_ALG])
    except JWTError:
        raise HTTPException(status_code=401, detail="Invalid token")


def current_user(
        authorization: Optional[str] = Header(None)) -> CurrentUser:
    raw = _extract_bearer(authorization)
    if not raw:
        raise HTTPException(status_code=401, detail="Missing token")

    payload = _decode_token(raw)
    sub = payload.get("sub")
    if not sub:
        raise HTTPException(status_code=401, detail="Invalid token payload")

    return CurrentUser(id=str(sub),
                       role=str(payload.get("role") or "").lower(),
                       name=payload.get("name"))


def require_money_role(user: CurrentUser = Depends(current_user)) -> CurrentUser:
    """Payments, refunds, finalize, cancel and reconcile."""
    if settings.ADMIN_ALL_ACCESS and user.is_admin:
        return user
    if user.role not in settings.BILLING_MONEY_ROLES:
        raise HTTPException(status_code=403, detail="Not permitted")
    return user
