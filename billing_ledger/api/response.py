# FILE: billing_ledger/api/response.py
from __future__ import annotations

from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, Optional

from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from billing_ledger.services.billing_errors import BillingError


def money_str(v: Decimal) -> str:
    """Ledger amounts go out as 2-place strings, never floats."""
    return str(v.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


# jsonable_encoder would turn Decimal into float
LEDGER_ENCODERS = {Decimal: money_str}


def _encode(payload: Dict[str, Any]) -> Any:
    return jsonable_encoder(payload, custom_encoder=LEDGER_ENCODERS)


def ok(
    data: Any = None,
    *,
    meta: Optional[Dict[str, Any]] = None,
    status_code: int = 200,
) -> JSONResponse:
    """
    Standard success wrapper:
    {
      "ok": true,
      "data": ...,
      "meta": {...} (optional)
    }
    Decimal amounts anywhere in data/meta are rendered as "700.00".
    """
    payload: Dict[str, Any] = {"ok": True, "data": data}
    if meta is not None:
        payload["meta"] = meta
    return JSONResponse(status_code=status_code, content=_encode(payload))


def err(
    msg: str = "Something went wrong",
    *,
    status_code: int = 400,
    code: Optional[str] = None,
    details: Any = None,
) -> JSONResponse:
    """
    Standard error wrapper:
    {
      "ok": false,
      "error": {"msg": "...", "code": "...", "details": ...}
    }
    """
    payload: Dict[str, Any] = {
        "ok": False,
        "error": {
            "msg": msg,
            "code": code,
            "details": details,
        },
    }
    return JSONResponse(status_code=status_code, content=_encode(payload))


def billing_err(exc: BillingError) -> JSONResponse:
    """Render a ledger failure with its own HTTP status and stable code."""
    return err(msg=exc.msg,
               status_code=exc.status_code,
               code=exc.code,
               details=exc.details)
