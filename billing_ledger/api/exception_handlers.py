# FILE: billing_ledger/api/exception_handlers.py
from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError
from starlette.exceptions import HTTPException as StarletteHTTPException

from billing_ledger.api.response import billing_err, err
from billing_ledger.services.billing_errors import BillingError

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(BillingError)
    async def billing_error_handler(request: Request,
                                    exc: BillingError) -> JSONResponse:
        if exc.status_code >= 409:
            logger.info("%s %s -> %s: %s", request.method, request.url.path,
                        exc.code, exc.msg)
        return billing_err(exc)

    @app.exception_handler(IntegrityError)
    async def integrity_error_handler(request: Request,
                                      exc: IntegrityError) -> JSONResponse:
        # unique number / source_log_id collisions from a concurrent writer
        logger.warning("Integrity error on %s %s: %s", request.method,
                       request.url.path, exc.orig)
        return err(msg="Conflicting concurrent update. Reload and retry.",
                   status_code=409,
                   code="concurrent_update")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(
            request: Request, exc: StarletteHTTPException) -> JSONResponse:
        # exc.detail can be str/dict/list
        msg = exc.detail if isinstance(exc.detail, str) else "Request failed"
        return err(msg=msg, status_code=exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
            request: Request, exc: RequestValidationError) -> JSONResponse:
        return err(msg="Validation error",
                   status_code=422,
                   code="request_validation",
                   details=exc.errors())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request,
                                          exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method,
                         request.url.path)
        return err(msg="Internal server error", status_code=500)
