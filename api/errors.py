"""
Error envelope for the HTTP surface.

Every CommerceError becomes {"success": false, "error", "error_code",
"retryable"} with an HTTP status chosen by its code.
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from domain.errors import CommerceError, error_code_of

logger = logging.getLogger(__name__)

STATUS_BY_CODE: Dict[str, int] = {
    "validation_error": 422,
    "invalid_quantity": 422,
    "cart_invalid": 409,
    "insufficient_funds": 402,
    "payment_failed": 402,
    "payment_timeout": 504,
    "invalid_status_transition": 409,
    "out_of_order_event": 409,
    "item_not_found": 404,
    "not_found": 404,
    "forbidden": 403,
    "malformed_document": 500,
    "store_conflict": 409,
    "store_unavailable": 503,
    "checkout_in_progress": 409,
}


def error_response(
    message: str,
    code: str,
    retryable: bool = False,
    errors: Optional[List[str]] = None,
    status_code: Optional[int] = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code or STATUS_BY_CODE.get(code, 400),
        content={
            "success": False,
            "error": message,
            "error_code": code,
            "retryable": retryable,
            "errors": list(errors or []),
        },
    )


async def _commerce_error_handler(request: Request, exc: CommerceError) -> JSONResponse:
    if exc.retryable:
        logger.warning("%s %s failed (retryable): [%s] %s", request.method, request.url.path, exc.code, exc.message)
    return error_response(exc.message, exc.code, exc.retryable, getattr(exc, "errors", None))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    ]
    return error_response("Invalid request", "validation_error", errors=errors)


async def _unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return error_response("Internal server error", error_code_of(exc), status_code=500)


def install_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(CommerceError, _commerce_error_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)


__all__ = ["STATUS_BY_CODE", "error_response", "install_error_handlers"]
