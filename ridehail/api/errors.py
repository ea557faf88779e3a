"""Maps tagged domain errors onto HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from ridehail.domain.errors import (
    AlreadyAccepted,
    InsufficientFunds,
    InvalidInput,
    InvalidTransition,
    NoDriversAvailable,
    NotFound,
    RideHailError,
    Unauthorized,
    UpstreamUnavailable,
)

logger = logging.getLogger(__name__)

STATUS_CODES: dict[type[RideHailError], int] = {
    InvalidInput: 422,
    Unauthorized: 403,
    NotFound: 404,
    InvalidTransition: 409,
    AlreadyAccepted: 409,
    InsufficientFunds: 402,
    NoDriversAvailable: 409,
    UpstreamUnavailable: 503,
}


def status_for(exc: RideHailError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_CODES:
            return STATUS_CODES[cls]
    return 500


async def ridehail_error_handler(request: Request, exc: RideHailError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=status, content=exc.to_dict())


async def validation_error_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    body = InvalidInput(
        "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in errors),
        {"errors": errors},
    )
    return JSONResponse(status_code=422, content=body.to_dict())


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RideHailError, ridehail_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
