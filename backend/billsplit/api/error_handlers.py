"""
Custom exception handlers for FastAPI.
Maps domain errors onto HTTP responses with a consistent
``{"error": ..., "details": ...}`` body.
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder

from billsplit.core.errors import InvalidAllocation, LimitExceeded, NotFound
from billsplit.core.observability import sentry_capture

logger = logging.getLogger(__name__)


def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder(
            {
                "error": "Validation error",
                "details": exc.errors(),
                "body": exc.body,
            }
        ),
    )


def not_found_handler(request: Request, exc: NotFound):
    return JSONResponse(
        status_code=404,
        content={"error": "Not found", "details": exc.to_dict()},
    )


def limit_exceeded_handler(request: Request, exc: LimitExceeded):
    logger.info("Plan limit hit action=%s quota=%s usage=%s", exc.action, exc.quota, exc.usage)
    return JSONResponse(
        status_code=402,
        content={"error": "Plan limit exceeded", "details": exc.to_dict()},
    )


def invalid_allocation_handler(request: Request, exc: InvalidAllocation):
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid allocation", "details": exc.to_dict()},
    )


def generic_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    sentry_capture(exc)
    return JSONResponse(
        status_code=500,
        content={
            "error": "Internal server error",
            "details": str(exc),
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(NotFound, not_found_handler)
    app.add_exception_handler(LimitExceeded, limit_exceeded_handler)
    app.add_exception_handler(InvalidAllocation, invalid_allocation_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
