"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches workflow errors -> structured JSON errors
    3. CORSMiddleware — handles browser clients of the marketplace

Request validation failures are handled by an exception handler so they
share the same error body as workflow errors.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from visa_escrow.domain.enums import ErrorKind
from visa_escrow.domain.exceptions import EscrowWorkflowError
from visa_escrow.schemas.escrow import ErrorResponse
from visa_escrow.services.gateway import to_error_body

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)


def _error_json(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body.model_dump(by_alias=True))


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch workflow errors and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except EscrowWorkflowError as exc:
            status_code, body = to_error_body(exc)
            log = logger.warning if status_code < 500 else logger.error
            log("workflow.rejected", code=exc.code, kind=exc.kind, error=exc.message)
            return _error_json(status_code, body)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return _error_json(
                500,
                ErrorResponse(
                    error="INTERNAL_ERROR",
                    kind="internal",
                    message="An unexpected error occurred",
                    retriable=False,
                ),
            )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report request validation failures with the workflow error body."""
    logger.info("request.invalid", path=request.url.path, errors=len(exc.errors()))
    body = ErrorResponse(
        error="VALIDATION_ERROR",
        kind=ErrorKind.VALIDATION.value,
        message="Request validation failed",
        retriable=False,
    ).model_dump(by_alias=True)
    body["details"] = jsonable_encoder(exc.errors())
    return JSONResponse(status_code=422, content=body)


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_exception_handler(RequestValidationError, validation_exception_handler)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(ErrorHandlerMiddleware)
    app.add_middleware(RequestIDMiddleware)
