"""FastAPI middleware for request tracing, error handling, and CORS.

Middleware stack (applied bottom-up):
    1. RequestIDMiddleware — injects X-Request-ID into every request/response
    2. ErrorHandlerMiddleware — catches domain exceptions -> structured JSON errors
    3. CORSMiddleware — handles browser clients

Every error body has the shape ``{"error": <code>, "message": <text>}``.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

import structlog
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from negotiation_engine.domain.exceptions import (
    InvalidStateTransitionError,
    InvalidWebhookError,
    NegotiationEngineError,
    ValidationFailedError,
)

if TYPE_CHECKING:
    from fastapi import FastAPI, Request, Response

logger = structlog.get_logger(__name__)

STATUS_BY_CODE: dict[str, int] = {
    "VALIDATION_FAILED": 400,
    "NOT_FOUND": 404,
    "FORBIDDEN": 403,
    "INVALID_TRANSITION": 409,
    "CONTRACT_SIGNATURE_CONFLICT": 409,
    "INVALID_WEBHOOK": 400,
    "WEBHOOK_PROCESSING_FAILED": 503,
    "JOB_FAILED": 500,
    "JOB_ALREADY_RUNNING": 409,
}


def error_response(status_code: int, code: str, message: str, **extra: object) -> JSONResponse:
    content: dict = {"error": code, "message": message}
    content.update({key: value for key, value in extra.items() if value})
    return JSONResponse(status_code=status_code, content=content)


# ---------------------------------------------------------------------------
# 1. Request ID Middleware
# ---------------------------------------------------------------------------
class RequestIDMiddleware(BaseHTTPMiddleware):
    """Inject a unique X-Request-ID into every request for log correlation."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        # Use client-provided ID or generate one
        request_id = request.headers.get("X-Request-ID", str(uuid.uuid4()))

        # Bind to structlog context for all log entries in this request
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


# ---------------------------------------------------------------------------
# 2. Error Handler Middleware
# ---------------------------------------------------------------------------
class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """Catch domain exceptions and return structured JSON error responses."""

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        try:
            return await call_next(request)
        except InvalidStateTransitionError as exc:
            logger.warning(
                "state_machine.invalid_transition",
                current=exc.current_state,
                attempted=exc.attempted_event,
                path=request.url.path,
            )
            return error_response(409, exc.code, exc.message)
        except InvalidWebhookError as exc:
            logger.warning("webhook.invalid", error=exc.message, fields=exc.fields)
            return error_response(400, exc.code, exc.message, fields=exc.fields)
        except ValidationFailedError as exc:
            logger.info("request.validation_failed", error=exc.message)
            return error_response(400, exc.code, exc.message, details=exc.details)
        except NegotiationEngineError as exc:
            status_code = STATUS_BY_CODE.get(exc.code, 400)
            log = logger.error if status_code >= 500 else logger.warning
            log("domain.error", error=exc.message, code=exc.code, path=request.url.path)
            return error_response(status_code, exc.code, exc.message)
        except Exception as exc:
            logger.exception("unhandled.error", error=str(exc))
            return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Map FastAPI body/query validation failures onto VALIDATION_FAILED."""
    fields = []
    for error in exc.errors():
        field = ".".join(str(part) for part in error["loc"] if part != "body")
        if field and field not in fields:
            fields.append(field)
    message = "; ".join(
        f"{'.'.join(str(p) for p in error['loc'])}: {error['msg']}" for error in exc.errors()
    )
    logger.info("request.validation_failed", path=request.url.path, fields=fields)
    return error_response(400, "VALIDATION_FAILED", message, fields=fields)


# ---------------------------------------------------------------------------
# Setup function
# ---------------------------------------------------------------------------
def setup_middleware(app: FastAPI) -> None:
    """Register all middleware on the FastAPI application.

    Order matters — middleware is applied bottom-up, so the last added
    middleware runs first.
    """
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # CORS (runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Tighten in production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling (runs second)
    app.add_middleware(ErrorHandlerMiddleware)

    # Request ID (runs last = outermost)
    app.add_middleware(RequestIDMiddleware)
