# order_pipeline/core/errors.py
import logging
from typing import Any, List, Optional

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ErrorCodes:
    VALIDATION_FAILED = "VALIDATION_FAILED"
    NOT_FOUND = "NOT_FOUND"
    INVALID_PRODUCT = "INVALID_PRODUCT"
    ORDER_VALUE_EXCEEDED = "ORDER_VALUE_EXCEEDED"
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class PipelineError(Exception):
    """Base class for order pipeline errors."""


class UnknownProductError(PipelineError):
    def __init__(self, product_id: int):
        self.product_id = product_id
        super().__init__(f"Product with ID {product_id} not found")


class BatchProcessingError(PipelineError):
    """Raised after a poll cycle in which at least one message could not be handled."""

    def __init__(self, failures: List[tuple]):
        self.failures = failures
        ids = ", ".join(message_id for message_id, _ in failures)
        super().__init__(f"{len(failures)} message(s) failed processing: {ids}")


class ApiError(PipelineError):
    def __init__(self, status_code: int, code: str, message: str, details: Any = None):
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details
        super().__init__(message)


def error_body(code: str, message: str, details: Any = None, correlation_id: Optional[str] = None) -> dict:
    error = {"code": code, "message": message}
    if details is not None:
        error["details"] = details
    if correlation_id:
        error["correlationId"] = correlation_id
    return {"success": False, "error": error}


def _correlation_id(request: Request) -> Optional[str]:
    return getattr(request.state, "correlation_id", None)


async def api_error_handler(request: Request, exc: ApiError):
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(error_body(exc.code, exc.message, exc.details, _correlation_id(request))),
    )


async def validation_error_handler(request: Request, exc: RequestValidationError):
    details = [
        {"field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"), "message": err.get("msg")}
        for err in exc.errors()
    ]
    logger.info("Request validation failed", extra={"path": request.url.path, "errors": details})
    return JSONResponse(
        status_code=400,
        content=error_body(ErrorCodes.VALIDATION_FAILED, "Validation failed", details, _correlation_id(request)),
    )


async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = ErrorCodes.NOT_FOUND if exc.status_code == 404 else ErrorCodes.INTERNAL_ERROR
    return JSONResponse(
        status_code=exc.status_code,
        content=error_body(code, str(exc.detail), correlation_id=_correlation_id(request)),
        headers=getattr(exc, "headers", None),
    )


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error", extra={"path": request.url.path, "error": str(exc)}, exc_info=exc)
    return JSONResponse(
        status_code=500,
        content=error_body(ErrorCodes.INTERNAL_ERROR, "Internal server error", correlation_id=_correlation_id(request)),
    )


def register_exception_handlers(app: FastAPI):
    app.add_exception_handler(ApiError, api_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)
