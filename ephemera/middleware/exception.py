from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from ephemera.core.errors import (
    ContentNotFoundError,
    ContentUnavailableError,
    MalformedReferenceError,
    ProviderError,
    UnsupportedOperationError,
)

UNAVAILABLE_RETRY_AFTER_SECONDS = 1


def _error_body(exc: Exception) -> dict[str, str]:
    return {"detail": str(exc) or type(exc).__name__, "error": type(exc).__name__}


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Invalid request: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(exc.errors()), "error": type(exc).__name__},
    )


async def content_not_found_handler(request: Request, exc: ContentNotFoundError):
    logger.info("Content not found: {}", exc, path=request.url.path)
    return JSONResponse(status_code=404, content=_error_body(exc))


async def content_unavailable_handler(request: Request, exc: ContentUnavailableError):
    logger.warning("Content temporarily unavailable: {}", exc, path=request.url.path)
    return JSONResponse(
        status_code=503,
        content=_error_body(exc),
        headers={"Retry-After": str(UNAVAILABLE_RETRY_AFTER_SECONDS)},
    )


async def malformed_reference_handler(request: Request, exc: MalformedReferenceError):
    logger.warning("Malformed reference: {}", exc, path=request.url.path)
    return JSONResponse(status_code=400, content=_error_body(exc))


async def unsupported_operation_handler(request: Request, exc: UnsupportedOperationError):
    logger.warning("Unsupported operation: {}", exc, path=request.url.path)
    return JSONResponse(status_code=405, content=_error_body(exc))


async def provider_error_handler(request: Request, exc: ProviderError):
    logger.error("Provider error: {}", exc, path=request.url.path)
    return JSONResponse(status_code=500, content=_error_body(exc))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ContentNotFoundError, content_not_found_handler)
    app.add_exception_handler(ContentUnavailableError, content_unavailable_handler)
    app.add_exception_handler(MalformedReferenceError, malformed_reference_handler)
    app.add_exception_handler(UnsupportedOperationError, unsupported_operation_handler)
    app.add_exception_handler(ProviderError, provider_error_handler)
