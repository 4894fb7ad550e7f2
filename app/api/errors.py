"""Map ledger errors to HTTP responses."""

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from app.domain.accounting.errors import (
    ConflictError,
    LedgerError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


def status_for(error: LedgerError) -> int:
    """409 for conflicts, 404 for missing references, 400 for everything else."""
    if isinstance(error, ConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(error, NotFoundError):
        return status.HTTP_404_NOT_FOUND
    return status.HTTP_400_BAD_REQUEST


async def ledger_error_handler(request: Request, exc: LedgerError) -> JSONResponse:
    code = status_for(exc)
    logger.info(f"{request.method} {request.url.path} -> {code} {exc.kind}: {exc.message}")
    return JSONResponse(status_code=code, content={"success": False, "error": exc.to_dict()})


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    first = exc.errors()[0] if exc.errors() else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "success": False,
            "error": {
                "kind": "ValidationError",
                "message": first.get("msg", "Invalid request"),
                "retryable": False,
                "context": {"field": ".".join(location)} if location else {},
            },
        },
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(LedgerError, ledger_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
