"""Exception handlers rendering the JSON error envelope"""

import logging
import traceback
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from gatekeeper.core.exceptions import BaseAPIException
from gatekeeper.schemas.response import ErrorResponse

logger = logging.getLogger(__name__)


def _envelope(
    request: Request,
    status_code: int,
    error: str,
    details: Optional[Dict[str, Any]] = None,
    code: Optional[str] = None,
) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        code=code,
        details=details,
        path=request.url.path,
        request_id=getattr(request.state, "request_id", None),
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


def _context(request: Request) -> Dict[str, Any]:
    return {"path": request.url.path, "method": request.method}


async def handle_api_exception(request: Request, exc: BaseAPIException) -> JSONResponse:
    # 4xx at INFO, 5xx at ERROR
    log = logger.error if exc.status_code >= 500 else logger.info
    log("%s %s -> %d %s", request.method, request.url.path, exc.status_code, exc.message)
    return _envelope(request, exc.status_code, exc.message, exc.details, exc.code)


async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {
            "field": ".".join(str(part) for part in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.info("Validation failed on %s: %s", request.url.path, errors)
    return _envelope(
        request,
        status.HTTP_422_UNPROCESSABLE_ENTITY,
        "Validation failed",
        {"errors": errors},
        "validation_error",
    )


async def handle_database_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(
        "Database error: %s",
        exc,
        extra=dict(_context(request), traceback=traceback.format_exc()),
    )
    return _envelope(
        request,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "A database error occurred. Please try again later.",
        code="database_error",
    )


async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.critical(
        "Unhandled exception: %s",
        exc,
        extra=dict(_context(request), traceback=traceback.format_exc()),
    )
    return _envelope(
        request, status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred.", code="internal_error"
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BaseAPIException, handle_api_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(SQLAlchemyError, handle_database_error)
    app.add_exception_handler(Exception, handle_unexpected_error)
