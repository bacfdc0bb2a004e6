"""API error envelope: ``{"error": {"code", "message", "details"?}}``.

``details`` carries the underlying exception text outside production only.
"""

import logging
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from lakesync.config import settings

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised by route handlers; rendered by the app-level handler."""

    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: Any = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


def upstream_error(code: str, message: str, exc: Optional[BaseException] = None) -> ApiError:
    """500 error for a failed call to Databricks/Snowflake."""
    return ApiError(500, code, message, str(exc) if exc is not None else None)


def error_body(code: str, message: str, details: Any = None) -> dict:
    error: dict[str, Any] = {"code": code, "message": message}
    if details is not None and not settings.is_production:
        error["details"] = details
    return {"error": error}


def register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return JSONResponse(
            error_body(exc.code, exc.message, exc.details), status_code=exc.status_code
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        first = exc.errors()[0] if exc.errors() else {}
        location = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path"))
        message = f"Invalid '{location}': {first.get('msg', 'invalid value')}" if location else "Invalid request."
        return JSONResponse(
            error_body("INVALID_REQUEST", message, jsonable_errors(exc)), status_code=400
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"[UNHANDLED] {request.method} {request.url.path}")
        return JSONResponse(
            error_body("INTERNAL_ERROR", "Unexpected server error.", str(exc)), status_code=500
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", ""), "type": err.get("type", "")}
        for err in exc.errors()
    ]
