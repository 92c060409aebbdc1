"""HTTP status codes, lenient payload coercion and the app-wide error shape."""
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Optional
import logging
import math
import uuid

from fastapi import FastAPI, Request, HTTPException
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class HTTP_STATUS(IntEnum):
    OK = 200
    CREATED = 201
    NO_CONTENT = 204
    TEMPORARY_REDIRECT = 307
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    INTERNAL_SERVER_ERROR = 500


def nullable_string(value: Any) -> Optional[str]:
    """Trimmed string, or None for non-strings and blank strings."""
    if not isinstance(value, str):
        return None
    trimmed = value.strip()
    return trimmed or None


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 timestamp (trailing Z allowed). Naive values are taken as UTC."""
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def parse_optional_date(value: Any) -> Optional[datetime]:
    """Datetime from a non-empty ISO string; unparseable input becomes None."""
    if isinstance(value, datetime):
        return value
    if isinstance(value, str) and value.strip():
        try:
            return parse_iso_datetime(value)
        except ValueError:
            return None
    return None


def parse_optional_number(value: Any) -> Optional[float]:
    """Number from an int/float or numeric string; anything else becomes None."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return None if isinstance(value, float) and math.isnan(value) else value
    if isinstance(value, str) and value.strip():
        try:
            parsed = float(value)
        except ValueError:
            return None
        return None if math.isnan(parsed) else parsed
    return None


def install_error_handlers(app: FastAPI) -> None:
    """Register the `{"error": ...}` response shape on an app."""

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        request_id = str(uuid.uuid4())
        errors = exc.errors()
        logger.warning(
            f"Validation failed request_id={request_id} path={request.url.path} "
            f"errors={[(e.get('loc'), e.get('msg')) for e in errors]}"
        )
        return JSONResponse(
            status_code=HTTP_STATUS.UNPROCESSABLE_ENTITY,
            content={"error": "Invalid request payload", "detail": jsonable_errors(errors), "request_id": request_id},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=HTTP_STATUS.INTERNAL_SERVER_ERROR,
            content={"error": "Internal server error"}
        )


def jsonable_errors(errors):
    # pydantic v2 may put raw exception objects under "ctx"
    return [
        {key: (str(val) if key == "ctx" else val) for key, val in err.items() if key != "input"}
        for err in errors
    ]
