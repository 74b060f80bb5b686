from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse
from typing import Any, Dict, List, Optional


class APIException(HTTPException):
    def __init__(self, status_code: int, detail: str):
        super().__init__(status_code=status_code, detail=detail)


class SchedulingError(APIException):
    """Base class for errors raised by the scheduling core.

    Every subclass carries a machine-checkable ``kind`` next to the
    human-readable message so callers never have to parse text.
    """

    kind = "scheduling_error"
    status_code_default = 400

    def __init__(self, message: str, extra: Optional[Dict[str, Any]] = None):
        super().__init__(status_code=self.status_code_default, detail=message)
        self.message = message
        self.extra = extra or {}

    def __str__(self) -> str:
        return self.message


class ValidationError(SchedulingError):
    kind = "validation_error"
    status_code_default = 400


class NotFoundError(SchedulingError):
    kind = "not_found"
    status_code_default = 404


class InvalidStateError(SchedulingError):
    kind = "invalid_state"
    status_code_default = 409


class AlreadyJustifiedError(InvalidStateError):
    kind = "already_justified"


class ConflictError(SchedulingError):
    kind = "conflict"
    status_code_default = 409

    def __init__(self, message: str, conflicts: Optional[List[Dict[str, Any]]] = None):
        super().__init__(message, extra={"conflicts": conflicts or []})
        self.conflicts = conflicts or []


def create_error_response(error_message: str, status_code: int = 400, kind: Optional[str] = None, extra: Optional[dict] = None) -> dict:
    """Create a standardized error response"""
    body = {
        "success": False,
        "data": None,
        "error": error_message,
        "kind": kind or _kind_for_status(status_code),
    }
    if extra:
        body.update(extra)
    return body


def _kind_for_status(status_code: int) -> str:
    return {
        400: "validation_error",
        401: "unauthorized",
        403: "forbidden",
        404: "not_found",
        409: "conflict",
    }.get(status_code, "error")


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    # Convert 403 from HTTPBearer to 401 for missing authentication
    if exc.status_code == 403 and "Not authenticated" in str(exc.detail):
        return JSONResponse(
            status_code=401,
            content=create_error_response("Authentication required", 401)
        )

    if isinstance(exc, SchedulingError):
        return JSONResponse(
            status_code=exc.status_code,
            content=create_error_response(exc.message, exc.status_code, kind=exc.kind, extra=exc.extra)
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.detail, exc.status_code)
    )
