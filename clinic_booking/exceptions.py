from typing import Any, Optional

from fastapi import HTTPException, Request
from fastapi.responses import JSONResponse

from .application.errors import BookingError, ErrorKind

ERROR_STATUS_CODES = {
    ErrorKind.CONFIGURATION: 422,
    ErrorKind.GATEWAY: 502,
    ErrorKind.AUTHENTICITY: 400,
    ErrorKind.MALFORMED: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.VALIDATION: 400,
}


def create_error_response(error: Any, status_code: int = 400) -> dict:
    """Create a standardized error response"""
    return {
        "success": False,
        "data": None,
        "error": error
    }


def status_for_error(error: BookingError) -> int:
    return ERROR_STATUS_CODES.get(error.kind, 500)


def raise_for_error(error: BookingError, appointment_id: Optional[str] = None) -> None:
    """Turn a service-level error into the HTTP error envelope."""
    detail: Any = error.message
    if appointment_id is not None:
        # The row survived, the client needs its id to retry
        detail = {"message": error.message, "kind": error.kind, "appointment_id": appointment_id}
    raise HTTPException(status_code=status_for_error(error), detail=detail)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Custom exception handler for HTTPException"""
    # Convert 403 from HTTPBearer to 401 for missing authentication
    if exc.status_code == 403 and "Not authenticated" in str(exc.detail):
        return JSONResponse(
            status_code=401,
            content=create_error_response("Authentication required", 401)
        )

    return JSONResponse(
        status_code=exc.status_code,
        content=create_error_response(exc.detail, exc.status_code),
        headers=getattr(exc, "headers", None),
    )
