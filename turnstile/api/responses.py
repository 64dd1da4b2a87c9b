"""
Mapping of failure outcomes to HTTP responses
"""

from fastapi import status
from fastapi.responses import JSONResponse

from turnstile.core.exceptions import ErrorKind, Failure, IssuanceStage
from turnstile.schemas.response import ErrorResponse

FAILURE_STATUS = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    ErrorKind.SEAT_CONFLICT: status.HTTP_409_CONFLICT,
    ErrorKind.INVALID_TICKET: status.HTTP_400_BAD_REQUEST,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.ISSUANCE_FAILED: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.MISCONFIGURED_SECRET: status.HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorKind.PERSISTENCE_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
}

# Error envelope documented on every API route
ERROR_RESPONSES = {
    code: {"model": ErrorResponse}
    for code in (
        status.HTTP_400_BAD_REQUEST,
        status.HTTP_401_UNAUTHORIZED,
        status.HTTP_403_FORBIDDEN,
        status.HTTP_404_NOT_FOUND,
        status.HTTP_409_CONFLICT,
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        status.HTTP_502_BAD_GATEWAY,
        status.HTTP_503_SERVICE_UNAVAILABLE,
    )
}


def error_body(code: str, message: str, details: dict = None) -> dict:
    return {
        "success": False,
        "error": {
            "code": code,
            "message": message,
            "details": details or {}
        }
    }


def failure_status(failure: Failure) -> int:
    # The reservation is not ready for a ticket; the upstream store is fine
    if failure.kind == ErrorKind.ISSUANCE_FAILED and failure.stage == IssuanceStage.PRECONDITION.value:
        return status.HTTP_409_CONFLICT
    return FAILURE_STATUS.get(failure.kind, status.HTTP_400_BAD_REQUEST)


def failure_response(failure: Failure) -> JSONResponse:
    return JSONResponse(
        status_code=failure_status(failure),
        content=error_body(failure.kind.value, failure.message, failure.details),
    )
