"""Translate service-layer errors into HTTP responses."""

import logging

from fastapi import HTTPException, status

from app.services.errors import ErrorKind, LedgerError

logger = logging.getLogger(__name__)

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INSUFFICIENT_BALANCE: status.HTTP_402_PAYMENT_REQUIRED,
    ErrorKind.AUTHENTICATION: status.HTTP_401_UNAUTHORIZED,
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UPSTREAM: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def status_for(error: LedgerError) -> int:
    """HTTP status code for a service error."""
    return STATUS_BY_KIND.get(error.kind, status.HTTP_500_INTERNAL_SERVER_ERROR)


def to_http_exception(error: LedgerError) -> HTTPException:
    """Build the HTTPException a route should raise for a service error.

    Internal errors never leak their message to the client.
    """
    code = status_for(error)
    if error.kind == ErrorKind.INTERNAL:
        logger.error(f"Internal service error: {error}")
        detail = {"error": error.kind.value, "message": "Internal server error"}
    else:
        detail = {"error": error.kind.value, "message": error.message}

    headers = {"WWW-Authenticate": "Bearer"} if code == status.HTTP_401_UNAUTHORIZED else None
    return HTTPException(status_code=code, detail=detail, headers=headers)
