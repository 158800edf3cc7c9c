"""
Translation of domain exceptions into HTTP errors
"""

from fastapi import HTTPException, status

from app.utils.exceptions import (
    ConflictError,
    EnrichmentError,
    NotFoundError,
    QuotaExceededError,
    ValidationError,
)

STATUS_CODES = {
    ValidationError: status.HTTP_400_BAD_REQUEST,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    QuotaExceededError: status.HTTP_429_TOO_MANY_REQUESTS,
}


def http_error(error: EnrichmentError) -> HTTPException:
    """HTTPException for a domain error; anything unmapped is a 500"""
    for error_cls, status_code in STATUS_CODES.items():
        if isinstance(error, error_cls):
            return HTTPException(status_code=status_code, detail=error.message)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=error.message)
