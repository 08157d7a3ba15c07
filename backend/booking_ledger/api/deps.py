"""
Request dependencies and result-to-HTTP mapping.
"""

from fastapi import HTTPException, Request, status

from booking_ledger.core.errors import ErrorCode, OperationResult
from booking_ledger.services.context import BookingContext

ERROR_STATUS = {
    ErrorCode.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorCode.INVALID_TRANSITION: status.HTTP_409_CONFLICT,
    ErrorCode.VALIDATION_ERROR: status.HTTP_422_UNPROCESSABLE_ENTITY,
    ErrorCode.CONNECTION_ERROR: status.HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.STORE_ERROR: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_context(request: Request) -> BookingContext:
    return request.app.state.booking_context


def unwrap(result: OperationResult):
    """Return the payload of a successful result, raise the mapped HTTP error otherwise."""
    if result.success:
        return result.data
    raise HTTPException(
        status_code=ERROR_STATUS.get(result.error_code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail={"error": result.error, "code": result.error_code},
    )
