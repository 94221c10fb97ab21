"""
HTTP-facing exceptions for the ops API.

Worker code raises the pipeline errors in `eventmedia.core.errors`; these
are only for request handlers.
"""

from fastapi import HTTPException, status


class AppException(HTTPException):
    """Base ops API exception."""

    def __init__(self, detail: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR):
        super().__init__(status_code=status_code, detail=detail)


class NotFoundException(AppException):
    def __init__(self, detail: str = "Resource not found"):
        super().__init__(detail=detail, status_code=status.HTTP_404_NOT_FOUND)


class ForbiddenException(AppException):
    def __init__(self, detail: str = "Admin access denied"):
        super().__init__(detail=detail, status_code=status.HTTP_403_FORBIDDEN)


class ConflictException(AppException):
    """The job is not in a state that allows the operation."""

    def __init__(self, detail: str = "Conflict"):
        super().__init__(detail=detail, status_code=status.HTTP_409_CONFLICT)


class QueueUnavailableException(AppException):
    """Broker or ledger unreachable."""

    def __init__(self, detail: str = "Job queue unavailable. Check worker/broker configuration."):
        super().__init__(detail=detail, status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
