"""
Domain exception -> HTTP status mapping, shared by every router.
"""

from fastapi import HTTPException, status

from app.exceptions import (
    AlreadyProcessedError,
    AuthenticationError,
    ChatCoreError,
    ConflictError,
    DataIntegrityError,
    ForbiddenError,
    InsufficientCreditsError,
    NotFoundError,
    ValidationError,
    WriteVerificationError,
)
from app.observability.logging import get_logger
from app.observability.metrics import metrics

logger = get_logger(__name__)


def http_error_for(exc: ChatCoreError, operation: str = "api") -> HTTPException:
    """
    Translate a core error into the HTTPException the route should raise.

    Usage:
        try:
            ...
        except ChatCoreError as exc:
            raise http_error_for(exc, "send_message") from exc
    """
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.message)

    if isinstance(exc, NotFoundError):
        return HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail=f"{exc.resource} not found"
        )

    if isinstance(exc, ForbiddenError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.reason)

    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.reason)

    if isinstance(exc, AlreadyProcessedError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Chat request already {exc.status}",
        )

    if isinstance(exc, InsufficientCreditsError):
        return HTTPException(
            status_code=status.HTTP_402_PAYMENT_REQUIRED,
            detail=f"Insufficient credits. Balance: {exc.balance}, Required: {exc.required}",
            headers={"X-Credit-Balance": str(exc.balance)},
        )

    if isinstance(exc, AuthenticationError):
        return HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=exc.message,
            headers={"WWW-Authenticate": "Bearer"},
        )

    if isinstance(exc, (WriteVerificationError, DataIntegrityError)):
        metrics.record_error(type(exc).__name__, operation)
        logger.error("database_integrity_error", operation=operation, error=str(exc))
        return HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Database integrity error",
        )

    metrics.record_error(type(exc).__name__, operation)
    logger.error("unmapped_core_error", operation=operation, error=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal error"
    )
