"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
"""

from uuid import UUID


class ChatCoreError(Exception):
    """Base exception for all conversation and credit errors."""

    pass


class ValidationError(ChatCoreError):
    """Raised when required fields are missing or an action targets the actor itself."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Validation failed: {message}")


class NotFoundError(ChatCoreError):
    """Raised when a conversation, message, request or user doesn't exist."""

    def __init__(self, resource: str, resource_id: UUID | int | str) -> None:
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} not found: {resource_id}")


class ForbiddenError(ChatCoreError):
    """Raised for non-participants, blocked relations and foreign requests."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Forbidden: {reason}")


class ConflictError(ChatCoreError):
    """Raised when a pending request or conversation already exists."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Conflict: {reason}")


class AlreadyProcessedError(ChatCoreError):
    """Raised when a non-pending chat request is transitioned again."""

    def __init__(self, request_id: UUID, status: str) -> None:
        self.request_id = request_id
        self.status = status
        super().__init__(f"Chat request {request_id} is already {status}")


class InsufficientCreditsError(ChatCoreError):
    """Raised when a user's balance can't cover a spend."""

    def __init__(self, balance: int, required: int) -> None:
        self.balance = balance
        self.required = required
        super().__init__(f"Insufficient credits. Balance: {balance}, Required: {required}")


class WriteVerificationError(ChatCoreError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class DataIntegrityError(ChatCoreError):
    """Raised when data integrity constraint violated."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Data integrity error: {message}")


class AuthenticationError(ChatCoreError):
    """Raised when the bearer token is missing, malformed or expired."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")
