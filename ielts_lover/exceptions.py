"""
Exception Classes - Strongly typed exception hierarchy.

NO DICTIONARIES - All exceptions have typed attributes.
Every exception declares one ErrorKind from a closed set so callers branch
on kind and payload, never on names or message text.
"""

from enum import Enum
from uuid import UUID


class ErrorKind(str, Enum):
    """Closed set of error kinds surfaced to callers."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    NOT_FOUND = "not_found"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    INVALID_REQUEST = "invalid_request"
    INTERNAL = "internal"


class ServiceError(Exception):
    """Base exception for all service errors."""

    kind: ErrorKind = ErrorKind.INTERNAL


class InsufficientFundsError(ServiceError):
    """Raised when a user's balance is below a feature's cost."""

    kind = ErrorKind.INSUFFICIENT_FUNDS

    def __init__(self, required: int, available: int, feature_key: str | None = None) -> None:
        self.required = required
        self.available = available
        self.feature_key = feature_key
        super().__init__(f"Insufficient credits. Required: {required}, Available: {available}")


class NotFoundError(ServiceError):
    """Base for missing resources."""

    kind = ErrorKind.NOT_FOUND


class UserNotFoundError(NotFoundError):
    """Raised when a user profile doesn't exist."""

    def __init__(self, user_id: UUID) -> None:
        self.user_id = user_id
        super().__init__(f"User not found: {user_id}")


class ExerciseNotFoundError(NotFoundError):
    """Raised when an exercise doesn't exist."""

    def __init__(self, exercise_id: UUID) -> None:
        self.exercise_id = exercise_id
        super().__init__(f"Exercise not found: {exercise_id}")


class AttemptNotFoundError(NotFoundError):
    """Raised when an attempt doesn't exist or isn't visible to the caller."""

    def __init__(self, attempt_id: UUID) -> None:
        self.attempt_id = attempt_id
        super().__init__(f"Attempt not found: {attempt_id}")


class TransactionNotFoundError(NotFoundError):
    """Raised when a ledger entry doesn't exist."""

    def __init__(self, transaction_id: UUID) -> None:
        self.transaction_id = transaction_id
        super().__init__(f"Transaction not found: {transaction_id}")


class AuthenticationError(ServiceError):
    """Raised when there is no authenticated user."""

    kind = ErrorKind.UNAUTHENTICATED

    def __init__(self, message: str = "User not authenticated") -> None:
        self.message = message
        super().__init__(f"Authentication failed: {message}")


class AuthorizationError(ServiceError):
    """Raised when user lacks the required role."""

    kind = ErrorKind.FORBIDDEN

    def __init__(self, required_role: str) -> None:
        self.required_role = required_role
        super().__init__(f"Authorization failed: requires role {required_role}")


class PremiumRequiredError(ServiceError):
    """Raised when a feature is gated behind premium."""

    kind = ErrorKind.FORBIDDEN
    code = "MOCK_TEST_PREMIUM_ONLY"

    def __init__(self, feature_key: str) -> None:
        self.feature_key = feature_key
        super().__init__(f"{self.code}: feature {feature_key} requires premium")


class InvalidAttemptStateError(ServiceError):
    """Raised when an attempt transition is not allowed from its current state."""

    kind = ErrorKind.CONFLICT

    def __init__(self, attempt_id: UUID, state: str, operation: str) -> None:
        self.attempt_id = attempt_id
        self.state = state
        self.operation = operation
        super().__init__(f"Cannot {operation} attempt {attempt_id} in state {state}")


class IdempotencyConflictError(ServiceError):
    """Raised when an operation was already applied (e.g. a charge already refunded)."""

    kind = ErrorKind.CONFLICT

    def __init__(self, existing_id: UUID) -> None:
        self.existing_id = existing_id
        super().__init__(f"Idempotency conflict: existing ID {existing_id}")


class InvalidAmountError(ServiceError):
    """Raised when a credit amount is negative or otherwise unusable."""

    kind = ErrorKind.INVALID_REQUEST

    def __init__(self, amount: int) -> None:
        self.amount = amount
        super().__init__(f"Invalid credit amount: {amount}")


class PricingNotConfiguredError(ServiceError):
    """Raised when a feature has no active pricing entry."""

    def __init__(self, feature_key: str) -> None:
        self.feature_key = feature_key
        super().__init__(f"Feature {feature_key} is not available for billing")


class ConcurrencyError(ServiceError):
    """Raised when concurrent modification keeps winning over a ledger write."""

    def __init__(self, resource: str) -> None:
        self.resource = resource
        super().__init__(f"Concurrent modification detected for {resource}")


class WriteVerificationError(ServiceError):
    """Raised when database write verification fails."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(f"Write verification failed: {message}")


class AIServiceError(ServiceError):
    """Raised when the AI collaborator fails or returns an unusable payload."""

    def __init__(self, operation: str, message: str) -> None:
        self.operation = operation
        self.message = message
        super().__init__(f"AI service {operation} failed: {message}")
