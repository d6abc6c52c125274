"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from ielts_lover.models.api import AttemptState, ExerciseType, TransactionType, UserRole

MAX_BAND_SCORE = 9.0


@dataclass(frozen=True)
class UserData:
    """Immutable user profile snapshot."""

    user_id: UUID
    email: str
    credits_balance: int
    role: UserRole
    is_premium: bool
    target_score: float | None = None
    last_daily_grant_at: datetime | None = None
    created_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate balance constraint."""
        if self.credits_balance < 0:
            raise ValueError(f"Balance cannot be negative: {self.credits_balance}")

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.TEACHER, UserRole.ADMIN)


@dataclass(frozen=True)
class ExerciseData:
    """Immutable exercise snapshot."""

    exercise_id: UUID
    type: ExerciseType
    title: str
    prompt: str
    version: int = 1
    is_published: bool = True
    is_mock_test: bool = False
    image_url: str | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AttemptData:
    """Immutable attempt snapshot."""

    attempt_id: UUID
    user_id: UUID
    exercise_id: UUID
    state: AttemptState
    created_at: datetime
    content: str | None = None
    score: float | None = None
    feedback: str | None = None
    submitted_at: datetime | None = None
    evaluated_at: datetime | None = None

    def __post_init__(self) -> None:
        """A scored attempt is always evaluated."""
        if self.score is not None and self.state != AttemptState.EVALUATED:
            raise ValueError(f"Attempt {self.attempt_id} has a score but state {self.state.value}")


@dataclass(frozen=True)
class AttemptUpdate:
    """
    Partial attempt patch. None means "leave unchanged".

    Scores can only be written together with the EVALUATED state.
    """

    content: str | None = None
    state: AttemptState | None = None
    score: float | None = None
    feedback: str | None = None
    submitted_at: datetime | None = None
    evaluated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate patch invariants."""
        if self.score is not None and self.state != AttemptState.EVALUATED:
            raise ValueError("score can only be set together with state EVALUATED")


@dataclass(frozen=True)
class LedgerEntry:
    """Domain model for a ledger write before persistence - immutable intent."""

    user_id: UUID
    amount: int
    transaction_type: TransactionType
    description: str
    feature_key: str | None = None
    refund_of_id: UUID | None = None

    def __post_init__(self) -> None:
        """Validate entry constraints."""
        if not self.description:
            raise ValueError("Description cannot be empty")
        if self.transaction_type == TransactionType.USAGE_CHARGE and self.amount > 0:
            raise ValueError(f"Usage charge must not be positive: {self.amount}")
        if self.transaction_type != TransactionType.USAGE_CHARGE and self.amount < 0:
            raise ValueError(f"Credit amount cannot be negative: {self.amount}")
        if self.transaction_type == TransactionType.REFUND and self.refund_of_id is None:
            raise ValueError("Refund must reference the refunded transaction")


@dataclass(frozen=True)
class CreditTransactionData:
    """Immutable ledger entry after persistence."""

    transaction_id: UUID
    user_id: UUID
    amount: int
    transaction_type: TransactionType
    description: str
    created_at: datetime
    feature_key: str | None = None
    refund_of_id: UUID | None = None
    balance_after: int | None = None


@dataclass(frozen=True)
class FeaturePricingData:
    """Immutable pricing catalog row."""

    feature_key: str
    cost: int
    is_active: bool = True
    updated_at: datetime | None = None

    def __post_init__(self) -> None:
        """Validate pricing constraints."""
        if not self.feature_key:
            raise ValueError("feature_key cannot be empty")
        if self.cost < 0:
            raise ValueError(f"Cost cannot be negative: {self.cost}")


@dataclass(frozen=True)
class LedgerReconciliation:
    """Balance column compared with the ledger sum for one user."""

    user_id: UUID
    credits_balance: int
    ledger_sum: int
    transaction_count: int

    @property
    def consistent(self) -> bool:
        return self.credits_balance == self.ledger_sum

    @property
    def drift(self) -> int:
        return self.credits_balance - self.ledger_sum


# ============================================================================
# AI Collaborator Models
# ============================================================================


@dataclass(frozen=True)
class AIUsage:
    """Token and cost report for one AI call."""

    model: str
    input_tokens: int = 0
    output_tokens: int = 0


@dataclass(frozen=True)
class EvaluationResult:
    """Band score and feedback for one attempt."""

    score: float
    feedback: str
    usage: AIUsage | None = None

    def __post_init__(self) -> None:
        """Validate band score range."""
        if not 0 <= self.score <= MAX_BAND_SCORE:
            raise ValueError(f"Band score out of range: {self.score}")


@dataclass(frozen=True)
class RewriteResult:
    """Rewritten text."""

    rewritten_text: str
    usage: AIUsage | None = None


@dataclass(frozen=True)
class ChartDataPoint:
    """Single value read off a chart image."""

    label: str
    value: float
    series: str | None = None


@dataclass(frozen=True)
class ChartAnalysis:
    """Structured reading of a Task 1 chart image."""

    is_valid: bool
    chart_type: str | None = None
    data_points: tuple[ChartDataPoint, ...] = field(default_factory=tuple)
    validation_errors: tuple[str, ...] = field(default_factory=tuple)
    usage: AIUsage | None = None


# ============================================================================
# Service Results
# ============================================================================


class SubmissionOutcome(str, Enum):
    """How a submission ended."""

    EVALUATED = "evaluated"
    INSUFFICIENT_CREDITS = "insufficient_credits"
    ALREADY_EVALUATED = "already_evaluated"


@dataclass(frozen=True)
class SubmissionResult:
    """Result of AttemptService.submit_attempt."""

    attempt: AttemptData
    outcome: SubmissionOutcome
    charge: CreditTransactionData | None = None
    required: int | None = None
    available: int | None = None


@dataclass(frozen=True)
class ReevaluationResult:
    """Result of AttemptService.reevaluate."""

    attempt: AttemptData
    success: bool
    charge: CreditTransactionData | None = None
    required: int | None = None
    available: int | None = None
