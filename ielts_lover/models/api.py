"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

import base64
import binascii
from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class UserRole(str, Enum):
    """User role enumeration."""

    USER = "user"
    TEACHER = "teacher"
    ADMIN = "admin"


class ExerciseType(str, Enum):
    """Exercise type enumeration."""

    WRITING_TASK1 = "writing_task1"
    WRITING_TASK2 = "writing_task2"
    SPEAKING_PART1 = "speaking_part1"
    SPEAKING_PART2 = "speaking_part2"
    SPEAKING_PART3 = "speaking_part3"

    @property
    def is_writing(self) -> bool:
        return self.value.startswith("writing")


class AttemptState(str, Enum):
    """Attempt lifecycle states."""

    CREATED = "CREATED"
    IN_PROGRESS = "IN_PROGRESS"
    SUBMITTED = "SUBMITTED"
    EVALUATING = "EVALUATING"
    EVALUATED = "EVALUATED"

    @property
    def is_open(self) -> bool:
        """Open attempts are resumed instead of duplicated."""
        return self in (AttemptState.CREATED, AttemptState.IN_PROGRESS)


class TransactionType(str, Enum):
    """Credit transaction type enumeration."""

    USAGE_CHARGE = "usage_charge"
    CREDIT_ADDED = "credit_added"
    REFUND = "refund"
    DAILY_GRANT = "daily_grant"
    REWARD = "reward"
    GIFT_CODE = "gift_code"
    TEACHER_GRANT = "teacher_grant"
    PURCHASE = "purchase"


class FeatureKey(str, Enum):
    """Known billable features. Pricing rows may define others."""

    WRITING_EVALUATION = "writing_evaluation"
    SPEAKING_EVALUATION = "speaking_evaluation"
    TEXT_REWRITER = "text_rewriter"
    MOCK_TEST = "mock_test"
    CHART_IMAGE_ANALYSIS = "chart_image_analysis"


class ReasonCode(str, Enum):
    """Stable machine-checkable codes returned to the UI layer."""

    INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    MOCK_TEST_PREMIUM_ONLY = "MOCK_TEST_PREMIUM_ONLY"


# ============================================================================
# Attempt Models
# ============================================================================


class AttemptResponse(BaseModel):
    """Attempt as returned to the owning user."""

    id: UUID
    user_id: UUID
    exercise_id: UUID
    state: AttemptState
    content: str | None = None
    score: float | None = None
    feedback: str | None = None
    created_at: datetime
    submitted_at: datetime | None = None
    evaluated_at: datetime | None = None


class AttemptListResponse(BaseModel):
    """GET /v1/attempts response."""

    attempts: list[AttemptResponse]
    total_count: int


class SubmitAttemptRequest(BaseModel):
    """POST /v1/attempts/{attempt_id}/submit request body."""

    content: str = Field(
        ..., min_length=1, description="Essay text or speaking transcript/audio URL"
    )


class SubmitAttemptResponse(BaseModel):
    """
    Submission result.

    Exactly one of three shapes: attempt only (evaluated), attempt plus
    reason (saved but not evaluated), or error plus trace_id.
    """

    attempt: AttemptResponse | None = None
    reason: ReasonCode | None = None
    error: ReasonCode | None = None
    trace_id: str | None = None


class SaveDraftRequest(BaseModel):
    """PUT /v1/attempts/{attempt_id}/draft request body."""

    content: str = Field(..., description="Draft content")


class DraftSavedResponse(BaseModel):
    """PUT /v1/attempts/{attempt_id}/draft response."""

    success: bool = True


class ReevaluateResponse(BaseModel):
    """POST /v1/attempts/{attempt_id}/reevaluate response."""

    success: bool
    attempt: AttemptResponse | None = None
    reason: ReasonCode | None = None
    message: str | None = None
    error: ReasonCode | None = None
    trace_id: str | None = None


# ============================================================================
# Tool Models
# ============================================================================


class RewriteRequest(BaseModel):
    """POST /v1/tools/rewrite request body."""

    text: str = Field(..., min_length=1, max_length=20000)


class RewriteResponse(BaseModel):
    """POST /v1/tools/rewrite response."""

    success: bool
    text: str | None = None
    reason: ReasonCode | None = None
    error: ReasonCode | None = None
    trace_id: str | None = None


class ChartAnalysisRequest(BaseModel):
    """POST /v1/tools/chart-analysis request body."""

    image_base64: str = Field(..., min_length=1)
    mime_type: str = Field(..., description="Image MIME type (image/png, image/jpeg, image/webp)")

    @field_validator("mime_type")
    @classmethod
    def validate_mime_type(cls, v: str) -> str:
        """Only raster image types are accepted."""
        if v not in ("image/png", "image/jpeg", "image/webp"):
            raise ValueError(f"Unsupported image type: {v}")
        return v

    @field_validator("image_base64")
    @classmethod
    def validate_image_base64(cls, v: str) -> str:
        """Image must be valid base64."""
        try:
            base64.b64decode(v, validate=True)
        except (binascii.Error, ValueError) as e:
            raise ValueError("image_base64 is not valid base64") from e
        return v

    def image_bytes(self) -> bytes:
        return base64.b64decode(self.image_base64)


class ChartDataPointModel(BaseModel):
    """Single extracted data point."""

    label: str
    value: float
    series: str | None = None


class ChartAnalysisModel(BaseModel):
    """Structured chart analysis."""

    is_valid: bool
    chart_type: str | None = None
    data_points: list[ChartDataPointModel] = Field(default_factory=list)
    validation_errors: list[str] = Field(default_factory=list)


class ChartAnalysisResponse(BaseModel):
    """POST /v1/tools/chart-analysis response."""

    success: bool
    data: ChartAnalysisModel | None = None
    reason: ReasonCode | None = None
    error: ReasonCode | None = None
    trace_id: str | None = None


class FeatureAccessResponse(BaseModel):
    """GET /v1/features/{feature_key}/access response."""

    feature_key: str
    allowed: bool


# ============================================================================
# Credit Models
# ============================================================================


class BalanceResponse(BaseModel):
    """GET /v1/credits/balance response."""

    user_id: UUID
    credits_balance: int
    is_premium: bool


class TransactionItem(BaseModel):
    """Single ledger entry."""

    transaction_id: UUID
    amount: int
    transaction_type: TransactionType
    feature_key: str | None = None
    description: str
    refund_of_id: UUID | None = None
    created_at: datetime


class TransactionListResponse(BaseModel):
    """GET /v1/credits/transactions response."""

    transactions: list[TransactionItem]
    total_count: int


class DailyGrantResponse(BaseModel):
    """POST /v1/credits/daily-grant response."""

    granted: bool
    amount: int = 0
    credits_balance: int


# ============================================================================
# Admin Models
# ============================================================================


class FeaturePricingItem(BaseModel):
    """Single pricing catalog row."""

    feature_key: str
    cost: int
    is_active: bool


class PricingListResponse(BaseModel):
    """GET /v1/admin/pricing response."""

    pricing: list[FeaturePricingItem]


class UpdatePricingRequest(BaseModel):
    """PUT /v1/admin/pricing/{feature_key} request body."""

    cost: int = Field(..., ge=0)
    is_active: bool = True


class GrantCreditsRequest(BaseModel):
    """POST /v1/admin/users/{user_id}/credits request body."""

    amount: int = Field(..., gt=0)
    transaction_type: TransactionType = TransactionType.CREDIT_ADDED
    description: str | None = Field(None, max_length=500)

    @field_validator("transaction_type")
    @classmethod
    def validate_transaction_type(cls, v: TransactionType) -> TransactionType:
        """Usage charges and refunds have their own paths."""
        if v in (TransactionType.USAGE_CHARGE, TransactionType.REFUND):
            raise ValueError(f"transaction_type {v.value} cannot be granted manually")
        return v


class InviteBonusRequest(BaseModel):
    """POST /v1/admin/users/{user_id}/invite-bonus request body."""

    friend_email: str = Field(..., min_length=3, max_length=255)


class GiftCodeRequest(BaseModel):
    """POST /v1/admin/users/{user_id}/gift-codes request body."""

    code: str = Field(..., min_length=1, max_length=64)
    amount: int | None = Field(None, gt=0, description="Defaults to the configured gift value")


class SaveExerciseRequest(BaseModel):
    """POST /v1/admin/exercises request body."""

    type: ExerciseType
    title: str = Field(..., min_length=1, max_length=255)
    prompt: str = Field(..., min_length=1)
    image_url: str | None = Field(None, max_length=1024)
    is_published: bool = True
    is_mock_test: bool = False


class ExerciseResponse(BaseModel):
    """Stored exercise version."""

    exercise_id: UUID
    type: ExerciseType
    title: str
    version: int
    is_published: bool
    is_mock_test: bool


class ErrorResponse(BaseModel):
    """Body of non-2xx responses raised by the HTTP layer."""

    detail: str
