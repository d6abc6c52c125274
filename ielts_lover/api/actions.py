"""
Action Layer - Server-side entry points consumed by the UI.

NO DICTIONARIES - All results are Pydantic response models.

Every action resolves the caller first (AuthenticationError when there is
none) and enforces attempt ownership. Billed actions run under a fresh
TraceContext and never let an unexpected failure escape: it is logged with
the trace id and returned as INTERNAL_ERROR. Client errors (not found,
forbidden, invalid state) propagate for the HTTP layer to map.
"""

from uuid import UUID, uuid4

from ielts_lover.exceptions import (
    AttemptNotFoundError,
    AuthenticationError,
    AuthorizationError,
    ErrorKind,
    InsufficientFundsError,
    ServiceError,
)
from ielts_lover.models.api import (
    AttemptListResponse,
    AttemptResponse,
    BalanceResponse,
    ChartAnalysisModel,
    ChartAnalysisResponse,
    ChartDataPointModel,
    DailyGrantResponse,
    DraftSavedResponse,
    ExerciseResponse,
    FeatureAccessResponse,
    FeatureKey,
    FeaturePricingItem,
    PricingListResponse,
    ReasonCode,
    ReevaluateResponse,
    RewriteResponse,
    SaveExerciseRequest,
    SubmitAttemptResponse,
    TransactionItem,
    TransactionListResponse,
    TransactionType,
    UserRole,
)
from ielts_lover.models.domain import (
    AttemptData,
    ChartAnalysis,
    CreditTransactionData,
    ExerciseData,
    FeaturePricingData,
    SubmissionOutcome,
    UserData,
)
from ielts_lover.observability.correlation import TraceContext
from ielts_lover.observability.logging import get_logger
from ielts_lover.observability.metrics import metrics
from ielts_lover.repositories.interfaces import ExerciseRepository
from ielts_lover.services.ai import AIService
from ielts_lover.services.attempts import AttemptService
from ielts_lover.services.credits import CreditService
from ielts_lover.services.pricing import PricingCatalog
from ielts_lover.services.subscription import can_access_feature, require_feature_access

logger = get_logger(__name__)

# Error kinds that are the caller's fault and propagate out of billed actions
CLIENT_ERROR_KINDS = frozenset(
    {
        ErrorKind.NOT_FOUND,
        ErrorKind.UNAUTHENTICATED,
        ErrorKind.FORBIDDEN,
        ErrorKind.CONFLICT,
        ErrorKind.INVALID_REQUEST,
    }
)


def require_user(user: UserData | None) -> UserData:
    """
    Raises:
        AuthenticationError: No authenticated user
    """
    if user is None:
        raise AuthenticationError()
    return user


def _is_client_error(exc: Exception) -> bool:
    return isinstance(exc, ServiceError) and exc.kind in CLIENT_ERROR_KINDS


def _internal_error(trace: TraceContext, exc: Exception) -> str:
    """Log an unexpected failure and return the trace id for the response."""
    metrics.record_error(type(exc).__name__, trace.operation)
    trace.bind(logger).error(
        "action_failed", error=str(exc), error_type=type(exc).__name__, exc_info=True
    )
    return trace.trace_id


def to_attempt_response(attempt: AttemptData) -> AttemptResponse:
    return AttemptResponse(
        id=attempt.attempt_id,
        user_id=attempt.user_id,
        exercise_id=attempt.exercise_id,
        state=attempt.state,
        content=attempt.content,
        score=attempt.score,
        feedback=attempt.feedback,
        created_at=attempt.created_at,
        submitted_at=attempt.submitted_at,
        evaluated_at=attempt.evaluated_at,
    )


def to_transaction_item(transaction: CreditTransactionData) -> TransactionItem:
    return TransactionItem(
        transaction_id=transaction.transaction_id,
        amount=transaction.amount,
        transaction_type=transaction.transaction_type,
        feature_key=transaction.feature_key,
        description=transaction.description,
        refund_of_id=transaction.refund_of_id,
        created_at=transaction.created_at,
    )


def to_exercise_response(exercise: ExerciseData) -> ExerciseResponse:
    return ExerciseResponse(
        exercise_id=exercise.exercise_id,
        type=exercise.type,
        title=exercise.title,
        version=exercise.version,
        is_published=exercise.is_published,
        is_mock_test=exercise.is_mock_test,
    )


def to_pricing_item(pricing: FeaturePricingData) -> FeaturePricingItem:
    return FeaturePricingItem(
        feature_key=pricing.feature_key, cost=pricing.cost, is_active=pricing.is_active
    )


def to_chart_model(analysis: ChartAnalysis) -> ChartAnalysisModel:
    return ChartAnalysisModel(
        is_valid=analysis.is_valid,
        chart_type=analysis.chart_type,
        data_points=[
            ChartDataPointModel(label=p.label, value=p.value, series=p.series)
            for p in analysis.data_points
        ],
        validation_errors=list(analysis.validation_errors),
    )


class UserActions:
    """Entry points available to every signed-in user."""

    def __init__(
        self,
        attempts: AttemptService,
        credits: CreditService,
        pricing: PricingCatalog,
        ai: AIService,
    ) -> None:
        self.attempts = attempts
        self.credits = credits
        self.pricing = pricing
        self.ai = ai

    async def _owned_attempt(self, user: UserData, attempt_id: UUID) -> AttemptData:
        """Another user's attempt is reported as missing."""
        attempt = await self.attempts.get_attempt(attempt_id)
        if attempt.user_id != user.user_id:
            raise AttemptNotFoundError(attempt_id)
        return attempt

    # ========================================================================
    # Attempts
    # ========================================================================

    async def start_exercise_attempt(
        self, user: UserData | None, exercise_id: UUID
    ) -> AttemptResponse:
        """
        Raises:
            AuthenticationError: No current user
            ExerciseNotFoundError: Exercise doesn't exist
            PremiumRequiredError: Mock test opened by a non-premium user
        """
        user = require_user(user)
        exercise = await self.attempts.get_exercise(exercise_id)
        if exercise.is_mock_test:
            require_feature_access(user, FeatureKey.MOCK_TEST.value)

        attempt = await self.attempts.start_attempt(user.user_id, exercise_id)
        return to_attempt_response(attempt)

    async def submit_attempt(
        self, user: UserData | None, attempt_id: UUID, content: str
    ) -> SubmitAttemptResponse:
        user = require_user(user)
        await self._owned_attempt(user, attempt_id)

        trace = TraceContext.new("submit_attempt")
        try:
            result = await self.attempts.submit_attempt(attempt_id, content, trace)
        except Exception as exc:
            if _is_client_error(exc):
                raise
            return SubmitAttemptResponse(
                error=ReasonCode.INTERNAL_ERROR, trace_id=_internal_error(trace, exc)
            )

        response = SubmitAttemptResponse(attempt=to_attempt_response(result.attempt))
        if result.outcome == SubmissionOutcome.INSUFFICIENT_CREDITS:
            response.reason = ReasonCode.INSUFFICIENT_CREDITS
        return response

    async def save_attempt_draft(
        self, user: UserData | None, attempt_id: UUID, content: str
    ) -> DraftSavedResponse:
        user = require_user(user)
        await self._owned_attempt(user, attempt_id)
        await self.attempts.save_attempt_draft(attempt_id, content)
        return DraftSavedResponse(success=True)

    async def reevaluate_attempt(
        self, user: UserData | None, attempt_id: UUID
    ) -> ReevaluateResponse:
        user = require_user(user)
        await self._owned_attempt(user, attempt_id)

        trace = TraceContext.new("reevaluate_attempt")
        try:
            result = await self.attempts.reevaluate(attempt_id, trace)
        except Exception as exc:
            if _is_client_error(exc):
                raise
            return ReevaluateResponse(
                success=False,
                error=ReasonCode.INTERNAL_ERROR,
                trace_id=_internal_error(trace, exc),
            )

        if not result.success:
            return ReevaluateResponse(
                success=False,
                reason=ReasonCode.INSUFFICIENT_CREDITS,
                message=(
                    f"Insufficient credits. Required: {result.required}, "
                    f"Available: {result.available}"
                ),
            )
        return ReevaluateResponse(success=True, attempt=to_attempt_response(result.attempt))

    async def get_user_attempts(self, user: UserData | None) -> AttemptListResponse:
        user = require_user(user)
        attempts = await self.attempts.get_user_attempts(user.user_id)
        return AttemptListResponse(
            attempts=[to_attempt_response(a) for a in attempts], total_count=len(attempts)
        )

    async def get_attempt(self, user: UserData | None, attempt_id: UUID) -> AttemptResponse:
        user = require_user(user)
        return to_attempt_response(await self._owned_attempt(user, attempt_id))

    # ========================================================================
    # Stateless Billed Tools (bill, then call)
    # ========================================================================

    async def rewrite_text(self, user: UserData | None, text: str) -> RewriteResponse:
        user = require_user(user)
        trace = TraceContext.new("rewrite_text")

        try:
            charge = await self.credits.bill_user(
                user.user_id, FeatureKey.TEXT_REWRITER.value, trace
            )
        except InsufficientFundsError:
            return RewriteResponse(success=False, reason=ReasonCode.INSUFFICIENT_CREDITS)
        except Exception as exc:
            return RewriteResponse(
                success=False, error=ReasonCode.INTERNAL_ERROR, trace_id=_internal_error(trace, exc)
            )

        try:
            result = await self.ai.rewrite_content(text)
        except Exception as exc:
            trace_id = _internal_error(trace, exc)
            await self.credits.refund_after_ai_failure(user.user_id, charge, trace)
            return RewriteResponse(
                success=False, error=ReasonCode.INTERNAL_ERROR, trace_id=trace_id
            )

        return RewriteResponse(success=True, text=result.rewritten_text)

    async def analyze_chart_image(
        self, user: UserData | None, image_bytes: bytes, mime_type: str
    ) -> ChartAnalysisResponse:
        """
        Teacher/admin only.

        Raises:
            AuthenticationError: No current user
            AuthorizationError: Caller is a student
        """
        user = require_user(user)
        if not user.is_staff:
            raise AuthorizationError(UserRole.TEACHER.value)

        trace = TraceContext.new("analyze_chart_image")
        try:
            charge = await self.credits.bill_user(
                user.user_id, FeatureKey.CHART_IMAGE_ANALYSIS.value, trace
            )
        except InsufficientFundsError:
            return ChartAnalysisResponse(success=False, reason=ReasonCode.INSUFFICIENT_CREDITS)
        except Exception as exc:
            return ChartAnalysisResponse(
                success=False, error=ReasonCode.INTERNAL_ERROR, trace_id=_internal_error(trace, exc)
            )

        try:
            analysis = await self.ai.analyze_chart_image(image_bytes, mime_type)
        except Exception as exc:
            trace_id = _internal_error(trace, exc)
            await self.credits.refund_after_ai_failure(user.user_id, charge, trace)
            return ChartAnalysisResponse(
                success=False, error=ReasonCode.INTERNAL_ERROR, trace_id=trace_id
            )

        return ChartAnalysisResponse(success=True, data=to_chart_model(analysis))

    # ========================================================================
    # Access and Credits
    # ========================================================================

    async def check_feature_access(
        self, user: UserData | None, feature_key: str, cost: int | None = None
    ) -> FeatureAccessResponse:
        user = require_user(user)
        return FeatureAccessResponse(
            feature_key=feature_key, allowed=can_access_feature(user, feature_key, cost)
        )

    async def get_balance(self, user: UserData | None) -> BalanceResponse:
        user = require_user(user)
        balance = await self.credits.get_balance(user.user_id)
        return BalanceResponse(
            user_id=user.user_id, credits_balance=balance, is_premium=user.is_premium
        )

    async def list_transactions(
        self, user: UserData | None, limit: int = 50
    ) -> TransactionListResponse:
        user = require_user(user)
        transactions = await self.credits.list_transactions(user.user_id, limit)
        return TransactionListResponse(
            transactions=[to_transaction_item(t) for t in transactions],
            total_count=len(transactions),
        )

    async def claim_daily_grant(self, user: UserData | None) -> DailyGrantResponse:
        user = require_user(user)
        grant = await self.credits.ensure_daily_grant(
            user.user_id, TraceContext.new("claim_daily_grant")
        )
        balance = await self.credits.get_balance(user.user_id)
        return DailyGrantResponse(
            granted=grant is not None,
            amount=grant.amount if grant is not None else 0,
            credits_balance=balance,
        )


class AdminActions:
    """Pricing, exercise authoring and manual ledger operations."""

    def __init__(
        self, credits: CreditService, pricing: PricingCatalog, exercises: ExerciseRepository
    ) -> None:
        self.credits = credits
        self.pricing = pricing
        self.exercises = exercises

    @staticmethod
    def _require_admin(user: UserData | None) -> UserData:
        user = require_user(user)
        if user.role != UserRole.ADMIN:
            raise AuthorizationError(UserRole.ADMIN.value)
        return user

    async def list_pricing(self, user: UserData | None) -> PricingListResponse:
        self._require_admin(user)
        return PricingListResponse(
            pricing=[to_pricing_item(p) for p in await self.pricing.list_pricing()]
        )

    async def set_feature_price(
        self, user: UserData | None, feature_key: str, cost: int, is_active: bool = True
    ) -> FeaturePricingItem:
        admin = self._require_admin(user)
        stored = await self.pricing.set_cost(feature_key, cost, is_active)
        logger.info(
            "admin_price_changed", admin_id=str(admin.user_id), feature_key=feature_key, cost=cost
        )
        return to_pricing_item(stored)

    async def grant_credits(
        self,
        user: UserData | None,
        target_user_id: UUID,
        amount: int,
        transaction_type: TransactionType = TransactionType.CREDIT_ADDED,
        description: str | None = None,
    ) -> TransactionItem:
        admin = self._require_admin(user)
        trace = TraceContext.new("grant_credits")
        transaction = await self.credits.credit_user(
            target_user_id, amount, transaction_type, description, trace
        )
        trace.bind(logger).info(
            "admin_credits_granted",
            admin_id=str(admin.user_id),
            target_user_id=str(target_user_id),
            amount=amount,
        )
        return to_transaction_item(transaction)

    async def grant_welcome_bonus(
        self, user: UserData | None, target_user_id: UUID
    ) -> TransactionItem:
        admin = self._require_admin(user)
        trace = TraceContext.new("grant_welcome_bonus")
        transaction = await self.credits.grant_welcome_bonus(target_user_id, trace)
        self._log_reward(trace, admin, transaction)
        return to_transaction_item(transaction)

    async def grant_invite_bonus(
        self, user: UserData | None, target_user_id: UUID, friend_email: str
    ) -> TransactionItem:
        admin = self._require_admin(user)
        trace = TraceContext.new("grant_invite_bonus")
        transaction = await self.credits.grant_invite_bonus(target_user_id, friend_email, trace)
        self._log_reward(trace, admin, transaction)
        return to_transaction_item(transaction)

    async def apply_gift_code(
        self, user: UserData | None, target_user_id: UUID, code: str, amount: int | None = None
    ) -> TransactionItem:
        admin = self._require_admin(user)
        trace = TraceContext.new("apply_gift_code")
        transaction = await self.credits.apply_gift_code(target_user_id, code, amount, trace)
        self._log_reward(trace, admin, transaction)
        return to_transaction_item(transaction)

    @staticmethod
    def _log_reward(
        trace: TraceContext, admin: UserData, transaction: CreditTransactionData
    ) -> None:
        trace.bind(logger).info(
            "admin_reward_granted",
            admin_id=str(admin.user_id),
            target_user_id=str(transaction.user_id),
            transaction_type=transaction.transaction_type.value,
            amount=transaction.amount,
        )

    async def refund_transaction(
        self, user: UserData | None, transaction_id: UUID
    ) -> TransactionItem:
        admin = self._require_admin(user)
        original = await self.credits.get_transaction(transaction_id)
        trace = TraceContext.new("refund_transaction")
        refund = await self.credits.refund(original.user_id, transaction_id, trace, reason="admin")
        trace.bind(logger).info(
            "admin_refund_issued",
            admin_id=str(admin.user_id),
            transaction_id=str(transaction_id),
            refund_id=str(refund.transaction_id),
        )
        return to_transaction_item(refund)

    async def save_exercise(
        self, user: UserData | None, request: SaveExerciseRequest
    ) -> ExerciseResponse:
        """
        Store an exercise as a new version.

        Teachers and admins only. Saving the same type and title again
        creates the next version; attempts keep the version they started on.
        """
        author = require_user(user)
        if not author.is_staff:
            raise AuthorizationError(UserRole.TEACHER.value)

        stored = await self.exercises.create_version(
            ExerciseData(
                exercise_id=uuid4(),
                type=request.type,
                title=request.title,
                prompt=request.prompt,
                image_url=request.image_url,
                is_published=request.is_published,
                is_mock_test=request.is_mock_test,
                created_by=author.user_id,
            )
        )
        logger.info(
            "exercise_saved",
            author_id=str(author.user_id),
            exercise_id=str(stored.exercise_id),
            version=stored.version,
        )
        return to_exercise_response(stored)
