"""
Attempt Service - Attempt state machine and billed evaluation.

NO DICTIONARIES - All operations use strongly typed domain models.

State machine: CREATED -> (IN_PROGRESS) -> SUBMITTED -> EVALUATING -> EVALUATED

EVALUATING is held only while a charge and its AI call are in flight. It is
entered through a conditional write, so one caller owns each evaluation, and
is always released: back to the previous state on insufficient credits,
failure or cancellation, forward to EVALUATED on success.

Submission order is save, then bill, then evaluate. Content is persisted
before any credit moves, so a billing or AI failure never
loses user work. The debit commits before the AI call starts; no session
or lock is held while the AI service runs.
"""

from datetime import UTC, datetime
from uuid import UUID

from ielts_lover.exceptions import (
    AIServiceError,
    AttemptNotFoundError,
    ExerciseNotFoundError,
    InsufficientFundsError,
    InvalidAttemptStateError,
)
from ielts_lover.models.api import AttemptState, FeatureKey
from ielts_lover.models.domain import (
    AttemptData,
    AttemptUpdate,
    CreditTransactionData,
    ExerciseData,
    ReevaluationResult,
    SubmissionOutcome,
    SubmissionResult,
)
from ielts_lover.observability.correlation import TraceContext
from ielts_lover.observability.logging import get_logger
from ielts_lover.observability.metrics import metrics
from ielts_lover.observability.tracing import trace_operation
from ielts_lover.repositories.interfaces import AttemptRepository, ExerciseRepository
from ielts_lover.services.ai import AIService
from ielts_lover.services.credits import CreditService

logger = get_logger(__name__)

# States a submission (or draft save) may start from
SUBMITTABLE_STATES = frozenset(
    {AttemptState.CREATED, AttemptState.IN_PROGRESS, AttemptState.SUBMITTED}
)
REEVALUABLE_STATES = frozenset({AttemptState.SUBMITTED, AttemptState.EVALUATED})


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


def feature_key_for(exercise: ExerciseData) -> str:
    """Evaluation feature billed for an exercise, chosen by type prefix."""
    if exercise.type.is_writing:
        return FeatureKey.WRITING_EVALUATION.value
    return FeatureKey.SPEAKING_EVALUATION.value


class AttemptService:
    """Owns attempt transitions and coordinates billing with AI evaluation."""

    def __init__(
        self,
        attempts: AttemptRepository,
        exercises: ExerciseRepository,
        credits: CreditService,
        ai: AIService,
    ) -> None:
        self.attempts = attempts
        self.exercises = exercises
        self.credits = credits
        self.ai = ai

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_attempt(self, attempt_id: UUID) -> AttemptData:
        """
        Raises:
            AttemptNotFoundError: Attempt doesn't exist
        """
        attempt = await self.attempts.get_by_id(attempt_id)
        if attempt is None:
            raise AttemptNotFoundError(attempt_id)
        return attempt

    async def get_exercise(self, exercise_id: UUID) -> ExerciseData:
        """
        Raises:
            ExerciseNotFoundError: Exercise doesn't exist
        """
        exercise = await self.exercises.get_by_id(exercise_id)
        if exercise is None:
            raise ExerciseNotFoundError(exercise_id)
        return exercise

    async def get_user_attempts(self, user_id: UUID) -> list[AttemptData]:
        return await self.attempts.list_by_user(user_id)

    # ========================================================================
    # Transitions
    # ========================================================================

    async def start_attempt(self, user_id: UUID, exercise_id: UUID) -> AttemptData:
        """
        Resume the open attempt for (user, exercise), or create one.

        At most one CREATED/IN_PROGRESS attempt exists per pair. Concurrent
        starts converge on one attempt because the repository returns the
        stored open attempt when its insert loses.
        """
        await self.get_exercise(exercise_id)

        existing = await self.attempts.find_open(user_id, exercise_id)
        if existing is not None:
            logger.debug(
                "attempt_resumed", attempt_id=str(existing.attempt_id), user_id=str(user_id)
            )
            return existing

        attempt = await self.attempts.create(user_id, exercise_id)
        logger.info(
            "attempt_created",
            attempt_id=str(attempt.attempt_id),
            user_id=str(user_id),
            exercise_id=str(exercise_id),
        )
        return attempt

    async def save_attempt_draft(self, attempt_id: UUID, content: str) -> AttemptData:
        """
        Persist content without billing or scoring.

        Raises:
            AttemptNotFoundError: Attempt doesn't exist
            InvalidAttemptStateError: Attempt is being or was already evaluated
        """
        saved = await self.attempts.transition_if(
            attempt_id,
            SUBMITTABLE_STATES,
            AttemptUpdate(content=content, state=AttemptState.SUBMITTED, submitted_at=_utc_now()),
        )
        if saved is None:
            current = await self.get_attempt(attempt_id)
            raise InvalidAttemptStateError(attempt_id, current.state.value, "save draft for")
        return saved

    async def update_attempt(self, attempt_id: UUID, patch: AttemptUpdate) -> AttemptData:
        await self.get_attempt(attempt_id)
        return await self.attempts.update(attempt_id, patch)

    async def submit_attempt(
        self, attempt_id: UUID, content: str, trace: TraceContext | None = None
    ) -> SubmissionResult:
        """
        Save, bill, then evaluate a submission.

        Saving moves the attempt to EVALUATING in one conditional write, so
        of two concurrent submits only one is billed. Insufficient credits is
        an outcome, not an error: the content stays saved as SUBMITTED and no
        AI call is made.

        Raises:
            AttemptNotFoundError: Attempt doesn't exist
            ExerciseNotFoundError: Attempt's exercise doesn't exist
            InvalidAttemptStateError: Another submission is being evaluated
            AIServiceError: Evaluation failed after billing (attempt stays SUBMITTED)
        """
        trace = trace or TraceContext.new("submit_attempt")
        log = trace.bind(logger).bind(attempt_id=str(attempt_id))

        with trace_operation("submit_attempt", attempt_id=attempt_id, trace_id=trace.trace_id):
            attempt = await self.get_attempt(attempt_id)
            if attempt.state == AttemptState.EVALUATED:
                log.info("submit_ignored_already_evaluated")
                return SubmissionResult(
                    attempt=attempt, outcome=SubmissionOutcome.ALREADY_EVALUATED
                )

            exercise = await self.get_exercise(attempt.exercise_id)

            claimed = await self.attempts.transition_if(
                attempt_id,
                SUBMITTABLE_STATES,
                AttemptUpdate(
                    content=content, state=AttemptState.EVALUATING, submitted_at=_utc_now()
                ),
            )
            if claimed is None:
                current = await self.get_attempt(attempt_id)
                if current.state == AttemptState.EVALUATED:
                    log.info("submit_ignored_already_evaluated")
                    return SubmissionResult(
                        attempt=current, outcome=SubmissionOutcome.ALREADY_EVALUATED
                    )
                log.info("submit_rejected_evaluation_running", state=current.state.value)
                raise InvalidAttemptStateError(attempt_id, current.state.value, "submit")
            log.info("attempt_submitted", user_id=str(claimed.user_id))

            try:
                charge = await self.credits.bill_user(
                    claimed.user_id, feature_key_for(exercise), trace
                )
                evaluated = await self._evaluate_billed(
                    claimed, exercise, content, charge, trace
                )
            except InsufficientFundsError as exc:
                saved = await self._release(attempt_id, AttemptState.SUBMITTED)
                metrics.record_evaluation("insufficient_credits")
                log.info(
                    "evaluation_skipped_insufficient_credits",
                    required=exc.required,
                    available=exc.available,
                )
                return SubmissionResult(
                    attempt=saved,
                    outcome=SubmissionOutcome.INSUFFICIENT_CREDITS,
                    required=exc.required,
                    available=exc.available,
                )
            except BaseException:
                await self._release(attempt_id, AttemptState.SUBMITTED)
                raise

            return SubmissionResult(
                attempt=evaluated, outcome=SubmissionOutcome.EVALUATED, charge=charge
            )

    async def reevaluate(
        self, attempt_id: UUID, trace: TraceContext | None = None
    ) -> ReevaluationResult:
        """
        Bill again and re-run evaluation on saved content.

        Insufficient credits leaves the attempt as it was.

        Raises:
            AttemptNotFoundError: Attempt doesn't exist
            InvalidAttemptStateError: Attempt has no submitted content, or is
                already being evaluated
            AIServiceError: Evaluation failed after billing
        """
        trace = trace or TraceContext.new("reevaluate")
        log = trace.bind(logger).bind(attempt_id=str(attempt_id))

        with trace_operation("reevaluate", attempt_id=attempt_id, trace_id=trace.trace_id):
            attempt = await self.get_attempt(attempt_id)
            if attempt.state not in REEVALUABLE_STATES or not attempt.content:
                raise InvalidAttemptStateError(attempt_id, attempt.state.value, "reevaluate")

            exercise = await self.get_exercise(attempt.exercise_id)

            claimed = await self.attempts.transition_if(
                attempt_id,
                frozenset({attempt.state}),
                AttemptUpdate(state=AttemptState.EVALUATING),
            )
            if claimed is None:
                current = await self.get_attempt(attempt_id)
                raise InvalidAttemptStateError(attempt_id, current.state.value, "reevaluate")

            try:
                charge = await self.credits.bill_user(
                    attempt.user_id, feature_key_for(exercise), trace
                )
                evaluated = await self._evaluate_billed(
                    claimed, exercise, attempt.content, charge, trace
                )
            except InsufficientFundsError as exc:
                restored = await self._release(attempt_id, attempt.state)
                log.info(
                    "reevaluation_skipped_insufficient_credits",
                    required=exc.required,
                    available=exc.available,
                )
                return ReevaluationResult(
                    attempt=restored,
                    success=False,
                    required=exc.required,
                    available=exc.available,
                )
            except BaseException:
                await self._release(attempt_id, attempt.state)
                raise

            return ReevaluationResult(attempt=evaluated, success=True, charge=charge)

    async def _release(self, attempt_id: UUID, state: AttemptState) -> AttemptData:
        """Hand an EVALUATING attempt back in the given state."""
        released = await self.attempts.transition_if(
            attempt_id, frozenset({AttemptState.EVALUATING}), AttemptUpdate(state=state)
        )
        if released is None:
            return await self.get_attempt(attempt_id)
        return released

    # ========================================================================
    # Billed Evaluation
    # ========================================================================

    async def _evaluate_billed(
        self,
        attempt: AttemptData,
        exercise: ExerciseData,
        content: str,
        charge: CreditTransactionData,
        trace: TraceContext,
    ) -> AttemptData:
        log = trace.bind(logger).bind(
            attempt_id=str(attempt.attempt_id), charge_id=str(charge.transaction_id)
        )

        try:
            result = await self.ai.evaluate(content, exercise)
        except Exception as exc:
            metrics.record_evaluation("failed")
            log.error("evaluation_failed", error=str(exc), error_type=type(exc).__name__)
            await self.credits.refund_after_ai_failure(attempt.user_id, charge, trace)
            if isinstance(exc, AIServiceError):
                raise
            raise AIServiceError("evaluate", str(exc)) from exc

        evaluated = await self.attempts.update(
            attempt.attempt_id,
            AttemptUpdate(
                state=AttemptState.EVALUATED,
                score=result.score,
                feedback=result.feedback,
                evaluated_at=_utc_now(),
            ),
        )
        metrics.record_evaluation("success")
        log.info("attempt_evaluated", score=result.score)
        return evaluated

