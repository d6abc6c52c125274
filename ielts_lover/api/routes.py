"""
API Routes - FastAPI endpoints for attempts, tools and credits.

NO DICTIONARIES - All requests/responses use Pydantic models.

Structured outcomes keep their body and set the status code:
insufficient credits -> 402, internal error -> 500. Raised ServiceErrors
are mapped to status codes by the application exception handler.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ielts_lover.api.actions import UserActions
from ielts_lover.api.dependencies import get_current_user, get_user_actions
from ielts_lover.models.api import (
    AttemptListResponse,
    AttemptResponse,
    BalanceResponse,
    ChartAnalysisRequest,
    ChartAnalysisResponse,
    DailyGrantResponse,
    DraftSavedResponse,
    FeatureAccessResponse,
    ReasonCode,
    ReevaluateResponse,
    RewriteRequest,
    RewriteResponse,
    SaveDraftRequest,
    SubmitAttemptRequest,
    SubmitAttemptResponse,
    TransactionListResponse,
)
from ielts_lover.models.domain import UserData

router = APIRouter()


def _apply_outcome_status(
    response: Response, reason: ReasonCode | None, error: ReasonCode | None
) -> None:
    if error == ReasonCode.INTERNAL_ERROR:
        response.status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    elif reason == ReasonCode.INSUFFICIENT_CREDITS:
        response.status_code = status.HTTP_402_PAYMENT_REQUIRED


# ============================================================================
# Attempts
# ============================================================================


@router.post(
    "/v1/exercises/{exercise_id}/attempts",
    response_model=AttemptResponse,
    status_code=status.HTTP_201_CREATED,
)
async def start_exercise_attempt(
    exercise_id: UUID,
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> AttemptResponse:
    """
    Start or resume an attempt on an exercise.

    Returns the existing open attempt when one exists.
    """
    return await actions.start_exercise_attempt(user, exercise_id)


@router.post("/v1/attempts/{attempt_id}/submit", response_model=SubmitAttemptResponse)
async def submit_attempt(
    attempt_id: UUID,
    request: SubmitAttemptRequest,
    response: Response,
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> SubmitAttemptResponse:
    """
    Submit content for billed evaluation.

    Content is always saved. 402 means saved but not evaluated.
    """
    result = await actions.submit_attempt(user, attempt_id, request.content)
    _apply_outcome_status(response, result.reason, result.error)
    return result


@router.put("/v1/attempts/{attempt_id}/draft", response_model=DraftSavedResponse)
async def save_attempt_draft(
    attempt_id: UUID,
    request: SaveDraftRequest,
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> DraftSavedResponse:
    """Save content without scoring."""
    return await actions.save_attempt_draft(user, attempt_id, request.content)


@router.post("/v1/attempts/{attempt_id}/reevaluate", response_model=ReevaluateResponse)
async def reevaluate_attempt(
    attempt_id: UUID,
    response: Response,
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> ReevaluateResponse:
    """Bill again and re-run evaluation."""
    result = await actions.reevaluate_attempt(user, attempt_id)
    _apply_outcome_status(response, result.reason, result.error)
    return result


@router.get("/v1/attempts", response_model=AttemptListResponse)
async def list_attempts(
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> AttemptListResponse:
    return await actions.get_user_attempts(user)


@router.get("/v1/attempts/{attempt_id}", response_model=AttemptResponse)
async def get_attempt(
    attempt_id: UUID,
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> AttemptResponse:
    return await actions.get_attempt(user, attempt_id)


# ============================================================================
# Tools
# ============================================================================


@router.post("/v1/tools/rewrite", response_model=RewriteResponse)
async def rewrite_text(
    request: RewriteRequest,
    response: Response,
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> RewriteResponse:
    """Billed text rewrite."""
    result = await actions.rewrite_text(user, request.text)
    _apply_outcome_status(response, result.reason, result.error)
    return result


@router.post("/v1/tools/chart-analysis", response_model=ChartAnalysisResponse)
async def analyze_chart_image(
    request: ChartAnalysisRequest,
    response: Response,
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> ChartAnalysisResponse:
    """
    Billed chart image analysis.

    Teachers and admins only.
    """
    result = await actions.analyze_chart_image(user, request.image_bytes(), request.mime_type)
    _apply_outcome_status(response, result.reason, result.error)
    return result


@router.get("/v1/features/{feature_key}/access", response_model=FeatureAccessResponse)
async def check_feature_access(
    feature_key: str,
    cost: int | None = Query(None, ge=0),
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> FeatureAccessResponse:
    return await actions.check_feature_access(user, feature_key, cost)


# ============================================================================
# Credits
# ============================================================================


@router.get("/v1/credits/balance", response_model=BalanceResponse)
async def get_balance(
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> BalanceResponse:
    return await actions.get_balance(user)


@router.get("/v1/credits/transactions", response_model=TransactionListResponse)
async def list_transactions(
    limit: int = Query(50, ge=1, le=500),
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> TransactionListResponse:
    return await actions.list_transactions(user, limit)


@router.post("/v1/credits/daily-grant", response_model=DailyGrantResponse)
async def claim_daily_grant(
    user: UserData | None = Depends(get_current_user),
    actions: UserActions = Depends(get_user_actions),
) -> DailyGrantResponse:
    """Grant the daily allowance if the interval has passed."""
    return await actions.claim_daily_grant(user)
