"""
Admin API Routes - Pricing catalog, exercise authoring and manual ledger operations.

Exercise authoring is open to teachers; everything else requires the admin
role.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, status

from ielts_lover.api.actions import AdminActions
from ielts_lover.api.dependencies import get_admin_actions, get_current_user
from ielts_lover.models.api import (
    ExerciseResponse,
    FeaturePricingItem,
    GiftCodeRequest,
    GrantCreditsRequest,
    InviteBonusRequest,
    PricingListResponse,
    SaveExerciseRequest,
    TransactionItem,
    UpdatePricingRequest,
)
from ielts_lover.models.domain import UserData

router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.get("/pricing", response_model=PricingListResponse)
async def list_pricing(
    user: UserData | None = Depends(get_current_user),
    actions: AdminActions = Depends(get_admin_actions),
) -> PricingListResponse:
    return await actions.list_pricing(user)


@router.put("/pricing/{feature_key}", response_model=FeaturePricingItem)
async def set_feature_price(
    feature_key: str,
    request: UpdatePricingRequest,
    user: UserData | None = Depends(get_current_user),
    actions: AdminActions = Depends(get_admin_actions),
) -> FeaturePricingItem:
    """Create or update a feature price. Takes effect on the next bill."""
    return await actions.set_feature_price(user, feature_key, request.cost, request.is_active)


@router.post(
    "/users/{user_id}/credits",
    response_model=TransactionItem,
    status_code=status.HTTP_201_CREATED,
)
async def grant_credits(
    user_id: UUID,
    request: GrantCreditsRequest,
    user: UserData | None = Depends(get_current_user),
    actions: AdminActions = Depends(get_admin_actions),
) -> TransactionItem:
    """Add credits to a user's balance."""
    return await actions.grant_credits(
        user, user_id, request.amount, request.transaction_type, request.description
    )


@router.post(
    "/users/{user_id}/welcome-bonus",
    response_model=TransactionItem,
    status_code=status.HTTP_201_CREATED,
)
async def grant_welcome_bonus(
    user_id: UUID,
    user: UserData | None = Depends(get_current_user),
    actions: AdminActions = Depends(get_admin_actions),
) -> TransactionItem:
    return await actions.grant_welcome_bonus(user, user_id)


@router.post(
    "/users/{user_id}/invite-bonus",
    response_model=TransactionItem,
    status_code=status.HTTP_201_CREATED,
)
async def grant_invite_bonus(
    user_id: UUID,
    request: InviteBonusRequest,
    user: UserData | None = Depends(get_current_user),
    actions: AdminActions = Depends(get_admin_actions),
) -> TransactionItem:
    """Reward a user for inviting a friend."""
    return await actions.grant_invite_bonus(user, user_id, request.friend_email)


@router.post(
    "/users/{user_id}/gift-codes",
    response_model=TransactionItem,
    status_code=status.HTTP_201_CREATED,
)
async def apply_gift_code(
    user_id: UUID,
    request: GiftCodeRequest,
    user: UserData | None = Depends(get_current_user),
    actions: AdminActions = Depends(get_admin_actions),
) -> TransactionItem:
    """Credit a redeemed gift code to a user."""
    return await actions.apply_gift_code(user, user_id, request.code, request.amount)


@router.post(
    "/transactions/{transaction_id}/refund",
    response_model=TransactionItem,
    status_code=status.HTTP_201_CREATED,
)
async def refund_transaction(
    transaction_id: UUID,
    user: UserData | None = Depends(get_current_user),
    actions: AdminActions = Depends(get_admin_actions),
) -> TransactionItem:
    """Refund a usage charge. 409 if it was already refunded."""
    return await actions.refund_transaction(user, transaction_id)


@router.post("/exercises", response_model=ExerciseResponse, status_code=status.HTTP_201_CREATED)
async def save_exercise(
    request: SaveExerciseRequest,
    user: UserData | None = Depends(get_current_user),
    actions: AdminActions = Depends(get_admin_actions),
) -> ExerciseResponse:
    """Store an exercise. Re-saving a title creates its next version."""
    return await actions.save_exercise(user, request)
