"""
Subscription Policy - premium gating independent of the credit ledger.

Pure functions over a UserData snapshot. Nothing here reads or writes
storage, and nothing here calls CreditService.
"""

from ielts_lover.exceptions import PremiumRequiredError
from ielts_lover.models.api import FeatureKey
from ielts_lover.models.domain import UserData

# Features only premium users may open, whatever their balance
PREMIUM_ONLY_FEATURES: frozenset[str] = frozenset({FeatureKey.MOCK_TEST.value})


def can_access_feature(user: UserData, feature_key: str, cost: int | None = None) -> bool:
    """
    Decide whether a user may use a feature.

    Premium-only features are closed to non-premium users. When a cost is
    given, the balance must cover it for everyone, premium included.
    """
    if feature_key in PREMIUM_ONLY_FEATURES and not user.is_premium:
        return False

    if cost is not None:
        return user.credits_balance >= cost

    return True


def limit_reason(user: UserData, feature_key: str, cost: int | None = None) -> str | None:
    """Human-readable reason access is denied, or None if allowed."""
    if can_access_feature(user, feature_key, cost):
        return None
    if feature_key in PREMIUM_ONLY_FEATURES and not user.is_premium:
        return "This feature is available to premium members only."
    return f"You need {cost} credits for this feature but have {user.credits_balance}."


def require_feature_access(user: UserData, feature_key: str) -> None:
    """
    Raise if a premium-only feature is requested by a non-premium user.

    Raises:
        PremiumRequiredError: Feature is gated behind premium
    """
    if not user.is_premium and feature_key in PREMIUM_ONLY_FEATURES:
        raise PremiumRequiredError(feature_key)
