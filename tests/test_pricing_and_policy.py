"""
Tests for PricingCatalog and the subscription policy.
"""

import pytest
from fakes import FakePricingRepository, create_mock_user

from ielts_lover.exceptions import (
    InvalidAmountError,
    PremiumRequiredError,
    PricingNotConfiguredError,
)
from ielts_lover.models.api import FeatureKey, UserRole
from ielts_lover.services.pricing import PricingCatalog
from ielts_lover.services.subscription import (
    PREMIUM_ONLY_FEATURES,
    can_access_feature,
    limit_reason,
    require_feature_access,
)

# ============================================================================
# Pricing Catalog
# ============================================================================


class TestPricingCatalog:
    """Tests for PricingCatalog."""

    @pytest.fixture
    def catalog(self, pricing_repo: FakePricingRepository) -> PricingCatalog:
        return PricingCatalog(pricing_repo)

    async def test_default_costs(self, catalog: PricingCatalog):
        assert await catalog.get_cost(FeatureKey.WRITING_EVALUATION.value) == 5
        assert await catalog.get_cost(FeatureKey.TEXT_REWRITER.value) == 2
        assert await catalog.get_cost(FeatureKey.CHART_IMAGE_ANALYSIS.value) == 3

    async def test_unknown_key_raises(self, catalog: PricingCatalog):
        with pytest.raises(PricingNotConfiguredError) as exc_info:
            await catalog.get_cost("nonexistent_feature")

        assert exc_info.value.feature_key == "nonexistent_feature"

    async def test_set_cost_creates_and_updates(self, catalog: PricingCatalog):
        await catalog.set_cost("vocab_quiz", 4)
        assert await catalog.get_cost("vocab_quiz") == 4

        await catalog.set_cost("vocab_quiz", 0)
        assert await catalog.get_cost("vocab_quiz") == 0

    async def test_deactivated_feature_raises(self, catalog: PricingCatalog):
        await catalog.set_cost(FeatureKey.TEXT_REWRITER.value, 2, is_active=False)

        with pytest.raises(PricingNotConfiguredError):
            await catalog.get_cost(FeatureKey.TEXT_REWRITER.value)

    async def test_negative_cost_rejected(self, catalog: PricingCatalog):
        with pytest.raises(InvalidAmountError):
            await catalog.set_cost("vocab_quiz", -1)

    async def test_list_pricing_sorted_by_key(self, catalog: PricingCatalog):
        keys = [p.feature_key for p in await catalog.list_pricing()]

        assert keys == sorted(keys)
        assert FeatureKey.MOCK_TEST.value in keys


# ============================================================================
# Subscription Policy
# ============================================================================


class TestCanAccessFeature:
    """Tests for can_access_feature."""

    def test_premium_opens_premium_only_features(self):
        user = create_mock_user(balance=0, is_premium=True)

        assert can_access_feature(user, FeatureKey.MOCK_TEST.value)

    def test_premium_still_needs_credits_for_cost(self):
        """Premium gates features, it does not pay for them."""
        user = create_mock_user(balance=0, is_premium=True)

        assert not can_access_feature(user, FeatureKey.WRITING_EVALUATION.value, cost=5)
        assert not can_access_feature(user, FeatureKey.MOCK_TEST.value, cost=10)
        assert can_access_feature(user, FeatureKey.WRITING_EVALUATION.value, cost=0)

    def test_mock_test_is_premium_only(self):
        """Balance does not open a premium-only feature."""
        user = create_mock_user(balance=1000)

        assert FeatureKey.MOCK_TEST.value in PREMIUM_ONLY_FEATURES
        assert not can_access_feature(user, FeatureKey.MOCK_TEST.value)

    def test_cost_checked_against_balance(self):
        user = create_mock_user(balance=4)

        assert can_access_feature(user, FeatureKey.WRITING_EVALUATION.value, cost=4)
        assert not can_access_feature(user, FeatureKey.WRITING_EVALUATION.value, cost=5)

    def test_no_cost_means_allowed(self):
        user = create_mock_user(balance=0)

        assert can_access_feature(user, FeatureKey.TEXT_REWRITER.value)

    def test_role_does_not_grant_premium(self):
        admin = create_mock_user(role=UserRole.ADMIN)

        assert not can_access_feature(admin, FeatureKey.MOCK_TEST.value)

    def test_policy_does_not_mutate_user(self):
        user = create_mock_user(balance=3)

        can_access_feature(user, FeatureKey.WRITING_EVALUATION.value, cost=5)

        assert user.credits_balance == 3


class TestLimitReason:
    """Tests for limit_reason."""

    def test_allowed_has_no_reason(self):
        assert limit_reason(create_mock_user(balance=10), "writing_evaluation", 5) is None

    def test_premium_reason(self):
        reason = limit_reason(create_mock_user(), FeatureKey.MOCK_TEST.value)

        assert reason == "This feature is available to premium members only."

    def test_balance_reason(self):
        reason = limit_reason(create_mock_user(balance=2), "writing_evaluation", 5)

        assert reason == "You need 5 credits for this feature but have 2."

    def test_premium_balance_reason(self):
        user = create_mock_user(balance=4, is_premium=True)

        reason = limit_reason(user, FeatureKey.MOCK_TEST.value, 10)

        assert reason == "You need 10 credits for this feature but have 4."


class TestRequireFeatureAccess:
    """Tests for require_feature_access."""

    def test_raises_for_free_user_on_mock_test(self):
        with pytest.raises(PremiumRequiredError) as exc_info:
            require_feature_access(create_mock_user(), FeatureKey.MOCK_TEST.value)

        assert exc_info.value.feature_key == FeatureKey.MOCK_TEST.value
        assert "MOCK_TEST_PREMIUM_ONLY" in str(exc_info.value)

    def test_passes_for_premium_user(self):
        require_feature_access(create_mock_user(is_premium=True), FeatureKey.MOCK_TEST.value)

    def test_ignores_balance_for_ordinary_features(self):
        require_feature_access(create_mock_user(balance=0), FeatureKey.WRITING_EVALUATION.value)
