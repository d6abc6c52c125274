"""
Pricing Catalog - feature_key -> credit cost lookup.

A key with no row, or with an inactive row, is a configuration error:
get_cost raises PricingNotConfiguredError every time, and nothing is billed.
A cost of 0 is valid and bills as a zero-amount charge.
"""

from ielts_lover.exceptions import InvalidAmountError, PricingNotConfiguredError
from ielts_lover.models.domain import FeaturePricingData
from ielts_lover.observability.logging import get_logger
from ielts_lover.repositories.interfaces import FeaturePricingRepository

logger = get_logger(__name__)


class PricingCatalog:
    """Read-mostly pricing lookup with admin-side mutation."""

    def __init__(self, repository: FeaturePricingRepository) -> None:
        self.repository = repository

    async def get_cost(self, feature_key: str) -> int:
        """
        Current cost of a feature.

        Raises:
            PricingNotConfiguredError: No active pricing row for feature_key
        """
        pricing = await self.repository.get_by_key(feature_key)
        if pricing is None or not pricing.is_active:
            raise PricingNotConfiguredError(feature_key)
        return pricing.cost

    async def set_cost(
        self, feature_key: str, cost: int, is_active: bool = True
    ) -> FeaturePricingData:
        """Create or update a pricing row."""
        if cost < 0:
            raise InvalidAmountError(cost)

        stored = await self.repository.upsert(
            FeaturePricingData(feature_key=feature_key, cost=cost, is_active=is_active)
        )
        logger.info(
            "feature_price_updated", feature_key=feature_key, cost=cost, is_active=is_active
        )
        return stored

    async def list_pricing(self) -> list[FeaturePricingData]:
        return await self.repository.list_all()
