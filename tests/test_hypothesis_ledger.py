"""
Hypothesis Property-Based Tests for the credit ledger.

Random sequences of charges, credits and refunds must keep the balance
column equal to the ledger sum and never go negative.
"""

import asyncio
from uuid import uuid4

from fakes import FakePricingRepository, FakeTransactionRepository, FakeUserRepository
from hypothesis import given, settings
from hypothesis import strategies as st

from ielts_lover.config import Settings
from ielts_lover.exceptions import (
    IdempotencyConflictError,
    InsufficientFundsError,
    PricingNotConfiguredError,
)
from ielts_lover.models.api import TransactionType, UserRole
from ielts_lover.models.domain import FeaturePricingData, UserData
from ielts_lover.services.credits import CreditService
from ielts_lover.services.pricing import PricingCatalog
from ielts_lover.services.subscription import can_access_feature

# ============================================================================
# Hypothesis Strategies
# ============================================================================

feature_costs = st.dictionaries(
    keys=st.sampled_from(["writing_evaluation", "text_rewriter", "mock_test", "free_tool"]),
    values=st.integers(min_value=0, max_value=20),
    min_size=1,
)
opening_balances = st.integers(min_value=0, max_value=100)
billable_keys = st.sampled_from(
    ["writing_evaluation", "text_rewriter", "mock_test", "free_tool", "unpriced"]
)

operations = st.lists(
    st.one_of(
        st.tuples(st.just("bill"), billable_keys),
        st.tuples(st.just("credit"), st.integers(min_value=0, max_value=50)),
        st.tuples(st.just("refund_last"), st.none()),
        st.tuples(st.just("concurrent_bill"), st.integers(min_value=2, max_value=5)),
    ),
    max_size=25,
)

credit_types = st.sampled_from(
    [t for t in TransactionType if t not in (TransactionType.USAGE_CHARGE, TransactionType.REFUND)]
)


def build_service(costs: dict[str, int]) -> tuple[CreditService, FakeUserRepository]:
    users = FakeUserRepository()
    pricing = FakePricingRepository()
    for key, cost in costs.items():
        pricing.rows[key] = FeaturePricingData(feature_key=key, cost=cost)
    service = CreditService(
        users,
        FakeTransactionRepository(users),
        PricingCatalog(pricing),
        Settings(database_url="sqlite+aiosqlite:///:memory:", ledger_max_retries=10),
    )
    return service, users


async def new_user(service: CreditService, users: FakeUserRepository, balance: int) -> UserData:
    user = await users.create(
        UserData(
            user_id=uuid4(),
            email="prop@example.com",
            credits_balance=0,
            role=UserRole.USER,
            is_premium=False,
        )
    )
    if balance:
        await service.credit_user(user.user_id, balance)
    return user


# ============================================================================
# Ledger Properties
# ============================================================================


class TestLedgerProperties:
    """Property tests over random operation sequences."""

    @given(costs=feature_costs, opening=opening_balances, ops=operations)
    @settings(max_examples=75, deadline=None)
    def test_balance_always_equals_ledger_sum(self, costs, opening, ops):
        """Every sequence ends with balance == sum(amounts) and balance >= 0."""

        async def scenario() -> None:
            service, users = build_service(costs)
            user = await new_user(service, users, opening)
            charges = []

            for op, arg in ops:
                balance_before = await service.get_balance(user.user_id)
                entries_before = len(users.ledger_for(user.user_id))

                if op == "bill":
                    try:
                        charges.append(await service.bill_user(user.user_id, arg))
                    except (InsufficientFundsError, PricingNotConfiguredError) as exc:
                        if isinstance(exc, InsufficientFundsError):
                            assert exc.required > balance_before
                            assert exc.available == balance_before
                        assert await service.get_balance(user.user_id) == balance_before
                        assert len(users.ledger_for(user.user_id)) == entries_before
                elif op == "credit":
                    await service.credit_user(user.user_id, arg)
                elif op == "refund_last" and charges:
                    try:
                        await service.refund(user.user_id, charges[-1].transaction_id)
                    except IdempotencyConflictError:
                        pass
                elif op == "concurrent_bill":
                    key = next(iter(costs))
                    await asyncio.gather(
                        *(service.bill_user(user.user_id, key) for _ in range(arg)),
                        return_exceptions=True,
                    )

                stored = await users.get_by_id(user.user_id)
                ledger_sum, _ = await users.sum_transactions(user.user_id)
                assert stored.credits_balance >= 0
                assert stored.credits_balance == ledger_sum

        asyncio.run(scenario())

    @given(
        opening=st.integers(min_value=0, max_value=60),
        cost=st.integers(min_value=1, max_value=15),
        callers=st.integers(min_value=2, max_value=8),
    )
    @settings(max_examples=50, deadline=None)
    def test_concurrent_charges_admit_exactly_what_balance_covers(self, opening, cost, callers):
        """N concurrent charges succeed exactly min(N, balance // cost) times."""

        async def scenario() -> None:
            service, users = build_service({"writing_evaluation": cost})
            user = await new_user(service, users, opening)

            results = await asyncio.gather(
                *(service.bill_user(user.user_id, "writing_evaluation") for _ in range(callers)),
                return_exceptions=True,
            )

            successes = [r for r in results if not isinstance(r, BaseException)]
            rejected = [r for r in results if isinstance(r, InsufficientFundsError)]
            expected = min(callers, opening // cost)
            assert len(successes) == expected
            assert len(rejected) == callers - expected
            assert await service.get_balance(user.user_id) == opening - expected * cost

        asyncio.run(scenario())

    @given(
        opening=opening_balances, amount=st.integers(min_value=0, max_value=500), kind=credit_types
    )
    @settings(max_examples=50, deadline=None)
    def test_credits_always_increase_balance_by_amount(self, opening, amount, kind):
        async def scenario() -> None:
            service, users = build_service({"writing_evaluation": 5})
            user = await new_user(service, users, opening)

            transaction = await service.credit_user(user.user_id, amount, kind)

            assert transaction.balance_after == opening + amount
            assert await service.get_balance(user.user_id) == opening + amount

        asyncio.run(scenario())


# ============================================================================
# Policy Properties
# ============================================================================


class TestSubscriptionPolicyProperties:
    """can_access_feature is total and consistent."""

    @given(
        balance=st.integers(min_value=0, max_value=1000),
        cost=st.integers(min_value=0, max_value=1000),
        premium=st.booleans(),
    )
    def test_paid_feature_access_tracks_balance(self, balance, cost, premium):
        user = UserData(
            user_id=uuid4(),
            email="p@example.com",
            credits_balance=balance,
            role=UserRole.USER,
            is_premium=premium,
        )

        allowed = can_access_feature(user, "writing_evaluation", cost)

        assert allowed == (balance >= cost)

    @given(balance=st.integers(min_value=0, max_value=10_000))
    def test_mock_test_closed_to_free_users_at_any_balance(self, balance):
        user = UserData(
            user_id=uuid4(),
            email="p@example.com",
            credits_balance=balance,
            role=UserRole.USER,
            is_premium=False,
        )

        assert not can_access_feature(user, "mock_test", 0)
