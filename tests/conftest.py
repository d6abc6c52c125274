"""
Pytest configuration and fixtures for the credits engine tests.
"""

import os

# Set test environment variables BEFORE importing application modules
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TRACING_ENABLED", "false")
os.environ.setdefault("LOG_FORMAT", "console")

from collections.abc import AsyncIterator, Awaitable, Callable
from uuid import uuid4

import pytest
from fakes import (
    FakeAttemptRepository,
    FakeExerciseRepository,
    FakePricingRepository,
    FakeTransactionRepository,
    FakeUserRepository,
    StubAIService,
)
from httpx import ASGITransport, AsyncClient

from ielts_lover.config import Settings
from ielts_lover.container import Container, build_container_from_repositories
from ielts_lover.models.api import ExerciseType, FeatureKey, UserRole
from ielts_lover.models.domain import ExerciseData, FeaturePricingData, UserData

DEFAULT_PRICES: dict[str, int] = {
    FeatureKey.WRITING_EVALUATION.value: 5,
    FeatureKey.SPEAKING_EVALUATION.value: 5,
    FeatureKey.TEXT_REWRITER.value: 2,
    FeatureKey.MOCK_TEST.value: 10,
    FeatureKey.CHART_IMAGE_ANALYSIS.value: 3,
}

UserFactory = Callable[..., Awaitable[UserData]]


# ============================================================================
# Settings
# ============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with small, predictable policy values."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        ledger_max_retries=5,
        refund_on_ai_failure=True,
        daily_grant_free=5,
        daily_grant_premium=20,
        welcome_bonus=10,
        invite_friend_bonus=10,
        gift_code_default=20,
    )


# ============================================================================
# Repositories
# ============================================================================


@pytest.fixture
def user_repo() -> FakeUserRepository:
    return FakeUserRepository()


@pytest.fixture
def transaction_repo(user_repo: FakeUserRepository) -> FakeTransactionRepository:
    return FakeTransactionRepository(user_repo)


@pytest.fixture
def exercise_repo() -> FakeExerciseRepository:
    return FakeExerciseRepository()


@pytest.fixture
def attempt_repo() -> FakeAttemptRepository:
    return FakeAttemptRepository()


@pytest.fixture
def pricing_repo() -> FakePricingRepository:
    """Pricing catalog seeded with the default prices."""
    repo = FakePricingRepository()
    for key, cost in DEFAULT_PRICES.items():
        repo.rows[key] = FeaturePricingData(feature_key=key, cost=cost)
    return repo


@pytest.fixture
def ai_service() -> StubAIService:
    return StubAIService()


# ============================================================================
# Services
# ============================================================================


@pytest.fixture
def container(
    user_repo: FakeUserRepository,
    exercise_repo: FakeExerciseRepository,
    attempt_repo: FakeAttemptRepository,
    pricing_repo: FakePricingRepository,
    transaction_repo: FakeTransactionRepository,
    ai_service: StubAIService,
    test_settings: Settings,
) -> Container:
    return build_container_from_repositories(
        users=user_repo,
        exercises=exercise_repo,
        attempts=attempt_repo,
        pricing=pricing_repo,
        transactions=transaction_repo,
        ai_service=ai_service,
        settings=test_settings,
    )


@pytest.fixture
def credit_service(container: Container):
    return container.credits


@pytest.fixture
def attempt_service(container: Container):
    return container.attempts


@pytest.fixture
def user_actions(container: Container):
    return container.user_actions


@pytest.fixture
def admin_actions(container: Container):
    return container.admin_actions


# ============================================================================
# Factories
# ============================================================================


@pytest.fixture
def create_user(user_repo: FakeUserRepository, container: Container) -> UserFactory:
    """
    Create a user and fund them through the ledger.

    The opening balance is written as a credit_added entry so the balance
    always equals the ledger sum.
    """

    async def _create(
        balance: int = 0,
        role: UserRole = UserRole.USER,
        is_premium: bool = False,
        email: str | None = None,
    ) -> UserData:
        user_id = uuid4()
        await user_repo.create(
            UserData(
                user_id=user_id,
                email=email or f"{user_id.hex[:8]}@example.com",
                credits_balance=0,
                role=role,
                is_premium=is_premium,
            )
        )
        if balance:
            await container.credits.credit_user(user_id, balance)
        stored = await user_repo.get_by_id(user_id)
        assert stored is not None
        return stored

    return _create


@pytest.fixture
def create_exercise(exercise_repo: FakeExerciseRepository):
    async def _create(
        exercise_type: ExerciseType = ExerciseType.WRITING_TASK2,
        title: str = "Some people think...",
        is_mock_test: bool = False,
    ) -> ExerciseData:
        return await exercise_repo.create_version(
            ExerciseData(
                exercise_id=uuid4(),
                type=exercise_type,
                title=title,
                prompt="Discuss both views and give your own opinion.",
                is_mock_test=is_mock_test,
            )
        )

    return _create


# ============================================================================
# HTTP Client
# ============================================================================


@pytest.fixture
async def api_client(container: Container) -> AsyncIterator[AsyncClient]:
    """ASGI client against the app with the in-memory container injected."""
    from ielts_lover.main import app

    app.state.container = container
    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client
    finally:
        app.state.container = None