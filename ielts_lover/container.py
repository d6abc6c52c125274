"""
Service Container - Explicit wiring of repositories, services and actions.

Built once per process in the FastAPI lifespan and stored on app.state.
Tests build their own container from in-memory repositories.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ielts_lover.api.actions import AdminActions, UserActions
from ielts_lover.config import Settings
from ielts_lover.repositories.interfaces import (
    AttemptRepository,
    CreditTransactionRepository,
    ExerciseRepository,
    FeaturePricingRepository,
    UserRepository,
)
from ielts_lover.repositories.sql import (
    SqlAttemptRepository,
    SqlCreditTransactionRepository,
    SqlExerciseRepository,
    SqlFeaturePricingRepository,
    SqlUserRepository,
)
from ielts_lover.services.ai import AIService
from ielts_lover.services.attempts import AttemptService
from ielts_lover.services.credits import CreditService
from ielts_lover.services.pricing import PricingCatalog


@dataclass(frozen=True)
class Container:
    """Process-wide service graph."""

    users: UserRepository
    pricing: PricingCatalog
    credits: CreditService
    attempts: AttemptService
    ai: AIService
    user_actions: UserActions
    admin_actions: AdminActions


def build_container_from_repositories(
    users: UserRepository,
    exercises: ExerciseRepository,
    attempts: AttemptRepository,
    pricing: FeaturePricingRepository,
    transactions: CreditTransactionRepository,
    ai_service: AIService,
    settings: Settings,
) -> Container:
    """Wire services on top of any repository implementation."""
    catalog = PricingCatalog(pricing)
    credit_service = CreditService(users, transactions, catalog, settings)
    attempt_service = AttemptService(attempts, exercises, credit_service, ai_service)

    return Container(
        users=users,
        pricing=catalog,
        credits=credit_service,
        attempts=attempt_service,
        ai=ai_service,
        user_actions=UserActions(attempt_service, credit_service, catalog, ai_service),
        admin_actions=AdminActions(credit_service, catalog, exercises),
    )


def build_container(
    session_factory: async_sessionmaker[AsyncSession],
    ai_service: AIService,
    settings: Settings,
) -> Container:
    """Wire the SQLAlchemy-backed service graph."""
    return build_container_from_repositories(
        users=SqlUserRepository(session_factory),
        exercises=SqlExerciseRepository(session_factory),
        attempts=SqlAttemptRepository(session_factory),
        pricing=SqlFeaturePricingRepository(session_factory),
        transactions=SqlCreditTransactionRepository(session_factory),
        ai_service=ai_service,
        settings=settings,
    )
