"""
SQLAlchemy Repositories - Async persistence with write verification.

NO DICTIONARIES - ORM rows are converted to immutable domain models at the
repository boundary.

Each method opens its own short session from the shared factory and
commits before returning, so callers never hold a connection (or a row
lock) across an AI call. All writes follow the pattern:
1. Execute write
2. Flush to database
3. Read back and verify
4. Commit
"""

from datetime import UTC, datetime
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ielts_lover.db.models import (
    Attempt,
    CreditTransaction,
    Exercise,
    FeaturePricing,
    User,
    utc_now,
)
from ielts_lover.exceptions import (
    AttemptNotFoundError,
    IdempotencyConflictError,
    UserNotFoundError,
    WriteVerificationError,
)
from ielts_lover.models.api import AttemptState, ExerciseType, TransactionType, UserRole
from ielts_lover.models.domain import (
    AttemptData,
    AttemptUpdate,
    CreditTransactionData,
    ExerciseData,
    FeaturePricingData,
    LedgerEntry,
    UserData,
)
from ielts_lover.observability.logging import get_logger

logger = get_logger(__name__)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite returns naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=UTC)


# ============================================================================
# Row -> Domain Conversion
# ============================================================================


def _user_to_domain(row: User) -> UserData:
    return UserData(
        user_id=row.id,
        email=row.email,
        credits_balance=row.credits_balance,
        role=UserRole(row.role),
        is_premium=row.is_premium,
        target_score=row.target_score,
        last_daily_grant_at=_as_utc(row.last_daily_grant_at),
        created_at=_as_utc(row.created_at),
    )


def _exercise_to_domain(row: Exercise) -> ExerciseData:
    return ExerciseData(
        exercise_id=row.id,
        type=ExerciseType(row.type),
        title=row.title,
        prompt=row.prompt,
        version=row.version,
        is_published=row.is_published,
        is_mock_test=row.is_mock_test,
        image_url=row.image_url,
        created_by=row.created_by,
        created_at=_as_utc(row.created_at),
    )


def _attempt_to_domain(row: Attempt) -> AttemptData:
    return AttemptData(
        attempt_id=row.id,
        user_id=row.user_id,
        exercise_id=row.exercise_id,
        state=AttemptState(row.state),
        created_at=_as_utc(row.created_at),
        content=row.content,
        score=row.score,
        feedback=row.feedback,
        submitted_at=_as_utc(row.submitted_at),
        evaluated_at=_as_utc(row.evaluated_at),
    )


def _transaction_to_domain(row: CreditTransaction) -> CreditTransactionData:
    return CreditTransactionData(
        transaction_id=row.id,
        user_id=row.user_id,
        amount=row.amount,
        transaction_type=TransactionType(row.type),
        description=row.description,
        created_at=_as_utc(row.created_at),
        feature_key=row.feature_key,
        refund_of_id=row.refund_of_id,
        balance_after=row.balance_after,
    )


def _pricing_to_domain(row: FeaturePricing) -> FeaturePricingData:
    return FeaturePricingData(
        feature_key=row.feature_key,
        cost=row.cost,
        is_active=row.is_active,
        updated_at=_as_utc(row.updated_at),
    )


# ============================================================================
# Users and Ledger Writes
# ============================================================================


class SqlUserRepository:
    """User profiles and the compare-and-swap ledger write."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, user_id: UUID) -> UserData | None:
        async with self._session_factory() as session:
            row = await session.get(User, user_id)
            return _user_to_domain(row) if row is not None else None

    async def create(self, user: UserData) -> UserData:
        async with self._session_factory() as session:
            row = User(
                id=user.user_id,
                email=user.email,
                credits_balance=0,
                role=user.role.value,
                is_premium=user.is_premium,
                target_score=user.target_score,
                last_daily_grant_at=user.last_daily_grant_at,
            )
            session.add(row)
            await session.flush()

            verified = await session.get(User, row.id)
            if verified is None:
                raise WriteVerificationError(f"User {row.id} not found after insert")

            await session.commit()
            return _user_to_domain(verified)

    async def apply_if_balance(
        self, user_id: UUID, expected_balance: int, entry: LedgerEntry
    ) -> CreditTransactionData | None:
        new_balance = expected_balance + entry.amount

        async with self._session_factory() as session:
            result = await session.execute(
                update(User)
                .where(User.id == user_id, User.credits_balance == expected_balance)
                .values(credits_balance=new_balance, updated_at=utc_now())
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                await session.rollback()
                if await session.get(User, user_id) is None:
                    raise UserNotFoundError(user_id)
                return None

            transaction = CreditTransaction(
                user_id=user_id,
                amount=entry.amount,
                type=entry.transaction_type.value,
                feature_key=entry.feature_key,
                description=entry.description,
                balance_after=new_balance,
                refund_of_id=entry.refund_of_id,
            )
            session.add(transaction)

            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                if entry.refund_of_id is not None:
                    existing = await session.scalar(
                        select(CreditTransaction).where(
                            CreditTransaction.refund_of_id == entry.refund_of_id
                        )
                    )
                    if existing is not None:
                        raise IdempotencyConflictError(existing.id)
                raise

            # Verify transaction was written
            verified = await session.get(CreditTransaction, transaction.id)
            if verified is None:
                raise WriteVerificationError(f"Transaction {transaction.id} not found after insert")

            await session.commit()

            logger.debug(
                "ledger_entry_applied",
                user_id=str(user_id),
                amount=entry.amount,
                balance_after=new_balance,
                transaction_type=entry.transaction_type.value,
            )
            return _transaction_to_domain(verified)

    async def claim_daily_grant(self, user_id: UUID, now: datetime, cutoff: datetime) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                update(User)
                .where(
                    User.id == user_id,
                    or_(User.last_daily_grant_at.is_(None), User.last_daily_grant_at <= cutoff),
                )
                .values(last_daily_grant_at=now)
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def sum_transactions(self, user_id: UUID) -> tuple[int, int]:
        async with self._session_factory() as session:
            row = (
                await session.execute(
                    select(
                        func.coalesce(func.sum(CreditTransaction.amount), 0),
                        func.count(CreditTransaction.id),
                    ).where(CreditTransaction.user_id == user_id)
                )
            ).one()
            return int(row[0]), int(row[1])

    async def list_user_ids(self) -> list[UUID]:
        async with self._session_factory() as session:
            return list(await session.scalars(select(User.id).order_by(User.created_at)))


# ============================================================================
# Exercises
# ============================================================================


class SqlExerciseRepository:
    """Versioned exercise storage."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, exercise_id: UUID) -> ExerciseData | None:
        async with self._session_factory() as session:
            row = await session.get(Exercise, exercise_id)
            return _exercise_to_domain(row) if row is not None else None

    async def create_version(self, exercise: ExerciseData) -> ExerciseData:
        async with self._session_factory() as session:
            latest = await session.scalar(
                select(func.max(Exercise.version)).where(
                    Exercise.type == exercise.type.value, Exercise.title == exercise.title
                )
            )
            row = Exercise(
                id=exercise.exercise_id,
                type=exercise.type.value,
                title=exercise.title,
                prompt=exercise.prompt,
                image_url=exercise.image_url,
                version=(latest or 0) + 1,
                is_published=exercise.is_published,
                is_mock_test=exercise.is_mock_test,
                created_by=exercise.created_by,
            )
            session.add(row)
            await session.flush()

            verified = await session.get(Exercise, row.id)
            if verified is None:
                raise WriteVerificationError(f"Exercise {row.id} not found after insert")

            await session.commit()
            return _exercise_to_domain(verified)


# ============================================================================
# Attempts
# ============================================================================


def _attempt_patch_values(patch: AttemptUpdate) -> dict[str, object]:
    values: dict[str, object] = {}
    if patch.content is not None:
        values["content"] = patch.content
    if patch.state is not None:
        values["state"] = patch.state.value
    if patch.score is not None:
        values["score"] = patch.score
    if patch.feedback is not None:
        values["feedback"] = patch.feedback
    if patch.submitted_at is not None:
        values["submitted_at"] = patch.submitted_at
    if patch.evaluated_at is not None:
        values["evaluated_at"] = patch.evaluated_at
    return values


class SqlAttemptRepository:
    """Attempt storage with an indexed open-attempt lookup."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(self, user_id: UUID, exercise_id: UUID) -> AttemptData:
        async with self._session_factory() as session:
            row = Attempt(
                user_id=user_id,
                exercise_id=exercise_id,
                state=AttemptState.CREATED.value,
            )
            session.add(row)

            try:
                await session.flush()
            except IntegrityError:
                # uq_attempts_open_per_exercise: a concurrent start won
                await session.rollback()
                existing = await self.find_open(user_id, exercise_id)
                if existing is None:
                    raise
                logger.info(
                    "attempt_create_lost_race",
                    attempt_id=str(existing.attempt_id),
                    user_id=str(user_id),
                )
                return existing

            verified = await session.get(Attempt, row.id)
            if verified is None:
                raise WriteVerificationError(f"Attempt {row.id} not found after insert")

            await session.commit()
            return _attempt_to_domain(verified)

    async def get_by_id(self, attempt_id: UUID) -> AttemptData | None:
        async with self._session_factory() as session:
            row = await session.get(Attempt, attempt_id)
            return _attempt_to_domain(row) if row is not None else None

    async def find_open(self, user_id: UUID, exercise_id: UUID) -> AttemptData | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(Attempt)
                .where(
                    Attempt.user_id == user_id,
                    Attempt.exercise_id == exercise_id,
                    Attempt.state.in_(
                        [AttemptState.CREATED.value, AttemptState.IN_PROGRESS.value]
                    ),
                )
                .order_by(Attempt.created_at.asc())
                .limit(1)
            )
            return _attempt_to_domain(row) if row is not None else None

    async def update(self, attempt_id: UUID, patch: AttemptUpdate) -> AttemptData:
        async with self._session_factory() as session:
            row = await session.get(Attempt, attempt_id)
            if row is None:
                raise AttemptNotFoundError(attempt_id)

            for name, value in _attempt_patch_values(patch).items():
                setattr(row, name, value)

            await session.flush()

            verified = await session.get(Attempt, attempt_id)
            if verified is None:
                raise WriteVerificationError(f"Attempt {attempt_id} disappeared after update")

            await session.commit()
            return _attempt_to_domain(verified)

    async def transition_if(
        self, attempt_id: UUID, expected: frozenset[AttemptState], patch: AttemptUpdate
    ) -> AttemptData | None:
        async with self._session_factory() as session:
            result = await session.execute(
                update(Attempt)
                .where(Attempt.id == attempt_id, Attempt.state.in_([s.value for s in expected]))
                .values(**_attempt_patch_values(patch))
                .execution_options(synchronize_session=False)
            )

            if result.rowcount == 0:
                await session.rollback()
                if await session.get(Attempt, attempt_id) is None:
                    raise AttemptNotFoundError(attempt_id)
                return None

            verified = await session.get(Attempt, attempt_id)
            if verified is None:
                raise WriteVerificationError(f"Attempt {attempt_id} disappeared after update")

            await session.commit()
            return _attempt_to_domain(verified)

    async def list_by_user(
        self, user_id: UUID, state: AttemptState | None = None
    ) -> list[AttemptData]:
        async with self._session_factory() as session:
            stmt = select(Attempt).where(Attempt.user_id == user_id)
            if state is not None:
                stmt = stmt.where(Attempt.state == state.value)
            rows = await session.scalars(stmt.order_by(Attempt.created_at.desc()))
            return [_attempt_to_domain(row) for row in rows]


# ============================================================================
# Pricing
# ============================================================================


class SqlFeaturePricingRepository:
    """Admin-mutable feature -> cost catalog."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_key(self, feature_key: str) -> FeaturePricingData | None:
        async with self._session_factory() as session:
            row = await session.get(FeaturePricing, feature_key)
            return _pricing_to_domain(row) if row is not None else None

    async def upsert(self, pricing: FeaturePricingData) -> FeaturePricingData:
        async with self._session_factory() as session:
            row = await session.get(FeaturePricing, pricing.feature_key)
            if row is None:
                row = FeaturePricing(feature_key=pricing.feature_key)
                session.add(row)
            row.cost = pricing.cost
            row.is_active = pricing.is_active
            row.updated_at = utc_now()
            await session.flush()

            verified = await session.get(FeaturePricing, pricing.feature_key)
            if verified is None or verified.cost != pricing.cost:
                raise WriteVerificationError(f"Pricing for {pricing.feature_key} not stored")

            await session.commit()
            return _pricing_to_domain(verified)

    async def list_all(self) -> list[FeaturePricingData]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(FeaturePricing).order_by(FeaturePricing.feature_key)
            )
            return [_pricing_to_domain(row) for row in rows]


# ============================================================================
# Ledger Reads
# ============================================================================


class SqlCreditTransactionRepository:
    """Read side of credit_transactions."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_by_id(self, transaction_id: UUID) -> CreditTransactionData | None:
        async with self._session_factory() as session:
            row = await session.get(CreditTransaction, transaction_id)
            return _transaction_to_domain(row) if row is not None else None

    async def find_refund_for(self, transaction_id: UUID) -> CreditTransactionData | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(CreditTransaction).where(CreditTransaction.refund_of_id == transaction_id)
            )
            return _transaction_to_domain(row) if row is not None else None

    async def list_by_user(self, user_id: UUID, limit: int = 50) -> list[CreditTransactionData]:
        async with self._session_factory() as session:
            rows = await session.scalars(
                select(CreditTransaction)
                .where(CreditTransaction.user_id == user_id)
                .order_by(CreditTransaction.created_at.desc())
                .limit(limit)
            )
            return [_transaction_to_domain(row) for row in rows]
