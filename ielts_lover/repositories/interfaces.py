"""
Repository Protocols - Storage-agnostic persistence interfaces.

NO DICTIONARIES - All reads and writes use strongly typed domain models.

The services depend only on these protocols. Any storage (SQLAlchemy,
in-memory fakes in tests) must implement them.
"""

from datetime import datetime
from typing import Protocol
from uuid import UUID

from ielts_lover.models.api import AttemptState
from ielts_lover.models.domain import (
    AttemptData,
    AttemptUpdate,
    CreditTransactionData,
    ExerciseData,
    FeaturePricingData,
    LedgerEntry,
    UserData,
)


class UserRepository(Protocol):
    """
    User profiles plus the balance column.

    credits_balance is written only through apply_if_balance, which appends
    the matching ledger row in the same transaction.
    """

    async def get_by_id(self, user_id: UUID) -> UserData | None:
        """Get a user profile, or None if missing."""
        ...

    async def create(self, user: UserData) -> UserData:
        """Insert a profile provisioned by the identity provider (balance 0)."""
        ...

    async def apply_if_balance(
        self, user_id: UUID, expected_balance: int, entry: LedgerEntry
    ) -> CreditTransactionData | None:
        """
        Compare-and-swap a ledger write.

        Atomically sets credits_balance to expected_balance + entry.amount
        and appends the transaction, but only if the stored balance still
        equals expected_balance. Returns None when another writer won.

        Raises:
            UserNotFoundError: User doesn't exist
            IdempotencyConflictError: entry refunds an already refunded charge
        """
        ...

    async def claim_daily_grant(self, user_id: UUID, now: datetime, cutoff: datetime) -> bool:
        """
        Set last_daily_grant_at to now if it is unset or older than cutoff.

        Returns True only for the caller whose conditional update landed.
        """
        ...

    async def sum_transactions(self, user_id: UUID) -> tuple[int, int]:
        """Return (sum of amounts, number of rows) for a user's ledger."""
        ...

    async def list_user_ids(self) -> list[UUID]:
        """All user ids, for operator sweeps."""
        ...


class ExerciseRepository(Protocol):
    """Exercise reads plus versioned writes."""

    async def get_by_id(self, exercise_id: UUID) -> ExerciseData | None:
        """Get a specific exercise version."""
        ...

    async def create_version(self, exercise: ExerciseData) -> ExerciseData:
        """
        Persist an exercise as a new row.

        The stored version is one more than the latest version with the same
        type and title, so edits never rewrite history attempts point at.
        """
        ...


class AttemptRepository(Protocol):
    """Attempt persistence."""

    async def create(self, user_id: UUID, exercise_id: UUID) -> AttemptData:
        """
        Insert a CREATED attempt with no content.

        If another open attempt for the pair was stored first, that attempt
        is returned instead of a second one.
        """
        ...

    async def get_by_id(self, attempt_id: UUID) -> AttemptData | None:
        """Get an attempt, or None if missing."""
        ...

    async def find_open(self, user_id: UUID, exercise_id: UUID) -> AttemptData | None:
        """First CREATED or IN_PROGRESS attempt for the pair, oldest first."""
        ...

    async def update(self, attempt_id: UUID, patch: AttemptUpdate) -> AttemptData:
        """
        Apply a partial update and return the stored result.

        Raises:
            AttemptNotFoundError: Attempt doesn't exist
        """
        ...

    async def transition_if(
        self, attempt_id: UUID, expected: frozenset[AttemptState], patch: AttemptUpdate
    ) -> AttemptData | None:
        """
        Apply a patch only while the stored state is one of expected.

        Returns None when the state has moved on. Check and write are one
        atomic statement, so exactly one concurrent caller wins a transition.

        Raises:
            AttemptNotFoundError: Attempt doesn't exist
        """
        ...

    async def list_by_user(
        self, user_id: UUID, state: AttemptState | None = None
    ) -> list[AttemptData]:
        """A user's attempts, newest first."""
        ...


class FeaturePricingRepository(Protocol):
    """Pricing catalog storage."""

    async def get_by_key(self, feature_key: str) -> FeaturePricingData | None:
        """Get a catalog row, active or not."""
        ...

    async def upsert(self, pricing: FeaturePricingData) -> FeaturePricingData:
        """Insert or replace the row for pricing.feature_key."""
        ...

    async def list_all(self) -> list[FeaturePricingData]:
        """All rows ordered by feature key."""
        ...


class CreditTransactionRepository(Protocol):
    """Read side of the ledger. Writes go through UserRepository.apply_if_balance."""

    async def get_by_id(self, transaction_id: UUID) -> CreditTransactionData | None:
        """Get a ledger row."""
        ...

    async def find_refund_for(self, transaction_id: UUID) -> CreditTransactionData | None:
        """The refund that references transaction_id, if any."""
        ...

    async def list_by_user(self, user_id: UUID, limit: int = 50) -> list[CreditTransactionData]:
        """A user's ledger, newest first."""
        ...
