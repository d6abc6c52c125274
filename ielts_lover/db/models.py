"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    text,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# At most one open attempt per (user, exercise)
OPEN_ATTEMPT_PREDICATE = "state IN ('CREATED', 'IN_PROGRESS')"


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class User(Base):
    """
    ORM model for users table.

    Profile owned by the identity provider. credits_balance is written only
    by the ledger repository.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)

    # Balance
    credits_balance: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    last_daily_grant_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Profile
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    is_premium: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    target_score: Mapped[float | None] = mapped_column(Float, nullable=True)

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_balance >= 0", name="ck_users_balance_non_negative"),
        CheckConstraint("role IN ('user', 'teacher', 'admin')", name="ck_users_role"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<User(id={self.id}, email={self.email}, balance={self.credits_balance})>"


class Exercise(Base):
    """
    ORM model for exercises table.

    Edits create a new row with version + 1; attempts keep their version.
    """

    __tablename__ = "exercises"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    image_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_mock_test: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_by: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("version > 0", name="ck_exercises_version_positive"),
        Index("idx_exercises_type_published", "type", "is_published"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Exercise(id={self.id}, type={self.type}, version={self.version})>"


class Attempt(Base):
    """
    ORM model for attempts table.

    One user's work on one exercise, CREATED through EVALUATED.
    """

    __tablename__ = "attempts"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    exercise_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("exercises.id", ondelete="RESTRICT"), nullable=False
    )
    state: Mapped[str] = mapped_column(String(20), nullable=False, default="CREATED")
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    score: Mapped[float | None] = mapped_column(Float, nullable=True)
    feedback: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    submitted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    evaluated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "state IN ('CREATED', 'IN_PROGRESS', 'SUBMITTED', 'EVALUATING', 'EVALUATED')",
            name="ck_attempts_state",
        ),
        CheckConstraint(
            "score IS NULL OR state IN ('EVALUATING', 'EVALUATED')",
            name="ck_attempts_score_requires_evaluated",
        ),
        Index("idx_attempts_user_exercise_state", "user_id", "exercise_id", "state"),
        Index(
            "uq_attempts_open_per_exercise",
            "user_id",
            "exercise_id",
            unique=True,
            postgresql_where=text(OPEN_ATTEMPT_PREDICATE),
            sqlite_where=text(OPEN_ATTEMPT_PREDICATE),
        ),
        Index("idx_attempts_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Attempt(id={self.id}, user_id={self.user_id}, state={self.state})>"


class CreditTransaction(Base):
    """
    ORM model for credit_transactions table.

    Append-only ledger. users.credits_balance always equals the sum of a
    user's amounts.
    """

    __tablename__ = "credit_transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    feature_key: Mapped[str | None] = mapped_column(String(100), nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False)

    # Balance snapshot (denormalized for auditing)
    balance_after: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # At most one refund per charge
    refund_of_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("credit_transactions.id", ondelete="RESTRICT"), nullable=True, unique=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("balance_after >= 0", name="ck_credit_transactions_balance_after"),
        Index("idx_credit_transactions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditTransaction(id={self.id}, user_id={self.user_id}, "
            f"amount={self.amount}, type={self.type})>"
        )


class FeaturePricing(Base):
    """ORM model for feature_pricing table."""

    __tablename__ = "feature_pricing"

    feature_key: Mapped[str] = mapped_column(String(100), primary_key=True)
    cost: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (CheckConstraint("cost >= 0", name="ck_feature_pricing_cost_non_negative"),)

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<FeaturePricing(feature_key={self.feature_key}, cost={self.cost})>"
