"""
Credit Service - The sole writer of credit balances.

NO DICTIONARIES - All operations use strongly typed domain models.

Every balance change is a compare-and-swap through
UserRepository.apply_if_balance, which moves the balance column and appends
the ledger row in one database transaction. A lost race re-reads the
balance and tries again, so the check-then-debit in bill_user is
linearizable per user without holding a lock across any await. Different
users never contend.
"""

from datetime import UTC, datetime, timedelta
from uuid import UUID

from ielts_lover.config import Settings, get_settings
from ielts_lover.exceptions import (
    ConcurrencyError,
    IdempotencyConflictError,
    InsufficientFundsError,
    InvalidAmountError,
    TransactionNotFoundError,
    UserNotFoundError,
)
from ielts_lover.models.api import FeatureKey, TransactionType
from ielts_lover.models.domain import (
    CreditTransactionData,
    LedgerEntry,
    LedgerReconciliation,
    UserData,
)
from ielts_lover.observability.correlation import TraceContext
from ielts_lover.observability.logging import get_logger
from ielts_lover.observability.metrics import metrics
from ielts_lover.observability.tracing import trace_operation
from ielts_lover.repositories.interfaces import CreditTransactionRepository, UserRepository
from ielts_lover.services.pricing import PricingCatalog

logger = get_logger(__name__)

USAGE_DESCRIPTIONS: dict[str, str] = {
    FeatureKey.WRITING_EVALUATION.value: "Writing Task Evaluation",
    FeatureKey.SPEAKING_EVALUATION.value: "Speaking Practice Assessment",
    FeatureKey.TEXT_REWRITER.value: "IELTS Text Rewriter",
    FeatureKey.MOCK_TEST.value: "Full Mock Test Access",
    FeatureKey.CHART_IMAGE_ANALYSIS.value: "Chart Image Analysis",
}

CREDIT_DESCRIPTIONS: dict[TransactionType, str] = {
    TransactionType.CREDIT_ADDED: "Credits added",
    TransactionType.DAILY_GRANT: "Daily StarCredits replenishment",
    TransactionType.REWARD: "Reward",
    TransactionType.GIFT_CODE: "Gift code applied",
    TransactionType.TEACHER_GRANT: "Credits granted by teacher",
    TransactionType.PURCHASE: "Credit purchase",
}


def usage_description(feature_key: str) -> str:
    """Ledger description for a usage charge."""
    return USAGE_DESCRIPTIONS.get(
        feature_key, f"Feature Usage: {feature_key.replace('_', ' ')}"
    )


def _utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class CreditService:
    """
    Credit ledger orchestration.

    InsufficientFundsError is the only expected failure. Persistence errors
    propagate to the caller untouched; nothing here retries them.
    """

    def __init__(
        self,
        users: UserRepository,
        transactions: CreditTransactionRepository,
        pricing: PricingCatalog,
        settings: Settings | None = None,
    ) -> None:
        self.users = users
        self.transactions = transactions
        self.pricing = pricing
        self.settings = settings or get_settings()

    async def _require_user(self, user_id: UUID) -> UserData:
        user = await self.users.get_by_id(user_id)
        if user is None:
            raise UserNotFoundError(user_id)
        return user

    # ========================================================================
    # Debits
    # ========================================================================

    async def bill_user(
        self, user_id: UUID, feature_key: str, trace: TraceContext | None = None
    ) -> CreditTransactionData:
        """
        Charge a user the current price of a feature.

        Raises:
            PricingNotConfiguredError: Feature has no active price
            UserNotFoundError: User doesn't exist
            InsufficientFundsError: Balance below cost (nothing written)
            ConcurrencyError: Lost the balance race ledger_max_retries times
        """
        trace = trace or TraceContext.new("bill_user")
        log = trace.bind(logger).bind(user_id=str(user_id), feature_key=feature_key)

        with trace_operation(
            "bill_user", user_id=user_id, feature_key=feature_key, trace_id=trace.trace_id
        ) as span:
            cost = await self.pricing.get_cost(feature_key)
            span.set_attribute("cost", cost)
            description = usage_description(feature_key)

            for retry in range(self.settings.ledger_max_retries):
                user = await self._require_user(user_id)

                if user.credits_balance < cost:
                    metrics.record_charge(feature_key, "insufficient_funds")
                    log.info(
                        "charge_rejected_insufficient_funds",
                        required=cost,
                        available=user.credits_balance,
                    )
                    raise InsufficientFundsError(cost, user.credits_balance, feature_key)

                entry = LedgerEntry(
                    user_id=user_id,
                    amount=-cost,
                    transaction_type=TransactionType.USAGE_CHARGE,
                    description=description,
                    feature_key=feature_key,
                )
                transaction = await self.users.apply_if_balance(
                    user_id, user.credits_balance, entry
                )
                if transaction is not None:
                    metrics.record_charge(feature_key, "success", cost)
                    log.info(
                        "credit_charged",
                        transaction_id=str(transaction.transaction_id),
                        cost=cost,
                        balance_after=transaction.balance_after,
                    )
                    return transaction

                log.debug("ledger_balance_race", retry=retry + 1)

            metrics.record_charge(feature_key, "conflict")
            log.warning("charge_retries_exhausted", retries=self.settings.ledger_max_retries)
            raise ConcurrencyError(f"user:{user_id}")

    # ========================================================================
    # Credits
    # ========================================================================

    async def _append_credit(
        self, entry: LedgerEntry, trace: TraceContext
    ) -> CreditTransactionData:
        """Add a non-negative entry, retrying lost balance races."""
        for _ in range(self.settings.ledger_max_retries):
            user = await self._require_user(entry.user_id)
            transaction = await self.users.apply_if_balance(
                entry.user_id, user.credits_balance, entry
            )
            if transaction is not None:
                metrics.record_credit_addition(entry.transaction_type.value, entry.amount)
                trace.bind(logger).info(
                    "credit_added",
                    user_id=str(entry.user_id),
                    transaction_id=str(transaction.transaction_id),
                    amount=entry.amount,
                    transaction_type=entry.transaction_type.value,
                    balance_after=transaction.balance_after,
                )
                return transaction

        raise ConcurrencyError(f"user:{entry.user_id}")

    async def credit_user(
        self,
        user_id: UUID,
        amount: int,
        transaction_type: TransactionType = TransactionType.CREDIT_ADDED,
        description: str | None = None,
        trace: TraceContext | None = None,
    ) -> CreditTransactionData:
        """
        Add credits (grants, rewards, purchases, admin top-ups).

        Raises:
            InvalidAmountError: amount is negative
            UserNotFoundError: User doesn't exist
        """
        if amount < 0:
            raise InvalidAmountError(amount)
        if transaction_type in (TransactionType.USAGE_CHARGE, TransactionType.REFUND):
            raise ValueError(f"{transaction_type.value} entries are written by bill_user/refund")

        entry = LedgerEntry(
            user_id=user_id,
            amount=amount,
            transaction_type=transaction_type,
            description=description or CREDIT_DESCRIPTIONS[transaction_type],
        )
        return await self._append_credit(entry, trace or TraceContext.new("credit_user"))

    async def refund(
        self,
        user_id: UUID,
        original_transaction_id: UUID,
        trace: TraceContext | None = None,
        reason: str = "manual",
    ) -> CreditTransactionData:
        """
        Compensate a usage charge with an equal positive refund entry.

        At most one refund exists per charge.

        Raises:
            TransactionNotFoundError: No such charge for this user
            InvalidAmountError: Original entry is not a usage charge
            IdempotencyConflictError: Charge was already refunded
        """
        trace = trace or TraceContext.new("refund")
        original = await self.transactions.get_by_id(original_transaction_id)
        if original is None or original.user_id != user_id:
            raise TransactionNotFoundError(original_transaction_id)

        if original.transaction_type != TransactionType.USAGE_CHARGE:
            raise InvalidAmountError(original.amount)

        existing = await self.transactions.find_refund_for(original_transaction_id)
        if existing is not None:
            raise IdempotencyConflictError(existing.transaction_id)

        entry = LedgerEntry(
            user_id=user_id,
            amount=-original.amount,
            transaction_type=TransactionType.REFUND,
            description=f"Refund: {original.description}",
            feature_key=original.feature_key,
            refund_of_id=original.transaction_id,
        )
        transaction = await self._append_credit(entry, trace)
        metrics.record_refund(reason)
        return transaction

    async def refund_after_ai_failure(
        self, user_id: UUID, charge: CreditTransactionData, trace: TraceContext
    ) -> CreditTransactionData | None:
        """
        Compensate a charge whose AI call failed, when policy allows.

        A failed refund is logged and never replaces the original AI failure.
        Cancellation (BaseException) is not caught here, so an abandoned
        request keeps its charge.
        """
        log = trace.bind(logger).bind(user_id=str(user_id), charge_id=str(charge.transaction_id))

        if not self.settings.refund_on_ai_failure:
            log.warning("charge_kept_after_ai_failure")
            return None
        if charge.amount == 0:
            return None

        try:
            return await self.refund(user_id, charge.transaction_id, trace, reason="ai_failure")
        except IdempotencyConflictError:
            log.info("charge_already_refunded")
        except Exception as exc:
            metrics.record_error(type(exc).__name__, "refund_after_ai_failure")
            log.error("refund_after_ai_failure_failed", error=str(exc))
        return None

    # ========================================================================
    # Grants and Rewards
    # ========================================================================

    async def ensure_daily_grant(
        self, user_id: UUID, trace: TraceContext | None = None
    ) -> CreditTransactionData | None:
        """
        Grant the daily allowance if the interval has passed.

        The interval is claimed with a conditional update before any credit
        is written, so concurrent calls grant at most once. Returns None when
        nothing was granted.
        """
        user = await self._require_user(user_id)
        now = _utc_now()
        cutoff = now - timedelta(hours=self.settings.daily_grant_interval_hours)

        if user.last_daily_grant_at is not None and user.last_daily_grant_at > cutoff:
            return None

        if not await self.users.claim_daily_grant(user_id, now, cutoff):
            return None

        amount = (
            self.settings.daily_grant_premium if user.is_premium else self.settings.daily_grant_free
        )
        return await self.credit_user(
            user_id,
            amount,
            TransactionType.DAILY_GRANT,
            trace=trace or TraceContext.new("daily_grant"),
        )

    async def grant_welcome_bonus(
        self, user_id: UUID, trace: TraceContext | None = None
    ) -> CreditTransactionData:
        return await self.credit_user(
            user_id,
            self.settings.welcome_bonus,
            TransactionType.REWARD,
            "Welcome to IELTS Lover!",
            trace,
        )

    async def grant_invite_bonus(
        self, user_id: UUID, friend_email: str, trace: TraceContext | None = None
    ) -> CreditTransactionData:
        return await self.credit_user(
            user_id,
            self.settings.invite_friend_bonus,
            TransactionType.REWARD,
            f"Bonus for inviting {friend_email}",
            trace,
        )

    async def apply_gift_code(
        self,
        user_id: UUID,
        code: str,
        amount: int | None = None,
        trace: TraceContext | None = None,
    ) -> CreditTransactionData:
        return await self.credit_user(
            user_id,
            self.settings.gift_code_default if amount is None else amount,
            TransactionType.GIFT_CODE,
            f"Gift code applied: {code}",
            trace,
        )

    # ========================================================================
    # Reads
    # ========================================================================

    async def get_balance(self, user_id: UUID) -> int:
        user = await self._require_user(user_id)
        return user.credits_balance

    async def get_transaction(self, transaction_id: UUID) -> CreditTransactionData:
        """
        Raises:
            TransactionNotFoundError: Transaction doesn't exist
        """
        transaction = await self.transactions.get_by_id(transaction_id)
        if transaction is None:
            raise TransactionNotFoundError(transaction_id)
        return transaction

    async def list_transactions(
        self, user_id: UUID, limit: int = 50
    ) -> list[CreditTransactionData]:
        return await self.transactions.list_by_user(user_id, limit)

    async def reconcile_all(self) -> list[LedgerReconciliation]:
        """Reconcile every user; operator sweep."""
        return [await self.reconcile(user_id) for user_id in await self.users.list_user_ids()]

    async def reconcile(self, user_id: UUID) -> LedgerReconciliation:
        """Compare the balance column with the ledger sum."""
        user = await self._require_user(user_id)
        ledger_sum, count = await self.users.sum_transactions(user_id)
        result = LedgerReconciliation(
            user_id=user_id,
            credits_balance=user.credits_balance,
            ledger_sum=ledger_sum,
            transaction_count=count,
        )
        if not result.consistent:
            logger.error(
                "ledger_drift_detected",
                user_id=str(user_id),
                credits_balance=user.credits_balance,
                ledger_sum=ledger_sum,
                drift=result.drift,
            )
        return result
