#!/usr/bin/env python3
"""
IELTS Lover Ledger Reconciliation

Compares each user's credits_balance with the sum of their ledger entries.
Exits non-zero when any user has drifted.

Usage:
    # Every user
    python3 scripts/reconcile_ledger.py

    # Specific users
    python3 scripts/reconcile_ledger.py --user-id 3f0c... --user-id 9a1b...

    # Apply pending migrations first
    python3 scripts/reconcile_ledger.py --migrate
"""

import argparse
import asyncio
import sys
from uuid import UUID

from ielts_lover.config import settings
from ielts_lover.db.migration_runner import run_migrations
from ielts_lover.db.session import create_engine_from_settings, create_session_factory
from ielts_lover.models.domain import LedgerReconciliation
from ielts_lover.observability.logging import get_logger, setup_logging
from ielts_lover.repositories.sql import (
    SqlCreditTransactionRepository,
    SqlFeaturePricingRepository,
    SqlUserRepository,
)
from ielts_lover.services.credits import CreditService
from ielts_lover.services.pricing import PricingCatalog

logger = get_logger(__name__)


async def reconcile(user_ids: list[UUID]) -> list[LedgerReconciliation]:
    engine = create_engine_from_settings(settings)
    session_factory = create_session_factory(engine)
    try:
        service = CreditService(
            SqlUserRepository(session_factory),
            SqlCreditTransactionRepository(session_factory),
            PricingCatalog(SqlFeaturePricingRepository(session_factory)),
            settings,
        )
        if not user_ids:
            return await service.reconcile_all()
        return [await service.reconcile(user_id) for user_id in user_ids]
    finally:
        await engine.dispose()


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Check credits_balance against the credit ledger",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--user-id", action="append", type=UUID, default=[], help="User to check (repeatable)"
    )
    parser.add_argument("--migrate", action="store_true", help="Apply pending migrations first")
    args = parser.parse_args()

    setup_logging()

    if args.migrate:
        run_migrations(settings.database_url)

    results = asyncio.run(reconcile(args.user_id))
    drifted = [r for r in results if not r.consistent]

    for result in drifted:
        print(
            f"DRIFT user={result.user_id} balance={result.credits_balance} "
            f"ledger={result.ledger_sum} drift={result.drift}"
        )

    logger.info("reconciliation_complete", checked=len(results), drifted=len(drifted))
    return 1 if drifted else 0


if __name__ == "__main__":
    sys.exit(main())
