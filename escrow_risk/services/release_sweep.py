"""
release_sweep.py
────────────────
Periodic job that evaluates pending transactions and releases the ones
that have become eligible (time-based DIGITAL / SERVICES / TICKETS rules
only fire when something re-checks them).

Each transaction is released in its own session, so one failure never
rolls back another transaction's release.

Schedule: every 15 minutes (Kubernetes CronJob)

Usage:
  python -m escrow_risk.services.release_sweep
  OR via the admin endpoint: POST /v1/admin/release-sweep
"""
from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from escrow_risk.core.config import get_settings
from escrow_risk.models.database import get_session_factory
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.enums import TransactionStatus
from escrow_risk.services.release import ReleaseEvaluator

logger = structlog.get_logger(__name__)

PENDING_STATUSES = [
    TransactionStatus.FUNDED.value,
    TransactionStatus.PROOF_SUBMITTED.value,
    TransactionStatus.UNDER_REVIEW.value,
    TransactionStatus.DELIVERED_PENDING_RELEASE.value,
]


async def fetch_candidates(session: AsyncSession, batch_size: int) -> list[str]:
    """Oldest pending transactions first."""
    result = await session.execute(
        select(Transaction.id)
        .where(
            Transaction.status.in_(PENDING_STATUSES),
            Transaction.released_at.is_(None),
        )
        .order_by(Transaction.created_at.asc())
        .limit(batch_size)
    )
    return list(result.scalars())


async def run_sweep(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    batch_size: Optional[int] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Full sweep cycle:
      1. Pick up to `batch_size` pending transactions
      2. Release each eligible one in its own session
      3. Return summary
    """
    factory = session_factory or get_session_factory()
    limit = batch_size or get_settings().release_sweep_batch_size
    started_at = datetime.now(timezone.utc)
    logger.info("release_sweep_started", batch_size=limit)

    async with factory() as session:
        candidates = await fetch_candidates(session, limit)

    released, skipped, failed = 0, 0, 0
    for transaction_id in candidates:
        async with factory() as session:
            try:
                outcome = await ReleaseEvaluator(session).release(transaction_id, now=now)
            except Exception as e:
                failed += 1
                logger.error("release_sweep_item_failed", transaction_id=transaction_id, error=str(e))
                continue
        if outcome.released and not outcome.already_released:
            released += 1
        else:
            skipped += 1

    elapsed = (datetime.now(timezone.utc) - started_at).total_seconds()
    result = {
        "candidates": len(candidates),
        "released": released,
        "skipped": skipped,
        "failed": failed,
        "elapsed_seconds": round(elapsed, 2),
        "status": "success" if failed == 0 else "partial",
    }
    logger.info("release_sweep_complete", **result)
    return result


if __name__ == "__main__":
    import sys

    try:
        result = asyncio.run(run_sweep())
        print(f"✓ Release sweep: {result['released']} released, {result['skipped']} not yet eligible, "
              f"{result['failed']} failed ({result['elapsed_seconds']}s)")
    except Exception as e:
        print(f"✗ Release sweep failed: {e}", file=sys.stderr)
        sys.exit(1)
