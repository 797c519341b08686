"""
Metrics Updater: folds terminal events back into the risk profiles.

Each handler first claims a unique metric_ledger.dedup_key. A redelivered
event finds its key taken and does nothing, so callers may retry freely
(at-least-once in, exactly-once applied).
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.models.dispute import Dispute
from escrow_risk.models.risk_profile import MetricLedgerEntry
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.enums import DisputeResolution, EnforcementActionType, parse_enum
from escrow_risk.services.enforcement import EnforcementEvaluator
from escrow_risk.services.profiles import ProfileStore
from escrow_risk.services.transactions import get_transaction, to_minor_units

logger = structlog.get_logger()


class MetricsUpdater:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._profiles = ProfileStore(session)
        self._enforcement = EnforcementEvaluator(session)

    async def _claim(self, dedup_key: str) -> bool:
        """True if this call owns `dedup_key`; False if it was already applied."""
        taken = await self._session.scalar(
            select(MetricLedgerEntry.dedup_key).where(MetricLedgerEntry.dedup_key == dedup_key)
        )
        if taken is None:
            self._session.add(MetricLedgerEntry(dedup_key=dedup_key))
            try:
                await self._session.commit()
                return True
            except IntegrityError:
                # lost the race to a concurrent delivery
                await self._session.rollback()
        logger.info("metrics_duplicate_skipped", dedup_key=dedup_key)
        return False

    async def on_funds_released(self, tx: Transaction, now: Optional[datetime] = None) -> bool:
        if not await self._claim(f"released:{tx.id}"):
            return False

        amount_minor = to_minor_units(tx.subtotal)
        for user_id in (tx.buyer_id, tx.seller_id):
            await self._profiles.increment(
                user_id, successful_transactions=1, total_volume_minor=amount_minor,
            )
        for user_id in (tx.buyer_id, tx.seller_id):
            await self._profiles.refresh_scores(user_id, now)

        logger.info(
            "metrics_funds_released",
            transaction_id=tx.id,
            buyer_id=tx.buyer_id,
            seller_id=tx.seller_id,
            amount_minor=amount_minor,
        )
        return True

    async def on_dispute_submitted(self, dispute: Dispute, now: Optional[datetime] = None) -> bool:
        if not await self._claim(f"dispute_submitted:{dispute.id}"):
            return False

        now = now or datetime.now(timezone.utc)
        await self._profiles.increment(
            dispute.opened_by, set_values={"last_dispute_at": now}, disputes_opened=1,
        )
        await self._profiles.refresh_scores(dispute.opened_by, now)
        await self._enforcement.evaluate(dispute.opened_by, now)
        return True

    async def on_dispute_resolved(
        self,
        dispute: Dispute,
        resolution: Union[DisputeResolution, str],
        now: Optional[datetime] = None,
    ) -> bool:
        """resolved_buyer costs the seller a strike; every other outcome is a buyer loss."""
        outcome = parse_enum(DisputeResolution, resolution)
        if outcome is None:
            raise ValueError(f"Unrecognized dispute resolution: {resolution!r}")
        if not await self._claim(f"dispute_resolved:{dispute.id}"):
            return False

        tx = await get_transaction(self._session, dispute.transaction_id)
        if outcome == DisputeResolution.RESOLVED_BUYER:
            affected = tx.seller_id
            await self._profiles.increment(affected, strikes=1)
            await self._enforcement.append_action(
                affected,
                EnforcementActionType.STRIKE,
                f"Dispute resolved in favor of buyer (dispute {dispute.id})",
                {"dispute_id": dispute.id, "transaction_id": tx.id, "resolution": outcome.value},
            )
        else:
            affected = tx.buyer_id
            await self._profiles.increment(affected, disputes_lost=1)

        await self._profiles.refresh_scores(affected, now)
        await self._enforcement.evaluate(affected, now)

        logger.info(
            "metrics_dispute_resolved",
            dispute_id=dispute.id,
            transaction_id=tx.id,
            resolution=outcome.value,
            affected_user=affected,
        )
        return True

    async def on_chargeback(
        self,
        buyer_id: str,
        amount_minor: int,
        dedup_key: str,
        now: Optional[datetime] = None,
    ) -> bool:
        if not await self._claim(f"chargeback:{dedup_key}"):
            return False

        now = now or datetime.now(timezone.utc)
        await self._profiles.increment(
            buyer_id, set_values={"last_chargeback_at": now}, chargebacks=1,
        )
        await self._profiles.refresh_scores(buyer_id, now)
        await self._enforcement.evaluate(buyer_id, now)

        logger.warning("metrics_chargeback", buyer_id=buyer_id, amount_minor=amount_minor)
        return True
