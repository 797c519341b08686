"""
Risk Profile Store: lazily created, never deleted, one row per user.

Counters change only through `increment`, which issues a single
`UPDATE ... SET col = col + n` so concurrent handlers cannot lose updates
the way a read-then-write would.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.models.risk_profile import RiskProfile
from escrow_risk.schemas.enums import RiskRole
from escrow_risk.scoring.user_risk import ProfileSnapshot, compute_user_risk

logger = structlog.get_logger()

COUNTER_FIELDS = frozenset({
    "strikes",
    "chargebacks",
    "disputes_opened",
    "disputes_lost",
    "successful_transactions",
    "total_volume_minor",
})


class ProfileStore:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_profile(self, user_id: str) -> Optional[RiskProfile]:
        result = await self._session.execute(
            select(RiskProfile)
            .where(RiskProfile.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def ensure_profile(
        self,
        user_id: str,
        account_created_at: Optional[datetime] = None,
    ) -> RiskProfile:
        profile = await self.get_profile(user_id)
        if profile is not None:
            return profile

        profile = RiskProfile(user_id=user_id, account_created_at=account_created_at)
        self._session.add(profile)
        try:
            await self._session.commit()
        except IntegrityError:
            # concurrent creator won; use its row
            await self._session.rollback()
            profile = await self.get_profile(user_id)
            if profile is None:
                raise
        else:
            logger.info("risk_profile_created", user_id=user_id)
        return profile

    async def snapshot(self, user_id: str) -> ProfileSnapshot:
        return ProfileSnapshot.from_profile(await self.ensure_profile(user_id))

    async def increment(
        self,
        user_id: str,
        set_values: Optional[dict] = None,
        **deltas: int,
    ) -> None:
        """Atomically add `deltas` to counters; optionally set plain columns in the same statement."""
        unknown = set(deltas) - COUNTER_FIELDS
        if unknown:
            raise ValueError(f"Not a profile counter: {sorted(unknown)}")

        await self.ensure_profile(user_id)
        values = {name: getattr(RiskProfile, name) + delta for name, delta in deltas.items()}
        values.update(set_values or {})
        values["updated_at"] = datetime.now(timezone.utc)

        await self._session.execute(
            update(RiskProfile)
            .where(RiskProfile.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.commit()

    async def refresh_scores(
        self,
        user_id: str,
        reference_time: Optional[datetime] = None,
    ) -> tuple[int, int]:
        """Recompute and persist (buyer_risk_score, seller_risk_score)."""
        snap = await self.snapshot(user_id)
        buyer = compute_user_risk(snap, RiskRole.BUYER, reference_time)
        seller = compute_user_risk(snap, RiskRole.SELLER, reference_time)

        await self._session.execute(
            update(RiskProfile)
            .where(RiskProfile.user_id == user_id)
            .values(
                buyer_risk_score=buyer,
                seller_risk_score=seller,
                updated_at=datetime.now(timezone.utc),
            )
            .execution_options(synchronize_session="fetch")
        )
        await self._session.commit()

        logger.info("risk_scores_refreshed", user_id=user_id, buyer_risk=buyer, seller_risk=seller)
        return buyer, seller
