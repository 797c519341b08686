"""
Enforcement Evaluator: automatic account restrictions.

Rules, evaluated in order against the user's current profile:

  1. chargebacks >= 1                          → freeze_funds
     chargebacks >= 2                          → ban (in addition)
  2. disputes_opened >= 5 AND lost/opened >= 0.6 → restrict_disputes (30d) + strike
  3. seller-side disputes lost >= 3            → restrict_category(TICKETS)

Every rule skips when its restriction is already in force, so re-running
the evaluator on an unchanged profile appends nothing. Actions are
appended to enforcement_actions; user_restrictions is updated one column
at a time so rules (and concurrent evaluations) compose instead of
overwriting each other.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.config import Settings, get_settings
from escrow_risk.core.metrics import ENFORCEMENT_ACTIONS
from escrow_risk.models.dispute import Dispute
from escrow_risk.models.enforcement import EnforcementAction, UserRestriction
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.decisions import AppliedAction, RestrictionState
from escrow_risk.schemas.enums import DisputeStatus, EnforcementActionType, ItemCategory
from escrow_risk.services import event_publisher
from escrow_risk.services.profiles import ProfileStore

logger = structlog.get_logger()

DISPUTE_ABUSE_MIN_OPENED = 5
DISPUTE_ABUSE_LOSS_RATIO = 0.6
SELLER_LOSS_THRESHOLD = 3
SELLER_LOSS_BLOCKED_CATEGORY = ItemCategory.TICKETS


class EnforcementEvaluator:
    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None) -> None:
        self._session = session
        self._settings = settings or get_settings()
        self._profiles = ProfileStore(session)

    async def evaluate(self, user_id: str, now: Optional[datetime] = None) -> list[AppliedAction]:
        """Apply every rule that fires and is not already in force. Returns what was appended."""
        now = now or datetime.now(timezone.utc)
        snap = await self._profiles.snapshot(user_id)
        state = await self.restriction_state(user_id)
        applied: list[AppliedAction] = []

        # ── Rule 1: chargebacks ──
        if snap.chargebacks >= 1 and not state.funds_frozen:
            reason = f"Chargeback detected ({snap.chargebacks} total)"
            applied.append(await self.freeze_funds(user_id, reason, {"chargebacks": snap.chargebacks}))

        if snap.chargebacks >= 2 and not state.banned:
            reason = f"Multiple chargebacks ({snap.chargebacks}) - account banned"
            await self._set_restriction(user_id, banned_at=now)
            applied.append(await self.append_action(
                user_id, EnforcementActionType.BAN, reason, {"chargebacks": snap.chargebacks},
            ))

        # ── Rule 2: buyer dispute abuse ──
        restricted_until = state.disputes_restricted_until
        already_restricted = restricted_until is not None and restricted_until > now
        if snap.disputes_opened >= DISPUTE_ABUSE_MIN_OPENED and not already_restricted:
            ratio = snap.disputes_lost / snap.disputes_opened
            if ratio >= DISPUTE_ABUSE_LOSS_RATIO:
                until = now + timedelta(days=self._settings.dispute_restriction_days)
                meta = {
                    "disputes_opened": snap.disputes_opened,
                    "disputes_lost": snap.disputes_lost,
                    "ratio": round(ratio, 4),
                }
                await self._set_restriction(user_id, disputes_restricted_until=until)
                applied.append(await self.append_action(
                    user_id,
                    EnforcementActionType.RESTRICT_DISPUTES,
                    f"Dispute abuse detected: {snap.disputes_opened} opened, "
                    f"{snap.disputes_lost} lost ({ratio:.1%} loss rate)",
                    {**meta, "restricted_until": until.isoformat()},
                ))
                await self._profiles.increment(user_id, strikes=1)
                applied.append(await self.append_action(
                    user_id, EnforcementActionType.STRIKE, "Dispute abuse", meta,
                ))
                await self._profiles.refresh_scores(user_id, now)

        # ── Rule 3: seller-side dispute losses ──
        blocked = SELLER_LOSS_BLOCKED_CATEGORY.value
        if blocked not in state.categories_blocked:
            losses = await self.seller_dispute_losses(user_id, now)
            if losses >= SELLER_LOSS_THRESHOLD and await self.block_category(user_id, blocked):
                applied.append(await self.append_action(
                    user_id,
                    EnforcementActionType.RESTRICT_CATEGORY,
                    f"Seller performance: {losses} disputes lost - tickets category blocked",
                    {"categories": [blocked], "seller_disputes_lost": losses},
                ))

        if applied:
            logger.info(
                "enforcement_applied",
                user_id=user_id,
                actions=[a.action_type.value for a in applied],
            )
        return applied

    # ═══════════════════════════════════════════════════════════════
    # Writes
    # ═══════════════════════════════════════════════════════════════

    async def append_action(
        self,
        user_id: str,
        action_type: EnforcementActionType,
        reason: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> AppliedAction:
        meta = meta or {}
        self._session.add(EnforcementAction(
            user_id=user_id,
            action_type=action_type.value,
            reason=reason,
            meta=meta,
        ))
        await self._session.commit()
        ENFORCEMENT_ACTIONS.labels(action_type=action_type.value).inc()
        await event_publisher.publish_enforcement_action(user_id, action_type.value, reason, meta)
        return AppliedAction(action_type=action_type, reason=reason, meta=meta)

    async def freeze_funds(
        self,
        user_id: str,
        reason: str,
        meta: Optional[dict[str, Any]] = None,
    ) -> AppliedAction:
        await self._set_restriction(user_id, funds_frozen=True, frozen_reason=reason)
        logger.warning("funds_frozen", user_id=user_id, reason=reason)
        return await self.append_action(user_id, EnforcementActionType.FREEZE_FUNDS, reason, meta)

    async def block_category(self, user_id: str, category: str) -> bool:
        """Add one category to the user's blocked list. False if it was already blocked."""
        await self._ensure_restriction_row(user_id)
        # locked re-read; concurrent blocks merge
        result = await self._session.execute(
            select(UserRestriction)
            .where(UserRestriction.user_id == user_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one()
        current = list(row.categories_blocked or [])
        if category in current:
            await self._session.commit()
            return False
        row.categories_blocked = sorted({*current, category})
        row.updated_at = datetime.now(timezone.utc)
        await self._session.commit()
        return True

    async def _ensure_restriction_row(self, user_id: str) -> None:
        exists = await self._session.scalar(
            select(UserRestriction.user_id).where(UserRestriction.user_id == user_id)
        )
        if exists is not None:
            return
        self._session.add(UserRestriction(user_id=user_id, funds_frozen=False, categories_blocked=[]))
        try:
            await self._session.commit()
        except IntegrityError:
            # concurrent insert; the row exists now
            await self._session.rollback()

    async def _set_restriction(self, user_id: str, **values: Any) -> None:
        """Update only the named columns of the user's restriction row."""
        await self._ensure_restriction_row(user_id)
        values["updated_at"] = datetime.now(timezone.utc)
        await self._session.execute(
            update(UserRestriction)
            .where(UserRestriction.user_id == user_id)
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        await self._session.commit()

    # ═══════════════════════════════════════════════════════════════
    # Queries (always read from the store, never cached)
    # ═══════════════════════════════════════════════════════════════

    async def _restriction(self, user_id: str) -> Optional[UserRestriction]:
        result = await self._session.execute(
            select(UserRestriction)
            .where(UserRestriction.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def restriction_state(self, user_id: str) -> RestrictionState:
        row = await self._restriction(user_id)
        if row is None:
            return RestrictionState(user_id=user_id)
        return RestrictionState(
            user_id=user_id,
            funds_frozen=bool(row.funds_frozen),
            frozen_reason=row.frozen_reason,
            disputes_restricted_until=row.disputes_restricted_until,
            categories_blocked=list(row.categories_blocked or []),
            banned=row.banned_at is not None,
            banned_at=row.banned_at,
        )

    async def is_funds_frozen(self, user_id: str) -> bool:
        row = await self._restriction(user_id)
        return bool(row and row.funds_frozen)

    async def disputes_restriction(
        self,
        user_id: str,
        now: Optional[datetime] = None,
    ) -> tuple[bool, Optional[datetime]]:
        """(restricted, until). `until` is None once the restriction has lapsed."""
        now = now or datetime.now(timezone.utc)
        row = await self._restriction(user_id)
        until = row.disputes_restricted_until if row else None
        if until is None or until <= now:
            return False, None
        return True, until

    async def is_category_blocked(self, user_id: str, category: str) -> bool:
        row = await self._restriction(user_id)
        blocked = row.categories_blocked if row else []
        return str(category).upper() in (blocked or [])

    async def seller_dispute_losses(self, user_id: str, now: Optional[datetime] = None) -> int:
        """Disputes resolved for the buyer on transactions where `user_id` is the seller."""
        stmt = (
            select(func.count(Dispute.id))
            .join(Transaction, Transaction.id == Dispute.transaction_id)
            .where(
                Transaction.seller_id == user_id,
                Dispute.status == DisputeStatus.RESOLVED_BUYER.value,
            )
        )
        window = self._settings.seller_dispute_loss_window_days
        if window is not None:
            now = now or datetime.now(timezone.utc)
            stmt = stmt.where(Dispute.resolved_at >= now - timedelta(days=window))
        return int(await self._session.scalar(stmt) or 0)
