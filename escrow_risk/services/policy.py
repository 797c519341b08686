"""
Risk Policy Applier.

Turns a transaction risk score into a hold window and confirmation/review
requirements, persists them on the transaction and leaves an audit trail:

  1. Reuse transactions.risk_score if already set, else compute + persist
  2. Derive the tier policy (pure, see `derive_policy`)
  3. Persist policy, then RISK_SCORED event
  4. Append advisory enforcement rows (meta.advisory = true)

The hold window is anchored on risk_scored_at, so re-running returns the
same policy and writes nothing new.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.metrics import ENFORCEMENT_ACTIONS
from escrow_risk.models.enforcement import EnforcementAction
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.decisions import RiskPolicy
from escrow_risk.schemas.enums import (
    ActorType,
    EnforcementActionType,
    EventType,
    ItemCategory,
    RiskTier,
    parse_enum,
)
from escrow_risk.scoring.advisory import FraudAdvisor
from escrow_risk.scoring.transaction_risk import explain_transaction_risk
from escrow_risk.services.event_log import EventLog
from escrow_risk.services.transactions import get_transaction

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════════
# Tier thresholds
#   score >= 80  → CRITICAL  14d hold, confirm, review
#   score >= 60  → HIGH       7d hold, confirm, review iff OT or >= 1000
#   score >= 30  → MEDIUM    72h hold, confirm
#   score <  30  → LOW       24h hold, confirm only OT / PHYSICAL
# ═══════════════════════════════════════════════════════════════
TIER_THRESHOLDS = [
    (80, RiskTier.CRITICAL),
    (60, RiskTier.HIGH),
    (30, RiskTier.MEDIUM),
]

HOLD_BY_TIER = {
    RiskTier.CRITICAL: timedelta(days=14),
    RiskTier.HIGH: timedelta(days=7),
    RiskTier.MEDIUM: timedelta(hours=72),
    RiskTier.LOW: timedelta(hours=24),
}

HIGH_TIER_REVIEW_SUBTOTAL = Decimal("1000")
LOW_TIER_CONFIRM_CATEGORIES = frozenset({ItemCategory.OWNERSHIP_TRANSFER, ItemCategory.PHYSICAL})


@dataclass(frozen=True)
class PolicyTerms:
    tier: RiskTier
    hold_until: datetime
    requires_buyer_confirmation: bool
    requires_manual_review: bool


def tier_for_score(score: int) -> RiskTier:
    for threshold, tier in TIER_THRESHOLDS:
        if score >= threshold:
            return tier
    return RiskTier.LOW


def derive_policy(
    score: int,
    category: Union[ItemCategory, str, None],
    subtotal: Union[Decimal, int, float, str],
    anchor: datetime,
) -> PolicyTerms:
    tier = tier_for_score(score)
    cat = parse_enum(ItemCategory, category)

    if tier == RiskTier.CRITICAL:
        confirm, review = True, True
    elif tier == RiskTier.HIGH:
        confirm = True
        review = cat == ItemCategory.OWNERSHIP_TRANSFER or Decimal(str(subtotal)) >= HIGH_TIER_REVIEW_SUBTOTAL
    elif tier == RiskTier.MEDIUM:
        confirm, review = True, False
    else:
        # unknown categories fail closed to confirmation
        confirm = cat is None or cat in LOW_TIER_CONFIRM_CATEGORIES
        review = False

    return PolicyTerms(
        tier=tier,
        hold_until=anchor + HOLD_BY_TIER[tier],
        requires_buyer_confirmation=confirm,
        requires_manual_review=review,
    )


class PolicyApplier:
    def __init__(self, session: AsyncSession, advisor: Optional[FraudAdvisor] = None) -> None:
        self._session = session
        self._advisor = advisor
        self._events = EventLog(session)

    async def apply_policy(self, transaction_id: str, now: Optional[datetime] = None) -> RiskPolicy:
        now = now or datetime.now(timezone.utc)
        tx = await get_transaction(self._session, transaction_id)

        # ── Already applied: return the stored policy unchanged ──
        if tx.risk_score is not None and tx.risk_scored_at is not None:
            terms = derive_policy(tx.risk_score, tx.item_category, tx.subtotal, tx.risk_scored_at)
            logger.debug("policy_reused", transaction_id=tx.id, risk_score=tx.risk_score)
            return self._to_policy(tx, terms, reused=True)

        # ── Step 1: score ──
        buyer_risk = seller_risk = None
        advisory_used = False
        if tx.risk_score is None:
            breakdown = await explain_transaction_risk(self._session, tx.id, self._advisor, now)
            score = breakdown.score
            buyer_risk, seller_risk = breakdown.buyer_risk, breakdown.seller_risk
            advisory_used = breakdown.advisory_used
            tx = await get_transaction(self._session, transaction_id)
        else:
            score = tx.risk_score

        # ── Step 2: derive ──
        terms = derive_policy(score, tx.item_category, tx.subtotal, now)

        # ── Step 3: persist, then audit ──
        tx.risk_score = score
        tx.risk_scored_at = now
        tx.hold_until = terms.hold_until
        tx.requires_buyer_confirmation = terms.requires_buyer_confirmation
        tx.requires_manual_review = terms.requires_manual_review
        await self._session.commit()

        await self._events.record(
            tx.id, ActorType.SYSTEM, None, EventType.RISK_SCORED,
            {
                "risk_score": score,
                "tier": terms.tier.value,
                "buyer_risk": buyer_risk,
                "seller_risk": seller_risk,
                "advisory_used": advisory_used,
                "policy": {
                    "hold_until": terms.hold_until.isoformat(),
                    "requires_buyer_confirmation": terms.requires_buyer_confirmation,
                    "requires_manual_review": terms.requires_manual_review,
                },
            },
            occurred_at=now,
        )

        # ── Step 4: advisory enforcement rows ──
        await self._append_advisory_actions(tx, score, terms)

        logger.info(
            "policy_applied",
            transaction_id=tx.id,
            risk_score=score,
            tier=terms.tier.value,
            hold_until=terms.hold_until.isoformat(),
            requires_buyer_confirmation=terms.requires_buyer_confirmation,
            requires_manual_review=terms.requires_manual_review,
        )
        return self._to_policy(tx, terms, reused=False)

    async def _append_advisory_actions(self, tx: Transaction, score: int, terms: PolicyTerms) -> None:
        rows: list[EnforcementAction] = []
        base_meta = {"advisory": True, "transaction_id": tx.id, "risk_score": score}

        if terms.requires_buyer_confirmation:
            rows.append(EnforcementAction(
                user_id=tx.buyer_id,
                action_type=EnforcementActionType.REQUIRE_CONFIRMATION.value,
                reason=f"Risk score {score} requires buyer confirmation",
                meta=dict(base_meta),
            ))
        if terms.requires_manual_review:
            rows.append(EnforcementAction(
                user_id=tx.seller_id,
                action_type=EnforcementActionType.EXTEND_HOLD.value,
                reason=f"Risk score {score} requires manual admin review",
                meta={**base_meta, "hold_until": terms.hold_until.isoformat()},
            ))
        if terms.tier == RiskTier.CRITICAL:
            rows.append(EnforcementAction(
                user_id=tx.seller_id,
                action_type=EnforcementActionType.FREEZE_FUNDS.value,
                reason=f"Critical risk score {score} - funds may be frozen pending review",
                meta=dict(base_meta),
            ))

        if not rows:
            return
        self._session.add_all(rows)
        await self._session.commit()
        for row in rows:
            ENFORCEMENT_ACTIONS.labels(action_type=row.action_type).inc()

    @staticmethod
    def _to_policy(tx: Transaction, terms: PolicyTerms, reused: bool) -> RiskPolicy:
        return RiskPolicy(
            transaction_id=tx.id,
            risk_score=tx.risk_score,
            tier=terms.tier,
            hold_until=terms.hold_until,
            requires_buyer_confirmation=terms.requires_buyer_confirmation,
            requires_manual_review=terms.requires_manual_review,
            scored_at=tx.risk_scored_at,
            reused=reused,
        )
