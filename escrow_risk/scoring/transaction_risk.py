"""
Transaction Risk Scorer: 0-100, higher = riskier.

  raw = category_weight + amount_weight + 0.4 * buyer_risk + 0.4 * seller_risk

User risks are recomputed from freshly read profile snapshots, never taken
from the cached columns on risk_profiles. An optional FraudAdvisor may
replace `raw`; the final score is rounded half-up and clamped to [0, 100].
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional, Union

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.schemas.enums import ItemCategory, RiskRole, parse_enum
from escrow_risk.scoring.advisory import FraudAdvisor, apply_advisory
from escrow_risk.scoring.user_risk import compute_user_risk
from escrow_risk.services.profiles import ProfileStore
from escrow_risk.services.transactions import get_transaction

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════════
# Weights
# ═══════════════════════════════════════════════════════════════
CATEGORY_WEIGHTS: dict[ItemCategory, int] = {
    ItemCategory.OWNERSHIP_TRANSFER: 20,
    ItemCategory.DIGITAL: 10,
    ItemCategory.SERVICES: 5,
}

# (min subtotal, points), checked top-down
AMOUNT_BANDS = [
    (Decimal("1000"), 20),
    (Decimal("200"), 10),
    (Decimal("50"), 5),
]

USER_RISK_WEIGHT = Decimal("0.4")


@dataclass(frozen=True)
class TransactionRiskBreakdown:
    category_weight: int
    amount_weight: int
    buyer_risk: int
    seller_risk: int
    raw_score: Decimal
    score: int
    advisory_used: bool = False


def category_weight(category: Union[ItemCategory, str, None]) -> int:
    parsed = parse_enum(ItemCategory, category)
    return CATEGORY_WEIGHTS.get(parsed, 0) if parsed else 0


def amount_weight(subtotal: Union[Decimal, int, float, str]) -> int:
    amount = Decimal(str(subtotal))
    for threshold, points in AMOUNT_BANDS:
        if amount >= threshold:
            return points
    return 0


def _round_clamp(value: Union[Decimal, float]) -> int:
    rounded = int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return max(0, min(100, rounded))


def score_transaction(
    category: Union[ItemCategory, str, None],
    subtotal: Union[Decimal, int, float, str],
    buyer_risk: int,
    seller_risk: int,
) -> TransactionRiskBreakdown:
    """Pure core; no advisory, no I/O."""
    cw = category_weight(category)
    aw = amount_weight(subtotal)
    raw = cw + aw + USER_RISK_WEIGHT * buyer_risk + USER_RISK_WEIGHT * seller_risk
    return TransactionRiskBreakdown(
        category_weight=cw,
        amount_weight=aw,
        buyer_risk=buyer_risk,
        seller_risk=seller_risk,
        raw_score=raw,
        score=_round_clamp(raw),
    )


async def explain_transaction_risk(
    session: AsyncSession,
    transaction_id: str,
    advisor: Optional[FraudAdvisor] = None,
    now: Optional[datetime] = None,
) -> TransactionRiskBreakdown:
    now = now or datetime.now(timezone.utc)
    tx = await get_transaction(session, transaction_id)

    # ── Step 1: fresh user risk for both parties ──
    # sequential: the session is shared
    store = ProfileStore(session)
    buyer_snap = await store.snapshot(tx.buyer_id)
    seller_snap = await store.snapshot(tx.seller_id)
    buyer_risk = compute_user_risk(buyer_snap, RiskRole.BUYER, now)
    seller_risk = compute_user_risk(seller_snap, RiskRole.SELLER, now)

    # ── Step 2: deterministic raw score ──
    breakdown = score_transaction(tx.item_category, tx.subtotal, buyer_risk, seller_risk)

    # ── Step 3: optional advisory override ──
    score, used = await apply_advisory(
        advisor,
        transaction_id=tx.id,
        buyer_id=tx.buyer_id,
        seller_id=tx.seller_id,
        raw_score=float(breakdown.raw_score),
    )
    if used:
        breakdown = TransactionRiskBreakdown(
            category_weight=breakdown.category_weight,
            amount_weight=breakdown.amount_weight,
            buyer_risk=buyer_risk,
            seller_risk=seller_risk,
            raw_score=breakdown.raw_score,
            score=_round_clamp(score),
            advisory_used=True,
        )

    logger.info(
        "transaction_risk_computed",
        transaction_id=tx.id,
        category=tx.item_category,
        buyer_risk=buyer_risk,
        seller_risk=seller_risk,
        raw_score=float(breakdown.raw_score),
        score=breakdown.score,
        advisory_used=breakdown.advisory_used,
    )
    return breakdown


async def compute_transaction_risk(
    session: AsyncSession,
    transaction_id: str,
    advisor: Optional[FraudAdvisor] = None,
    now: Optional[datetime] = None,
) -> int:
    """Raises NotFound when the transaction does not exist."""
    breakdown = await explain_transaction_risk(session, transaction_id, advisor, now)
    return breakdown.score
