"""
Transaction lookup and status transitions.

Statuses only move forward. The single exception is dispute resolution
(admin decision or processor dispute close), which may take a DISPUTED
transaction back to DELIVERED_PENDING_RELEASE.
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.errors import InvalidTransition, NotFound
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.enums import ActorType, EventType, TransactionStatus as S
from escrow_risk.services.event_log import EventLog

logger = structlog.get_logger()


FORWARD_TRANSITIONS: dict[S, frozenset[S]] = {
    S.AWAITING_PAYMENT: frozenset({S.FUNDED, S.CANCELED}),
    S.FUNDED: frozenset({
        S.PROOF_SUBMITTED, S.DELIVERED_PENDING_RELEASE, S.DISPUTED,
        S.RELEASED, S.REFUNDED, S.CANCELED,
    }),
    S.PROOF_SUBMITTED: frozenset({
        S.UNDER_REVIEW, S.DELIVERED_PENDING_RELEASE, S.DISPUTED, S.RELEASED, S.REFUNDED,
    }),
    S.UNDER_REVIEW: frozenset({S.DELIVERED_PENDING_RELEASE, S.DISPUTED, S.RELEASED, S.REFUNDED}),
    S.DELIVERED_PENDING_RELEASE: frozenset({S.DISPUTED, S.RELEASED, S.REFUNDED}),
    S.DISPUTED: frozenset({S.REFUNDED}),
    S.RELEASED: frozenset({S.PAID_OUT}),
    S.PAID_OUT: frozenset(),
    S.REFUNDED: frozenset(),
    S.CANCELED: frozenset(),
}

DISPUTE_RESOLUTION_TRANSITIONS: dict[S, frozenset[S]] = {
    S.DISPUTED: frozenset({S.DELIVERED_PENDING_RELEASE, S.RELEASED, S.REFUNDED}),
}


def to_minor_units(amount) -> int:
    """Decimal major units -> integer minor units (2-decimal currencies)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


async def get_transaction(session: AsyncSession, transaction_id: str) -> Transaction:
    result = await session.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .execution_options(populate_existing=True)
    )
    tx = result.scalar_one_or_none()
    if tx is None:
        raise NotFound("Transaction", transaction_id)
    return tx


def can_transition(current: S, target: S, dispute_resolution: bool = False) -> bool:
    if target in FORWARD_TRANSITIONS.get(current, frozenset()):
        return True
    if dispute_resolution:
        return target in DISPUTE_RESOLUTION_TRANSITIONS.get(current, frozenset())
    return False


async def transition(
    session: AsyncSession,
    tx: Transaction,
    target: S,
    *,
    actor_type: ActorType = ActorType.SYSTEM,
    actor_id: Optional[str] = None,
    reason: Optional[str] = None,
    dispute_resolution: bool = False,
) -> Transaction:
    current = S(tx.status)
    if current == target:
        return tx
    if not can_transition(current, target, dispute_resolution):
        raise InvalidTransition(current.value, target.value)

    tx.status = target.value
    if target == S.RELEASED and tx.released_at is None:
        tx.released_at = datetime.now(timezone.utc)
    await session.commit()

    await EventLog(session).record(
        tx.id, actor_type, actor_id, EventType.STATUS_CHANGED,
        {"from": current.value, "to": target.value, "reason": reason},
    )
    logger.info(
        "transaction_status_changed",
        transaction_id=tx.id,
        from_status=current.value,
        to_status=target.value,
    )
    return tx
