"""
Release Eligibility Evaluator + release bookkeeping.

evaluate() is read-only. Order of checks:
  1. Hard gates (re-read on every call, never cached)
       blocking status → open dispute → seller funds frozen → open processor dispute
  2. Already marked eligible → eligible
  3. Category rule (dispatch table; unknown categories fail closed)

release() re-evaluates, then records RELEASE_ELIGIBLE and FUNDS_RELEASED
at most once each, moves the transaction to RELEASED, publishes the
downstream event and folds the release into both parties' metrics.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.metrics import FUNDS_RELEASED, RELEASE_DECISIONS
from escrow_risk.models.dispute import Dispute, ProcessorDispute
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.decisions import ReleaseEligibility, ReleaseOutcome
from escrow_risk.schemas.enums import (
    BLOCKING_STATUSES,
    OPEN_DISPUTE_STATUSES,
    OPEN_PROCESSOR_DISPUTE_STATUSES,
    ActorType,
    EventType,
    ItemCategory,
    TransactionStatus,
    parse_enum,
)
from escrow_risk.services import event_publisher
from escrow_risk.services.delivery_signals import DeliverySignalSource, SqlDeliverySignals
from escrow_risk.services.enforcement import EnforcementEvaluator
from escrow_risk.services.event_log import EventLog, RequestMeta
from escrow_risk.services.metrics import MetricsUpdater
from escrow_risk.services.transactions import can_transition, get_transaction, transition

logger = structlog.get_logger()


# ═══════════════════════════════════════════════════════════════
# Category rule constants
# ═══════════════════════════════════════════════════════════════
DIGITAL_MIN_HOURS_SINCE_UPLOAD = 48
DIGITAL_MIN_SECONDS_VIEWED = 30
DIGITAL_MAX_RISK = 30

SERVICES_LOW_RISK_MAX = 30
SERVICES_LOW_RISK_DAYS = 3
SERVICES_DEFAULT_DAYS = 7

TICKETS_MAX_RISK = 50

RELEASED_STATUSES = frozenset({TransactionStatus.RELEASED, TransactionStatus.PAID_OUT})


def _is_low_risk(risk_score: Optional[int], ceiling: int) -> bool:
    # unscored transactions are never low risk
    return risk_score is not None and risk_score <= ceiling


class ReleaseEvaluator:
    def __init__(
        self,
        session: AsyncSession,
        signals: Optional[DeliverySignalSource] = None,
    ) -> None:
        self._session = session
        self._signals = signals or SqlDeliverySignals(session)
        self._events = EventLog(session)
        self._enforcement = EnforcementEvaluator(session)
        self._rules: dict[ItemCategory, Callable[[Transaction, datetime], Awaitable[ReleaseEligibility]]] = {
            ItemCategory.DIGITAL: self._digital,
            ItemCategory.SERVICES: self._services,
            ItemCategory.TICKETS: self._tickets,
        }

    # ═══════════════════════════════════════════════════════════════
    # Evaluation
    # ═══════════════════════════════════════════════════════════════

    async def evaluate(self, transaction_id: str, now: Optional[datetime] = None) -> ReleaseEligibility:
        now = now or datetime.now(timezone.utc)
        tx = await get_transaction(self._session, transaction_id)
        result = await self._evaluate(tx, now)

        RELEASE_DECISIONS.labels(
            category=tx.item_category, eligible=str(result.eligible).lower(),
        ).inc()
        logger.info(
            "release_evaluated",
            transaction_id=tx.id,
            category=tx.item_category,
            eligible=result.eligible,
            reason=result.reason,
            gate=result.gate,
        )
        return result

    async def _evaluate(self, tx: Transaction, now: datetime) -> ReleaseEligibility:
        gate = await self._check_hard_gates(tx)
        if gate is not None:
            return gate

        if tx.release_eligible_at is not None:
            return ReleaseEligibility(
                eligible=True,
                reason="Already marked eligible",
                category=tx.item_category,
                details={"release_eligible_at": tx.release_eligible_at.isoformat()},
            )

        category = parse_enum(ItemCategory, tx.item_category)
        rule = self._rules.get(category) if category else None
        if rule is None:
            return ReleaseEligibility(
                eligible=False,
                reason=f"Category {tx.item_category} not supported for auto-release",
                category=tx.item_category,
            )
        return await rule(tx, now)

    async def _check_hard_gates(self, tx: Transaction, check_status: bool = True) -> Optional[ReleaseEligibility]:
        status = parse_enum(TransactionStatus, tx.status)
        if check_status and (status is None or status in BLOCKING_STATUSES):
            return ReleaseEligibility(
                eligible=False,
                reason=f"Transaction status is {tx.status}",
                category=tx.item_category,
                gate="status",
            )

        open_disputes = await self._session.scalar(
            select(func.count(Dispute.id)).where(
                Dispute.transaction_id == tx.id,
                Dispute.status.in_([s.value for s in OPEN_DISPUTE_STATUSES]),
            )
        )
        if open_disputes:
            return ReleaseEligibility(
                eligible=False, reason="Active dispute exists", category=tx.item_category, gate="dispute",
            )

        if await self._enforcement.is_funds_frozen(tx.seller_id):
            return ReleaseEligibility(
                eligible=False, reason="Seller funds are frozen", category=tx.item_category, gate="funds_frozen",
            )

        open_processor = await self._session.scalar(
            select(func.count(ProcessorDispute.id)).where(
                ProcessorDispute.transaction_id == tx.id,
                ProcessorDispute.status.in_([s.value for s in OPEN_PROCESSOR_DISPUTE_STATUSES]),
            )
        )
        if open_processor:
            return ReleaseEligibility(
                eligible=False,
                reason="Active processor dispute exists",
                category=tx.item_category,
                gate="processor_dispute",
            )
        return None

    # ── Category rules ──

    async def _digital(self, tx: Transaction, now: datetime) -> ReleaseEligibility:
        confirmed = await self._events.first_event(tx.id, EventType.BUYER_CONFIRMED_RECEIPT)
        if confirmed is not None:
            return ReleaseEligibility(
                eligible=True,
                reason="Buyer confirmed receipt",
                category=ItemCategory.DIGITAL.value,
                details={"confirmed_at": confirmed.created_at.isoformat()},
            )

        signals = await self._signals.engagement(tx.id)
        if signals.uploaded_at is None:
            return ReleaseEligibility(
                eligible=False, reason="No delivery uploaded yet", category=ItemCategory.DIGITAL.value,
            )

        hours_since_upload = (now - signals.uploaded_at).total_seconds() / 3600
        viewed_enough = signals.max_seconds_viewed >= DIGITAL_MIN_SECONDS_VIEWED
        details = {
            "hours_since_upload": round(hours_since_upload, 1),
            "downloaded": signals.downloaded,
            "viewed_30s": viewed_enough,
            "risk_score": tx.risk_score,
        }
        if (
            hours_since_upload >= DIGITAL_MIN_HOURS_SINCE_UPLOAD
            and (signals.downloaded or viewed_enough)
            and _is_low_risk(tx.risk_score, DIGITAL_MAX_RISK)
        ):
            return ReleaseEligibility(
                eligible=True,
                reason="48h after upload with engagement and low risk",
                category=ItemCategory.DIGITAL.value,
                details=details,
            )
        return ReleaseEligibility(
            eligible=False,
            reason="Conditions not met for auto-release",
            category=ItemCategory.DIGITAL.value,
            details=details,
        )

    async def _services(self, tx: Transaction, now: datetime) -> ReleaseEligibility:
        confirmed = await self._events.first_event(tx.id, EventType.BUYER_CONFIRMED_RECEIPT)
        if confirmed is not None:
            return ReleaseEligibility(
                eligible=True,
                reason="Buyer confirmed completion",
                category=ItemCategory.SERVICES.value,
                details={"confirmed_at": confirmed.created_at.isoformat()},
            )

        marked = await self._events.latest_event(tx.id, EventType.SELLER_MARKED_DELIVERED)
        if marked is None:
            return ReleaseEligibility(
                eligible=False,
                reason="Seller has not marked service as delivered",
                category=ItemCategory.SERVICES.value,
            )

        days = (
            SERVICES_LOW_RISK_DAYS
            if _is_low_risk(tx.risk_score, SERVICES_LOW_RISK_MAX)
            else SERVICES_DEFAULT_DAYS
        )
        elapsed = now - marked.created_at
        details = {
            "days_since_marked": round(elapsed.total_seconds() / 86_400, 1),
            "risk_score": tx.risk_score,
            "auto_release_days": days,
        }
        if elapsed >= timedelta(days=days):
            return ReleaseEligibility(
                eligible=True,
                reason=f"Auto-release after {days} days (risk-based)",
                category=ItemCategory.SERVICES.value,
                details=details,
            )
        return ReleaseEligibility(
            eligible=False,
            reason=f"Waiting for {days} days since marked delivered",
            category=ItemCategory.SERVICES.value,
            details=details,
        )

    async def _tickets(self, tx: Transaction, now: datetime) -> ReleaseEligibility:
        category = ItemCategory.TICKETS.value

        # Before the event nothing releases, not even a confirmation
        if tx.event_date is not None and now < tx.event_date:
            return ReleaseEligibility(
                eligible=False,
                reason="Event date has not passed yet",
                category=category,
                details={"event_date": tx.event_date.isoformat(), "now": now.isoformat()},
            )

        confirmed = await self._events.first_event(tx.id, EventType.BUYER_CONFIRMED_TICKET_RECEIPT)
        transfer = await self._signals.ticket_transfer(tx.id)
        if confirmed is not None or transfer.buyer_confirmed:
            confirmed_at = confirmed.created_at if confirmed else transfer.buyer_confirmed_received_at
            return ReleaseEligibility(
                eligible=True,
                reason="Buyer confirmed ticket receipt",
                category=category,
                details={"confirmed_at": confirmed_at.isoformat() if confirmed_at else None},
            )

        if not transfer.seller_sent:
            return ReleaseEligibility(
                eligible=False, reason="Seller has not claimed transfer sent", category=category,
            )

        if tx.event_date is None:
            return ReleaseEligibility(
                eligible=False,
                reason="Buyer confirmation required (no event date set)",
                category=category,
            )

        details = {"event_date": tx.event_date.isoformat(), "risk_score": tx.risk_score}
        if _is_low_risk(tx.risk_score, TICKETS_MAX_RISK):
            return ReleaseEligibility(
                eligible=True,
                reason="Event date passed with seller_sent and low risk",
                category=category,
                details=details,
            )
        return ReleaseEligibility(
            eligible=False,
            reason="Risk too high for auto-release after event date",
            category=category,
            details=details,
        )

    # ═══════════════════════════════════════════════════════════════
    # Release
    # ═══════════════════════════════════════════════════════════════

    async def release(
        self,
        transaction_id: str,
        request_meta: Optional[RequestMeta] = None,
        now: Optional[datetime] = None,
    ) -> ReleaseOutcome:
        now = now or datetime.now(timezone.utc)
        tx = await get_transaction(self._session, transaction_id)

        # ── Already released: success, no new events; eligibility reflects gates as of now ──
        if parse_enum(TransactionStatus, tx.status) in RELEASED_STATUSES:
            current_gate = await self._check_hard_gates(tx, check_status=False)
            return ReleaseOutcome(
                transaction_id=tx.id,
                released=True,
                already_released=True,
                eligibility=current_gate or ReleaseEligibility(
                    eligible=True, reason="Already released", category=tx.item_category,
                ),
                released_at=tx.released_at,
            )

        eligibility = await self.evaluate(tx.id, now)
        if not eligibility.eligible:
            return ReleaseOutcome(transaction_id=tx.id, released=False, eligibility=eligibility)

        current = TransactionStatus(tx.status)
        if not can_transition(current, TransactionStatus.RELEASED):
            return ReleaseOutcome(
                transaction_id=tx.id,
                released=False,
                eligibility=ReleaseEligibility(
                    eligible=False,
                    reason=f"Transaction status is {tx.status}",
                    category=tx.item_category,
                    gate="status",
                ),
            )

        # ── Step 1: mark eligible (once) ──
        if tx.release_eligible_at is None:
            tx.release_eligible_at = now
            await self._session.commit()

        if not await self._events.has_event(tx.id, EventType.RELEASE_ELIGIBLE):
            await self._events.record(
                tx.id, ActorType.SYSTEM, None, EventType.RELEASE_ELIGIBLE,
                {"reason": eligibility.reason, "category": eligibility.category, **eligibility.details},
                request_meta=request_meta,
            )

        # ── Step 2: FUNDS_RELEASED precedes the status change ──
        if not await self._events.has_event(tx.id, EventType.FUNDS_RELEASED):
            await self._events.record(
                tx.id, ActorType.SYSTEM, None, EventType.FUNDS_RELEASED,
                {"reason": eligibility.reason, "amount": str(tx.subtotal), "currency": tx.currency},
                request_meta=request_meta,
            )

        # ── Step 3: status ──
        tx = await get_transaction(self._session, transaction_id)
        tx.released_at = now
        await transition(self._session, tx, TransactionStatus.RELEASED, reason=eligibility.reason)
        FUNDS_RELEASED.labels(category=tx.item_category).inc()

        # ── Step 4: downstream + metrics ──
        await event_publisher.publish_funds_released(
            tx.id, tx.seller_id, str(tx.subtotal), tx.currency, released_at=now,
        )
        try:
            await MetricsUpdater(self._session).on_funds_released(tx, now)
        except Exception as e:
            # funds are already released; the sweep must not retry the payout
            logger.error("release_metrics_failed", transaction_id=transaction_id, error=str(e))

        logger.info(
            "funds_released",
            transaction_id=tx.id,
            category=tx.item_category,
            reason=eligibility.reason,
            seller_id=tx.seller_id,
        )
        return ReleaseOutcome(
            transaction_id=tx.id,
            released=True,
            eligibility=eligibility,
            released_at=now,
        )
