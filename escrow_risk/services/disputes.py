"""
Dispute lifecycle: open (with auto-triage) and admin resolution.

open_dispute:
  1. Guard: buyer only, known reason, not dispute-restricted, no open dispute
  2. Create dispute, DISPUTE_OPENED
  3. Auto-triage, store result, DISPUTE_AUTO_TRIAGED
  4. Opener metrics (disputes_opened)
  5. needs_review moves the transaction to DISPUTED; auto_reject closes the
     dispute at once, leaves the transaction status alone and counts as a
     buyer loss
  6. Abuse-risk check; a flag feeds enforcement, never the triage decision
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.errors import DisputeNotAllowed, InvalidEnum, InvalidTransition, NotFound
from escrow_risk.models.dispute import Dispute
from escrow_risk.schemas.decisions import AbuseRiskAssessment, TriageResult
from escrow_risk.schemas.enums import (
    OPEN_DISPUTE_STATUSES,
    ActorType,
    DisputeReason,
    DisputeResolution,
    DisputeStatus,
    EventType,
    TransactionStatus,
    TriageDecision,
    parse_enum,
)
from escrow_risk.services.delivery_signals import DeliverySignalSource
from escrow_risk.services.enforcement import EnforcementEvaluator
from escrow_risk.services.event_log import EventLog, RequestMeta
from escrow_risk.services.metrics import MetricsUpdater
from escrow_risk.services.transactions import can_transition, get_transaction, transition
from escrow_risk.services.triage import DisputeTriage

logger = structlog.get_logger()

ADMIN_RESOLUTIONS = frozenset({
    DisputeResolution.RESOLVED_BUYER,
    DisputeResolution.RESOLVED_SELLER,
    DisputeResolution.REJECTED,
})


@dataclass(frozen=True)
class DisputeOpened:
    dispute: Dispute
    triage: TriageResult
    abuse: AbuseRiskAssessment


class DisputeService:
    def __init__(self, session: AsyncSession, signals: Optional[DeliverySignalSource] = None) -> None:
        self._session = session
        self._events = EventLog(session)
        self._triage = DisputeTriage(session, signals)
        self._enforcement = EnforcementEvaluator(session)
        self._metrics = MetricsUpdater(session)

    async def get_dispute(self, dispute_id: int) -> Dispute:
        result = await self._session.execute(
            select(Dispute).where(Dispute.id == dispute_id).execution_options(populate_existing=True)
        )
        dispute = result.scalar_one_or_none()
        if dispute is None:
            raise NotFound("Dispute", dispute_id)
        return dispute

    async def open_dispute(
        self,
        transaction_id: str,
        opened_by: str,
        reason: str,
        description: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
        now: Optional[datetime] = None,
    ) -> DisputeOpened:
        now = now or datetime.now(timezone.utc)
        tx = await get_transaction(self._session, transaction_id)

        # ── Step 1: guards ──
        parsed_reason = parse_enum(DisputeReason, reason)
        if parsed_reason is None:
            raise InvalidEnum("DisputeReason", reason)
        if opened_by != tx.buyer_id:
            raise DisputeNotAllowed("Only the buyer can open a dispute")

        restricted, until = await self._enforcement.disputes_restriction(opened_by, now)
        if restricted:
            raise DisputeNotAllowed(f"Disputes restricted until {until.isoformat()}")

        existing = await self._session.scalar(
            select(Dispute.id).where(
                Dispute.transaction_id == tx.id,
                Dispute.status.in_([s.value for s in OPEN_DISPUTE_STATUSES]),
            )
        )
        if existing is not None:
            raise DisputeNotAllowed(f"Dispute {existing} is already open for this transaction")

        if not can_transition(TransactionStatus(tx.status), TransactionStatus.DISPUTED):
            raise DisputeNotAllowed(f"Cannot dispute a transaction in status {tx.status}")

        # ── Step 2: create ──
        dispute = Dispute(
            transaction_id=tx.id,
            opened_by=opened_by,
            reason=parsed_reason.value,
            category=tx.item_category,
            status=DisputeStatus.SUBMITTED.value,
            description=description,
            created_at=now,
        )
        self._session.add(dispute)
        await self._session.commit()

        await self._events.record(
            tx.id, ActorType.BUYER, opened_by, EventType.DISPUTE_OPENED,
            {"dispute_id": dispute.id, "reason": parsed_reason.value, "category": tx.item_category},
            request_meta=request_meta,
        )

        # ── Step 3: triage ──
        triage = await self._triage.triage(tx.id, parsed_reason.value, tx.item_category, now)
        dispute = await self.get_dispute(dispute.id)
        dispute.triage_decision = triage.decision.value
        dispute.triage_signals = triage.signals
        dispute.triage_rationale = triage.rationale
        if triage.decision == TriageDecision.AUTO_REJECT:
            dispute.status = DisputeStatus.AUTO_REJECTED.value
            dispute.resolved_at = now
        await self._session.commit()

        await self._events.record(
            tx.id, ActorType.SYSTEM, None, EventType.DISPUTE_AUTO_TRIAGED,
            {
                "dispute_id": dispute.id,
                "decision": triage.decision.value,
                "rationale": triage.rationale,
                "signals": triage.signals,
            },
        )

        # ── Step 4: opener metrics ──
        await self._metrics.on_dispute_submitted(dispute, now)

        # ── Step 5: hold for review, or close immediately ──
        if triage.decision == TriageDecision.NEEDS_REVIEW:
            tx = await get_transaction(self._session, transaction_id)
            await transition(
                self._session, tx, TransactionStatus.DISPUTED,
                actor_type=ActorType.BUYER, actor_id=opened_by, reason=f"dispute {dispute.id} opened",
            )
        else:
            await self._metrics.on_dispute_resolved(dispute, DisputeResolution.AUTO_REJECTED, now)

        # ── Step 6: abuse risk ──
        abuse = await self._triage.check_abuse_risk(opened_by, now)
        if abuse.high_risk:
            await self._events.record(
                tx.id, ActorType.SYSTEM, None, EventType.DISPUTE_ABUSE_FLAGGED,
                {
                    "dispute_id": dispute.id,
                    "user_id": opened_by,
                    "recent_disputes": abuse.recent_disputes,
                    "auto_rejected_disputes": abuse.auto_rejected_disputes,
                    "reasons": abuse.reasons,
                },
            )
            logger.warning("dispute_abuse_flagged", user_id=opened_by, reasons=abuse.reasons)
            await self._enforcement.evaluate(opened_by, now)

        logger.info(
            "dispute_opened",
            dispute_id=dispute.id,
            transaction_id=transaction_id,
            reason=parsed_reason.value,
            triage_decision=triage.decision.value,
        )
        return DisputeOpened(dispute=await self.get_dispute(dispute.id), triage=triage, abuse=abuse)

    async def resolve_dispute(
        self,
        dispute_id: int,
        resolution: str,
        admin_id: Optional[str] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dispute:
        """resolved_buyer refunds; resolved_seller and rejected send the transaction back toward release."""
        now = now or datetime.now(timezone.utc)
        outcome = parse_enum(DisputeResolution, resolution)
        if outcome not in ADMIN_RESOLUTIONS:
            raise InvalidEnum("DisputeResolution", resolution)

        dispute = await self.get_dispute(dispute_id)
        if parse_enum(DisputeStatus, dispute.status) not in OPEN_DISPUTE_STATUSES:
            raise InvalidTransition(dispute.status, outcome.value)

        dispute.status = outcome.value
        dispute.resolved_at = now
        await self._session.commit()

        tx = await get_transaction(self._session, dispute.transaction_id)
        if tx.status == TransactionStatus.DISPUTED.value:
            target = (
                TransactionStatus.REFUNDED
                if outcome == DisputeResolution.RESOLVED_BUYER
                else TransactionStatus.DELIVERED_PENDING_RELEASE
            )
            await transition(
                self._session, tx, target,
                actor_type=ActorType.ADMIN, actor_id=admin_id,
                reason=f"dispute {dispute.id} {outcome.value}", dispute_resolution=True,
            )

        await self._events.record(
            tx.id, ActorType.ADMIN, admin_id, EventType.DISPUTE_RESOLVED,
            {"dispute_id": dispute.id, "resolution": outcome.value, "note": note},
        )
        await self._metrics.on_dispute_resolved(dispute, outcome, now)

        logger.info(
            "dispute_resolved",
            dispute_id=dispute.id,
            transaction_id=tx.id,
            resolution=outcome.value,
            admin_id=admin_id,
        )
        return await self.get_dispute(dispute.id)
