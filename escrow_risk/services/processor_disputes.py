"""
Payment-processor dispute (chargeback) handling.

  created → mirror row, buyer funds frozen, transaction DISPUTED,
            chargeback metric, FUNDS_FROZEN + CHARGEBACK_OR_DISPUTE_CREATED
  updated → status / evidence deadline refreshed, CHARGEBACK_OR_DISPUTE_UPDATED
  closed  → won: transaction back to DELIVERED_PENDING_RELEASE (restrictions stay)
            lost: transaction stays frozen
            CHARGEBACK_OR_DISPUTE_CLOSED

Webhooks are delivered at least once; a repeated `created` only refreshes
the mirror row.
"""
from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.errors import NotFound
from escrow_risk.models.dispute import ProcessorDispute
from escrow_risk.schemas.api import ProcessorDisputeWebhook
from escrow_risk.schemas.enums import (
    ActorType,
    EventType,
    ProcessorDisputeStatus,
    ProcessorEventKind,
    TransactionStatus,
)
from escrow_risk.services.enforcement import EnforcementEvaluator
from escrow_risk.services.event_log import EventLog, RequestMeta
from escrow_risk.services.metrics import MetricsUpdater
from escrow_risk.services.transactions import can_transition, get_transaction, transition

logger = structlog.get_logger()


class ProcessorDisputeHandler:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._events = EventLog(session)
        self._enforcement = EnforcementEvaluator(session)
        self._metrics = MetricsUpdater(session)

    async def handle(
        self,
        event: ProcessorDisputeWebhook,
        request_meta: Optional[RequestMeta] = None,
        now: Optional[datetime] = None,
    ) -> Optional[ProcessorDispute]:
        """Returns the mirror row, or None when the event matches nothing we know."""
        now = now or datetime.now(timezone.utc)
        if event.kind == ProcessorEventKind.CREATED:
            return await self.on_created(event, request_meta, now)
        if event.kind == ProcessorEventKind.UPDATED:
            return await self.on_updated(event, request_meta)
        return await self.on_closed(event, request_meta)

    async def _mirror(self, processor_dispute_id: str) -> Optional[ProcessorDispute]:
        result = await self._session.execute(
            select(ProcessorDispute)
            .where(ProcessorDispute.processor_dispute_id == processor_dispute_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def on_created(
        self,
        event: ProcessorDisputeWebhook,
        request_meta: Optional[RequestMeta],
        now: datetime,
    ) -> Optional[ProcessorDispute]:
        if not event.transaction_id:
            logger.warning("processor_dispute_unmatched", processor_dispute_id=event.processor_dispute_id)
            return None
        try:
            tx = await get_transaction(self._session, event.transaction_id)
        except NotFound:
            logger.warning(
                "processor_dispute_unmatched",
                processor_dispute_id=event.processor_dispute_id,
                transaction_id=event.transaction_id,
            )
            return None

        status = event.status or ProcessorDisputeStatus.NEEDS_RESPONSE.value
        mirror = await self._mirror(event.processor_dispute_id)
        redelivery = mirror is not None
        if mirror is None:
            mirror = ProcessorDispute(
                processor_dispute_id=event.processor_dispute_id,
                charge_id=event.charge_id or "",
                transaction_id=tx.id,
                buyer_id=tx.buyer_id,
                seller_id=tx.seller_id,
            )
            self._session.add(mirror)
        mirror.amount_minor = event.amount_minor
        mirror.currency = event.currency.upper()
        mirror.status = status
        mirror.reason = event.reason
        mirror.evidence_due_by = event.evidence_due_by
        await self._session.commit()

        if redelivery:
            logger.info("processor_dispute_redelivered", processor_dispute_id=event.processor_dispute_id)
            return mirror

        # ── Freeze the buyer ──
        await self._enforcement.freeze_funds(
            tx.buyer_id,
            f"Processor dispute created: {event.processor_dispute_id}. Funds frozen pending resolution.",
            {
                "processor_dispute_id": event.processor_dispute_id,
                "transaction_id": tx.id,
                "amount_minor": event.amount_minor,
            },
        )
        await self._events.record(
            tx.id, ActorType.SYSTEM, None, EventType.FUNDS_FROZEN,
            {
                "source": "processor_dispute",
                "processor_dispute_id": event.processor_dispute_id,
                "status": status,
                "amount_minor": event.amount_minor,
            },
            request_meta=request_meta,
        )

        # ── Transaction → DISPUTED (released funds stay where they are) ──
        tx = await get_transaction(self._session, tx.id)
        if can_transition(TransactionStatus(tx.status), TransactionStatus.DISPUTED):
            await transition(
                self._session, tx, TransactionStatus.DISPUTED,
                reason=f"processor dispute {event.processor_dispute_id}",
            )

        await self._metrics.on_chargeback(
            tx.buyer_id, event.amount_minor, dedup_key=event.processor_dispute_id, now=now,
        )

        await self._events.record(
            tx.id, ActorType.SYSTEM, None, EventType.CHARGEBACK_OR_DISPUTE_CREATED,
            {
                "processor_dispute_id": event.processor_dispute_id,
                "charge_id": event.charge_id,
                "status": status,
                "reason": event.reason,
                "evidence_due_by": event.evidence_due_by.isoformat() if event.evidence_due_by else None,
            },
            request_meta=request_meta,
        )
        logger.warning(
            "processor_dispute_created",
            processor_dispute_id=event.processor_dispute_id,
            transaction_id=tx.id,
            buyer_id=tx.buyer_id,
            amount_minor=event.amount_minor,
        )
        return await self._mirror(event.processor_dispute_id)

    async def on_updated(
        self,
        event: ProcessorDisputeWebhook,
        request_meta: Optional[RequestMeta],
    ) -> Optional[ProcessorDispute]:
        mirror = await self._mirror(event.processor_dispute_id)
        if mirror is None:
            logger.warning("processor_dispute_unknown", processor_dispute_id=event.processor_dispute_id)
            return None

        mirror.status = event.status or mirror.status
        mirror.reason = event.reason or mirror.reason
        mirror.evidence_due_by = event.evidence_due_by or mirror.evidence_due_by
        await self._session.commit()

        if mirror.transaction_id:
            await self._events.record(
                mirror.transaction_id, ActorType.SYSTEM, None, EventType.CHARGEBACK_OR_DISPUTE_UPDATED,
                {
                    "processor_dispute_id": mirror.processor_dispute_id,
                    "status": mirror.status,
                    "reason": mirror.reason,
                    "evidence_due_by": mirror.evidence_due_by.isoformat() if mirror.evidence_due_by else None,
                },
                request_meta=request_meta,
            )
        return mirror

    async def on_closed(
        self,
        event: ProcessorDisputeWebhook,
        request_meta: Optional[RequestMeta],
    ) -> Optional[ProcessorDispute]:
        mirror = await self._mirror(event.processor_dispute_id)
        if mirror is None:
            logger.warning("processor_dispute_unknown", processor_dispute_id=event.processor_dispute_id)
            return None

        won = event.status == ProcessorDisputeStatus.WON.value
        mirror.status = ProcessorDisputeStatus.WON.value if won else ProcessorDisputeStatus.LOST.value
        await self._session.commit()

        transaction_id = mirror.transaction_id
        if not transaction_id:
            return mirror

        if won:
            # buyer restrictions stay in place; only the transaction is restored
            tx = await get_transaction(self._session, transaction_id)
            if tx.status == TransactionStatus.DISPUTED.value:
                await transition(
                    self._session, tx, TransactionStatus.DELIVERED_PENDING_RELEASE,
                    reason=f"processor dispute {event.processor_dispute_id} won",
                    dispute_resolution=True,
                )

        mirror = await self._mirror(event.processor_dispute_id)
        await self._events.record(
            transaction_id, ActorType.SYSTEM, None, EventType.CHARGEBACK_OR_DISPUTE_CLOSED,
            {
                "processor_dispute_id": event.processor_dispute_id,
                "outcome": "won" if won else "lost",
                "status": mirror.status,
            },
            request_meta=request_meta,
        )
        logger.info(
            "processor_dispute_closed",
            processor_dispute_id=event.processor_dispute_id,
            transaction_id=transaction_id,
            outcome="won" if won else "lost",
        )
        return mirror
