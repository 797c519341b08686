"""
Dispute Auto-Triage: objective signals only.

Only evidence the system itself recorded (event log, delivery views,
ticket transfer records, event date) can auto-reject a dispute. Free-text
claims never do. Anything unrecognised goes to a human (needs_review).
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Optional

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.config import Settings, get_settings
from escrow_risk.core.metrics import TRIAGE_DECISIONS
from escrow_risk.models.dispute import Dispute
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.decisions import AbuseRiskAssessment, TriageResult
from escrow_risk.schemas.enums import (
    DisputeReason,
    DisputeStatus,
    EventType,
    ItemCategory,
    TriageDecision,
    parse_enum,
)
from escrow_risk.services.delivery_signals import DeliverySignalSource, SqlDeliverySignals
from escrow_risk.services.event_log import EventLog
from escrow_risk.services.transactions import get_transaction

logger = structlog.get_logger()

MIN_SECONDS_VIEWED = 30
ABUSE_RECENT_DISPUTES = 3
ABUSE_AUTO_REJECTED = 2

Signals = dict[str, Any]


def _result(decision: TriageDecision, signals: Signals, rationale: str) -> TriageResult:
    return TriageResult(decision=decision, signals=signals, rationale=rationale)


def _review(signals: Signals, rationale: str = "Requires manual review.") -> TriageResult:
    return _result(TriageDecision.NEEDS_REVIEW, signals, rationale)


class DisputeTriage:
    def __init__(
        self,
        session: AsyncSession,
        signals: Optional[DeliverySignalSource] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._session = session
        self._signals = signals or SqlDeliverySignals(session)
        self._settings = settings or get_settings()
        self._events = EventLog(session)
        self._rules: dict[
            ItemCategory,
            Callable[[Transaction, DisputeReason, Signals, datetime], Awaitable[TriageResult]],
        ] = {
            ItemCategory.DIGITAL: self._digital,
            ItemCategory.SERVICES: self._services,
            ItemCategory.TICKETS: self._tickets,
        }

    async def triage(
        self,
        transaction_id: str,
        reason: str,
        category: str,
        now: Optional[datetime] = None,
    ) -> TriageResult:
        now = now or datetime.now(timezone.utc)
        tx = await get_transaction(self._session, transaction_id)

        signals: Signals = {
            "buyer_confirmed_receipt": await self._events.has_event(tx.id, EventType.BUYER_CONFIRMED_RECEIPT),
        }
        parsed_reason = parse_enum(DisputeReason, reason)
        parsed_category = parse_enum(ItemCategory, category)
        rule = self._rules.get(parsed_category) if parsed_category else None

        if parsed_reason is None:
            result = _review(signals, f"Unrecognized dispute reason '{reason}'. Requires manual review.")
        elif rule is None:
            result = _review(signals, "Category not supported for auto-triage")
        else:
            result = await rule(tx, parsed_reason, signals, now)

        TRIAGE_DECISIONS.labels(category=str(category), decision=result.decision.value).inc()
        logger.info(
            "dispute_triaged",
            transaction_id=tx.id,
            reason=reason,
            category=category,
            decision=result.decision.value,
            rationale=result.rationale,
        )
        return result

    # ── Category rules ──

    async def _digital(
        self, tx: Transaction, reason: DisputeReason, signals: Signals, now: datetime,
    ) -> TriageResult:
        engagement = await self._signals.engagement(tx.id)
        signals["delivery_downloaded"] = engagement.downloaded
        signals["delivery_seconds_viewed"] = engagement.max_seconds_viewed
        if engagement.uploaded_at is not None:
            signals["hours_since_delivery"] = round((now - engagement.uploaded_at).total_seconds() / 3600, 1)

        if reason == DisputeReason.NOT_RECEIVED:
            if engagement.downloaded:
                return _result(
                    TriageDecision.AUTO_REJECT, signals,
                    "Buyer downloaded the delivery. Evidence shows access occurred.",
                )
            if engagement.max_seconds_viewed >= MIN_SECONDS_VIEWED:
                return _result(
                    TriageDecision.AUTO_REJECT, signals,
                    "Buyer viewed the delivery for 30+ seconds. Evidence shows access occurred.",
                )
            if signals["buyer_confirmed_receipt"]:
                return _result(
                    TriageDecision.AUTO_REJECT, signals,
                    "Buyer previously confirmed receipt of the digital delivery.",
                )
        return _review(signals, "Requires manual review. No strong signals for auto-rejection.")

    async def _services(
        self, tx: Transaction, reason: DisputeReason, signals: Signals, now: datetime,
    ) -> TriageResult:
        confirmed = signals["buyer_confirmed_receipt"]
        signals["service_buyer_confirmed"] = confirmed
        if confirmed:
            if reason in (DisputeReason.NOT_RECEIVED, DisputeReason.NOT_AS_DESCRIBED):
                return _result(
                    TriageDecision.AUTO_REJECT, signals,
                    "Buyer previously confirmed service completion. Cannot dispute after confirmation.",
                )
            if reason == DisputeReason.UNAUTHORIZED:
                signals["high_abuse_risk"] = True
                return _review(signals, "Buyer confirmed completion but claims unauthorized. Requires review.")
        return _review(signals)

    async def _tickets(
        self, tx: Transaction, reason: DisputeReason, signals: Signals, now: datetime,
    ) -> TriageResult:
        if tx.event_date is not None:
            passed = now >= tx.event_date
            signals["ticket_event_passed"] = passed
            if passed:
                return _result(
                    TriageDecision.AUTO_REJECT, signals,
                    "Event date has passed. Disputes are not allowed after the event.",
                )

        confirmed = await self._events.has_event(tx.id, EventType.BUYER_CONFIRMED_TICKET_RECEIPT)
        signals["ticket_buyer_confirmed"] = confirmed
        if confirmed and reason == DisputeReason.NOT_RECEIVED:
            return _result(
                TriageDecision.AUTO_REJECT, signals,
                "Buyer previously confirmed receipt of the ticket in their account.",
            )

        transfer = await self._signals.ticket_transfer(tx.id)
        if transfer.buyer_confirmed and reason == DisputeReason.NOT_RECEIVED:
            signals["ticket_buyer_confirmed"] = True
            return _result(
                TriageDecision.AUTO_REJECT, signals,
                "Buyer confirmed ticket receipt. Evidence shows transfer was received.",
            )
        return _review(signals)

    # ── Abuse risk ──

    async def check_abuse_risk(self, user_id: str, now: Optional[datetime] = None) -> AbuseRiskAssessment:
        """High risk at 3+ disputes in the window or 2+ auto-rejected disputes. Never changes a triage decision."""
        now = now or datetime.now(timezone.utc)
        window_days = self._settings.abuse_window_days

        recent = await self._session.scalar(
            select(func.count(Dispute.id)).where(
                Dispute.opened_by == user_id,
                Dispute.created_at >= now - timedelta(days=window_days),
            )
        ) or 0
        auto_rejected = await self._session.scalar(
            select(func.count(Dispute.id)).where(
                Dispute.opened_by == user_id,
                Dispute.status == DisputeStatus.AUTO_REJECTED.value,
            )
        ) or 0

        reasons = []
        if recent >= ABUSE_RECENT_DISPUTES:
            reasons.append(f"{recent} disputes opened in the last {window_days} days")
        if auto_rejected >= ABUSE_AUTO_REJECTED:
            reasons.append(f"{auto_rejected} disputes auto-rejected")

        return AbuseRiskAssessment(
            user_id=user_id,
            high_risk=bool(reasons),
            recent_disputes=recent,
            auto_rejected_disputes=auto_rejected,
            window_days=window_days,
            reasons=reasons,
        )
