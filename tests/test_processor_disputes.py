"""
Tests for payment-processor dispute (chargeback) webhooks.
"""
from datetime import timedelta

from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.api import ProcessorDisputeWebhook
from escrow_risk.schemas.enums import EventType
from escrow_risk.services.enforcement import EnforcementEvaluator
from escrow_risk.services.event_log import EventLog
from escrow_risk.services.processor_disputes import ProcessorDisputeHandler
from escrow_risk.services.profiles import ProfileStore
from escrow_risk.services.release import ReleaseEvaluator
from tests.support import NOW


def _make_event(kind="created", **overrides) -> ProcessorDisputeWebhook:
    kwargs = {
        "kind": kind,
        "processor_dispute_id": "dp_001",
        "charge_id": "ch_001",
        "transaction_id": "TX-001",
        "amount_minor": 10_000,
        "currency": "usd",
        "status": "needs_response",
        "reason": "fraudulent",
        "evidence_due_by": NOW + timedelta(days=7),
    }
    kwargs.update(overrides)
    return ProcessorDisputeWebhook(**kwargs)


async def _status(session, transaction_id):
    return (await session.get(Transaction, transaction_id, populate_existing=True)).status


class TestCreated:
    async def test_freezes_buyer_and_disputes_transaction(self, session, make_transaction):
        tx = await make_transaction()
        mirror = await ProcessorDisputeHandler(session).handle(_make_event(), now=NOW)

        assert mirror.transaction_id == tx.id
        assert mirror.buyer_id == "buyer-1"
        assert mirror.currency == "USD"
        assert await _status(session, tx.id) == "DISPUTED"
        assert await EnforcementEvaluator(session).is_funds_frozen("buyer-1") is True
        assert (await ProfileStore(session).get_profile("buyer-1")).chargebacks == 1

        types = [e.event_type for e in await EventLog(session).list_events(tx.id)]
        assert "FUNDS_FROZEN" in types
        assert types[-1] == "CHARGEBACK_OR_DISPUTE_CREATED"

    async def test_redelivery_only_refreshes_mirror(self, session, make_transaction):
        tx = await make_transaction()
        handler = ProcessorDisputeHandler(session)
        await handler.handle(_make_event(), now=NOW)
        count = len(await EventLog(session).list_events(tx.id))

        mirror = await handler.handle(_make_event(reason="product_not_received"), now=NOW)
        assert mirror.reason == "product_not_received"
        assert len(await EventLog(session).list_events(tx.id)) == count
        assert (await ProfileStore(session).get_profile("buyer-1")).chargebacks == 1

    async def test_unknown_transaction(self, session):
        assert await ProcessorDisputeHandler(session).handle(_make_event(transaction_id="TX-404"), now=NOW) is None

    async def test_released_transaction_keeps_status(self, session, make_transaction):
        tx = await make_transaction(status="RELEASED", released_at=NOW - timedelta(days=1))
        await ProcessorDisputeHandler(session).handle(_make_event(), now=NOW)
        assert await _status(session, tx.id) == "RELEASED"

    async def test_blocks_release_while_open(self, session, make_transaction, add_event):
        tx = await make_transaction(risk_score=5)
        await add_event(tx.id, EventType.BUYER_CONFIRMED_RECEIPT, occurred_at=NOW - timedelta(hours=1))
        await ProcessorDisputeHandler(session).handle(_make_event(), now=NOW)

        result = await ReleaseEvaluator(session).evaluate(tx.id, now=NOW)
        assert result.eligible is False
        assert result.gate == "status"


class TestUpdatedAndClosed:
    async def test_update_refreshes_status(self, session, make_transaction):
        tx = await make_transaction()
        handler = ProcessorDisputeHandler(session)
        await handler.handle(_make_event(), now=NOW)

        mirror = await handler.handle(_make_event("updated", status="under_review"), now=NOW)
        assert mirror.status == "under_review"
        types = [e.event_type for e in await EventLog(session).list_events(tx.id)]
        assert types[-1] == "CHARGEBACK_OR_DISPUTE_UPDATED"

    async def test_update_for_unknown_dispute(self, session):
        assert await ProcessorDisputeHandler(session).handle(_make_event("updated"), now=NOW) is None

    async def test_won_restores_transaction(self, session, make_transaction):
        tx = await make_transaction()
        handler = ProcessorDisputeHandler(session)
        await handler.handle(_make_event(), now=NOW)

        mirror = await handler.handle(_make_event("closed", status="won"), now=NOW)
        assert mirror.status == "won"
        assert await _status(session, tx.id) == "DELIVERED_PENDING_RELEASE"
        # the buyer stays frozen after a won dispute
        assert await EnforcementEvaluator(session).is_funds_frozen("buyer-1") is True

    async def test_lost_leaves_transaction_disputed(self, session, make_transaction):
        tx = await make_transaction()
        handler = ProcessorDisputeHandler(session)
        await handler.handle(_make_event(), now=NOW)

        mirror = await handler.handle(_make_event("closed", status="lost"), now=NOW)
        assert mirror.status == "lost"
        assert await _status(session, tx.id) == "DISPUTED"
        types = [e.event_type for e in await EventLog(session).list_events(tx.id)]
        assert types[-1] == "CHARGEBACK_OR_DISPUTE_CLOSED"
