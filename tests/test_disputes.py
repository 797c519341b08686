"""
Tests for the dispute lifecycle: opening (with auto-triage) and admin
resolution.
"""
from datetime import timedelta

import pytest

from escrow_risk.core.errors import DisputeNotAllowed, InvalidEnum, InvalidTransition
from escrow_risk.models.dispute import Dispute
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.enums import TriageDecision
from escrow_risk.services.disputes import DisputeService
from escrow_risk.services.enforcement import EnforcementEvaluator
from escrow_risk.services.event_log import EventLog
from escrow_risk.services.profiles import ProfileStore
from tests.support import NOW


async def _status(session, transaction_id):
    return (await session.get(Transaction, transaction_id, populate_existing=True)).status


async def _event_types(session, transaction_id):
    return [e.event_type for e in await EventLog(session).list_events(transaction_id)]


class TestOpenDispute:
    async def test_auto_rejected_with_engagement(self, session, make_transaction, add_delivery):
        tx = await make_transaction()
        await add_delivery(tx.id, NOW - timedelta(hours=5), views=[(False, 45)])

        opened = await DisputeService(session).open_dispute(tx.id, "buyer-1", "not_received", now=NOW)

        assert opened.triage.decision == TriageDecision.AUTO_REJECT
        assert opened.dispute.status == "auto_rejected"
        assert opened.dispute.resolved_at == NOW
        assert opened.dispute.triage_signals["delivery_seconds_viewed"] == 45
        assert await _status(session, tx.id) == "FUNDED"

        types = await _event_types(session, tx.id)
        assert "DISPUTE_OPENED" in types
        assert "DISPUTE_AUTO_TRIAGED" in types
        assert "STATUS_CHANGED" not in types

        profile = await ProfileStore(session).get_profile("buyer-1")
        assert profile.disputes_opened == 1
        assert profile.disputes_lost == 1

    async def test_auto_rejected_ticket_keeps_prior_status(self, session, make_transaction):
        tx = await make_transaction(item_category="TICKETS", event_date=NOW - timedelta(hours=1))
        opened = await DisputeService(session).open_dispute(tx.id, "buyer-1", "not_received", now=NOW)

        assert opened.triage.decision == TriageDecision.AUTO_REJECT
        assert await _status(session, tx.id) == "FUNDED"

    async def test_seller_nonresponsive_goes_to_review(self, session, make_transaction):
        tx = await make_transaction()
        opened = await DisputeService(session).open_dispute(tx.id, "buyer-1", "seller_nonresponsive", now=NOW)

        assert opened.dispute.reason == "seller_nonresponsive"
        assert opened.triage.decision == TriageDecision.NEEDS_REVIEW
        assert await _status(session, tx.id) == "DISPUTED"

    async def test_needs_review_keeps_dispute_open(self, session, make_transaction):
        tx = await make_transaction()
        opened = await DisputeService(session).open_dispute(
            tx.id, "buyer-1", "not_received", description="never arrived", now=NOW,
        )

        assert opened.triage.decision == TriageDecision.NEEDS_REVIEW
        assert opened.dispute.status == "submitted"
        assert opened.dispute.description == "never arrived"
        assert await _status(session, tx.id) == "DISPUTED"

    async def test_one_open_dispute_per_transaction(self, session, make_transaction):
        tx = await make_transaction()
        service = DisputeService(session)
        await service.open_dispute(tx.id, "buyer-1", "not_received", now=NOW)

        with pytest.raises(DisputeNotAllowed):
            await service.open_dispute(tx.id, "buyer-1", "other", now=NOW)

    async def test_only_buyer_may_open(self, session, make_transaction):
        tx = await make_transaction()
        with pytest.raises(DisputeNotAllowed):
            await DisputeService(session).open_dispute(tx.id, "seller-1", "not_received", now=NOW)

    async def test_unknown_reason(self, session, make_transaction):
        tx = await make_transaction()
        with pytest.raises(InvalidEnum):
            await DisputeService(session).open_dispute(tx.id, "buyer-1", "changed_my_mind", now=NOW)

    async def test_restricted_buyer(self, session, make_profile, make_transaction):
        await make_profile("buyer-1", disputes_opened=5, disputes_lost=4)
        await EnforcementEvaluator(session).evaluate("buyer-1", now=NOW - timedelta(days=1))
        tx = await make_transaction()

        with pytest.raises(DisputeNotAllowed):
            await DisputeService(session).open_dispute(tx.id, "buyer-1", "not_received", now=NOW)
        assert await _status(session, tx.id) == "FUNDED"

    async def test_closed_transaction(self, session, make_transaction):
        tx = await make_transaction(status="REFUNDED")
        with pytest.raises(DisputeNotAllowed):
            await DisputeService(session).open_dispute(tx.id, "buyer-1", "not_received", now=NOW)

    async def test_abuse_flag_does_not_change_decision(self, session, make_transaction):
        for _ in range(2):
            old = await make_transaction(status="DELIVERED_PENDING_RELEASE")
            session.add(Dispute(
                transaction_id=old.id, opened_by="buyer-1", reason="not_received",
                category="DIGITAL", status="auto_rejected", created_at=NOW - timedelta(days=100),
            ))
        await session.commit()
        tx = await make_transaction()

        opened = await DisputeService(session).open_dispute(tx.id, "buyer-1", "not_received", now=NOW)
        assert opened.abuse.high_risk is True
        assert opened.triage.decision == TriageDecision.NEEDS_REVIEW
        assert "DISPUTE_ABUSE_FLAGGED" in await _event_types(session, tx.id)


class TestResolveDispute:
    async def _open(self, session, make_transaction):
        tx = await make_transaction()
        opened = await DisputeService(session).open_dispute(tx.id, "buyer-1", "not_received", now=NOW)
        return tx, opened.dispute

    async def test_buyer_wins(self, session, make_transaction):
        tx, dispute = await self._open(session, make_transaction)
        resolved = await DisputeService(session).resolve_dispute(
            dispute.id, "resolved_buyer", admin_id="admin-1", note="no proof of delivery",
            now=NOW + timedelta(days=1),
        )

        assert resolved.status == "resolved_buyer"
        assert resolved.resolved_at == NOW + timedelta(days=1)
        assert await _status(session, tx.id) == "REFUNDED"
        assert (await ProfileStore(session).get_profile("seller-1")).strikes == 1
        assert "DISPUTE_RESOLVED" in await _event_types(session, tx.id)

    async def test_seller_wins(self, session, make_transaction):
        tx, dispute = await self._open(session, make_transaction)
        await DisputeService(session).resolve_dispute(dispute.id, "resolved_seller", now=NOW)

        assert await _status(session, tx.id) == "DELIVERED_PENDING_RELEASE"
        assert (await ProfileStore(session).get_profile("buyer-1")).disputes_lost == 1

    async def test_cannot_resolve_twice(self, session, make_transaction):
        _, dispute = await self._open(session, make_transaction)
        service = DisputeService(session)
        await service.resolve_dispute(dispute.id, "rejected", now=NOW)

        with pytest.raises(InvalidTransition):
            await service.resolve_dispute(dispute.id, "resolved_buyer", now=NOW)

    async def test_auto_rejected_is_not_an_admin_outcome(self, session, make_transaction):
        _, dispute = await self._open(session, make_transaction)
        with pytest.raises(InvalidEnum):
            await DisputeService(session).resolve_dispute(dispute.id, "auto_rejected", now=NOW)
