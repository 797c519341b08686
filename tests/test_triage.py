"""
Tests for dispute auto-triage and the abuse-risk check.
"""
from datetime import timedelta

from escrow_risk.models.dispute import Dispute
from escrow_risk.schemas.enums import EventType, TriageDecision
from escrow_risk.services.triage import DisputeTriage
from tests.support import NOW


class TestDigital:
    async def test_viewed_delivery_auto_rejects(self, session, make_transaction, add_delivery):
        tx = await make_transaction()
        await add_delivery(tx.id, NOW - timedelta(hours=5), views=[(False, 45)])

        result = await DisputeTriage(session).triage(tx.id, "not_received", "DIGITAL", now=NOW)
        assert result.decision == TriageDecision.AUTO_REJECT
        assert result.rationale == "Buyer viewed the delivery for 30+ seconds. Evidence shows access occurred."
        assert result.signals["delivery_seconds_viewed"] == 45
        assert result.signals["delivery_downloaded"] is False
        assert result.signals["hours_since_delivery"] == 5.0

    async def test_download_auto_rejects(self, session, make_transaction, add_delivery):
        tx = await make_transaction()
        await add_delivery(tx.id, NOW - timedelta(hours=5), views=[(True, 0)])

        result = await DisputeTriage(session).triage(tx.id, "not_received", "DIGITAL", now=NOW)
        assert result.decision == TriageDecision.AUTO_REJECT
        assert result.rationale.startswith("Buyer downloaded the delivery")

    async def test_prior_confirmation_auto_rejects(self, session, make_transaction, add_event):
        tx = await make_transaction()
        await add_event(tx.id, EventType.BUYER_CONFIRMED_RECEIPT, occurred_at=NOW - timedelta(days=1))

        result = await DisputeTriage(session).triage(tx.id, "not_received", "DIGITAL", now=NOW)
        assert result.decision == TriageDecision.AUTO_REJECT
        assert result.signals["buyer_confirmed_receipt"] is True

    async def test_no_engagement_needs_review(self, session, make_transaction, add_delivery):
        tx = await make_transaction()
        await add_delivery(tx.id, NOW - timedelta(hours=5), views=[(False, 10)])

        result = await DisputeTriage(session).triage(tx.id, "not_received", "DIGITAL", now=NOW)
        assert result.decision == TriageDecision.NEEDS_REVIEW

    async def test_quality_claims_always_reviewed(self, session, make_transaction, add_delivery):
        tx = await make_transaction()
        await add_delivery(tx.id, NOW - timedelta(hours=5), views=[(True, 600)])

        result = await DisputeTriage(session).triage(tx.id, "not_as_described", "DIGITAL", now=NOW)
        assert result.decision == TriageDecision.NEEDS_REVIEW


class TestServices:
    async def test_confirmed_then_not_as_described(self, session, make_transaction, add_event):
        tx = await make_transaction(item_category="SERVICES")
        await add_event(tx.id, EventType.BUYER_CONFIRMED_RECEIPT, occurred_at=NOW - timedelta(days=1))

        result = await DisputeTriage(session).triage(tx.id, "not_as_described", "SERVICES", now=NOW)
        assert result.decision == TriageDecision.AUTO_REJECT

    async def test_confirmed_then_unauthorized_flags_abuse(self, session, make_transaction, add_event):
        tx = await make_transaction(item_category="SERVICES")
        await add_event(tx.id, EventType.BUYER_CONFIRMED_RECEIPT, occurred_at=NOW - timedelta(days=1))

        result = await DisputeTriage(session).triage(tx.id, "unauthorized", "SERVICES", now=NOW)
        assert result.decision == TriageDecision.NEEDS_REVIEW
        assert result.signals["high_abuse_risk"] is True
        assert result.signals["service_buyer_confirmed"] is True

    async def test_unconfirmed_needs_review(self, session, make_transaction):
        tx = await make_transaction(item_category="SERVICES")
        result = await DisputeTriage(session).triage(tx.id, "not_received", "SERVICES", now=NOW)
        assert result.decision == TriageDecision.NEEDS_REVIEW
        assert result.signals["service_buyer_confirmed"] is False


class TestTickets:
    async def test_event_passed_auto_rejects_any_reason(self, session, make_transaction):
        tx = await make_transaction(item_category="TICKETS", event_date=NOW - timedelta(hours=2))

        for reason in ("not_received", "seller_nonresponsive", "other"):
            result = await DisputeTriage(session).triage(tx.id, reason, "TICKETS", now=NOW)
            assert result.decision == TriageDecision.AUTO_REJECT
            assert result.signals["ticket_event_passed"] is True

    async def test_confirmed_transfer_before_event(self, session, make_transaction, add_ticket_transfer):
        tx = await make_transaction(item_category="TICKETS", event_date=NOW + timedelta(days=3))
        await add_ticket_transfer(tx.id, "buyer_confirmed", confirmed_at=NOW - timedelta(hours=1))

        result = await DisputeTriage(session).triage(tx.id, "not_received", "TICKETS", now=NOW)
        assert result.decision == TriageDecision.AUTO_REJECT
        assert result.signals["ticket_buyer_confirmed"] is True

    async def test_confirmed_transfer_status_without_timestamp(self, session, make_transaction, add_ticket_transfer):
        tx = await make_transaction(item_category="TICKETS", event_date=NOW + timedelta(days=3))
        await add_ticket_transfer(tx.id, "buyer_confirmed")

        result = await DisputeTriage(session).triage(tx.id, "not_received", "TICKETS", now=NOW)
        assert result.decision == TriageDecision.AUTO_REJECT
        assert result.signals["ticket_buyer_confirmed"] is True

    async def test_future_event_unconfirmed(self, session, make_transaction):
        tx = await make_transaction(item_category="TICKETS", event_date=NOW + timedelta(days=3))
        result = await DisputeTriage(session).triage(tx.id, "not_received", "TICKETS", now=NOW)
        assert result.decision == TriageDecision.NEEDS_REVIEW
        assert result.signals["ticket_event_passed"] is False


class TestFailClosed:
    async def test_unknown_reason(self, session, make_transaction, add_delivery):
        tx = await make_transaction()
        await add_delivery(tx.id, NOW - timedelta(hours=5), views=[(True, 600)])

        result = await DisputeTriage(session).triage(tx.id, "changed_my_mind", "DIGITAL", now=NOW)
        assert result.decision == TriageDecision.NEEDS_REVIEW

    async def test_unsupported_category(self, session, make_transaction):
        tx = await make_transaction(item_category="PHYSICAL")
        result = await DisputeTriage(session).triage(tx.id, "not_received", "PHYSICAL", now=NOW)
        assert result.decision == TriageDecision.NEEDS_REVIEW
        assert result.rationale == "Category not supported for auto-triage"


class TestAbuseRisk:
    async def _disputes(self, session, make_transaction, statuses, created_at):
        for status in statuses:
            tx = await make_transaction()
            session.add(Dispute(
                transaction_id=tx.id, opened_by="buyer-1", reason="not_received",
                category="DIGITAL", status=status, created_at=created_at,
            ))
        await session.commit()

    async def test_three_recent_disputes(self, session, make_transaction):
        await self._disputes(session, make_transaction, ["submitted"] * 3, NOW - timedelta(days=5))
        result = await DisputeTriage(session).check_abuse_risk("buyer-1", NOW)
        assert result.high_risk is True
        assert result.recent_disputes == 3

    async def test_old_disputes_outside_window(self, session, make_transaction):
        await self._disputes(session, make_transaction, ["submitted"] * 3, NOW - timedelta(days=90))
        result = await DisputeTriage(session).check_abuse_risk("buyer-1", NOW)
        assert result.high_risk is False
        assert result.recent_disputes == 0

    async def test_two_auto_rejected_any_age(self, session, make_transaction):
        await self._disputes(session, make_transaction, ["auto_rejected"] * 2, NOW - timedelta(days=200))
        result = await DisputeTriage(session).check_abuse_risk("buyer-1", NOW)
        assert result.high_risk is True
        assert result.auto_rejected_disputes == 2

    async def test_clean_user(self, session):
        result = await DisputeTriage(session).check_abuse_risk("buyer-1", NOW)
        assert result.high_risk is False
        assert result.reasons == []
