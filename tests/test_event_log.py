"""
Tests for the append-only transaction event log.
"""
from datetime import timedelta
from unittest.mock import AsyncMock

from escrow_risk.schemas.enums import ActorType, EventType
from escrow_risk.services.event_log import EventLog, RequestMeta, hash_ip
from tests.support import NOW


class TestRequestMeta:
    def test_first_forwarded_hop_wins(self):
        meta = RequestMeta.from_headers(
            {"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "10.0.0.2"},
            client_host="127.0.0.1",
        )
        assert meta.ip == "203.0.113.7"

    def test_falls_back_to_real_ip_then_peer(self):
        assert RequestMeta.from_headers({"x-real-ip": "10.0.0.2"}, "127.0.0.1").ip == "10.0.0.2"
        assert RequestMeta.from_headers({}, "127.0.0.1").ip == "127.0.0.1"

    def test_hash_is_salted_and_stable(self):
        assert hash_ip("203.0.113.7", "a") == hash_ip("203.0.113.7", "a")
        assert hash_ip("203.0.113.7", "a") != hash_ip("203.0.113.7", "b")
        assert hash_ip(None) is None


class TestRecord:
    async def test_timeline_ordered_by_creation(self, session, make_transaction, add_event):
        tx = await make_transaction()
        await add_event(tx.id, EventType.SELLER_MARKED_DELIVERED, occurred_at=NOW)
        await add_event(tx.id, EventType.RISK_SCORED, occurred_at=NOW - timedelta(hours=1))
        await add_event(tx.id, EventType.BUYER_CONFIRMED_RECEIPT, occurred_at=NOW)

        events = await EventLog(session).list_events(tx.id)
        assert [e.event_type for e in events] == [
            "RISK_SCORED",
            "SELLER_MARKED_DELIVERED",
            "BUYER_CONFIRMED_RECEIPT",
        ]

    async def test_ip_stored_hashed(self, session, make_transaction):
        tx = await make_transaction()
        meta = RequestMeta(ip="203.0.113.7", user_agent="pytest", device_fingerprint="fp-1")
        await EventLog(session).record(
            tx.id, ActorType.BUYER, "buyer-1", EventType.BUYER_CONFIRMED_RECEIPT, {}, request_meta=meta,
        )

        event = (await EventLog(session).list_events(tx.id))[0]
        assert event.ip_hash == hash_ip("203.0.113.7")
        assert "203.0.113.7" not in event.ip_hash
        assert event.user_agent == "pytest"
        assert event.device_fingerprint == "fp-1"

    async def test_unknown_transaction_is_dropped(self, session):
        log = EventLog(session)
        await log.record("TX-missing", ActorType.SYSTEM, None, EventType.RISK_SCORED, {})
        assert await log.list_events("TX-missing") == []

    async def test_unknown_actor_is_dropped(self, session, make_transaction):
        tx = await make_transaction()
        log = EventLog(session)
        await log.record(tx.id, "ROBOT", None, EventType.RISK_SCORED, {})
        assert await log.list_events(tx.id) == []

    async def test_store_failure_never_raises(self, session, make_transaction, monkeypatch):
        tx = await make_transaction()
        monkeypatch.setattr(session, "commit", AsyncMock(side_effect=RuntimeError("db down")))

        # must return normally
        await EventLog(session).record(tx.id, ActorType.SYSTEM, None, EventType.RISK_SCORED, {})

    async def test_first_and_latest(self, session, make_transaction, add_event):
        tx = await make_transaction()
        await add_event(tx.id, EventType.SELLER_MARKED_DELIVERED, occurred_at=NOW - timedelta(days=2))
        await add_event(tx.id, EventType.SELLER_MARKED_DELIVERED, occurred_at=NOW)
        log = EventLog(session)

        first = await log.first_event(tx.id, EventType.SELLER_MARKED_DELIVERED)
        latest = await log.latest_event(tx.id, EventType.SELLER_MARKED_DELIVERED)
        assert first.created_at == NOW - timedelta(days=2)
        assert latest.created_at == NOW
        assert await log.has_event(tx.id, EventType.FUNDS_RELEASED) is False
