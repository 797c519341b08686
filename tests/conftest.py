"""
Shared fixtures: an in-memory SQLite database per test, built from the ORM
metadata, plus small factories for the rows most tests need.
"""
from datetime import datetime, timedelta
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from escrow_risk.models.database import Base
# imported for their table registrations on Base.metadata
from escrow_risk.models import delivery, dispute, enforcement, event, risk_profile, transaction  # noqa: F401
from escrow_risk.models.delivery import DeliveryView, DigitalDelivery, TicketTransfer
from escrow_risk.models.risk_profile import RiskProfile
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.enums import ActorType
from escrow_risk.services.event_log import EventLog
from tests.support import ESTABLISHED, NOW


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def session(session_factory):
    async with session_factory() as s:
        yield s


@pytest.fixture
def make_profile(session):
    """Create a risk profile; the account is a year old unless overridden."""
    async def _make(user_id: str, **fields) -> RiskProfile:
        fields.setdefault("account_created_at", ESTABLISHED)
        profile = RiskProfile(user_id=user_id, **fields)
        session.add(profile)
        await session.commit()
        return profile
    return _make


@pytest.fixture
def make_transaction(session, make_profile):
    """Baseline FUNDED DIGITAL transaction between two established users."""
    counter = {"n": 0}

    async def _make(**overrides) -> Transaction:
        counter["n"] += 1
        fields = {
            "id": f"TX-{counter['n']:03d}",
            "item_category": "DIGITAL",
            "subtotal": Decimal("100.00"),
            "currency": "USD",
            "buyer_id": "buyer-1",
            "seller_id": "seller-1",
            "status": "FUNDED",
            "funded_at": NOW - timedelta(days=5),
            "created_at": NOW - timedelta(days=5),
        }
        fields.update(overrides)
        for user_id in (fields["buyer_id"], fields["seller_id"]):
            if await session.get(RiskProfile, user_id) is None:
                await make_profile(user_id)
        tx = Transaction(**fields)
        session.add(tx)
        await session.commit()
        return tx
    return _make


@pytest.fixture
def add_event(session):
    async def _add(transaction_id: str, event_type, occurred_at=None, actor_type=ActorType.BUYER, payload=None):
        await EventLog(session).record(
            transaction_id, actor_type, None, event_type, payload or {}, occurred_at=occurred_at,
        )
    return _add


@pytest.fixture
def add_delivery(session):
    async def _add(transaction_id: str, uploaded_at: datetime, views=()):
        session.add(DigitalDelivery(transaction_id=transaction_id, uploaded_at=uploaded_at))
        for downloaded, seconds in views:
            session.add(DeliveryView(
                transaction_id=transaction_id, downloaded=downloaded, seconds_viewed=seconds,
            ))
        await session.commit()
    return _add


@pytest.fixture
def add_ticket_transfer(session):
    async def _add(transaction_id: str, status: str, sent_at=None, confirmed_at=None):
        session.add(TicketTransfer(
            transaction_id=transaction_id,
            status=status,
            seller_claimed_sent_at=sent_at,
            buyer_confirmed_received_at=confirmed_at,
        ))
        await session.commit()
    return _add
