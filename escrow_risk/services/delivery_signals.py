"""
Delivery / engagement signals consumed by release and triage.

Proof storage and the vault viewer live elsewhere; this module only reads
the facts they leave behind (upload time, downloads, seconds viewed,
ticket transfer status).
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.models.delivery import DeliveryView, DigitalDelivery, TicketTransfer
from escrow_risk.schemas.enums import TicketTransferStatus, parse_enum


@dataclass(frozen=True)
class EngagementSignals:
    uploaded_at: Optional[datetime] = None
    downloaded: bool = False
    max_seconds_viewed: int = 0


@dataclass(frozen=True)
class TicketTransferSignals:
    status: Optional[TicketTransferStatus] = None
    seller_claimed_sent_at: Optional[datetime] = None
    buyer_confirmed_received_at: Optional[datetime] = None

    @property
    def seller_sent(self) -> bool:
        return self.seller_claimed_sent_at is not None or self.status in (
            TicketTransferStatus.SELLER_SENT,
            TicketTransferStatus.BUYER_CONFIRMED,
        )

    @property
    def buyer_confirmed(self) -> bool:
        return (
            self.status == TicketTransferStatus.BUYER_CONFIRMED
            or self.buyer_confirmed_received_at is not None
        )


class DeliverySignalSource(Protocol):
    async def engagement(self, transaction_id: str) -> EngagementSignals:
        ...

    async def ticket_transfer(self, transaction_id: str) -> TicketTransferSignals:
        ...


class SqlDeliverySignals:
    """Default source backed by the delivery tables in the same database."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def engagement(self, transaction_id: str) -> EngagementSignals:
        uploaded_at = await self._session.scalar(
            select(DigitalDelivery.uploaded_at).where(DigitalDelivery.transaction_id == transaction_id)
        )
        row = (await self._session.execute(
            select(
                func.sum(case((DeliveryView.downloaded.is_(True), 1), else_=0)),
                func.coalesce(func.max(DeliveryView.seconds_viewed), 0),
            ).where(DeliveryView.transaction_id == transaction_id)
        )).one()
        return EngagementSignals(
            uploaded_at=uploaded_at,
            downloaded=(row[0] or 0) > 0,
            max_seconds_viewed=int(row[1] or 0),
        )

    async def ticket_transfer(self, transaction_id: str) -> TicketTransferSignals:
        transfer = await self._session.scalar(
            select(TicketTransfer).where(TicketTransfer.transaction_id == transaction_id)
        )
        if transfer is None:
            return TicketTransferSignals()
        return TicketTransferSignals(
            status=parse_enum(TicketTransferStatus, transfer.status),
            seller_claimed_sent_at=transfer.seller_claimed_sent_at,
            buyer_confirmed_received_at=transfer.buyer_confirmed_received_at,
        )
