"""
Delivery / engagement signals, keyed by transaction id.

Written by the delivery and vault subsystems; this service only reads them.
Schema: digital_deliveries, delivery_views, ticket_transfers
"""
from sqlalchemy import Boolean, Column, Integer, String

from escrow_risk.models.database import Base, UTCDateTime, utcnow


class DigitalDelivery(Base):
    __tablename__ = "digital_deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), nullable=False, unique=True)
    uploaded_at = Column(UTCDateTime, nullable=False)


class DeliveryView(Base):
    __tablename__ = "delivery_views"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), nullable=False, index=True)
    viewer_id = Column(String(64), nullable=True)
    downloaded = Column(Boolean, nullable=False, default=False)
    seconds_viewed = Column(Integer, nullable=False, default=0)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)


class TicketTransfer(Base):
    __tablename__ = "ticket_transfers"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), nullable=False, unique=True)
    status = Column(String(20), nullable=False, default="pending")
    seller_claimed_sent_at = Column(UTCDateTime, nullable=True)
    buyer_confirmed_received_at = Column(UTCDateTime, nullable=True)
