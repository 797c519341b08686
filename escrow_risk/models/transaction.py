"""
Escrow transaction row: the unit every policy and release decision is keyed on.
Schema: transactions
"""
from sqlalchemy import Boolean, Column, Integer, Numeric, String

from escrow_risk.models.database import Base, UTCDateTime, utcnow


class Transaction(Base):
    __tablename__ = "transactions"

    id = Column(String(64), primary_key=True)
    item_category = Column(String(30), nullable=False)
    subtotal = Column(Numeric(14, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    buyer_id = Column(String(64), nullable=False, index=True)
    seller_id = Column(String(64), nullable=False, index=True)
    status = Column(String(40), nullable=False, default="AWAITING_PAYMENT", index=True)

    # ── Risk policy (written by the policy applier) ──
    risk_score = Column(Integer, nullable=True)
    risk_scored_at = Column(UTCDateTime, nullable=True)
    hold_until = Column(UTCDateTime, nullable=True)
    requires_buyer_confirmation = Column(Boolean, nullable=False, default=False)
    requires_manual_review = Column(Boolean, nullable=False, default=False)

    # ── Release ──
    release_eligible_at = Column(UTCDateTime, nullable=True)
    released_at = Column(UTCDateTime, nullable=True)

    # ── Category context ──
    event_date = Column(UTCDateTime, nullable=True)  # TICKETS only
    funded_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<Transaction {self.id} {self.item_category} status={self.status} risk={self.risk_score}>"
