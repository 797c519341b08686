"""
Buyer-opened disputes and the mirror of payment-processor disputes (chargebacks).
Schema: disputes, processor_disputes
"""
from sqlalchemy import JSON, BigInteger, Column, Integer, String, Text

from escrow_risk.models.database import Base, UTCDateTime, utcnow


class Dispute(Base):
    __tablename__ = "disputes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), nullable=False, index=True)
    opened_by = Column(String(64), nullable=False, index=True)
    reason = Column(String(40), nullable=False)
    category = Column(String(30), nullable=False)
    status = Column(String(20), nullable=False, default="submitted", index=True)
    description = Column(Text, nullable=True)

    # ── Auto-triage snapshot ──
    triage_decision = Column(String(20), nullable=True)
    triage_signals = Column(JSON, nullable=True)
    triage_rationale = Column(Text, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    resolved_at = Column(UTCDateTime, nullable=True)

    def __repr__(self):
        return f"<Dispute {self.id} tx={self.transaction_id} {self.reason} status={self.status}>"


class ProcessorDispute(Base):
    __tablename__ = "processor_disputes"

    id = Column(Integer, primary_key=True, autoincrement=True)
    processor_dispute_id = Column(String(100), nullable=False, unique=True)
    charge_id = Column(String(100), nullable=False, index=True)
    transaction_id = Column(String(64), nullable=True, index=True)
    buyer_id = Column(String(64), nullable=True)
    seller_id = Column(String(64), nullable=True)
    amount_minor = Column(BigInteger, nullable=False, default=0)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(30), nullable=False)
    reason = Column(String(60), nullable=True)
    evidence_due_by = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<ProcessorDispute {self.processor_dispute_id} tx={self.transaction_id} status={self.status}>"
