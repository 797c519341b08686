"""
Per-user cumulative risk counters and the last computed scores.
Schema: risk_profiles, metric_ledger
"""
from sqlalchemy import BigInteger, CheckConstraint, Column, Integer, String

from escrow_risk.models.database import Base, UTCDateTime, utcnow


class RiskProfile(Base):
    __tablename__ = "risk_profiles"
    __table_args__ = (
        CheckConstraint("buyer_risk_score >= 0 AND buyer_risk_score <= 100", name="ck_buyer_risk_range"),
        CheckConstraint("seller_risk_score >= 0 AND seller_risk_score <= 100", name="ck_seller_risk_range"),
    )

    user_id = Column(String(64), primary_key=True)

    # ── Scores (derived, persisted by ProfileStore.refresh_scores) ──
    buyer_risk_score = Column(Integer, nullable=False, default=0)
    seller_risk_score = Column(Integer, nullable=False, default=0)

    # ── Counters ──
    strikes = Column(Integer, nullable=False, default=0)
    chargebacks = Column(Integer, nullable=False, default=0)
    disputes_opened = Column(Integer, nullable=False, default=0)
    disputes_lost = Column(Integer, nullable=False, default=0)
    successful_transactions = Column(Integer, nullable=False, default=0)
    total_volume_minor = Column(BigInteger, nullable=False, default=0)

    last_chargeback_at = Column(UTCDateTime, nullable=True)
    last_dispute_at = Column(UTCDateTime, nullable=True)
    account_created_at = Column(UTCDateTime, nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return (
            f"<RiskProfile {self.user_id} buyer={self.buyer_risk_score} "
            f"seller={self.seller_risk_score} strikes={self.strikes}>"
        )


class MetricLedgerEntry(Base):
    """One row per terminal event applied to the profiles (exactly-once guard)."""
    __tablename__ = "metric_ledger"

    dedup_key = Column(String(160), primary_key=True)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False)
