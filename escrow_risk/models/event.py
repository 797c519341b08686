"""
Append-only transaction event log: the evidentiary record for disputes and audits.
Rows are inserted, never updated or deleted.
Schema: transaction_events
"""
from sqlalchemy import JSON, Column, Index, Integer, String, Text

from escrow_risk.models.database import Base, UTCDateTime, utcnow


class TransactionEvent(Base):
    __tablename__ = "transaction_events"
    __table_args__ = (
        Index("ix_transaction_events_tx_type", "transaction_id", "event_type"),
        Index("ix_transaction_events_tx_created", "transaction_id", "created_at"),
    )

    # autoincrement id breaks ties between events stamped in the same instant
    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_id = Column(String(64), nullable=False)
    actor_type = Column(String(10), nullable=False)
    actor_id = Column(String(64), nullable=True)
    event_type = Column(String(60), nullable=False)
    payload = Column(JSON, nullable=False, default=dict)

    # ── Request metadata (IP only ever stored hashed) ──
    ip_hash = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_fingerprint = Column(String(255), nullable=True)

    created_at = Column(UTCDateTime, default=utcnow, nullable=False)

    def __repr__(self):
        return f"<TransactionEvent {self.id} {self.event_type} tx={self.transaction_id}>"
