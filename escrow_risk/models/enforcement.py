"""
Enforcement audit trail and the current-restrictions projection.
Schema: enforcement_actions (append-only), user_restrictions (one row per user)
"""
from sqlalchemy import JSON, Boolean, Column, Integer, String, Text

from escrow_risk.models.database import Base, UTCDateTime, utcnow


class EnforcementAction(Base):
    __tablename__ = "enforcement_actions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(64), nullable=False, index=True)
    action_type = Column(String(30), nullable=False, index=True)
    reason = Column(Text, nullable=False)
    meta = Column(JSON, nullable=False, default=dict)
    created_at = Column(UTCDateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self):
        return f"<EnforcementAction {self.id} {self.action_type} user={self.user_id}>"


class UserRestriction(Base):
    __tablename__ = "user_restrictions"

    user_id = Column(String(64), primary_key=True)
    funds_frozen = Column(Boolean, nullable=False, default=False)
    frozen_reason = Column(Text, nullable=True)
    disputes_restricted_until = Column(UTCDateTime, nullable=True)
    categories_blocked = Column(JSON, nullable=False, default=list)
    banned_at = Column(UTCDateTime, nullable=True)
    updated_at = Column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self):
        return f"<UserRestriction {self.user_id} frozen={self.funds_frozen} blocked={self.categories_blocked}>"
