"""
Decision payloads returned by the engine services.

These are the structured, explainable results: every ineligible release
and every triage outcome carries a human-readable reason alongside the
machine-readable fields.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from escrow_risk.schemas.enums import EnforcementActionType, RiskTier, TriageDecision


class RiskPolicy(BaseModel):
    """Policy persisted on the transaction by the policy applier."""
    transaction_id: str
    risk_score: int = Field(ge=0, le=100)
    tier: RiskTier
    hold_until: datetime
    requires_buyer_confirmation: bool
    requires_manual_review: bool
    scored_at: datetime
    reused: bool = Field(False, description="True when an existing score/policy was returned unchanged")


class ReleaseEligibility(BaseModel):
    eligible: bool
    reason: str
    category: Optional[str] = None
    gate: Optional[str] = Field(None, description="Hard gate that blocked release, if any")
    details: dict[str, Any] = {}


class ReleaseOutcome(BaseModel):
    transaction_id: str
    released: bool
    already_released: bool = False
    eligibility: ReleaseEligibility
    released_at: Optional[datetime] = None


class TriageResult(BaseModel):
    decision: TriageDecision
    signals: dict[str, Any] = {}
    rationale: str


class AbuseRiskAssessment(BaseModel):
    user_id: str
    high_risk: bool
    recent_disputes: int
    auto_rejected_disputes: int
    window_days: int
    reasons: list[str] = []


class AppliedAction(BaseModel):
    """One enforcement action appended during an evaluation."""
    action_type: EnforcementActionType
    reason: str
    meta: dict[str, Any] = {}


class RestrictionState(BaseModel):
    user_id: str
    funds_frozen: bool = False
    frozen_reason: Optional[str] = None
    disputes_restricted_until: Optional[datetime] = None
    categories_blocked: list[str] = []
    banned: bool = False
    banned_at: Optional[datetime] = None
