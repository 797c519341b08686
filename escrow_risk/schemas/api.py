"""
Request / response bodies for the HTTP surface.
"""
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from escrow_risk.schemas.decisions import AbuseRiskAssessment, TriageResult
from escrow_risk.schemas.enums import DisputeReason, DisputeResolution, ProcessorEventKind


class HealthResponse(BaseModel):
    status: str = "ok"
    app: str
    env: str


# ── Users ──

class RiskFactorOut(BaseModel):
    name: str
    points: int
    detail: str


class UserRiskOut(BaseModel):
    user_id: str
    buyer_risk_score: int
    seller_risk_score: int
    factors: list[RiskFactorOut]
    strikes: int
    chargebacks: int
    disputes_opened: int
    disputes_lost: int
    successful_transactions: int
    total_volume_minor: int


# ── Events ──

class TransactionEventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: str
    actor_type: str
    actor_id: Optional[str] = None
    event_type: str
    payload: dict[str, Any] = {}
    created_at: datetime


# ── Disputes ──

class OpenDisputeRequest(BaseModel):
    opened_by: str = Field(description="Buyer user id")
    reason: DisputeReason
    description: Optional[str] = Field(None, max_length=5000)


class DisputeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    transaction_id: str
    opened_by: str
    reason: str
    category: str
    status: str
    triage_decision: Optional[str] = None
    triage_rationale: Optional[str] = None
    created_at: datetime
    resolved_at: Optional[datetime] = None


class OpenDisputeResponse(BaseModel):
    dispute: DisputeOut
    triage: TriageResult
    abuse: AbuseRiskAssessment


class ResolveDisputeRequest(BaseModel):
    resolution: DisputeResolution = Field(description="resolved_buyer | resolved_seller | rejected")
    note: Optional[str] = None


# ── Processor webhook ──

class ProcessorDisputeWebhook(BaseModel):
    kind: ProcessorEventKind
    processor_dispute_id: str
    charge_id: Optional[str] = None
    transaction_id: Optional[str] = None
    amount_minor: int = Field(0, ge=0)
    currency: str = Field("USD", min_length=3, max_length=3)
    status: Optional[str] = None
    reason: Optional[str] = None
    evidence_due_by: Optional[datetime] = None


class ProcessorDisputeOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    processor_dispute_id: str
    transaction_id: Optional[str] = None
    status: str
    matched: bool = True


# ── Admin ──

class SweepAccepted(BaseModel):
    status: str = "accepted"
    message: str
