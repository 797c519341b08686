"""
Decision endpoints called by the marketplace backend.

GET  /v1/health
GET  /v1/users/{user_id}/risk
POST /v1/transactions/{id}/risk-policy
GET  /v1/transactions/{id}/release-eligibility
POST /v1/transactions/{id}/release
GET  /v1/transactions/{id}/events
POST /v1/transactions/{id}/disputes

Engine errors (NotFound, InvalidTransition, ...) are mapped to HTTP
status codes by the handlers registered in main.py.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.api.deps import request_meta
from escrow_risk.core.auth import verify_token
from escrow_risk.core.config import get_settings
from escrow_risk.core.errors import NotFound
from escrow_risk.models.database import get_db
from escrow_risk.schemas.api import (
    DisputeOut,
    HealthResponse,
    OpenDisputeRequest,
    OpenDisputeResponse,
    RiskFactorOut,
    TransactionEventOut,
    UserRiskOut,
)
from escrow_risk.schemas.decisions import ReleaseEligibility, ReleaseOutcome, RiskPolicy
from escrow_risk.schemas.enums import RiskRole
from escrow_risk.scoring.advisory import advisor_from_settings
from escrow_risk.scoring.user_risk import ProfileSnapshot, explain_user_risk
from escrow_risk.services.disputes import DisputeService
from escrow_risk.services.event_log import EventLog, RequestMeta
from escrow_risk.services.policy import PolicyApplier
from escrow_risk.services.profiles import ProfileStore
from escrow_risk.services.release import ReleaseEvaluator
from escrow_risk.services.transactions import get_transaction

logger = structlog.get_logger()
router = APIRouter(prefix="/v1", tags=["risk"])


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health() -> HealthResponse:
    settings = get_settings()
    return HealthResponse(app=settings.app_name, env=settings.app_env)


@router.get(
    "/users/{user_id}/risk",
    response_model=UserRiskOut,
    summary="Explained buyer/seller risk for a user",
)
async def get_user_risk(
    user_id: str,
    token_payload: dict = Depends(verify_token),
    db: AsyncSession = Depends(get_db),
) -> UserRiskOut:
    profile = await ProfileStore(db).get_profile(user_id)
    if profile is None:
        raise NotFound("RiskProfile", user_id)

    snap = ProfileSnapshot.from_profile(profile)
    buyer = explain_user_risk(snap, RiskRole.BUYER)
    seller = explain_user_risk(snap, RiskRole.SELLER)
    return UserRiskOut(
        user_id=user_id,
        buyer_risk_score=buyer.score,
        seller_risk_score=seller.score,
        factors=[RiskFactorOut(name=f.name, points=f.points, detail=f.detail) for f in buyer.factors],
        strikes=snap.strikes,
        chargebacks=snap.chargebacks,
        disputes_opened=snap.disputes_opened,
        disputes_lost=snap.disputes_lost,
        successful_transactions=snap.successful_transactions,
        total_volume_minor=snap.total_volume_minor,
    )


@router.post(
    "/transactions/{transaction_id}/risk-policy",
    response_model=RiskPolicy,
    summary="Score the transaction and apply its risk policy",
    description="Idempotent: once scored, the stored policy is returned unchanged.",
)
async def apply_risk_policy(
    transaction_id: str,
    token_payload: dict = Depends(verify_token),
    db: AsyncSession = Depends(get_db),
) -> RiskPolicy:
    logger.info("risk_policy_requested", transaction_id=transaction_id, caller=token_payload.get("sub", "unknown"))
    return await PolicyApplier(db, advisor_from_settings()).apply_policy(transaction_id)


@router.get(
    "/transactions/{transaction_id}/release-eligibility",
    response_model=ReleaseEligibility,
    summary="Read-only release eligibility check",
)
async def get_release_eligibility(
    transaction_id: str,
    token_payload: dict = Depends(verify_token),
    db: AsyncSession = Depends(get_db),
) -> ReleaseEligibility:
    return await ReleaseEvaluator(db).evaluate(transaction_id)


@router.post(
    "/transactions/{transaction_id}/release",
    response_model=ReleaseOutcome,
    summary="Release escrowed funds if eligible",
    description="Releasing an already released transaction succeeds without new events.",
)
async def release_funds(
    transaction_id: str,
    meta: RequestMeta = Depends(request_meta),
    token_payload: dict = Depends(verify_token),
    db: AsyncSession = Depends(get_db),
) -> ReleaseOutcome:
    logger.info("release_requested", transaction_id=transaction_id, caller=token_payload.get("sub", "unknown"))
    return await ReleaseEvaluator(db).release(transaction_id, request_meta=meta)


@router.get(
    "/transactions/{transaction_id}/events",
    response_model=list[TransactionEventOut],
    summary="Audit timeline, oldest first",
)
async def list_transaction_events(
    transaction_id: str,
    token_payload: dict = Depends(verify_token),
    db: AsyncSession = Depends(get_db),
) -> list[TransactionEventOut]:
    await get_transaction(db, transaction_id)
    events = await EventLog(db).list_events(transaction_id)
    return [TransactionEventOut.model_validate(e) for e in events]


@router.post(
    "/transactions/{transaction_id}/disputes",
    response_model=OpenDisputeResponse,
    status_code=201,
    summary="Open a dispute; it is auto-triaged immediately",
)
async def open_dispute(
    transaction_id: str,
    body: OpenDisputeRequest,
    meta: RequestMeta = Depends(request_meta),
    token_payload: dict = Depends(verify_token),
    db: AsyncSession = Depends(get_db),
) -> OpenDisputeResponse:
    opened = await DisputeService(db).open_dispute(
        transaction_id,
        opened_by=body.opened_by,
        reason=body.reason.value,
        description=body.description,
        request_meta=meta,
    )
    return OpenDisputeResponse(
        dispute=DisputeOut.model_validate(opened.dispute),
        triage=opened.triage,
        abuse=opened.abuse,
    )
