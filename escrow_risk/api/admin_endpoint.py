"""
Admin API: dispute resolution, enforcement and batch job triggers.

Endpoints:
  POST /v1/admin/disputes/{dispute_id}/resolve
    → resolved_buyer | resolved_seller | rejected

  POST /v1/admin/users/{user_id}/enforcement/evaluate
  GET  /v1/admin/users/{user_id}/restrictions
    → Enforcement re-run and current restriction state

  POST /v1/admin/release-sweep
    → Trigger the periodic release sweep on demand

All routes require the configured admin role.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.auth import require_admin
from escrow_risk.models.database import get_db
from escrow_risk.schemas.api import DisputeOut, ResolveDisputeRequest, SweepAccepted
from escrow_risk.schemas.decisions import AppliedAction, RestrictionState
from escrow_risk.services.disputes import DisputeService
from escrow_risk.services.enforcement import EnforcementEvaluator
from escrow_risk.services.release_sweep import run_sweep

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/admin", tags=["admin"])


@router.post(
    "/disputes/{dispute_id}/resolve",
    response_model=DisputeOut,
    summary="Resolve an open dispute",
)
async def resolve_dispute(
    dispute_id: int,
    body: ResolveDisputeRequest,
    token: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> DisputeOut:
    dispute = await DisputeService(db).resolve_dispute(
        dispute_id,
        body.resolution.value,
        admin_id=token.get("sub"),
        note=body.note,
    )
    return DisputeOut.model_validate(dispute)


@router.post(
    "/users/{user_id}/enforcement/evaluate",
    response_model=list[AppliedAction],
    summary="Re-run the enforcement rules for a user",
    description="Idempotent: rules whose restriction is already in force are skipped.",
)
async def evaluate_enforcement(
    user_id: str,
    token: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> list[AppliedAction]:
    actions = await EnforcementEvaluator(db).evaluate(user_id)
    logger.info(
        "enforcement_evaluated_by_admin",
        user_id=user_id,
        admin=token.get("sub"),
        applied=len(actions),
    )
    return actions


@router.get(
    "/users/{user_id}/restrictions",
    response_model=RestrictionState,
)
async def get_restrictions(
    user_id: str,
    token: dict = Depends(require_admin),
    db: AsyncSession = Depends(get_db),
) -> RestrictionState:
    return await EnforcementEvaluator(db).restriction_state(user_id)


@router.post(
    "/release-sweep",
    response_model=SweepAccepted,
    status_code=202,
    summary="Trigger the release sweep",
    description=(
        "Runs the periodic release sweep on demand in the background. "
        "Typically scheduled every 15 minutes but can be triggered manually here."
    ),
)
async def trigger_release_sweep(
    background_tasks: BackgroundTasks,
    token: dict = Depends(require_admin),
) -> SweepAccepted:
    logger.info("release_sweep_triggered", triggered_by=token.get("sub"))
    background_tasks.add_task(run_sweep)
    return SweepAccepted(message="Release sweep scheduled")
