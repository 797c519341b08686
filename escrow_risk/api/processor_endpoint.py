"""
POST /v1/processor/disputes

Webhook relay for payment-processor dispute (chargeback) lifecycle
events. Signature verification happens at the gateway; this route only
sees authenticated, already-parsed events.
"""
from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.api.deps import request_meta
from escrow_risk.core.auth import verify_token
from escrow_risk.models.database import get_db
from escrow_risk.schemas.api import ProcessorDisputeOut, ProcessorDisputeWebhook
from escrow_risk.services.event_log import RequestMeta
from escrow_risk.services.processor_disputes import ProcessorDisputeHandler

logger = structlog.get_logger()
router = APIRouter(prefix="/v1/processor", tags=["processor"])


@router.post("/disputes", response_model=ProcessorDisputeOut)
async def processor_dispute_event(
    body: ProcessorDisputeWebhook,
    meta: RequestMeta = Depends(request_meta),
    token_payload: dict = Depends(verify_token),
    db: AsyncSession = Depends(get_db),
) -> ProcessorDisputeOut:
    logger.info(
        "processor_dispute_event_received",
        kind=body.kind.value,
        processor_dispute_id=body.processor_dispute_id,
    )
    mirror = await ProcessorDisputeHandler(db).handle(body, request_meta=meta)
    if mirror is None:
        # acknowledged so the processor stops redelivering
        return ProcessorDisputeOut(
            processor_dispute_id=body.processor_dispute_id,
            transaction_id=body.transaction_id,
            status=body.status or "unknown",
            matched=False,
        )
    return ProcessorDisputeOut.model_validate(mirror)
