"""
Optional external fraud advisory.

The advisor may REPLACE the raw transaction score with an enhanced one. It is
never authoritative for control flow: when it is disabled, slow, failing or
answers outside [0, 100], the raw score is used and a warning is logged.
"""
from __future__ import annotations

from typing import Optional, Protocol

import httpx
import structlog

from escrow_risk.core.config import Settings, get_settings
from escrow_risk.core.errors import AdvisorUnavailable
from escrow_risk.core.metrics import ADVISOR_FALLBACKS

logger = structlog.get_logger()


class FraudAdvisor(Protocol):
    async def enhanced_score(
        self,
        *,
        transaction_id: str,
        buyer_id: str,
        seller_id: str,
        raw_score: float,
    ) -> float:
        ...


class HttpFraudAdvisor:
    """POSTs the raw score to the advisory service and reads back `enhanced_score`."""

    def __init__(self, url: str, timeout_seconds: float = 2.0) -> None:
        self._url = url
        self._timeout = timeout_seconds

    async def enhanced_score(
        self,
        *,
        transaction_id: str,
        buyer_id: str,
        seller_id: str,
        raw_score: float,
    ) -> float:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(self._url, json={
                    "transaction_id": transaction_id,
                    "buyer_id": buyer_id,
                    "seller_id": seller_id,
                    "raw_score": raw_score,
                })
                resp.raise_for_status()
                body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise AdvisorUnavailable(f"advisory call failed: {e}") from e

        score = body.get("enhanced_score") if isinstance(body, dict) else None
        if not isinstance(score, (int, float)) or isinstance(score, bool):
            raise AdvisorUnavailable(f"advisory returned no usable score: {body!r}")
        return float(score)


def advisor_from_settings(settings: Optional[Settings] = None) -> Optional[FraudAdvisor]:
    settings = settings or get_settings()
    if not settings.fraud_advisor_enabled:
        return None
    return HttpFraudAdvisor(settings.fraud_advisor_url, settings.fraud_advisor_timeout_seconds)


async def apply_advisory(
    advisor: Optional[FraudAdvisor],
    *,
    transaction_id: str,
    buyer_id: str,
    seller_id: str,
    raw_score: float,
) -> tuple[float, bool]:
    """
    Returns (score, advisory_used). Any advisor failure collapses to
    (raw_score, False); the control flow is the same either way.
    """
    if advisor is None:
        return raw_score, False

    try:
        enhanced = await advisor.enhanced_score(
            transaction_id=transaction_id,
            buyer_id=buyer_id,
            seller_id=seller_id,
            raw_score=raw_score,
        )
        if not 0 <= enhanced <= 100:
            raise AdvisorUnavailable(f"advisory score out of range: {enhanced}")
    except Exception as e:
        ADVISOR_FALLBACKS.inc()
        logger.warning(
            "advisor_fallback",
            transaction_id=transaction_id,
            raw_score=raw_score,
            error=str(e),
        )
        return raw_score, False

    logger.info(
        "advisor_override",
        transaction_id=transaction_id,
        raw_score=raw_score,
        enhanced_score=enhanced,
    )
    return enhanced, True
