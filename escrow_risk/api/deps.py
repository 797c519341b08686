"""
Shared FastAPI dependencies.
"""
from __future__ import annotations

from fastapi import Request

from escrow_risk.services.event_log import RequestMeta


async def request_meta(request: Request) -> RequestMeta:
    """Caller IP / user agent / device fingerprint for the audit trail (IP is hashed on write)."""
    return RequestMeta.from_headers(
        request.headers,
        request.client.host if request.client else None,
    )
