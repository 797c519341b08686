"""
Transaction event log: append-only audit trail.

Every money-affecting decision writes an event here first. The write is
best-effort: a failed append is logged and counted, never raised, because
losing the primary flow is worse than losing one audit row.

IP addresses are salted SHA-256 hashed before they reach the table.
"""
from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Mapping, Optional, Union

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from escrow_risk.core.config import get_settings
from escrow_risk.core.errors import AuditWriteFailure
from escrow_risk.core.metrics import AUDIT_WRITE_FAILURES
from escrow_risk.models.event import TransactionEvent
from escrow_risk.models.transaction import Transaction
from escrow_risk.schemas.enums import ActorType, EventType, parse_enum

logger = structlog.get_logger()


@dataclass(frozen=True)
class RequestMeta:
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    device_fingerprint: Optional[str] = None

    @classmethod
    def from_headers(cls, headers: Mapping[str, str], client_host: Optional[str] = None) -> RequestMeta:
        """First X-Forwarded-For hop, then X-Real-IP, then the socket peer."""
        forwarded = headers.get("x-forwarded-for")
        ip = None
        if forwarded:
            ip = forwarded.split(",")[0].strip() or None
        if ip is None:
            ip = headers.get("x-real-ip") or client_host
        return cls(
            ip=ip,
            user_agent=headers.get("user-agent"),
            device_fingerprint=headers.get("x-device-fingerprint"),
        )


def hash_ip(ip: Optional[str], salt: Optional[str] = None) -> Optional[str]:
    if not ip:
        return None
    salt = salt if salt is not None else get_settings().ip_hash_salt
    return hashlib.sha256((ip + salt).encode("utf-8")).hexdigest()


class EventLog:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def record(
        self,
        transaction_id: str,
        actor_type: ActorType,
        actor_id: Optional[str],
        event_type: Union[EventType, str],
        payload: Optional[dict[str, Any]] = None,
        request_meta: Optional[RequestMeta] = None,
        occurred_at: Optional[datetime] = None,
    ) -> None:
        """Append one event and commit it. Never raises."""
        event_name = event_type.value if isinstance(event_type, EventType) else str(event_type)
        try:
            await self._append(
                transaction_id, actor_type, actor_id, event_name,
                payload or {}, request_meta, occurred_at,
            )
        except AuditWriteFailure as e:
            # nothing was added to the session, so no rollback is needed
            AUDIT_WRITE_FAILURES.labels(event_type=event_name).inc()
            logger.warning(
                "audit_write_skipped",
                transaction_id=transaction_id,
                event_type=event_name,
                error=str(e),
            )
        except Exception as e:
            AUDIT_WRITE_FAILURES.labels(event_type=event_name).inc()
            logger.error(
                "audit_write_failed",
                transaction_id=transaction_id,
                event_type=event_name,
                error=str(e),
            )
            try:
                await self._session.rollback()
            except Exception as rollback_error:
                logger.error("audit_rollback_failed", error=str(rollback_error))

    async def _append(
        self,
        transaction_id: str,
        actor_type: ActorType,
        actor_id: Optional[str],
        event_name: str,
        payload: dict[str, Any],
        request_meta: Optional[RequestMeta],
        occurred_at: Optional[datetime],
    ) -> None:
        exists = await self._session.scalar(
            select(Transaction.id).where(Transaction.id == transaction_id)
        )
        if exists is None:
            raise AuditWriteFailure(f"transaction not found: {transaction_id}")
        actor = parse_enum(ActorType, actor_type)
        if actor is None:
            raise AuditWriteFailure(f"unrecognized actor type: {actor_type!r}")

        event = TransactionEvent(
            transaction_id=transaction_id,
            actor_type=actor.value,
            actor_id=actor_id,
            event_type=event_name,
            payload=payload,
            ip_hash=hash_ip(request_meta.ip) if request_meta else None,
            user_agent=request_meta.user_agent if request_meta else None,
            device_fingerprint=request_meta.device_fingerprint if request_meta else None,
        )
        if occurred_at is not None:
            event.created_at = occurred_at

        self._session.add(event)
        await self._session.commit()

        logger.debug(
            "event_recorded",
            transaction_id=transaction_id,
            event_type=event_name,
            actor_type=event.actor_type,
        )

    # ── Reads ──

    async def list_events(self, transaction_id: str) -> list[TransactionEvent]:
        """Timeline in strictly ascending creation order."""
        result = await self._session.execute(
            select(TransactionEvent)
            .where(TransactionEvent.transaction_id == transaction_id)
            .order_by(TransactionEvent.created_at.asc(), TransactionEvent.id.asc())
        )
        return list(result.scalars())

    async def first_event(self, transaction_id: str, event_type: EventType) -> Optional[TransactionEvent]:
        result = await self._session.execute(
            select(TransactionEvent)
            .where(
                TransactionEvent.transaction_id == transaction_id,
                TransactionEvent.event_type == event_type.value,
            )
            .order_by(TransactionEvent.created_at.asc(), TransactionEvent.id.asc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_event(self, transaction_id: str, event_type: EventType) -> Optional[TransactionEvent]:
        result = await self._session.execute(
            select(TransactionEvent)
            .where(
                TransactionEvent.transaction_id == transaction_id,
                TransactionEvent.event_type == event_type.value,
            )
            .order_by(TransactionEvent.created_at.desc(), TransactionEvent.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def has_event(self, transaction_id: str, event_type: EventType) -> bool:
        return await self.first_event(transaction_id, event_type) is not None
