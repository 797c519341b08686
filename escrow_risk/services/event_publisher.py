"""
Kafka event publisher: fire-and-forget.

Publishes release and enforcement events for downstream consumers
(payout scheduler, notifications, data warehouse sync).
Gracefully degrades if Kafka is unavailable.
"""
from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from escrow_risk.core.config import get_settings

logger = structlog.get_logger()

_producer = None


async def _get_producer():
    global _producer
    settings = get_settings()
    if not settings.kafka_enabled:
        return None
    if _producer is None:
        from aiokafka import AIOKafkaProducer
        _producer = AIOKafkaProducer(bootstrap_servers=settings.kafka_bootstrap)
        await _producer.start()
    return _producer


async def close_producer() -> None:
    global _producer
    if _producer is not None:
        await _producer.stop()
        _producer = None


async def _publish(topic: str, key: str, event: dict[str, Any]) -> None:
    settings = get_settings()
    if not settings.kafka_enabled:
        return

    try:
        producer = await _get_producer()
        if producer:
            await producer.send_and_wait(
                topic,
                json.dumps(event, default=str).encode("utf-8"),
                key=key.encode("utf-8"),
            )
            logger.info("kafka_event_published", event_type=event["event_type"], key=key)
    except Exception as e:
        # Fire-and-forget: log but don't fail the request
        logger.warning("kafka_publish_failed", event_type=event.get("event_type"), error=str(e))


async def publish_funds_released(
    transaction_id: str,
    seller_id: str,
    amount: str,
    currency: str,
    released_at: Optional[datetime] = None,
) -> None:
    """Seam to the payout scheduler; payout execution itself lives elsewhere."""
    event = {
        "event_type": "FUNDS_RELEASED",
        "transaction_id": transaction_id,
        "seller_id": seller_id,
        "amount": amount,
        "currency": currency,
        "released_at": (released_at or datetime.now(timezone.utc)).isoformat(),
    }
    await _publish(get_settings().kafka_topic_release_events, transaction_id, event)


async def publish_enforcement_action(
    user_id: str,
    action_type: str,
    reason: str,
    meta: Optional[dict[str, Any]] = None,
) -> None:
    event = {
        "event_type": "ENFORCEMENT_ACTION_APPLIED",
        "user_id": user_id,
        "action_type": action_type,
        "reason": reason,
        "meta": meta or {},
        "applied_at": datetime.now(timezone.utc).isoformat(),
    }
    await _publish(get_settings().kafka_topic_enforcement_events, user_id, event)
