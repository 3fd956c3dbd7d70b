"""Replay protection and payload normalization for provider webhooks."""
from typing import Any, Dict, Optional

from mmda_revenue.redis_client import redis_client

IDEMPOTENCY_KEY_TPL = "webhook:{provider}:{event_id}"
EVENT_TTL_SECONDS = 60 * 60 * 24


async def mark_event_processed(provider: str, event_id: str, ttl: int = EVENT_TTL_SECONDS) -> bool:
    key = IDEMPOTENCY_KEY_TPL.format(provider=provider, event_id=event_id)
    # set NX to ensure we only process once
    added = await redis_client.set(key, "1", ex=ttl, nx=True)
    return bool(added)


async def is_event_processed(provider: str, event_id: str) -> bool:
    key = IDEMPOTENCY_KEY_TPL.format(provider=provider, event_id=event_id)
    return bool(await redis_client.exists(key))


def event_data(payload: Dict[str, Any]) -> Dict[str, Any]:
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


def extract_event_id(payload: Dict[str, Any]) -> Optional[str]:
    data = event_data(payload)
    for source in (payload, data):
        for field in ("event_id", "id", "transaction_id", "reference"):
            value = source.get(field)
            if value:
                return str(value)
    return None


def extract_transaction_ref(payload: Dict[str, Any]) -> Optional[str]:
    data = event_data(payload)
    value = data.get("transaction_id") or data.get("reference")
    return str(value) if value else None


def extract_status(payload: Dict[str, Any]) -> Optional[str]:
    data = event_data(payload)
    value = data.get("status") or data.get("transaction_status")
    return str(value) if value else None
