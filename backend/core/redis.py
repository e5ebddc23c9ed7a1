"""Per-user Redis event streams consumed by the web client."""

from __future__ import annotations

import json
import logging
from functools import lru_cache
from typing import Any, Dict, Iterable

import redis
from django.conf import settings

logger = logging.getLogger(__name__)

STREAM_MAXLEN = 1000


@lru_cache(maxsize=1)
def get_redis_client() -> "redis.Redis":
    """Return a Redis client configured from settings.REDIS_URL."""
    url = getattr(settings, "REDIS_URL", None)
    if not url:
        raise RuntimeError("REDIS_URL is not configured")
    return redis.Redis.from_url(url)


def user_stream_key(user_id: int) -> str:
    return f"events:user:{int(user_id)}"


def push_event(user_id: int, event_type: str, payload: Dict[str, Any]) -> str | None:
    """
    Append an event to one user's stream.

    Returns the stream entry id, or None when Redis is unreachable. Event delivery
    is best effort and never fails the caller.
    """
    try:
        entry_id = get_redis_client().xadd(
            user_stream_key(user_id),
            {
                "type": event_type,
                "payload": json.dumps(payload or {}, separators=(",", ":"), default=str),
            },
            maxlen=STREAM_MAXLEN,
            approximate=True,
        )
    except Exception:
        logger.warning(
            "events: failed to push event for user %s type=%s",
            user_id,
            event_type,
            exc_info=True,
        )
        return None
    if isinstance(entry_id, bytes):
        entry_id = entry_id.decode("utf-8")
    return str(entry_id)


def push_event_to_users(
    user_ids: Iterable[int], event_type: str, payload: Dict[str, Any]
) -> int:
    """Fan an event out to each distinct user; returns how many pushes succeeded."""
    delivered = 0
    for user_id in dict.fromkeys(user_ids):
        if user_id is None:
            continue
        if push_event(user_id, event_type, payload) is not None:
            delivered += 1
    return delivered
