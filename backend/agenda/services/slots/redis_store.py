# backend/agenda/services/slots/redis_store.py
"""
Redis storage for day candidates using Sorted Sets.

Key format: slots:day:{provider_id}:{scope}:{date}:{duration}:{step}
  scope = "L{location_id}" (location agenda) or "L{location_id}M{member_id}"
Value: Sorted Set where member = "HH:MM", score = start_ts
       (unix timestamp of the candidate start).

Query: ZRANGEBYSCORE key (threshold_ts +inf → only starts strictly after
the threshold (now + minimum notice).
Sentinel: "__empty__" with score=0 marks "calculated, zero slots".

Keys live cache_ttl_seconds; any schedule write for the provider drops
them all (see invalidator.py).
"""

import json
from datetime import date, datetime
from typing import Optional

from redis import Redis

from .config import BookingConfig, get_booking_config


EMPTY_SENTINEL = "__empty__"


def scope_token(location_id: int, member_id: Optional[int]) -> str:
    if member_id is None:
        return f"L{location_id}"
    return f"L{location_id}M{member_id}"


class SlotsRedisStore:
    """Redis storage wrapper using Sorted Sets for slot data."""

    KEY_PREFIX = "slots:day"
    NEXT_PREFIX = "slots:next"

    def __init__(self, redis: Redis, config: BookingConfig | None = None):
        self.redis = redis
        self.config = config or get_booking_config()

    def _key(
        self,
        provider_id: int,
        location_id: int,
        member_id: Optional[int],
        dt: date,
        duration: int,
    ) -> str:
        return (
            f"{self.KEY_PREFIX}:{provider_id}:{scope_token(location_id, member_id)}"
            f":{dt.isoformat()}:{duration}:{self.config.slot_step_minutes}"
        )

    def _next_key(self, provider_id: int) -> str:
        return f"{self.NEXT_PREFIX}:{provider_id}"

    # ── Write ────────────────────────────────────────────────────────────

    def store_day_slots(
        self,
        provider_id: int,
        location_id: int,
        member_id: Optional[int],
        dt: date,
        duration: int,
        slots: list[tuple[str, float]],
    ) -> None:
        """
        Store calculated candidates for a day.

        Args:
            slots: List of (time_str, start_ts) pairs.
                   Empty list → sentinel is stored.
        """
        key = self._key(provider_id, location_id, member_id, dt, duration)
        pipe = self.redis.pipeline()

        # Remove old data
        pipe.delete(key)

        if slots:
            pipe.zadd(key, {time_str: start_ts for time_str, start_ts in slots})
        else:
            # Empty day — sentinel so EXISTS returns True
            pipe.zadd(key, {EMPTY_SENTINEL: 0})
        pipe.expire(key, self.config.cache_ttl_seconds)

        pipe.execute()

    def store_next_slot(self, provider_id: int, payload: dict) -> None:
        self.redis.set(
            self._next_key(provider_id),
            json.dumps(payload),
            ex=self.config.cache_ttl_seconds,
        )

    # ── Read ─────────────────────────────────────────────────────────────

    def get_day_slots(
        self,
        provider_id: int,
        location_id: int,
        member_id: Optional[int],
        dt: date,
        duration: int,
        after: datetime,
    ) -> list[str] | None:
        """
        Get cached candidates starting strictly after `after`.

        Returns:
            Ascending list of "HH:MM" strings, or None on cache miss.
        """
        key = self._key(provider_id, location_id, member_id, dt, duration)
        if not self.redis.exists(key):
            return None

        members = self.redis.zrangebyscore(key, f"({after.timestamp()}", "+inf")
        result = []
        for m in members:
            value = m.decode() if isinstance(m, bytes) else m
            if value != EMPTY_SENTINEL:
                result.append(value)
        return result

    def get_next_slot(self, provider_id: int) -> dict | None:
        raw = self.redis.get(self._next_key(provider_id))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode()
        return json.loads(raw)

    # ── Delete ───────────────────────────────────────────────────────────

    def delete_provider_slots(self, provider_id: int) -> int:
        """
        Delete every cached day and the next-slot entry of a provider.

        Returns:
            Number of deleted keys.
        """
        keys = list(self.redis.keys(f"{self.KEY_PREFIX}:{provider_id}:*"))
        keys.append(self._next_key(provider_id))
        return self.redis.delete(*keys)
