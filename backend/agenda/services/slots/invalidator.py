# backend/agenda/services/slots/invalidator.py
"""
Cache invalidation for provider slots.

Triggers:
✓ Availability day / weekly schedule written
✓ Scheduled availability change written or deleted
✓ Exception created or deleted
✓ Blocked period created or deleted
✓ Member moved to another location

Does NOT trigger:
✗ Booking created/cancelled/rescheduled (bookings are never cached,
  only the next-available-slot entry is dropped)
✗ Due scheduled changes applied (the template in force on each date
  does not change)
"""

import logging

from redis import Redis
from redis.exceptions import RedisError

from .redis_store import SlotsRedisStore

logger = logging.getLogger(__name__)


def invalidate_provider_cache(redis: Redis | None, provider_id: int) -> int:
    """
    Invalidate cached candidates of a provider.

    Called after the database commit: a Redis outage must not fail a
    write that already succeeded, stale keys expire with their TTL.

    Returns:
        Number of deleted cache keys
    """
    if redis is None:
        return 0
    try:
        deleted = SlotsRedisStore(redis).delete_provider_slots(provider_id)
    except RedisError as e:
        logger.error(f"Failed to invalidate slots cache for provider {provider_id}: {e}")
        return 0
    logger.info(f"Slots cache invalidated: provider={provider_id} keys={deleted}")
    return deleted


def invalidate_next_slot(redis: Redis | None, provider_id: int) -> None:
    """Bookings change the next free slot but not the cached day candidates."""
    if redis is None:
        return
    try:
        redis.delete(f"{SlotsRedisStore.NEXT_PREFIX}:{provider_id}")
    except RedisError as e:
        logger.error(f"Failed to drop next slot cache for provider {provider_id}: {e}")
