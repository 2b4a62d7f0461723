# backend/agenda/services/slots/__init__.py
"""
Slots calculation module.

Day candidates (template + blocked periods) are cached in Redis Sorted
Sets; bookings, notice and horizon are applied on every read.

Only the leaf modules are re-exported here: the stores and the engine
depend on services.catalog, which itself imports the time model.
Import them from their own modules (schedule, blocked, availability).
"""

from .config import BookingConfig, get_booking_config
from .timeslot import ForLocationOnly, ForMember, Scope, TimeRange, scope_for
from .redis_store import SlotsRedisStore
from .invalidator import invalidate_next_slot, invalidate_provider_cache

__all__ = [
    "BookingConfig",
    "get_booking_config",
    "ForLocationOnly",
    "ForMember",
    "Scope",
    "TimeRange",
    "scope_for",
    "SlotsRedisStore",
    "invalidate_next_slot",
    "invalidate_provider_cache",
]
