"""
backend/agenda/services/events.py

Event emitter: pushes booking events to a Redis queue for the
notification workers (email, reminders).

Queue:
- events:p2p — instant delivery (one event per booking transition)

Emission happens after the state change is committed; a failed push is
logged and never undoes the transition.
"""

import json
import time
import logging

from redis import Redis

from ..models.generated import Bookings as DBBookings

logger = logging.getLogger(__name__)

P2P_QUEUE = "events:p2p"


def emit_event(redis: Redis, event_type: str, payload: dict) -> None:
    """
    Emit a p2p event (instant delivery).

    Pushed to Redis list `events:p2p` for the consumer loop.
    """
    event = {
        "type": event_type,
        **payload,
        "ts": int(time.time()),
    }
    try:
        redis.rpush(P2P_QUEUE, json.dumps(event))
        logger.info(f"Event emitted: {event_type} → {P2P_QUEUE}")
    except Exception:
        logger.exception(f"Failed to emit event {event_type}")


def booking_payload(booking: DBBookings) -> dict:
    """What a notification needs: when, what, where, who, how much."""
    return {
        "booking_id": booking.id,
        "provider_id": booking.provider_id,
        "status": booking.status,
        "date_start": booking.date_start,
        "date_end": booking.date_end,
        "service_name": booking.service_name,
        "price": booking.price,
        "location_name": booking.location_name,
        "location_address": booking.location_address,
        "member_name": booking.member_name,
        "client_id": booking.client_id,
        "client_name": booking.client_name,
        "client_email": booking.client_email,
        "client_phone": booking.client_phone,
    }
