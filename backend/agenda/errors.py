"""
Domain errors raised by the scheduling engine.

Routers translate them to HTTP responses (see main.py). Only
SlotUnavailableError is meant to be retried by callers: re-query the
available slots and let the user pick again.
"""


class AgendaError(Exception):
    """Base class for all engine errors."""

    kind = "error"
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(AgendaError):
    """Malformed input: bad time ranges, missing fields, out-of-bounds values."""

    kind = "validation_error"


class NotFoundError(AgendaError):
    """A referenced entity does not exist or does not belong to the provider."""

    kind = "not_found"


class InvalidStateError(AgendaError):
    """The requested transition is illegal from the booking's current status."""

    kind = "invalid_state"


class SlotUnavailableError(AgendaError):
    """The requested time is no longer free (lost a race or never was)."""

    kind = "slot_unavailable"
    retryable = True


class PersistenceError(AgendaError):
    """The underlying store failed."""

    kind = "persistence_error"
