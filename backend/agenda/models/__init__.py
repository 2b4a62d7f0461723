from .generated import (
    AgendaVersions,
    Availability,
    AvailabilityExceptions,
    Base,
    BlockedPeriods,
    Bookings,
    Locations,
    Members,
    Providers,
    Services,
)

__all__ = [
    "AgendaVersions",
    "Availability",
    "AvailabilityExceptions",
    "Base",
    "BlockedPeriods",
    "Bookings",
    "Locations",
    "Members",
    "Providers",
    "Services",
]
