# backend/agenda/schemas/bookings.py

from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

BookingStatus = Literal["pending", "confirmed", "cancelled", "completed", "noshow"]


class ClientInfo(BaseModel):
    name: str = Field(min_length=1, max_length=200)
    email: Optional[str] = Field(None, max_length=254)
    phone: Optional[str] = Field(None, max_length=50)


class BookingCreate(BaseModel):
    provider_id: int
    service_id: int
    location_id: int
    member_id: Optional[int] = None  # None = location-level agenda

    # Naive = wall-clock time in the provider's timezone
    datetime: datetime

    # Exactly one of client_id / client_info, checked by the service
    client_id: Optional[str] = None
    client_info: Optional[ClientInfo] = None

    notes: Optional[str] = Field(None, max_length=1000)


class BookingRead(BaseModel):
    id: int

    provider_id: int
    location_id: int
    service_id: int
    member_id: Optional[int] = None

    date_start: datetime
    date_end: datetime
    duration: int
    buffer_time: int
    price: int

    status: str

    provider_name: str
    service_name: str
    location_name: str
    location_address: str
    member_name: Optional[str] = None

    client_id: Optional[str] = None
    client_name: Optional[str] = None
    client_email: Optional[str] = None
    client_phone: Optional[str] = None
    notes: Optional[str] = None

    cancelled_at: Optional[datetime] = None
    cancelled_by: Optional[str] = None
    cancel_reason: Optional[str] = None
    review_request_sent_at: Optional[datetime] = None

    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BookingCreated(BookingRead):
    """Creation response: the only place the cancel token is returned."""
    cancel_token: str


class ActorRequest(BaseModel):
    actor_id: str


class CancelRequest(BaseModel):
    cancelled_by: Literal["client", "provider"]
    actor_id: str
    reason: Optional[str] = Field(None, max_length=500)


class CancelByTokenRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class RescheduleRequest(BaseModel):
    new_datetime: datetime
    actor_id: str


class RescheduleRead(BaseModel):
    booking: BookingRead
    old_datetime: datetime
    new_datetime: datetime


class ReminderRequest(BaseModel):
    reminder: str = Field(min_length=1, max_length=50)  # e.g. "24h", "2h"


class BookingStats(BaseModel):
    total: int
    pending: int
    confirmed: int
    cancelled: int
    completed: int
    noshow: int
    upcoming: int
    revenue: int  # completed bookings, minor currency units


class PlanningBookingRead(BaseModel):
    """Staff planning view: no cancel token, no client id."""
    id: int
    date_start: datetime
    date_end: datetime
    duration: int
    status: str
    service_name: str
    location_name: str
    client_name: Optional[str] = None
    client_phone: Optional[str] = None
    notes: Optional[str] = None

    model_config = {"from_attributes": True}
