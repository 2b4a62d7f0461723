# backend/agenda/schemas/slots.py
"""
Pydantic schemas for slots API.
"""

from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field


class SlotRead(BaseModel):
    """One bookable slot."""
    date: date
    start: str  # "HH:MM"
    end: str
    datetime: datetime
    end_datetime: datetime

    model_config = {"from_attributes": True}


class SlotsResponse(BaseModel):
    provider_id: int
    service_id: int
    location_id: int
    member_id: Optional[int] = None
    start_date: date
    end_date: date
    slots: list[SlotRead]


class SlotsDayStatus(BaseModel):
    """Status of a single day in calendar."""
    date: date
    has_slots: bool
    open_slots_count: int = 0

    model_config = {"from_attributes": True}


class SlotsCalendarResponse(BaseModel):
    """Response with calendar of available days."""
    provider_id: int
    service_id: int
    location_id: int
    member_id: Optional[int] = None
    start_date: date
    end_date: date
    days: list[SlotsDayStatus]

    # Metadata
    horizon_days: int
    min_advance_hours: int
    slot_step_minutes: int = Field(description="Grid step in minutes")
    timezone: str


class SlotCheckResponse(BaseModel):
    available: bool


class NextSlotResponse(BaseModel):
    member_id: int
    location_id: int
    service_id: int
    slot: SlotRead

    model_config = {"from_attributes": True}


class InvalidateResponse(BaseModel):
    provider_id: int
    deleted_keys: int
