# backend/agenda/schemas/availability.py

import datetime as _dt
from datetime import date, datetime
from typing import Optional
from pydantic import BaseModel, Field

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class TimeSlotIn(BaseModel):
    start: str = Field(pattern=TIME_PATTERN, description="HH:MM")
    end: str = Field(pattern=TIME_PATTERN, description="HH:MM")

    model_config = {"from_attributes": True}


class AvailabilitySet(BaseModel):
    """One day of the weekly template."""
    member_id: Optional[int] = None  # None = location-level agenda
    location_id: int
    day_of_week: int = Field(ge=0, le=6, description="0 = Sunday … 6 = Saturday")
    slots: list[TimeSlotIn] = []
    is_open: bool = True


class ScheduledAvailabilitySet(AvailabilitySet):
    """One weekday of the template, taking effect on a future date."""
    effective_from: date


class DayScheduleIn(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    slots: list[TimeSlotIn] = []
    is_open: bool = True


class WeeklyScheduleSet(BaseModel):
    member_id: Optional[int] = None
    location_id: int
    schedule: list[DayScheduleIn]  # exactly 7 days, checked by the store


class DayTemplateRead(BaseModel):
    id: Optional[int] = None
    member_id: Optional[int] = None
    location_id: int
    day_of_week: Optional[int] = None
    effective_from: Optional[date] = None
    date: Optional[_dt.date] = None
    is_open: bool
    slots: list[TimeSlotIn]
    reason: Optional[str] = None


class ScheduleConflictsRequest(BaseModel):
    member_id: Optional[int] = None
    location_id: int
    day: DayScheduleIn
    effective_from: Optional[date] = None  # None = the template in force now


class ScheduleConflictRead(BaseModel):
    booking_id: int
    booking_date: datetime
    client_name: Optional[str] = None
    service_name: str
    conflict_type: str  # "day_closed" | "reduced_hours"

    model_config = {"from_attributes": True}


class ScheduledChangeRead(BaseModel):
    change: DayTemplateRead
    conflicts: list[ScheduleConflictRead]


class AppliedChangesRead(BaseModel):
    applied: int


class ExceptionSet(BaseModel):
    """One-off override of a single calendar date."""
    member_id: Optional[int] = None
    location_id: int
    date: date
    slots: list[TimeSlotIn] = []
    is_open: bool = True
    reason: Optional[str] = Field(None, max_length=200)


class BlockedPeriodCreate(BaseModel):
    member_id: Optional[int] = None  # None = every member
    location_id: Optional[int] = None  # None = every location
    start_date: date
    end_date: date
    all_day: bool = False
    start_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=TIME_PATTERN)
    is_recurring: bool = False
    recurring_days: Optional[list[int]] = None
    reason: Optional[str] = Field(None, max_length=200)


class BlockedPeriodRead(BaseModel):
    id: int
    provider_id: int
    member_id: Optional[int] = None
    location_id: Optional[int] = None
    start_date: date
    end_date: date
    all_day: bool
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    is_recurring: bool
    recurring_days: Optional[list[int]] = None
    reason: Optional[str] = None

    model_config = {"from_attributes": True}
