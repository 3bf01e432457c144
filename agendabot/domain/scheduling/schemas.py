"""Scheduling domain schemas - Pydantic models for validation"""

from datetime import date as DateType
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, field_validator

from ...config import DEFAULT_SLOT_DURATION, DEFAULT_SLOT_GAP
from ...utils import dates


def _check_time(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    dates.parse_time_of_day(v)
    return v


class AvailabilityRuleCreate(BaseModel):
    day_of_week: int  # 0 = Monday ... 6 = Sunday
    start_time: str  # "HH:MM"
    end_time: str  # "HH:MM"
    slot_duration: int = DEFAULT_SLOT_DURATION
    slot_gap: int = DEFAULT_SLOT_GAP
    is_active: bool = True

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _check_time(v)


class AvailabilityRuleUpdate(BaseModel):
    day_of_week: Optional[int] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    slot_duration: Optional[int] = None
    slot_gap: Optional[int] = None
    is_active: Optional[bool] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def validate_time(cls, v: Optional[str]) -> Optional[str]:
        return _check_time(v)


class AvailabilityRuleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    day_of_week: int
    start_time: str
    end_time: str
    slot_duration: int
    slot_gap: int
    is_active: bool


class AvailabilitySummary(BaseModel):
    active_days: list[int]
    active_day_names: list[str]
    total_weekly_hours: float
    total_weekly_slots: int
    rule_count: int


class SlotsResponse(BaseModel):
    date: DateType
    slots: list[str]


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    customer_id: int
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    status: str
    payment_status: str
    calendar_event_id: Optional[str] = None
    price: float
    reminder_24h_sent: bool = False
    reminder_2h_sent: bool = False
    cancel_reason: Optional[str] = None
    notes: Optional[str] = None
    rescheduled_to_id: Optional[int] = None
    confirmed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BookAppointmentRequest(BaseModel):
    customer_id: int
    date: DateType
    time: str  # "HH:MM"

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _check_time(v)


class RescheduleRequest(BaseModel):
    date: DateType
    time: str

    @field_validator("time")
    @classmethod
    def validate_time(cls, v: str) -> str:
        return _check_time(v)


class CancelAppointmentRequest(BaseModel):
    reason: str = "Cancelled by the office"
