# app/schemas/schedule.py

from __future__ import annotations

from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict

from app.core.business import time_to_minutes, weekday_name
from app.core.config import settings

TIME_PATTERN = r"^(([01]\d|2[0-3]):[0-5]\d|24:00)$"


class EntityType(str, Enum):
    STAFF = "staff"
    RESOURCE = "resource"


class SlotReason(str, Enum):
    BOOKED = "booked"
    BREAK = "break"
    MAINTENANCE = "maintenance"
    CUSTOM = "custom"


class BlockReason(str, Enum):
    MAINTENANCE = "maintenance"
    CUSTOM = "custom"


class BreakPeriod(BaseModel):
    start_time: str = Field(..., pattern=TIME_PATTERN, examples=["12:00"])
    end_time: str = Field(..., pattern=TIME_PATTERN, examples=["13:00"])


class ScheduleDay(BaseModel):
    is_available: bool = False
    start_time: str = Field("09:00", pattern=TIME_PATTERN)
    end_time: str = Field("17:00", pattern=TIME_PATTERN)
    breaks: list[BreakPeriod] = Field(default_factory=list)


class WeeklySchedule(BaseModel):
    monday: ScheduleDay = Field(default_factory=ScheduleDay)
    tuesday: ScheduleDay = Field(default_factory=ScheduleDay)
    wednesday: ScheduleDay = Field(default_factory=ScheduleDay)
    thursday: ScheduleDay = Field(default_factory=ScheduleDay)
    friday: ScheduleDay = Field(default_factory=ScheduleDay)
    saturday: ScheduleDay = Field(default_factory=ScheduleDay)
    sunday: ScheduleDay = Field(default_factory=ScheduleDay)

    def for_date(self, day: date) -> ScheduleDay:
        return getattr(self, weekday_name(day))


class AvailabilitySlot(BaseModel):
    """One slot of an availability day. Instances are treated as immutable."""
    model_config = ConfigDict(frozen=True)

    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    is_available: bool = True
    booked_appointment_id: Optional[str] = None
    reason_unavailable: Optional[SlotReason] = None
    custom_reason: Optional[str] = None

    @model_validator(mode="after")
    def _check_invariants(self) -> "AvailabilitySlot":
        if time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError("slot start_time must be before end_time")
        if self.is_available and (self.booked_appointment_id or self.reason_unavailable):
            raise ValueError("available slot cannot carry a booking or unavailability reason")
        if self.reason_unavailable == SlotReason.BOOKED and not self.booked_appointment_id:
            raise ValueError("booked slot requires booked_appointment_id")
        return self

    @property
    def start_minutes(self) -> int:
        return time_to_minutes(self.start_time)

    @property
    def end_minutes(self) -> int:
        return time_to_minutes(self.end_time)

    @property
    def duration(self) -> int:
        return self.end_minutes - self.start_minutes

    def booked(self, appointment_id: str) -> "AvailabilitySlot":
        return AvailabilitySlot(
            start_time=self.start_time,
            end_time=self.end_time,
            is_available=False,
            booked_appointment_id=appointment_id,
            reason_unavailable=SlotReason.BOOKED,
        )

    def blocked(self, reason: BlockReason, custom_reason: Optional[str] = None) -> "AvailabilitySlot":
        return AvailabilitySlot(
            start_time=self.start_time,
            end_time=self.end_time,
            is_available=False,
            reason_unavailable=SlotReason(reason.value),
            custom_reason=custom_reason,
        )

    def released(self) -> "AvailabilitySlot":
        return AvailabilitySlot(start_time=self.start_time, end_time=self.end_time)

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


def slots_from_json(raw: list[dict[str, Any]] | None) -> list[AvailabilitySlot]:
    return [AvailabilitySlot.model_validate(item) for item in raw or []]


def slots_to_json(slots: list[AvailabilitySlot]) -> list[dict[str, Any]]:
    return [slot.to_json() for slot in slots]


class AvailabilityOut(BaseModel):
    id: str
    org_id: str
    entity_type: EntityType
    entity_id: str
    date: date
    time_slots: list[AvailabilitySlot]
    is_active: bool
    override: bool
    version: int
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


# ---------- generation ----------

class GenerationOptions(BaseModel):
    start_date: date
    end_date: date
    slot_duration: int = Field(default_factory=lambda: settings.DEFAULT_SLOT_DURATION, gt=0, le=24 * 60)
    override: bool = False
    # drop live bookings that no longer fit a regenerated day instead of failing it
    force: bool = False

    @model_validator(mode="after")
    def _check_range(self) -> "GenerationOptions":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class DateFailure(BaseModel):
    date: date
    code: str
    message: str


class GenerationReport(BaseModel):
    entity_type: EntityType
    entity_id: str
    created: list[date] = Field(default_factory=list)
    overwritten: list[date] = Field(default_factory=list)
    skipped: list[date] = Field(default_factory=list)
    failures: list[DateFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


class EntityFailure(BaseModel):
    entity_type: EntityType
    entity_id: str
    code: str
    message: str


class OrganizationGenerationReport(BaseModel):
    org_id: str
    reports: list[GenerationReport] = Field(default_factory=list)
    failures: list[EntityFailure] = Field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures and all(r.ok for r in self.reports)


# ---------- slot search ----------

class AvailableSlotResult(BaseModel):
    entity_type: EntityType
    entity_id: str
    entity_name: str
    date: date
    slots: list[AvailabilitySlot]


class BlockSlotRequest(BaseModel):
    date: date
    start_time: str = Field(..., pattern=TIME_PATTERN)
    end_time: str = Field(..., pattern=TIME_PATTERN)
    reason: BlockReason
    custom_reason: Optional[str] = None
