# app/schemas/appointment.py

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field, model_validator
from pydantic.config import ConfigDict


class AppointmentStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    NO_SHOW = "no_show"
    RESCHEDULED = "rescheduled"


TERMINAL_STATUSES = frozenset({AppointmentStatus.CANCELLED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW})

ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({
        AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.CONFIRMED: frozenset({
        AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW,
        AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.RESCHEDULED: frozenset({
        AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED, AppointmentStatus.NO_SHOW,
        AppointmentStatus.CANCELLED, AppointmentStatus.RESCHEDULED,
    }),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}


class AssignmentType(str, Enum):
    STAFF_ONLY = "staff_only"
    RESOURCE_ONLY = "resource_only"
    STAFF_AND_RESOURCE = "staff_and_resource"


class CancelledBy(str, Enum):
    CLIENT = "client"
    STAFF = "staff"
    ADMIN = "admin"


class ClientInfo(BaseModel):
    name: str = Field(..., examples=["Jane Doe"])
    email: Optional[str] = None
    phone: Optional[str] = Field(None, examples=["+1-587-555-0123"])
    notes: Optional[str] = None
    model_config = ConfigDict(extra="allow")


class ServiceInfo(BaseModel):
    name: str = Field(..., examples=["Haircut"])
    duration: int = Field(..., gt=0, description="Minutes")
    price: Optional[float] = None
    required_specialties: list[str] = Field(default_factory=list)
    model_config = ConfigDict(extra="allow")


class AppointmentRequest(BaseModel):
    client_info: ClientInfo
    service_info: ServiceInfo
    starts_at: str = Field(..., description="ISO-8601 instant, e.g. 2025-09-10T10:00:00Z", examples=["2025-09-10T10:00:00Z"])
    duration: int = Field(..., gt=0)
    preferred_staff_id: Optional[str] = None
    preferred_resource_id: Optional[str] = None
    notes: Optional[str] = None
    custom_fields: Optional[dict[str, Any]] = None


class AppointmentCreate(AppointmentRequest):
    org_id: str


class AppointmentUpdate(BaseModel):
    starts_at: Optional[str] = None
    duration: Optional[int] = Field(None, gt=0)
    staff_id: Optional[str] = None
    resource_id: Optional[str] = None
    client_info: Optional[ClientInfo] = None
    service_info: Optional[ServiceInfo] = None
    notes: Optional[str] = None
    custom_fields: Optional[dict[str, Any]] = None


class CancelRequest(BaseModel):
    cancelled_by: CancelledBy
    reason: Optional[str] = None


class RescheduleRequest(BaseModel):
    new_starts_at: str
    rescheduled_by: str
    reason: Optional[str] = None


class CancellationInfo(BaseModel):
    cancelled_at: datetime
    cancelled_by: CancelledBy
    reason: Optional[str] = None
    # penalty percentage charged, 0 when cancelled outside the policy window
    penalty_applied: float = 0


class ReschedulingRecord(BaseModel):
    from_datetime: str
    to_datetime: str
    rescheduled_at: datetime
    rescheduled_by: str
    reason: Optional[str] = None


class Assignment(BaseModel):
    staff_id: Optional[str] = None
    resource_id: Optional[str] = None
    assignment_type: AssignmentType

    @model_validator(mode="after")
    def _check_consistent(self) -> "Assignment":
        want_staff = self.assignment_type != AssignmentType.RESOURCE_ONLY
        want_resource = self.assignment_type != AssignmentType.STAFF_ONLY
        if want_staff != bool(self.staff_id) or want_resource != bool(self.resource_id):
            raise ValueError(f"assignment {self.assignment_type.value} does not match staff/resource ids")
        return self

    @classmethod
    def derive(cls, staff_id: Optional[str], resource_id: Optional[str]) -> "Assignment":
        if staff_id and resource_id:
            kind = AssignmentType.STAFF_AND_RESOURCE
        elif staff_id:
            kind = AssignmentType.STAFF_ONLY
        elif resource_id:
            kind = AssignmentType.RESOURCE_ONLY
        else:
            raise ValueError("assignment needs a staff member or a resource")
        return cls(staff_id=staff_id, resource_id=resource_id, assignment_type=kind)


class AppointmentOut(BaseModel):
    id: str
    org_id: str
    staff_id: Optional[str] = None
    resource_id: Optional[str] = None
    client_info: dict[str, Any]
    service_info: dict[str, Any]
    starts_at: str
    duration: int
    status: AppointmentStatus
    assignment_type: AssignmentType
    notes: Optional[str] = None
    custom_fields: Optional[dict[str, Any]] = None
    cancellation_info: Optional[dict[str, Any]] = None
    rescheduling_history: list[dict[str, Any]] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    model_config = ConfigDict(from_attributes=True)


class AppointmentStats(BaseModel):
    total: int = 0
    by_status: dict[str, int] = Field(default_factory=dict)
