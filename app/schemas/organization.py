# app/schemas/organization.py

from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict

from app.schemas.schedule import WeeklySchedule


class StaffCreate(BaseModel):
    first_name: str = Field(..., min_length=1, examples=["Alex"])
    last_name: str = ""
    email: Optional[str] = None
    role: str = Field(..., examples=["stylist"])
    specialties: list[str] = Field(default_factory=list)
    is_active: bool = True
    schedule: WeeklySchedule = Field(default_factory=WeeklySchedule)


class StaffOut(BaseModel):
    id: str
    org_id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    role: str
    specialties: list[str]
    is_active: bool
    schedule: WeeklySchedule
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)


class ResourceCreate(BaseModel):
    type: Literal["equipment", "room", "facility"]
    name: str = Field(..., min_length=1, examples=["Chamber A"])
    description: Optional[str] = None
    is_active: bool = True
    schedule: WeeklySchedule = Field(default_factory=WeeklySchedule)
    staff_requirements: Optional[dict[str, Any]] = None


class ResourceOut(BaseModel):
    id: str
    org_id: str
    type: str
    name: str
    description: Optional[str] = None
    is_active: bool
    schedule: WeeklySchedule
    staff_requirements: Optional[dict[str, Any]] = None
    created_at: datetime
    model_config = ConfigDict(from_attributes=True)
