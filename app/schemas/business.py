# app/schemas/business.py
"""
Business configuration as read from the configuration provider.

The configuration is a closed union tagged by ``appointment_model``; only the
hybrid model carries ``require_resource_assignment`` and there it is required.
It is validated once, when the row is loaded, so callers can trust its shape.
"""

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter
from pydantic.config import ConfigDict


class CancellationPolicy(BaseModel):
    allow_cancellation: bool = True
    hours_before_appointment: int = Field(24, ge=0)
    penalty_percentage: Optional[float] = Field(None, ge=0, le=100)


class NotificationSettings(BaseModel):
    send_reminders: bool = True
    reminder_hours: list[int] = Field(default_factory=lambda: [24])
    require_confirmation: bool = False


class BusinessSettings(BaseModel):
    allow_client_selection: bool = True
    auto_assign_resources: bool = False
    buffer_between_appointments: int = Field(0, ge=0)
    max_advance_booking_days: int = Field(30, ge=0)
    cancellation_policy: CancellationPolicy = Field(default_factory=CancellationPolicy)
    notification_settings: NotificationSettings = Field(default_factory=NotificationSettings)


class HybridSettings(BusinessSettings):
    require_resource_assignment: bool


class _ConfigBase(BaseModel):
    org_id: str
    industry_type: str = "custom"
    model_config = ConfigDict(from_attributes=True)


class ProfessionalBasedConfig(_ConfigBase):
    appointment_model: Literal["professional_based"] = "professional_based"
    settings: BusinessSettings


class ResourceBasedConfig(_ConfigBase):
    appointment_model: Literal["resource_based"] = "resource_based"
    settings: BusinessSettings


class HybridConfig(_ConfigBase):
    appointment_model: Literal["hybrid"] = "hybrid"
    settings: HybridSettings


BusinessConfiguration = Annotated[
    Union[ProfessionalBasedConfig, ResourceBasedConfig, HybridConfig],
    Field(discriminator="appointment_model"),
]

business_configuration_adapter: TypeAdapter[BusinessConfiguration] = TypeAdapter(BusinessConfiguration)
