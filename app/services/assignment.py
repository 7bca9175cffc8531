# app/services/assignment.py
"""
Who takes a booking: staff, resource, or both, depending on the org's
appointment model.
"""
from __future__ import annotations

from datetime import date
from typing import Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    InvalidConfigurationError,
    NoAvailabilityError,
    ResourceUnavailableError,
    StaffUnavailableError,
)
from app.core.logging import get_logger
from app.schemas.appointment import AppointmentCreate, Assignment, AssignmentType
from app.schemas.business import BusinessConfiguration, HybridConfig, ProfessionalBasedConfig, ResourceBasedConfig
from app.services import availability as availability_service

logger = get_logger(__name__)


async def _first_available(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    day: date,
    start_time: str,
    duration: int,
    preferred_id: Optional[str],
    required_specialties: Optional[Sequence[str]] = None,
) -> Optional[str]:
    """
    The preferred entity if it can take the booking, else the first entity
    the finder returns. A preferred entity that cannot take it raises.
    """
    results = await availability_service.find_available_slots(
        db,
        org_id=org_id,
        day=day,
        duration=duration,
        entity_type=entity_type,
        entity_id=preferred_id,
        required_specialties=None if preferred_id else required_specialties,
        start_time=start_time,
    )
    if preferred_id:
        if not results:
            error = StaffUnavailableError if entity_type == "staff" else ResourceUnavailableError
            raise error(**{f"{entity_type}_id": preferred_id, "date": day.isoformat(), "start_time": start_time})
        return preferred_id
    return results[0].entity_id if results else None


async def determine_assignment(
    db: AsyncSession,
    request: AppointmentCreate,
    config: BusinessConfiguration,
    *,
    day: date,
    start_time: str,
) -> Assignment:
    common = dict(org_id=request.org_id, day=day, start_time=start_time, duration=request.duration)
    specialties = request.service_info.required_specialties or None

    if isinstance(config, ProfessionalBasedConfig):
        staff_id = await _first_available(
            db, entity_type="staff", preferred_id=request.preferred_staff_id,
            required_specialties=specialties, **common,
        )
        if staff_id is None:
            raise NoAvailabilityError("No staff available for the requested time", **_ctx(day, start_time))
        return Assignment(staff_id=staff_id, assignment_type=AssignmentType.STAFF_ONLY)

    if isinstance(config, ResourceBasedConfig):
        resource_id = await _first_available(
            db, entity_type="resource", preferred_id=request.preferred_resource_id, **common,
        )
        if resource_id is None:
            raise NoAvailabilityError("No resources available for the requested time", **_ctx(day, start_time))
        return Assignment(resource_id=resource_id, assignment_type=AssignmentType.RESOURCE_ONLY)

    if isinstance(config, HybridConfig):
        if config.settings.require_resource_assignment:
            staff_id = await _first_available(
                db, entity_type="staff", preferred_id=request.preferred_staff_id,
                required_specialties=specialties, **common,
            )
            resource_id = await _first_available(
                db, entity_type="resource", preferred_id=request.preferred_resource_id, **common,
            )
            if staff_id is None or resource_id is None:
                missing = "staff" if staff_id is None else "resources"
                raise NoAvailabilityError(f"No {missing} available for the requested time", **_ctx(day, start_time))
            return Assignment(staff_id=staff_id, resource_id=resource_id,
                              assignment_type=AssignmentType.STAFF_AND_RESOURCE)

        # either kind will do; a staff preference means resources are never considered
        if request.preferred_staff_id:
            staff_id = await _first_available(
                db, entity_type="staff", preferred_id=request.preferred_staff_id, **common,
            )
            return Assignment(staff_id=staff_id, assignment_type=AssignmentType.STAFF_ONLY)
        if request.preferred_resource_id:
            resource_id = await _first_available(
                db, entity_type="resource", preferred_id=request.preferred_resource_id, **common,
            )
            return Assignment(resource_id=resource_id, assignment_type=AssignmentType.RESOURCE_ONLY)

        staff_id = await _first_available(
            db, entity_type="staff", preferred_id=None, required_specialties=specialties, **common,
        )
        if staff_id is not None:
            return Assignment(staff_id=staff_id, assignment_type=AssignmentType.STAFF_ONLY)
        resource_id = await _first_available(db, entity_type="resource", preferred_id=None, **common)
        if resource_id is not None:
            return Assignment(resource_id=resource_id, assignment_type=AssignmentType.RESOURCE_ONLY)
        raise NoAvailabilityError(**_ctx(day, start_time))

    raise InvalidConfigurationError(appointment_model=getattr(config, "appointment_model", None))


def _ctx(day: date, start_time: str) -> dict:
    return {"date": day.isoformat(), "start_time": start_time}
