# app/api/routes/availability.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_clock
from app.core.business import Clock
from app.db.session import get_session
from app.schemas.schedule import (
    AvailabilityOut,
    AvailableSlotResult,
    BlockSlotRequest,
    EntityType,
    GenerationOptions,
    GenerationReport,
    OrganizationGenerationReport,
)
from app.services import availability as availability_service
from app.services import reservations

router = APIRouter(prefix="/organizations/{org_id}", tags=["availability"])


@router.post("/availability/generate", response_model=OrganizationGenerationReport)
async def generate_org_ep(org_id: str, options: GenerationOptions, db: AsyncSession = Depends(get_session)):
    return await availability_service.generate_for_organization(db, org_id=org_id, options=options)


@router.post("/availability/{entity_type}/{entity_id}/generate", response_model=GenerationReport)
async def generate_entity_ep(
    org_id: str,
    entity_type: EntityType,
    entity_id: str,
    options: GenerationOptions,
    db: AsyncSession = Depends(get_session),
):
    return await availability_service.generate_for_entity(
        db, org_id=org_id, entity_type=entity_type.value, entity_id=entity_id, options=options
    )


@router.get("/availability/search", response_model=list[AvailableSlotResult])
async def search_slots_ep(
    org_id: str,
    day: date = Query(..., alias="date"),
    duration: int = Query(..., gt=0),
    entity_type: Optional[EntityType] = None,
    entity_id: Optional[str] = None,
    specialties: Optional[list[str]] = Query(None),
    start_time: Optional[str] = Query(None, pattern=r"^\d{2}:\d{2}$"),
    db: AsyncSession = Depends(get_session),
):
    return await availability_service.find_available_slots(
        db,
        org_id=org_id,
        day=day,
        duration=duration,
        entity_type=entity_type.value if entity_type else None,
        entity_id=entity_id,
        required_specialties=specialties,
        start_time=start_time,
    )


@router.get("/availability", response_model=list[AvailabilityOut])
async def org_availability_ep(org_id: str, day: date = Query(..., alias="date"), db: AsyncSession = Depends(get_session)):
    return await availability_service.get_organization_availability(db, org_id=org_id, day=day)


@router.get("/availability/{entity_type}/{entity_id}", response_model=list[AvailabilityOut])
async def entity_availability_ep(
    org_id: str,
    entity_type: EntityType,
    entity_id: str,
    start: date,
    end: date,
    db: AsyncSession = Depends(get_session),
):
    return await availability_service.get_entity_availability(
        db, org_id=org_id, entity_type=entity_type.value, entity_id=entity_id, start=start, end=end
    )


@router.post("/availability/{entity_type}/{entity_id}/block", response_model=AvailabilityOut)
async def block_slot_ep(
    org_id: str,
    entity_type: EntityType,
    entity_id: str,
    payload: BlockSlotRequest,
    db: AsyncSession = Depends(get_session),
):
    return await availability_service.block_time_slot(
        db,
        org_id=org_id,
        entity_type=entity_type.value,
        entity_id=entity_id,
        day=payload.date,
        start_time=payload.start_time,
        end_time=payload.end_time,
        reason=payload.reason,
        custom_reason=payload.custom_reason,
    )


@router.post("/reservations/sweep")
async def sweep_reservations_ep(
    org_id: str,
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    released = await reservations.sweep_expired_reservations(db, clock=clock, org_id=org_id)
    return {"released": released}
