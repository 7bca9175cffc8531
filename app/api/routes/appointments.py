# app/api/routes/appointments.py
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_clock
from app.core.business import Clock
from app.db.session import get_session
from app.schemas.appointment import (
    AppointmentCreate,
    AppointmentOut,
    AppointmentRequest,
    AppointmentStats,
    AppointmentUpdate,
    CancelRequest,
    RescheduleRequest,
)
from app.services import booking

router = APIRouter(prefix="/organizations/{org_id}/appointments", tags=["appointments"])


@router.post("", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
async def create_appointment_ep(
    org_id: str,
    payload: AppointmentRequest,
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    request = AppointmentCreate(org_id=org_id, **payload.model_dump())
    return await booking.create_appointment(db, request, clock=clock)


# static routes above the param route
@router.get("/stats", response_model=AppointmentStats)
async def appointment_stats_ep(org_id: str, start: date, end: date, db: AsyncSession = Depends(get_session)):
    return await booking.get_appointment_stats(db, org_id, start, end)


@router.get("", response_model=list[AppointmentOut])
async def list_appointments_ep(
    org_id: str,
    start: date,
    end: date,
    staff_id: Optional[str] = None,
    resource_id: Optional[str] = None,
    db: AsyncSession = Depends(get_session),
):
    return await booking.get_appointments_by_date_range(
        db, org_id, start, end, staff_id=staff_id, resource_id=resource_id
    )


@router.get("/{appointment_id}", response_model=AppointmentOut)
async def get_appointment_ep(org_id: str, appointment_id: str, db: AsyncSession = Depends(get_session)):
    return await booking.get_appointment(db, org_id, appointment_id)


@router.patch("/{appointment_id}", response_model=AppointmentOut)
async def update_appointment_ep(
    org_id: str,
    appointment_id: str,
    payload: AppointmentUpdate,
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return await booking.update_appointment(db, org_id, appointment_id, payload, clock=clock)


@router.post("/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_appointment_ep(
    org_id: str,
    appointment_id: str,
    payload: CancelRequest,
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return await booking.cancel_appointment(
        db, org_id, appointment_id, payload.cancelled_by, payload.reason, clock=clock
    )


@router.post("/{appointment_id}/reschedule", response_model=AppointmentOut)
async def reschedule_appointment_ep(
    org_id: str,
    appointment_id: str,
    payload: RescheduleRequest,
    db: AsyncSession = Depends(get_session),
    clock: Clock = Depends(get_clock),
):
    return await booking.reschedule_appointment(
        db, org_id, appointment_id, payload.new_starts_at, payload.rescheduled_by, payload.reason, clock=clock
    )


@router.post("/{appointment_id}/confirm", response_model=AppointmentOut)
async def confirm_appointment_ep(org_id: str, appointment_id: str, db: AsyncSession = Depends(get_session)):
    return await booking.confirm_appointment(db, org_id, appointment_id)


@router.post("/{appointment_id}/complete", response_model=AppointmentOut)
async def complete_appointment_ep(org_id: str, appointment_id: str, db: AsyncSession = Depends(get_session)):
    return await booking.complete_appointment(db, org_id, appointment_id)


@router.post("/{appointment_id}/no-show", response_model=AppointmentOut)
async def no_show_ep(org_id: str, appointment_id: str, db: AsyncSession = Depends(get_session)):
    return await booking.mark_no_show(db, org_id, appointment_id)
