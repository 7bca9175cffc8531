# app/crud/appointment.py

from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.appointment import Appointment


async def create_appointment(
    db: AsyncSession,
    *,
    org_id: str,
    staff_id: Optional[str],
    resource_id: Optional[str],
    client_info: dict[str, Any],
    service_info: dict[str, Any],
    starts_at: str,
    appointment_date: date,
    duration: int,
    status: str,
    assignment_type: str,
    notes: Optional[str] = None,
    custom_fields: Optional[dict[str, Any]] = None,
) -> Appointment:
    now = datetime.now(timezone.utc)
    appt = Appointment(
        org_id=org_id,
        staff_id=staff_id,
        resource_id=resource_id,
        client_info=client_info,
        service_info=service_info,
        starts_at=starts_at,
        appointment_date=appointment_date,
        duration=duration,
        status=status,
        assignment_type=assignment_type,
        notes=notes,
        custom_fields=custom_fields,
        rescheduling_history=[],
        created_at=now,
        updated_at=now,
    )
    db.add(appt)
    await db.commit()
    await db.refresh(appt)
    return appt


async def get_appointment(db: AsyncSession, appointment_id: str, *, org_id: Optional[str] = None) -> Optional[Appointment]:
    stmt = sa.select(Appointment).where(Appointment.id == appointment_id)
    if org_id is not None:
        stmt = stmt.where(Appointment.org_id == org_id)
    res = await db.execute(stmt.execution_options(populate_existing=True))
    return res.scalar_one_or_none()


async def get_appointments_by_ids(db: AsyncSession, ids: Sequence[str]) -> Sequence[Appointment]:
    if not ids:
        return []
    res = await db.execute(sa.select(Appointment).where(Appointment.id.in_(list(ids))))
    return res.scalars().all()


async def update_appointment(db: AsyncSession, appt: Appointment, changes: dict[str, Any]) -> Appointment:
    for k, v in changes.items():
        setattr(appt, k, v)
    appt.updated_at = datetime.now(timezone.utc)
    await db.commit()
    await db.refresh(appt)
    return appt


async def delete_appointment(db: AsyncSession, appointment_id: str) -> bool:
    res = await db.execute(
        sa.delete(Appointment)
        .where(Appointment.id == appointment_id)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return res.rowcount > 0


async def list_appointments(
    db: AsyncSession,
    *,
    org_id: str,
    start: date,
    end: date,
    staff_id: Optional[str] = None,
    resource_id: Optional[str] = None,
    limit: int = 500,
) -> Sequence[Appointment]:
    q = sa.select(Appointment).where(
        Appointment.org_id == org_id,
        Appointment.appointment_date >= start,
        Appointment.appointment_date <= end,
    )
    if staff_id is not None:
        q = q.where(Appointment.staff_id == staff_id)
    if resource_id is not None:
        q = q.where(Appointment.resource_id == resource_id)
    q = q.order_by(Appointment.appointment_date.asc(), Appointment.starts_at.asc()).limit(limit)
    res = await db.execute(q)
    return res.scalars().all()


async def count_by_status(db: AsyncSession, *, org_id: str, start: date, end: date) -> dict[str, int]:
    q = (
        sa.select(Appointment.status, sa.func.count(Appointment.id))
        .where(
            Appointment.org_id == org_id,
            Appointment.appointment_date >= start,
            Appointment.appointment_date <= end,
        )
        .group_by(Appointment.status)
    )
    res = await db.execute(q)
    return {status: count for status, count in res.all()}
