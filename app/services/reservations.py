# app/services/reservations.py
"""
Two-phase slot reservation: reserve -> commit | release.

A reservation books the slots of every assigned entity under a token before
the appointment row exists. ``commit`` rebinds those slots to the real
appointment id; ``release`` frees them. Reservations left pending past the
TTL (e.g. the process died between reserve and persist) are swept.
"""
from __future__ import annotations

import uuid
from datetime import date, timedelta
from typing import Optional

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.business import Clock, add_minutes, system_clock
from app.core.config import settings
from app.core.errors import InvalidRequestError, NotFoundError
from app.core.logging import get_logger
from app.crud import appointment as appointment_crud
from app.crud import availability as store
from app.crud import reservation as reservation_crud
from app.schemas.appointment import AppointmentStatus, Assignment
from app.services import availability as availability_service

logger = get_logger(__name__)

PENDING = "pending"
COMMITTED = "committed"
RELEASED = "released"


class ReservedEntity(BaseModel):
    entity_type: str
    entity_id: str


class ReservationToken(BaseModel):
    token: str
    org_id: str
    date: date
    start_time: str
    end_time: str
    entities: list[ReservedEntity] = Field(default_factory=list)


def _entities_for(assignment: Assignment) -> list[ReservedEntity]:
    entities = []
    if assignment.staff_id:
        entities.append(ReservedEntity(entity_type="staff", entity_id=assignment.staff_id))
    if assignment.resource_id:
        entities.append(ReservedEntity(entity_type="resource", entity_id=assignment.resource_id))
    return entities


async def _release_entities(
    db: AsyncSession, *, org_id: str, day: date, entities: list[ReservedEntity], booking_ids: list[str]
) -> None:
    for ent in entities:
        for booking_id in booking_ids:
            await store.release_slot(
                db,
                org_id=org_id,
                entity_type=ent.entity_type,
                entity_id=ent.entity_id,
                day=day,
                appointment_id=booking_id,
            )


async def reserve(
    db: AsyncSession,
    *,
    org_id: str,
    day: date,
    start_time: str,
    duration: int,
    assignment: Assignment,
    clock: Clock = system_clock,
) -> ReservationToken:
    """
    Book every assigned entity under a fresh token. If a later entity fails,
    the ones already booked are released and the reservation is closed
    before the error propagates.
    """
    token = ReservationToken(
        token=f"rsv_{uuid.uuid4().hex}",
        org_id=org_id,
        date=day,
        start_time=start_time,
        end_time=add_minutes(start_time, duration),
        entities=_entities_for(assignment),
    )
    await reservation_crud.create_reservation(
        db,
        token=token.token,
        org_id=org_id,
        day=day,
        start_time=token.start_time,
        end_time=token.end_time,
        entities=[e.model_dump() for e in token.entities],
        now=clock.now(),
    )

    booked: list[ReservedEntity] = []
    try:
        for ent in token.entities:
            await availability_service.book_slot(
                db,
                org_id=org_id,
                entity_type=ent.entity_type,
                entity_id=ent.entity_id,
                day=day,
                start_time=start_time,
                duration=duration,
                appointment_id=token.token,
            )
            booked.append(ent)
    except Exception:
        try:
            await _release_entities(db, org_id=org_id, day=day, entities=booked, booking_ids=[token.token])
            await reservation_crud.set_reservation_status(db, token.token, status=RELEASED)
        except Exception as cleanup_error:
            logger.error("reservation_compensation_failed", token=token.token, error=str(cleanup_error))
        raise

    logger.info(
        "slots_reserved",
        org_id=org_id,
        token=token.token,
        date=day.isoformat(),
        start_time=start_time,
        entities=[e.entity_id for e in token.entities],
    )
    return token


async def commit(db: AsyncSession, token: str, appointment_id: str) -> None:
    """Rebind the token's slots to the appointment. Repeating a commit is harmless."""
    row = await reservation_crud.get_reservation(db, token)
    if row is None:
        raise NotFoundError("Reservation not found", token=token)
    if row.status == COMMITTED and row.appointment_id == appointment_id:
        return
    if row.status != PENDING:
        raise InvalidRequestError("Reservation is no longer pending", token=token, status=row.status)

    org_id, day = row.org_id, row.date
    entities = [ReservedEntity.model_validate(e) for e in row.entities]

    # record the owner first so a sweep can finish a half-done commit
    await reservation_crud.set_reservation_status(db, token, status=PENDING, appointment_id=appointment_id)
    for ent in entities:
        await store.rebind_slot(
            db,
            org_id=org_id,
            entity_type=ent.entity_type,
            entity_id=ent.entity_id,
            day=day,
            from_id=token,
            to_id=appointment_id,
        )
    await reservation_crud.set_reservation_status(db, token, status=COMMITTED, appointment_id=appointment_id)
    logger.info("reservation_committed", token=token, appointment_id=appointment_id)


async def release(db: AsyncSession, token: str) -> bool:
    """
    Free whatever the reservation still holds. Returns False when there is
    nothing to do (unknown, already released or committed).
    """
    row = await reservation_crud.get_reservation(db, token)
    if row is None or row.status != PENDING:
        return False

    org_id, day, appointment_id = row.org_id, row.date, row.appointment_id
    entities = [ReservedEntity.model_validate(e) for e in row.entities]
    booking_ids = [token] + ([appointment_id] if appointment_id else [])

    await _release_entities(db, org_id=org_id, day=day, entities=entities, booking_ids=booking_ids)
    await reservation_crud.set_reservation_status(db, token, status=RELEASED)
    logger.info("reservation_released", token=token, org_id=org_id, date=day.isoformat())
    return True


async def sweep_expired_reservations(
    db: AsyncSession,
    *,
    clock: Clock = system_clock,
    ttl: Optional[timedelta] = None,
    org_id: Optional[str] = None,
) -> int:
    """
    Close pending reservations older than the TTL. A reservation whose
    appointment was persisted and is still live is committed; every other
    one is released. Returns how many were released.
    """
    ttl = ttl if ttl is not None else timedelta(seconds=settings.RESERVATION_TTL_SECONDS)
    cutoff = clock.now() - ttl
    expired = await reservation_crud.list_expired_pending(db, older_than=cutoff, org_id=org_id)
    pending = [(r.token, r.appointment_id) for r in expired]

    released = 0
    for token, appointment_id in pending:
        if appointment_id:
            appt = await appointment_crud.get_appointment(db, appointment_id)
            if appt is not None and appt.status != AppointmentStatus.CANCELLED.value:
                await commit(db, token, appointment_id)
                continue
        if await release(db, token):
            released += 1

    if pending:
        logger.info("reservations_swept", expired=len(pending), released=released)
    return released
