# app/services/availability.py
"""
Availability generation and slot search.

Generation materializes weekly schedules into per-day availability rows.
The finder answers "who can take a booking of N minutes on this date", and
the booking entry points wrap the store with an advisory availability check.
"""
from __future__ import annotations

from datetime import date
from typing import Iterable, Optional, Sequence, Union

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.business import add_minutes, iter_dates, time_to_minutes
from app.core.errors import (
    AvailabilityConflictError,
    InactiveEntityError,
    InvalidRequestError,
    OverrideConflictError,
    SchedulingError,
    SlotUnavailableError,
    log_error,
)
from app.core.logging import get_logger
from app.crud import appointment as appointment_crud
from app.crud import availability as store
from app.crud import organization as org_crud
from app.crud import reservation as reservation_crud
from app.db.models.availability import Availability
from app.db.models.organization import Resource, Staff
from app.schemas.appointment import AppointmentStatus
from app.schemas.schedule import (
    AvailabilitySlot,
    AvailableSlotResult,
    BlockReason,
    DateFailure,
    EntityFailure,
    EntityType,
    GenerationOptions,
    GenerationReport,
    OrganizationGenerationReport,
    WeeklySchedule,
    slots_from_json,
)
from app.services.schedule import book_slots, bookings_by_id, generate_slots

logger = get_logger(__name__)

Entity = Union[Staff, Resource]


async def _load_entity(db: AsyncSession, entity_type: str, entity_id: str) -> Optional[Entity]:
    if entity_type == EntityType.STAFF.value:
        return await org_crud.get_staff_by_id(db, entity_id)
    if entity_type == EntityType.RESOURCE.value:
        return await org_crud.get_resource_by_id(db, entity_id)
    raise InvalidRequestError(f"Unknown entity_type {entity_type!r}", entity_type=entity_type)


async def _active_entity(db: AsyncSession, org_id: str, entity_type: str, entity_id: str) -> Optional[Entity]:
    entity = await _load_entity(db, entity_type, entity_id)
    if entity is None or entity.org_id != org_id or not entity.is_active:
        return None
    return entity


# ---------- generation ----------

async def _live_booking_ids(db: AsyncSession, ids: Iterable[str]) -> set[str]:
    """Ids that still hold their slots: non-cancelled appointments and pending reservations."""
    ids = list(ids)
    appts = await appointment_crud.get_appointments_by_ids(db, ids)
    live = {a.id for a in appts if a.status != AppointmentStatus.CANCELLED.value}
    live |= await reservation_crud.get_pending_tokens(db, ids)
    return live


async def _overwrite_day(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    existing: Availability,
    fresh: list[AvailabilitySlot],
    force: bool,
) -> None:
    checked = set(bookings_by_id(slots_from_json(existing.time_slots)))
    live = await _live_booking_ids(db, checked)

    def reconcile(current: list[AvailabilitySlot]) -> list[AvailabilitySlot]:
        slots = list(fresh)
        for booking_id, (start, end) in bookings_by_id(current).items():
            # ids booked after the liveness check are kept
            if booking_id in checked and booking_id not in live:
                logger.info("override_dropped_dead_booking", entity_id=entity_id, date=day.isoformat(), booking_id=booking_id)
                continue
            try:
                slots = book_slots(slots, start, end, booking_id)
            except SlotUnavailableError:
                if not force:
                    raise OverrideConflictError(
                        date=day.isoformat(), booking_id=booking_id, start_time=start, end_time=end
                    )
                logger.warning(
                    "override_dropped_live_booking",
                    entity_type=entity_type,
                    entity_id=entity_id,
                    date=day.isoformat(),
                    booking_id=booking_id,
                )
        return slots

    await store.mutate_time_slots(
        db,
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        day=day,
        mutate=reconcile,
        values={"override": True, "is_active": True},
    )


async def generate_for_entity(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    options: GenerationOptions,
) -> GenerationReport:
    entity = await _active_entity(db, org_id, entity_type, entity_id)
    if entity is None:
        raise InactiveEntityError(entity_type=entity_type, entity_id=entity_id)

    # Cache plain values; a rollback below expires ORM instances
    weekly = WeeklySchedule.model_validate(entity.schedule)
    report = GenerationReport(entity_type=entity_type, entity_id=entity_id)

    for day in iter_dates(options.start_date, options.end_date):
        day_schedule = weekly.for_date(day)
        if not day_schedule.is_available:
            report.skipped.append(day)
            continue
        try:
            existing = await store.get_availability(
                db, entity_type=entity_type, entity_id=entity_id, day=day, org_id=org_id
            )
            if existing is not None and not options.override:
                report.skipped.append(day)
                continue

            fresh = generate_slots(day_schedule, options.slot_duration)
            if existing is None:
                try:
                    await store.create_availability(
                        db,
                        org_id=org_id,
                        entity_type=entity_type,
                        entity_id=entity_id,
                        day=day,
                        time_slots=fresh,
                        override=options.override,
                    )
                    report.created.append(day)
                except AvailabilityConflictError:
                    # another generator got there first
                    report.skipped.append(day)
            else:
                await _overwrite_day(
                    db,
                    org_id=org_id,
                    entity_type=entity_type,
                    entity_id=entity_id,
                    day=day,
                    existing=existing,
                    fresh=fresh,
                    force=options.force,
                )
                report.overwritten.append(day)
        except SchedulingError as e:
            logger.warning("generation_date_failed", entity_type=entity_type, entity_id=entity_id,
                           date=day.isoformat(), code=e.code, error=e.message)
            report.failures.append(DateFailure(date=day, code=e.code, message=e.message))
        except SQLAlchemyError as e:
            await db.rollback()
            log_error(e, {"operation": "generate_availability", "org_id": org_id})
            report.failures.append(DateFailure(date=day, code="storage_error", message="Storage error"))

    logger.info(
        "availability_generated",
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        created=len(report.created),
        overwritten=len(report.overwritten),
        skipped=len(report.skipped),
        failed=len(report.failures),
    )
    return report


async def generate_for_staff(db: AsyncSession, *, org_id: str, staff_id: str, options: GenerationOptions) -> GenerationReport:
    return await generate_for_entity(db, org_id=org_id, entity_type="staff", entity_id=staff_id, options=options)


async def generate_for_resource(db: AsyncSession, *, org_id: str, resource_id: str, options: GenerationOptions) -> GenerationReport:
    return await generate_for_entity(db, org_id=org_id, entity_type="resource", entity_id=resource_id, options=options)


async def generate_for_organization(db: AsyncSession, *, org_id: str, options: GenerationOptions) -> OrganizationGenerationReport:
    """Every active staff member, then every active resource. One entity failing never stops the rest."""
    staff_ids = [s.id for s in await org_crud.get_staff_by_org_id(db, org_id)]
    resource_ids = [r.id for r in await org_crud.get_resources_by_org_id(db, org_id)]
    targets = [("staff", sid) for sid in staff_ids] + [("resource", rid) for rid in resource_ids]

    result = OrganizationGenerationReport(org_id=org_id)
    for entity_type, entity_id in targets:
        try:
            report = await generate_for_entity(
                db, org_id=org_id, entity_type=entity_type, entity_id=entity_id, options=options
            )
            result.reports.append(report)
        except SchedulingError as e:
            result.failures.append(EntityFailure(entity_type=entity_type, entity_id=entity_id, code=e.code, message=e.message))
        except SQLAlchemyError as e:
            await db.rollback()
            log_error(e, {"operation": "generate_availability", "org_id": org_id})
            result.failures.append(EntityFailure(entity_type=entity_type, entity_id=entity_id, code="storage_error", message="Storage error"))

    logger.info(
        "organization_availability_generated",
        org_id=org_id,
        entities=len(targets),
        failed_entities=len(result.failures),
    )
    return result


# ---------- slot search ----------

def _covers(slot: AvailabilitySlot, start_time: str, duration: int) -> bool:
    # must match what book_slots can book: the slot spans exactly [start, start + duration)
    start = time_to_minutes(start_time)
    return slot.start_minutes == start and slot.end_minutes == start + duration


def _qualifying(slots: Sequence[AvailabilitySlot], duration: int, start_time: Optional[str]) -> list[AvailabilitySlot]:
    # a slot qualifies on its own span; adjacent free slots are not merged
    found = [s for s in slots if s.is_available and s.duration >= duration]
    if start_time is not None:
        found = [s for s in found if _covers(s, start_time, duration)]
    return found


def _result_for(entity_type: str, entity: Entity, day: date, row: Optional[Availability],
                duration: int, start_time: Optional[str]) -> Optional[AvailableSlotResult]:
    if row is None or not row.is_active:
        return None
    slots = _qualifying(slots_from_json(row.time_slots), duration, start_time)
    if not slots:
        return None
    return AvailableSlotResult(
        entity_type=entity_type,
        entity_id=entity.id,
        entity_name=entity.display_name,
        date=day,
        slots=slots,
    )


async def find_available_slots(
    db: AsyncSession,
    *,
    org_id: str,
    day: date,
    duration: int,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    required_specialties: Optional[Sequence[str]] = None,
    start_time: Optional[str] = None,
) -> list[AvailableSlotResult]:
    if duration <= 0:
        raise InvalidRequestError("duration must be positive", duration=duration)
    if entity_id is not None and entity_type is None:
        raise InvalidRequestError("entity_id requires entity_type")

    if entity_id is not None:
        entity = await _active_entity(db, org_id, entity_type, entity_id)
        if entity is None:
            return []
        row = await store.get_availability(db, entity_type=entity_type, entity_id=entity_id, day=day, org_id=org_id)
        result = _result_for(entity_type, entity, day, row, duration, start_time)
        return [result] if result else []

    if entity_type is None:
        staff = await find_available_slots(
            db, org_id=org_id, day=day, duration=duration, entity_type="staff",
            required_specialties=required_specialties, start_time=start_time,
        )
        resources = await find_available_slots(
            db, org_id=org_id, day=day, duration=duration, entity_type="resource", start_time=start_time,
        )
        return staff + resources

    if entity_type == EntityType.STAFF.value:
        entities: Sequence[Entity] = await org_crud.get_staff_by_org_id(db, org_id)
        if required_specialties:
            wanted = set(required_specialties)
            entities = [s for s in entities if wanted & set(s.specialties or [])]
    elif entity_type == EntityType.RESOURCE.value:
        entities = await org_crud.get_resources_by_org_id(db, org_id)
    else:
        raise InvalidRequestError(f"Unknown entity_type {entity_type!r}", entity_type=entity_type)

    rows = {
        r.entity_id: r
        for r in await store.get_availability_by_org_and_date(db, org_id=org_id, day=day)
        if r.entity_type == entity_type
    }
    results = []
    for entity in entities:
        result = _result_for(entity_type, entity, day, rows.get(entity.id), duration, start_time)
        if result is not None:
            results.append(result)
    return results


async def find_available_slot(
    db: AsyncSession,
    *,
    entity_type: str,
    entity_id: str,
    day: date,
    duration: int,
    start_time: str,
    org_id: Optional[str] = None,
) -> Optional[AvailabilitySlot]:
    """The free slot covering [start_time, start_time + duration), if any."""
    row = await store.get_availability(db, entity_type=entity_type, entity_id=entity_id, day=day, org_id=org_id)
    if row is None or not row.is_active:
        return None
    found = _qualifying(slots_from_json(row.time_slots), duration, start_time)
    return found[0] if found else None


# ---------- booking entry points ----------

async def book_slot(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    start_time: str,
    duration: int,
    appointment_id: str,
) -> Availability:
    end_time = add_minutes(start_time, duration)

    # advisory; the store's compare-and-swap is what actually decides
    slot = await find_available_slot(
        db, entity_type=entity_type, entity_id=entity_id, day=day,
        duration=duration, start_time=start_time, org_id=org_id,
    )
    if slot is None:
        raise SlotUnavailableError(
            entity_type=entity_type, entity_id=entity_id, date=day.isoformat(), start_time=start_time
        )

    return await store.book_slot(
        db,
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        day=day,
        start_time=start_time,
        end_time=end_time,
        appointment_id=appointment_id,
    )


async def release_slot(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    appointment_id: str,
) -> None:
    await store.release_slot(
        db, org_id=org_id, entity_type=entity_type, entity_id=entity_id, day=day, appointment_id=appointment_id
    )


async def block_time_slot(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    start_time: str,
    end_time: str,
    reason: BlockReason,
    custom_reason: Optional[str] = None,
) -> Availability:
    if time_to_minutes(start_time) >= time_to_minutes(end_time):
        raise InvalidRequestError("start_time must be before end_time", start_time=start_time, end_time=end_time)
    row = await store.block_slot(
        db,
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        day=day,
        start_time=start_time,
        end_time=end_time,
        reason=reason,
        custom_reason=custom_reason,
    )
    logger.info("slot_blocked", org_id=org_id, entity_type=entity_type, entity_id=entity_id,
                date=day.isoformat(), start_time=start_time, end_time=end_time, reason=reason.value)
    return row


async def get_entity_availability(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    start: date,
    end: date,
) -> Sequence[Availability]:
    if end < start:
        raise InvalidRequestError("end date must be on or after start date")
    rows = await store.get_availability_range(db, entity_type=entity_type, entity_id=entity_id, start=start, end=end)
    return [r for r in rows if r.org_id == org_id]


async def get_organization_availability(db: AsyncSession, *, org_id: str, day: date) -> Sequence[Availability]:
    return await store.get_availability_by_org_and_date(db, org_id=org_id, day=day)
