# app/crud/availability.py
"""
Availability store.

One row per (org, entity, date). Every change to ``time_slots`` goes through
``mutate_time_slots``: read the row, compute the new slot array with a pure
function, then ``UPDATE ... WHERE version = :read_version``. A writer that
loses the race re-reads and re-applies its mutation to the fresh array.
"""
from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from app.core.config import settings
from app.core.errors import AvailabilityConflictError, ConcurrentModificationError, NotFoundError
from app.core.logging import get_logger
from app.db.models.availability import Availability
from app.schemas.schedule import AvailabilitySlot, BlockReason, slots_from_json, slots_to_json
from app.services import schedule

logger = get_logger(__name__)

SlotMutation = Callable[[list[AvailabilitySlot]], list[AvailabilitySlot]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def get_availability(
    db: AsyncSession,
    *,
    entity_type: str,
    entity_id: str,
    day: date,
    org_id: Optional[str] = None,
) -> Optional[Availability]:
    stmt = sa.select(Availability).where(
        Availability.entity_type == entity_type,
        Availability.entity_id == entity_id,
        Availability.date == day,
    )
    if org_id is not None:
        stmt = stmt.where(Availability.org_id == org_id)
    # always take the committed row, not a copy cached in this session
    res = await db.execute(stmt.execution_options(populate_existing=True))
    return res.scalars().first()


async def get_availability_range(
    db: AsyncSession,
    *,
    entity_type: str,
    entity_id: str,
    start: date,
    end: date,
) -> Sequence[Availability]:
    stmt = (
        sa.select(Availability)
        .where(
            Availability.entity_type == entity_type,
            Availability.entity_id == entity_id,
            Availability.date >= start,
            Availability.date <= end,
        )
        .order_by(Availability.date.asc())
        .execution_options(populate_existing=True)
    )
    res = await db.execute(stmt)
    return res.scalars().all()


async def get_availability_by_org_and_date(db: AsyncSession, *, org_id: str, day: date) -> Sequence[Availability]:
    stmt = (
        sa.select(Availability)
        .where(Availability.org_id == org_id, Availability.date == day)
        .order_by(Availability.entity_type.asc(), Availability.entity_id.asc())
        .execution_options(populate_existing=True)
    )
    res = await db.execute(stmt)
    return res.scalars().all()


async def create_availability(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    time_slots: list[AvailabilitySlot],
    is_active: bool = True,
    override: bool = False,
) -> Availability:
    """
    Insert a new day. If a concurrent generator already created the same
    (org, entity, date), raise AvailabilityConflictError instead of the raw
    UNIQUE violation.
    """
    now = _utcnow()
    obj = Availability(
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        date=day,
        time_slots=slots_to_json(time_slots),
        is_active=is_active,
        override=override,
        version=1,
        created_at=now,
        updated_at=now,
    )
    db.add(obj)
    try:
        await db.commit()
        await db.refresh(obj)
        return obj
    except IntegrityError:
        await db.rollback()
        raise AvailabilityConflictError(entity_type=entity_type, entity_id=entity_id, date=day.isoformat())


async def mutate_time_slots(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    mutate: SlotMutation,
    values: Optional[dict[str, Any]] = None,
    max_retries: Optional[int] = None,
) -> Availability:
    """
    Compare-and-swap the slot array of one availability row.

    ``mutate`` receives the current slots and returns the new ones; it may
    raise a SchedulingError to abort without writing. ``values`` are extra
    columns written in the same statement.
    """
    attempts = max_retries or settings.SLOT_WRITE_MAX_RETRIES
    for attempt in range(1, attempts + 1):
        row = await get_availability(db, entity_type=entity_type, entity_id=entity_id, day=day, org_id=org_id)
        if row is None:
            raise NotFoundError(
                "Availability record not found",
                entity_type=entity_type,
                entity_id=entity_id,
                date=day.isoformat(),
            )

        expected = row.version
        new_slots = mutate(slots_from_json(row.time_slots))

        stmt = (
            sa.update(Availability)
            .where(Availability.id == row.id, Availability.version == expected)
            .values(
                time_slots=slots_to_json(new_slots),
                version=expected + 1,
                updated_at=_utcnow(),
                **(values or {}),
            )
            .execution_options(synchronize_session=False)
        )
        result = await db.execute(stmt)
        won = result.rowcount == 1
        await db.commit()

        if won:
            await db.refresh(row)
            return row

        logger.info(
            "availability_write_conflict",
            entity_type=entity_type,
            entity_id=entity_id,
            date=day.isoformat(),
            version=expected,
            attempt=attempt,
        )

    logger.warning(
        "availability_write_retries_exhausted",
        entity_type=entity_type,
        entity_id=entity_id,
        date=day.isoformat(),
        attempts=attempts,
    )
    raise ConcurrentModificationError(entity_type=entity_type, entity_id=entity_id, date=day.isoformat())


async def update_availability(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    updates: dict[str, Any],
) -> Availability:
    """
    Flag fields (``is_active``, ``override``) are last-writer-wins. A
    ``time_slots`` payload replaces the array through compare-and-swap.
    """
    flags = {k: v for k, v in updates.items() if k in ("is_active", "override")}

    if "time_slots" in updates:
        new_slots = [
            s if isinstance(s, AvailabilitySlot) else AvailabilitySlot.model_validate(s)
            for s in updates["time_slots"]
        ]
        return await mutate_time_slots(
            db,
            org_id=org_id,
            entity_type=entity_type,
            entity_id=entity_id,
            day=day,
            mutate=lambda _current: new_slots,
            values=flags,
        )

    row = await get_availability(db, entity_type=entity_type, entity_id=entity_id, day=day, org_id=org_id)
    if row is None:
        raise NotFoundError("Availability record not found", entity_type=entity_type, entity_id=entity_id, date=day.isoformat())
    for k, v in flags.items():
        setattr(row, k, v)
    row.updated_at = _utcnow()
    await db.commit()
    await db.refresh(row)
    return row


async def book_slot(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    start_time: str,
    end_time: str,
    appointment_id: str,
) -> Availability:
    row = await mutate_time_slots(
        db,
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        day=day,
        mutate=lambda slots: schedule.book_slots(slots, start_time, end_time, appointment_id),
    )
    logger.info(
        "slot_booked",
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        date=day.isoformat(),
        start_time=start_time,
        end_time=end_time,
        appointment_id=appointment_id,
    )
    return row


async def release_slot(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    appointment_id: str,
) -> Optional[Availability]:
    """Free every slot held by ``appointment_id``. Missing row or no match is a no-op."""
    row = await get_availability(db, entity_type=entity_type, entity_id=entity_id, day=day, org_id=org_id)
    if row is None:
        return None
    if appointment_id not in schedule.booked_ids(slots_from_json(row.time_slots)):
        return row

    try:
        row = await mutate_time_slots(
            db,
            org_id=org_id,
            entity_type=entity_type,
            entity_id=entity_id,
            day=day,
            mutate=lambda slots: schedule.release_slots(slots, appointment_id),
        )
    except NotFoundError:
        return None
    logger.info(
        "slot_released",
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        date=day.isoformat(),
        appointment_id=appointment_id,
    )
    return row


async def block_slot(
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
    return await mutate_time_slots(
        db,
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        day=day,
        mutate=lambda slots: schedule.block_slots(slots, start_time, end_time, reason, custom_reason),
    )


async def rebind_slot(
    db: AsyncSession,
    *,
    org_id: str,
    entity_type: str,
    entity_id: str,
    day: date,
    from_id: str,
    to_id: str,
) -> Availability:
    return await mutate_time_slots(
        db,
        org_id=org_id,
        entity_type=entity_type,
        entity_id=entity_id,
        day=day,
        mutate=lambda slots: schedule.rebind_slots(slots, from_id, to_id),
    )
