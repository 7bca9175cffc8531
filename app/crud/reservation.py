# app/crud/reservation.py

from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Optional, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.availability import SlotReservation


async def create_reservation(
    db: AsyncSession,
    *,
    token: str,
    org_id: str,
    day: date,
    start_time: str,
    end_time: str,
    entities: list[dict[str, str]],
    now: datetime,
) -> SlotReservation:
    obj = SlotReservation(
        token=token,
        org_id=org_id,
        date=day,
        start_time=start_time,
        end_time=end_time,
        entities=entities,
        status="pending",
        created_at=now,
        updated_at=now,
    )
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


async def get_reservation(db: AsyncSession, token: str) -> Optional[SlotReservation]:
    res = await db.execute(
        sa.select(SlotReservation)
        .where(SlotReservation.token == token)
        .execution_options(populate_existing=True)
    )
    return res.scalar_one_or_none()


async def set_reservation_status(
    db: AsyncSession,
    token: str,
    *,
    status: str,
    appointment_id: Optional[str] = None,
) -> None:
    values: dict = {"status": status, "updated_at": datetime.now(timezone.utc)}
    if appointment_id is not None:
        values["appointment_id"] = appointment_id
    await db.execute(
        sa.update(SlotReservation)
        .where(SlotReservation.token == token)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await db.commit()


async def get_pending_tokens(db: AsyncSession, tokens: Sequence[str]) -> set[str]:
    if not tokens:
        return set()
    res = await db.execute(
        sa.select(SlotReservation.token).where(
            SlotReservation.token.in_(list(tokens)),
            SlotReservation.status == "pending",
        )
    )
    return set(res.scalars().all())


async def list_expired_pending(
    db: AsyncSession,
    *,
    older_than: datetime,
    org_id: Optional[str] = None,
    limit: int = 500,
) -> Sequence[SlotReservation]:
    stmt = sa.select(SlotReservation).where(
        SlotReservation.status == "pending", SlotReservation.created_at < older_than
    )
    if org_id is not None:
        stmt = stmt.where(SlotReservation.org_id == org_id)
    res = await db.execute(stmt.order_by(SlotReservation.created_at.asc()).limit(limit))
    return res.scalars().all()
