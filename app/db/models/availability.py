# app/db/models/availability.py

from __future__ import annotations
import datetime as dt
from datetime import datetime, timezone
from typing import Any
import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Availability(Base):
    """
    Materialized slots for one entity (staff member or resource) on one date.
    The row is the unit of atomic update: every slot-array write is a
    compare-and-swap on ``version``.
    """
    __tablename__ = "availability"
    __table_args__ = (
        sa.UniqueConstraint("org_id", "entity_type", "entity_id", "date", name="uq_availability_entity_date"),
        sa.Index("ix_availability_entity_date", "entity_type", "entity_id", "date"),
        sa.Index("ix_availability_org_date", "org_id", "date"),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    org_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    entity_type: Mapped[str] = mapped_column(sa.String(16), nullable=False)  # staff | resource
    entity_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)

    time_slots: Mapped[list[dict[str, Any]]] = mapped_column(sa.JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    override: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)


class SlotReservation(Base):
    """
    Two-phase slot hold. ``token`` is the placeholder id written into booked
    slots until the appointment exists and the hold is committed.
    """
    __tablename__ = "slot_reservations"
    __table_args__ = (
        sa.Index("ix_slot_reservations_status_created", "status", "created_at"),
    )

    token: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    org_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    date: Mapped[dt.date] = mapped_column(sa.Date, nullable=False)
    start_time: Mapped[str] = mapped_column(sa.String(5), nullable=False)
    end_time: Mapped[str] = mapped_column(sa.String(5), nullable=False)
    entities: Mapped[list[dict[str, str]]] = mapped_column(sa.JSON, nullable=False, default=list)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False, default="pending")
    appointment_id: Mapped[str | None] = mapped_column(sa.String(36))

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)
