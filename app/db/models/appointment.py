# app/db/models/appointment.py

from __future__ import annotations
from datetime import date, datetime, timezone
from typing import Any
import uuid

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column
from app.db.session import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Appointment(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        sa.Index("ix_appointments_org_date", "org_id", "appointment_date"),
        sa.Index("ix_appointments_staff_date", "staff_id", "appointment_date"),
        sa.Index("ix_appointments_resource_date", "resource_id", "appointment_date"),
        sa.CheckConstraint(
            "staff_id IS NOT NULL OR resource_id IS NOT NULL",
            name="ck_appointments_has_assignment",
        ),
    )

    id: Mapped[str] = mapped_column(sa.String(36), primary_key=True, default=_uuid)
    org_id: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    staff_id: Mapped[str | None] = mapped_column(sa.String(64))
    resource_id: Mapped[str | None] = mapped_column(sa.String(64))

    client_info: Mapped[dict[str, Any]] = mapped_column(sa.JSON, nullable=False)
    service_info: Mapped[dict[str, Any]] = mapped_column(sa.JSON, nullable=False)

    # ISO-8601 instant exactly as supplied; its date portion keys slot lookups
    starts_at: Mapped[str] = mapped_column(sa.String(40), nullable=False)
    appointment_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    duration: Mapped[int] = mapped_column(sa.Integer, nullable=False)

    status: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="pending")
    assignment_type: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    notes: Mapped[str | None] = mapped_column(sa.Text)
    custom_fields: Mapped[dict[str, Any] | None] = mapped_column(sa.JSON)

    cancellation_info: Mapped[dict[str, Any] | None] = mapped_column(sa.JSON)
    rescheduling_history: Mapped[list[dict[str, Any]]] = mapped_column(sa.JSON, nullable=False, default=list)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )
