# app/db/models/organization.py
"""Rows owned by the organization-configuration side: settings, staff, resources."""

from __future__ import annotations
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


class BusinessConfigurationRow(Base):
    __tablename__ = "business_configurations"

    org_id: Mapped[str] = mapped_column(sa.String(64), primary_key=True)
    industry_type: Mapped[str] = mapped_column(sa.String(32), nullable=False, server_default="custom")
    appointment_model: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    settings: Mapped[dict[str, Any]] = mapped_column(sa.JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )


class Staff(Base):
    __tablename__ = "staff"
    __table_args__ = (
        sa.Index("ix_staff_org_role", "org_id", "role"),
    )

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True, default=_uuid)
    org_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(120), nullable=False, server_default="")
    email: Mapped[str | None] = mapped_column(sa.String(255))
    role: Mapped[str] = mapped_column(sa.String(64), nullable=False)
    specialties: Mapped[list[str]] = mapped_column(sa.JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    schedule: Mapped[dict[str, Any]] = mapped_column(sa.JSON, nullable=False)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class Resource(Base):
    __tablename__ = "resources"

    id: Mapped[str] = mapped_column(sa.String(64), primary_key=True, default=_uuid)
    org_id: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    type: Mapped[str] = mapped_column(sa.String(32), nullable=False)  # equipment | room | facility
    name: Mapped[str] = mapped_column(sa.String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(sa.Text)
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    schedule: Mapped[dict[str, Any]] = mapped_column(sa.JSON, nullable=False)
    staff_requirements: Mapped[dict[str, Any] | None] = mapped_column(sa.JSON)

    created_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def display_name(self) -> str:
        return self.name
