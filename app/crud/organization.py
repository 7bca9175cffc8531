# app/crud/organization.py
"""Read side of organization data: business configuration, staff, resources."""
from __future__ import annotations
from datetime import datetime, timezone
from typing import Optional, Sequence

import sqlalchemy as sa
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import InvalidConfigurationError
from app.db.models.organization import BusinessConfigurationRow, Resource, Staff
from app.schemas.business import BusinessConfiguration, business_configuration_adapter
from app.schemas.organization import ResourceCreate, StaffCreate


# ---------- business configuration ----------

async def get_business_configuration_by_org_id(db: AsyncSession, org_id: str) -> Optional[BusinessConfiguration]:
    """
    Load and validate the org's configuration once. Returns None when the org
    has none; raises InvalidConfigurationError when the stored shape is bad.
    """
    row = await db.get(BusinessConfigurationRow, org_id)
    if row is None:
        return None
    try:
        return business_configuration_adapter.validate_python({
            "org_id": row.org_id,
            "industry_type": row.industry_type,
            "appointment_model": row.appointment_model,
            "settings": row.settings,
        })
    except ValidationError as e:
        raise InvalidConfigurationError(org_id=org_id, errors=e.errors(include_url=False, include_context=False))


async def upsert_business_configuration(db: AsyncSession, config: BusinessConfiguration) -> BusinessConfiguration:
    row = await db.get(BusinessConfigurationRow, config.org_id)
    payload = config.settings.model_dump(mode="json")
    if row is None:
        row = BusinessConfigurationRow(org_id=config.org_id)
        db.add(row)
    row.industry_type = config.industry_type
    row.appointment_model = config.appointment_model
    row.settings = payload
    row.updated_at = datetime.now(timezone.utc)
    await db.commit()
    return config


# ---------- staff ----------

async def get_staff_by_id(db: AsyncSession, staff_id: str) -> Optional[Staff]:
    return await db.get(Staff, staff_id)


async def get_staff_by_org_id(db: AsyncSession, org_id: str, *, active_only: bool = True) -> Sequence[Staff]:
    stmt = sa.select(Staff).where(Staff.org_id == org_id)
    if active_only:
        stmt = stmt.where(Staff.is_active.is_(True))
    stmt = stmt.order_by(Staff.first_name.asc(), Staff.last_name.asc(), Staff.id.asc())
    res = await db.execute(stmt)
    return res.scalars().all()


async def get_staff_by_role(db: AsyncSession, org_id: str, role: str) -> Sequence[Staff]:
    stmt = (
        sa.select(Staff)
        .where(Staff.org_id == org_id, Staff.role == role, Staff.is_active.is_(True))
        .order_by(Staff.first_name.asc(), Staff.last_name.asc(), Staff.id.asc())
    )
    res = await db.execute(stmt)
    return res.scalars().all()


async def get_staff_by_specialty(db: AsyncSession, org_id: str, specialty: str) -> list[Staff]:
    # specialties is a JSON list; filter in Python so sqlite and postgres agree
    staff = await get_staff_by_org_id(db, org_id)
    return [s for s in staff if specialty in (s.specialties or [])]


async def create_staff(db: AsyncSession, org_id: str, data: StaffCreate) -> Staff:
    obj = Staff(
        org_id=org_id,
        first_name=data.first_name,
        last_name=data.last_name,
        email=data.email,
        role=data.role,
        specialties=list(data.specialties),
        is_active=data.is_active,
        schedule=data.schedule.model_dump(mode="json"),
        created_at=datetime.now(timezone.utc),
    )
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj


# ---------- resources ----------

async def get_resource_by_id(db: AsyncSession, resource_id: str) -> Optional[Resource]:
    return await db.get(Resource, resource_id)


async def get_resources_by_org_id(db: AsyncSession, org_id: str, *, active_only: bool = True) -> Sequence[Resource]:
    stmt = sa.select(Resource).where(Resource.org_id == org_id)
    if active_only:
        stmt = stmt.where(Resource.is_active.is_(True))
    stmt = stmt.order_by(Resource.name.asc(), Resource.id.asc())
    res = await db.execute(stmt)
    return res.scalars().all()


async def create_resource(db: AsyncSession, org_id: str, data: ResourceCreate) -> Resource:
    obj = Resource(
        org_id=org_id,
        type=data.type,
        name=data.name,
        description=data.description,
        is_active=data.is_active,
        schedule=data.schedule.model_dump(mode="json"),
        staff_requirements=data.staff_requirements,
        created_at=datetime.now(timezone.utc),
    )
    db.add(obj)
    await db.commit()
    await db.refresh(obj)
    return obj
