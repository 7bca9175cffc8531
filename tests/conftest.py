#!/usr/bin/env python3
"""
Shared fixtures: a fresh SQLite file database per test, a pinned clock and
small factories for organizations, staff, resources and availability.
"""

import os
import sys
from datetime import date, datetime

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Must be set before app.core.config is imported anywhere
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("APP_ENV", "testing")

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.business import UTC, FixedClock
from app.crud import organization as org_crud
from app.db.session import Base
import app.db.base  # noqa: F401  registers every table on Base.metadata
from app.schemas.business import business_configuration_adapter
from app.schemas.organization import ResourceCreate, StaffCreate
from app.schemas.schedule import GenerationOptions, ScheduleDay, WeeklySchedule
from app.services.availability import generate_for_entity

ORG_ID = "org-1"
# Monday
NOW = datetime(2025, 9, 1, 8, 0, tzinfo=UTC)
TUESDAY = date(2025, 9, 2)


def weekday_schedule(start="09:00", end="17:00", breaks=(("12:00", "13:00"),)) -> WeeklySchedule:
    day = ScheduleDay(
        is_available=True,
        start_time=start,
        end_time=end,
        breaks=[{"start_time": s, "end_time": e} for s, e in breaks],
    )
    return WeeklySchedule(monday=day, tuesday=day, wednesday=day, thursday=day, friday=day)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path}/test.db")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def make_org(db):
    async def _make(org_id=ORG_ID, model="professional_based", **settings):
        if model == "hybrid":
            settings.setdefault("require_resource_assignment", False)
        config = business_configuration_adapter.validate_python(
            {"org_id": org_id, "appointment_model": model, "settings": settings}
        )
        return await org_crud.upsert_business_configuration(db, config)
    return _make


@pytest.fixture
def make_staff(db):
    async def _make(first_name="Alex", org_id=ORG_ID, specialties=(), is_active=True, schedule=None, role="stylist"):
        return await org_crud.create_staff(db, org_id, StaffCreate(
            first_name=first_name,
            role=role,
            specialties=list(specialties),
            is_active=is_active,
            schedule=schedule or weekday_schedule(),
        ))
    return _make


@pytest.fixture
def make_resource(db):
    async def _make(name="Room A", org_id=ORG_ID, is_active=True, schedule=None, type="room"):
        return await org_crud.create_resource(db, org_id, ResourceCreate(
            type=type,
            name=name,
            is_active=is_active,
            schedule=schedule or weekday_schedule(),
        ))
    return _make


@pytest.fixture
def generate(db):
    async def _generate(entity_type, entity_id, start=TUESDAY, end=None, org_id=ORG_ID,
                        slot_duration=30, override=False, force=False):
        options = GenerationOptions(
            start_date=start,
            end_date=end or start,
            slot_duration=slot_duration,
            override=override,
            force=force,
        )
        return await generate_for_entity(
            db, org_id=org_id, entity_type=entity_type, entity_id=entity_id, options=options
        )
    return _generate
