# app/db/base.py

"""
Imports every ORM model so Alembic and create_all see the full schema.
New models must be imported here.
"""
from app.db.models.organization import BusinessConfigurationRow, Staff, Resource
from app.db.models.availability import Availability, SlotReservation
from app.db.models.appointment import Appointment
from app.db.session import engine, Base


async def init_db():
    """Create every scheduling table on the configured engine."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
