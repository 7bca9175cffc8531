#!/usr/bin/env python3
"""
Create the scheduling tables and optionally seed a demo organization.

    DATABASE_URL=sqlite+aiosqlite:///./data/scheduling.db python init_db.py --seed
"""
import argparse
import asyncio
import os
import sys
from datetime import date, timedelta
from pathlib import Path

# Add the app directory to the path
sys.path.insert(0, str(Path(__file__).parent))

DEMO_ORG = "demo-salon"


async def init_database() -> None:
    from app.db.base import init_db
    await init_db()
    print("Database tables created")


async def seed_demo() -> None:
    from app.crud import organization as org_crud
    from app.db.session import AsyncSessionLocal
    from app.schemas.business import BusinessSettings, ProfessionalBasedConfig
    from app.schemas.organization import StaffCreate
    from app.schemas.schedule import GenerationOptions, ScheduleDay, WeeklySchedule
    from app.services.availability import generate_for_organization

    weekday = ScheduleDay(is_available=True, start_time="09:00", end_time="17:00",
                          breaks=[{"start_time": "12:00", "end_time": "13:00"}])
    schedule = WeeklySchedule(monday=weekday, tuesday=weekday, wednesday=weekday,
                              thursday=weekday, friday=weekday)

    async with AsyncSessionLocal() as session:
        if await org_crud.get_business_configuration_by_org_id(session, DEMO_ORG):
            print("Demo organization already exists, skipping seed")
            return
        await org_crud.upsert_business_configuration(
            session, ProfessionalBasedConfig(org_id=DEMO_ORG, industry_type="salon", settings=BusinessSettings())
        )
        await org_crud.create_staff(session, DEMO_ORG, StaffCreate(
            first_name="Alex", last_name="Rivera", role="stylist", specialties=["haircut"], schedule=schedule,
        ))
        today = date.today()
        report = await generate_for_organization(
            session, org_id=DEMO_ORG,
            options=GenerationOptions(start_date=today, end_date=today + timedelta(days=14)),
        )
        print(f"Seeded {DEMO_ORG}: {sum(len(r.created) for r in report.reports)} availability days")


async def main(seed: bool) -> None:
    # one event loop: the engine pool is bound to it
    await init_database()
    if seed:
        await seed_demo()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Initialize the scheduling database")
    parser.add_argument("--seed", action="store_true", help="create a demo organization with availability")
    args = parser.parse_args()

    os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./data/scheduling.db")
    Path("data").mkdir(exist_ok=True)

    asyncio.run(main(args.seed))
