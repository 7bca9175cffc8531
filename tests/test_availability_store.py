#!/usr/bin/env python3
"""
Tests for the availability store: record lifecycle, atomic slot mutations
and compare-and-swap behaviour under concurrent writers.
"""

import asyncio
from unittest.mock import patch

import pytest

from app.core.errors import (
    AvailabilityConflictError,
    ConcurrentModificationError,
    NotFoundError,
    SlotUnavailableError,
)
from app.crud import availability as store
from app.schemas.schedule import BlockReason, SlotReason, slots_from_json
from app.services import availability as availability_service
from app.services.schedule import generate_slots
from conftest import ORG_ID, TUESDAY, weekday_schedule


@pytest.fixture
async def staff_day(make_staff, generate):
    staff = await make_staff()
    await generate("staff", staff.id)
    return staff.id


def _booked(row):
    return {s.start_time: s.booked_appointment_id for s in slots_from_json(row.time_slots) if s.booked_appointment_id}


class TestAvailabilityRecords:

    async def test_create_and_get(self, db):
        slots = generate_slots(weekday_schedule().tuesday, 30)
        row = await store.create_availability(
            db, org_id=ORG_ID, entity_type="staff", entity_id="s1", day=TUESDAY, time_slots=slots
        )
        assert row.version == 1
        fetched = await store.get_availability(db, entity_type="staff", entity_id="s1", day=TUESDAY)
        assert fetched.id == row.id
        assert slots_from_json(fetched.time_slots) == slots

    async def test_duplicate_create_raises_conflict(self, db):
        slots = generate_slots(weekday_schedule().tuesday, 30)
        await store.create_availability(db, org_id=ORG_ID, entity_type="staff", entity_id="s1", day=TUESDAY, time_slots=slots)
        with pytest.raises(AvailabilityConflictError):
            await store.create_availability(db, org_id=ORG_ID, entity_type="staff", entity_id="s1", day=TUESDAY, time_slots=slots)

    async def test_update_flags_does_not_touch_slots(self, db, staff_day):
        row = await store.update_availability(
            db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day, day=TUESDAY, updates={"is_active": False}
        )
        assert row.is_active is False
        assert row.version == 1

    async def test_update_time_slots_bumps_version(self, db, staff_day):
        new_slots = generate_slots(weekday_schedule(start="10:00", end="11:00", breaks=()).tuesday, 30)
        row = await store.update_availability(
            db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day, day=TUESDAY,
            updates={"time_slots": [s.to_json() for s in new_slots], "override": True},
        )
        assert row.version == 2
        assert row.override is True
        assert slots_from_json(row.time_slots) == new_slots


class TestSlotMutations:

    async def test_book_missing_record_raises_not_found(self, db):
        with pytest.raises(NotFoundError):
            await store.book_slot(db, org_id=ORG_ID, entity_type="staff", entity_id="nobody", day=TUESDAY,
                                  start_time="10:00", end_time="10:30", appointment_id="a1")

    async def test_book_then_release_restores_slots(self, db, staff_day):
        before = await store.get_availability(db, entity_type="staff", entity_id=staff_day, day=TUESDAY)
        original = list(before.time_slots)

        await store.book_slot(db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day, day=TUESDAY,
                              start_time="10:00", end_time="11:00", appointment_id="a1")
        row = await store.release_slot(db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day,
                                       day=TUESDAY, appointment_id="a1")
        assert row.time_slots == original

    async def test_release_is_idempotent(self, db, staff_day):
        await store.book_slot(db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day, day=TUESDAY,
                              start_time="10:00", end_time="10:30", appointment_id="a1")
        for _ in range(2):
            await store.release_slot(db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day,
                                     day=TUESDAY, appointment_id="a1")
        row = await store.get_availability(db, entity_type="staff", entity_id=staff_day, day=TUESDAY)
        assert _booked(row) == {}
        # the second release found nothing and wrote nothing
        assert row.version == 3

    async def test_release_without_record_is_noop(self, db):
        assert await store.release_slot(db, org_id=ORG_ID, entity_type="staff", entity_id="nobody",
                                        day=TUESDAY, appointment_id="a1") is None

    async def test_block_slot(self, db, staff_day):
        row = await availability_service.block_time_slot(
            db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day, day=TUESDAY,
            start_time="14:00", end_time="15:00", reason=BlockReason.CUSTOM, custom_reason="training",
        )
        blocked = [s for s in slots_from_json(row.time_slots) if s.reason_unavailable == SlotReason.CUSTOM]
        assert [s.start_time for s in blocked] == ["14:00", "14:30"]
        assert all(s.custom_reason == "training" for s in blocked)


class TestCompareAndSwap:

    async def test_concurrent_bookings_of_same_slot(self, session_factory, staff_day):
        async def book(appointment_id):
            async with session_factory() as session:
                return await availability_service.book_slot(
                    session, org_id=ORG_ID, entity_type="staff", entity_id=staff_day, day=TUESDAY,
                    start_time="10:00", duration=30, appointment_id=appointment_id,
                )

        results = await asyncio.gather(book("a1"), book("a2"), return_exceptions=True)

        failures = [r for r in results if isinstance(r, Exception)]
        assert len(failures) == 1
        assert isinstance(failures[0], SlotUnavailableError)

        async with session_factory() as session:
            row = await store.get_availability(session, entity_type="staff", entity_id=staff_day, day=TUESDAY)
        assert list(_booked(row).keys()) == ["10:00"]
        assert _booked(row)["10:00"] in {"a1", "a2"}

    async def test_stale_writer_reapplies_on_fresh_array(self, db, session_factory, staff_day):
        real_get = store.get_availability
        state = {"raced": False}

        async def racing_get(session, **kw):
            row = await real_get(session, **kw)
            if session is db and not state["raced"]:
                state["raced"] = True
                async with session_factory() as other:
                    await store.book_slot(other, org_id=ORG_ID, entity_type="staff", entity_id=staff_day,
                                          day=TUESDAY, start_time="09:00", end_time="09:30", appointment_id="other")
            return row

        with patch.object(store, "get_availability", new=racing_get):
            row = await store.book_slot(db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day, day=TUESDAY,
                                        start_time="10:00", end_time="10:30", appointment_id="mine")

        assert _booked(row) == {"09:00": "other", "10:00": "mine"}
        assert row.version == 3

    async def test_stale_writer_loses_taken_slot(self, db, session_factory, staff_day):
        real_get = store.get_availability
        state = {"raced": False}

        async def racing_get(session, **kw):
            row = await real_get(session, **kw)
            if session is db and not state["raced"]:
                state["raced"] = True
                async with session_factory() as other:
                    await store.book_slot(other, org_id=ORG_ID, entity_type="staff", entity_id=staff_day,
                                          day=TUESDAY, start_time="10:00", end_time="10:30", appointment_id="other")
            return row

        with patch.object(store, "get_availability", new=racing_get):
            with pytest.raises(SlotUnavailableError):
                await store.book_slot(db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day, day=TUESDAY,
                                      start_time="10:00", end_time="10:30", appointment_id="mine")

    async def test_retries_exhausted(self, db, session_factory, staff_day):
        real_get = store.get_availability
        counter = {"n": 0}

        async def always_racing_get(session, **kw):
            row = await real_get(session, **kw)
            if session is db:
                counter["n"] += 1
                async with session_factory() as other:
                    await store.update_availability(other, org_id=ORG_ID, entity_type="staff", entity_id=staff_day,
                                                    day=TUESDAY, updates={"time_slots": row.time_slots})
            return row

        with patch.object(store, "get_availability", new=always_racing_get):
            with pytest.raises(ConcurrentModificationError):
                await store.mutate_time_slots(db, org_id=ORG_ID, entity_type="staff", entity_id=staff_day,
                                              day=TUESDAY, mutate=lambda slots: slots, max_retries=3)
        assert counter["n"] == 3
