#!/usr/bin/env python3
"""
Tests for two-phase slot reservations and the expiry sweep.
"""

from datetime import timedelta
from unittest.mock import patch

import pytest

from app.core.errors import InvalidRequestError, NotFoundError, SlotUnavailableError
from app.crud import availability as store
from app.crud import reservation as reservation_crud
from app.schemas.appointment import Assignment
from app.schemas.schedule import slots_from_json
from app.services import reservations
from conftest import ORG_ID, TUESDAY


async def _holder(db, entity_type, entity_id, start_time="10:00"):
    row = await store.get_availability(db, entity_type=entity_type, entity_id=entity_id, day=TUESDAY)
    return next(s for s in slots_from_json(row.time_slots) if s.start_time == start_time).booked_appointment_id


@pytest.fixture
async def pair(make_staff, make_resource, generate):
    staff = await make_staff()
    room = await make_resource()
    await generate("staff", staff.id)
    await generate("resource", room.id)
    return staff.id, room.id


async def _reserve(db, clock, staff_id=None, resource_id=None, start_time="10:00"):
    return await reservations.reserve(
        db, org_id=ORG_ID, day=TUESDAY, start_time=start_time, duration=30,
        assignment=Assignment.derive(staff_id, resource_id), clock=clock,
    )


class TestReserveCommitRelease:

    async def test_reserve_books_every_entity_under_token(self, db, clock, pair):
        staff_id, room_id = pair
        token = await _reserve(db, clock, staff_id, room_id)
        assert token.token.startswith("rsv_")
        assert token.end_time == "10:30"
        assert await _holder(db, "staff", staff_id) == token.token
        assert await _holder(db, "resource", room_id) == token.token

        row = await reservation_crud.get_reservation(db, token.token)
        assert row.status == reservations.PENDING

    async def test_commit_rebinds_to_appointment(self, db, clock, pair):
        staff_id, room_id = pair
        token = await _reserve(db, clock, staff_id, room_id)
        await reservations.commit(db, token.token, "appt-1")

        assert await _holder(db, "staff", staff_id) == "appt-1"
        assert await _holder(db, "resource", room_id) == "appt-1"
        row = await reservation_crud.get_reservation(db, token.token)
        assert (row.status, row.appointment_id) == (reservations.COMMITTED, "appt-1")

        # repeating the same commit is harmless
        await reservations.commit(db, token.token, "appt-1")
        with pytest.raises(InvalidRequestError):
            await reservations.commit(db, token.token, "appt-2")

    async def test_commit_unknown_token(self, db):
        with pytest.raises(NotFoundError):
            await reservations.commit(db, "rsv_missing", "appt-1")

    async def test_release_frees_slots(self, db, clock, pair):
        staff_id, room_id = pair
        token = await _reserve(db, clock, staff_id, room_id)
        assert await reservations.release(db, token.token) is True
        assert await _holder(db, "staff", staff_id) is None
        assert await _holder(db, "resource", room_id) is None
        # already released
        assert await reservations.release(db, token.token) is False

    async def test_release_after_commit_is_noop(self, db, clock, pair):
        staff_id, _ = pair
        token = await _reserve(db, clock, staff_id)
        await reservations.commit(db, token.token, "appt-1")
        assert await reservations.release(db, token.token) is False
        assert await _holder(db, "staff", staff_id) == "appt-1"

    async def test_second_entity_failure_compensates_first(self, db, clock, pair):
        staff_id, room_id = pair
        await store.book_slot(db, org_id=ORG_ID, entity_type="resource", entity_id=room_id, day=TUESDAY,
                              start_time="10:00", end_time="10:30", appointment_id="someone-else")

        with pytest.raises(SlotUnavailableError):
            await _reserve(db, clock, staff_id, room_id)

        assert await _holder(db, "staff", staff_id) is None
        assert await _holder(db, "resource", room_id) == "someone-else"

    async def test_compensation_failure_keeps_original_error(self, db, clock, pair):
        staff_id, room_id = pair
        await store.book_slot(db, org_id=ORG_ID, entity_type="resource", entity_id=room_id, day=TUESDAY,
                              start_time="10:00", end_time="10:30", appointment_id="someone-else")

        with patch.object(reservation_crud, "set_reservation_status", side_effect=RuntimeError("db gone")):
            with pytest.raises(SlotUnavailableError):
                await _reserve(db, clock, staff_id, room_id)


class TestSweep:

    async def test_releases_only_expired_pending(self, db, clock, pair):
        staff_id, _ = pair
        stale = await _reserve(db, clock, staff_id, start_time="10:00")
        committed = await _reserve(db, clock, staff_id, start_time="11:00")
        await reservations.commit(db, committed.token, "appt-1")

        clock.advance(minutes=10)
        fresh = await _reserve(db, clock, staff_id, start_time="14:00")

        released = await reservations.sweep_expired_reservations(db, clock=clock, ttl=timedelta(minutes=5))

        assert released == 1
        assert await _holder(db, "staff", staff_id, "10:00") is None
        assert await _holder(db, "staff", staff_id, "11:00") == "appt-1"
        assert await _holder(db, "staff", staff_id, "14:00") == fresh.token
        assert (await reservation_crud.get_reservation(db, stale.token)).status == reservations.RELEASED

    async def test_nothing_to_sweep(self, db, clock):
        assert await reservations.sweep_expired_reservations(db, clock=clock, ttl=timedelta(minutes=5)) == 0
