#!/usr/bin/env python3
"""
Tests for assignment resolution across the three appointment models.
"""

import pytest

from app.core.errors import NoAvailabilityError, ResourceUnavailableError, StaffUnavailableError
from app.schemas.appointment import AppointmentCreate, AssignmentType
from app.services.assignment import determine_assignment
from conftest import ORG_ID, TUESDAY


def _request(**kw):
    specialties = kw.pop("specialties", [])
    return AppointmentCreate(
        org_id=ORG_ID,
        client_info={"name": "Jane Doe"},
        service_info={"name": "Cut", "duration": 30, "required_specialties": specialties},
        starts_at="2025-09-02T10:00:00Z",
        duration=30,
        **kw,
    )


async def _assign(db, config, request=None, start_time="10:00"):
    return await determine_assignment(db, request or _request(), config, day=TUESDAY, start_time=start_time)


@pytest.fixture
async def two_staff(make_staff, generate):
    alex = await make_staff("Alex", specialties=["colour"])
    bea = await make_staff("Bea", specialties=["beard"])
    for s in (alex, bea):
        await generate("staff", s.id)
    return alex, bea


@pytest.fixture
async def one_room(make_resource, generate):
    room = await make_resource("Room A")
    await generate("resource", room.id)
    return room


class TestProfessionalBased:

    async def test_first_available_staff(self, db, make_org, two_staff):
        alex, _ = two_staff
        a = await _assign(db, await make_org())
        assert a.assignment_type == AssignmentType.STAFF_ONLY
        assert (a.staff_id, a.resource_id) == (alex.id, None)

    async def test_preferred_staff(self, db, make_org, two_staff):
        _, bea = two_staff
        a = await _assign(db, await make_org(), _request(preferred_staff_id=bea.id))
        assert a.staff_id == bea.id

    async def test_preferred_staff_unavailable(self, db, make_org, two_staff):
        _, bea = two_staff
        with pytest.raises(StaffUnavailableError):
            await _assign(db, await make_org(), _request(preferred_staff_id=bea.id), start_time="12:00")

    async def test_specialty_narrows_choice(self, db, make_org, two_staff):
        _, bea = two_staff
        a = await _assign(db, await make_org(), _request(specialties=["beard"]))
        assert a.staff_id == bea.id

    async def test_nobody_free(self, db, make_org, two_staff):
        with pytest.raises(NoAvailabilityError):
            await _assign(db, await make_org(), start_time="12:30")

    async def test_resources_ignored(self, db, make_org, one_room):
        with pytest.raises(NoAvailabilityError):
            await _assign(db, await make_org())


class TestResourceBased:

    async def test_first_available_resource(self, db, make_org, one_room, two_staff):
        a = await _assign(db, await make_org(model="resource_based"))
        assert a.assignment_type == AssignmentType.RESOURCE_ONLY
        assert (a.staff_id, a.resource_id) == (None, one_room.id)

    async def test_preferred_resource_unavailable(self, db, make_org, one_room):
        with pytest.raises(ResourceUnavailableError):
            await _assign(db, await make_org(model="resource_based"),
                          _request(preferred_resource_id="missing-room"))

    async def test_no_resources(self, db, make_org, two_staff):
        with pytest.raises(NoAvailabilityError):
            await _assign(db, await make_org(model="resource_based"))


class TestHybridRequiringResource:

    async def test_staff_and_resource(self, db, make_org, two_staff, one_room):
        alex, _ = two_staff
        a = await _assign(db, await make_org(model="hybrid", require_resource_assignment=True))
        assert a.assignment_type == AssignmentType.STAFF_AND_RESOURCE
        assert (a.staff_id, a.resource_id) == (alex.id, one_room.id)

    async def test_missing_resource_fails(self, db, make_org, two_staff):
        with pytest.raises(NoAvailabilityError):
            await _assign(db, await make_org(model="hybrid", require_resource_assignment=True))


class TestHybridEitherKind:

    async def test_staff_preference_wins(self, db, make_org, two_staff, one_room):
        _, bea = two_staff
        a = await _assign(db, await make_org(model="hybrid"),
                          _request(preferred_staff_id=bea.id, preferred_resource_id=one_room.id))
        assert a.assignment_type == AssignmentType.STAFF_ONLY
        assert (a.staff_id, a.resource_id) == (bea.id, None)

    async def test_unavailable_staff_preference_does_not_fall_back(self, db, make_org, two_staff, one_room):
        _, bea = two_staff
        with pytest.raises(StaffUnavailableError):
            await _assign(db, await make_org(model="hybrid"),
                          _request(preferred_staff_id=bea.id), start_time="12:00")

    async def test_resource_preference(self, db, make_org, two_staff, one_room):
        a = await _assign(db, await make_org(model="hybrid"), _request(preferred_resource_id=one_room.id))
        assert a.assignment_type == AssignmentType.RESOURCE_ONLY
        assert a.resource_id == one_room.id

    async def test_auto_prefers_staff(self, db, make_org, two_staff, one_room):
        alex, _ = two_staff
        a = await _assign(db, await make_org(model="hybrid"))
        assert (a.staff_id, a.resource_id) == (alex.id, None)

    async def test_auto_falls_back_to_resource(self, db, make_org, one_room):
        a = await _assign(db, await make_org(model="hybrid"))
        assert (a.staff_id, a.resource_id) == (None, one_room.id)

    async def test_nothing_free(self, db, make_org):
        with pytest.raises(NoAvailabilityError):
            await _assign(db, await make_org(model="hybrid"))
