#!/usr/bin/env python3
"""
Tests for the organization providers: business configuration, staff and resources.
"""

import pytest
from pydantic import ValidationError

from app.core.errors import InvalidConfigurationError
from app.crud import organization as org_crud
from app.db.models.organization import BusinessConfigurationRow
from app.schemas.business import HybridConfig, ProfessionalBasedConfig, business_configuration_adapter
from conftest import ORG_ID


class TestBusinessConfiguration:

    async def test_round_trip_selects_variant(self, db, make_org):
        await make_org(model="hybrid", require_resource_assignment=True, max_advance_booking_days=10)
        config = await org_crud.get_business_configuration_by_org_id(db, ORG_ID)
        assert isinstance(config, HybridConfig)
        assert config.settings.require_resource_assignment is True
        assert config.settings.max_advance_booking_days == 10

    async def test_defaults(self, db, make_org):
        await make_org()
        config = await org_crud.get_business_configuration_by_org_id(db, ORG_ID)
        assert isinstance(config, ProfessionalBasedConfig)
        assert config.settings.max_advance_booking_days == 30
        assert config.settings.cancellation_policy.hours_before_appointment == 24
        assert config.settings.notification_settings.require_confirmation is False

    async def test_missing_configuration(self, db):
        assert await org_crud.get_business_configuration_by_org_id(db, "nobody") is None

    async def test_hybrid_requires_flag(self):
        with pytest.raises(ValidationError):
            business_configuration_adapter.validate_python(
                {"org_id": ORG_ID, "appointment_model": "hybrid", "settings": {}}
            )

    async def test_stored_garbage_is_rejected_on_load(self, db):
        db.add(BusinessConfigurationRow(org_id=ORG_ID, industry_type="custom", appointment_model="walk_in", settings={}))
        await db.commit()
        with pytest.raises(InvalidConfigurationError):
            await org_crud.get_business_configuration_by_org_id(db, ORG_ID)


class TestStaffAndResources:

    async def test_staff_ordered_by_name(self, db, make_staff):
        zed = await make_staff("Zed")
        alex = await make_staff("Alex")
        gone = await make_staff("Bo", is_active=False)

        assert [s.id for s in await org_crud.get_staff_by_org_id(db, ORG_ID)] == [alex.id, zed.id]
        everyone = await org_crud.get_staff_by_org_id(db, ORG_ID, active_only=False)
        assert [s.id for s in everyone] == [alex.id, gone.id, zed.id]

    async def test_staff_by_role_and_specialty(self, db, make_staff):
        alex = await make_staff("Alex", role="stylist", specialties=["colour"])
        bea = await make_staff("Bea", role="barber", specialties=["beard", "colour"])
        await make_staff("Cy", role="barber", org_id="org-2", specialties=["colour"])

        assert [s.id for s in await org_crud.get_staff_by_role(db, ORG_ID, "barber")] == [bea.id]
        assert [s.id for s in await org_crud.get_staff_by_specialty(db, ORG_ID, "colour")] == [alex.id, bea.id]

    async def test_resources_scoped_to_org(self, db, make_resource):
        room = await make_resource("Room B")
        chamber = await make_resource("Chamber", type="equipment")
        await make_resource("Elsewhere", org_id="org-2")
        found = await org_crud.get_resources_by_org_id(db, ORG_ID)
        assert [r.id for r in found] == [chamber.id, room.id]
        assert (await org_crud.get_resource_by_id(db, chamber.id)).type == "equipment"
