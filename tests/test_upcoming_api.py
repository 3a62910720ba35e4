"""Tests for the upcoming reminders endpoint."""

from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import AsyncClient

from reminder_service.core.clock import utcnow
from reminder_service.schemas.appointments import AppointmentEvent
from reminder_service.schemas.notifications import (
    PlannedSlot,
    PlanStatus,
    SlotKind,
    WindowRule,
)
from reminder_service.services.dispatcher import job_key_for
from reminder_service.services.plan_store import PlanStoreGateway


@pytest_asyncio.fixture
async def seeded(db_session, make_event) -> None:
    """Two appointments at different clinics with reminders due soon."""
    now = utcnow()
    gateway = PlanStoreGateway(db_session)
    async with gateway.unit_of_work():
        for appointment_id, clinic_id, hours in (
            ("apt-1", "clinic-1", 5),
            ("apt-2", "clinic-2", 2),
        ):
            event = AppointmentEvent.model_validate(
                make_event(appointmentId=appointment_id, clinicId=clinic_id)
            )
            await gateway.admit_event(appointment_id, 1, event)
            planned = now + timedelta(hours=hours)
            await gateway.replace_plan(
                appointment_id,
                PlannedSlot(
                    slot_kind=SlotKind.T_MINUS_2H,
                    planned_local=planned,
                    planned_local_iso=planned.isoformat(),
                    planned_utc=planned,
                    planned_utc_iso=planned.isoformat(),
                    status=PlanStatus.SCHEDULED,
                    window_rule=WindowRule.WITHIN_WINDOW,
                ),
                version=1,
                job_key=job_key_for(appointment_id, SlotKind.T_MINUS_2H, 1),
            )


@pytest.mark.asyncio
@pytest.mark.usefixtures("seeded")
async def test_upcoming_lists_soonest_first(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.get("/api/v1/appointments/upcoming", headers=auth_headers)

    assert response.status_code == 200
    data = response.json()
    assert [item["appointmentId"] for item in data["items"]] == ["apt-2", "apt-1"]
    first = data["items"][0]
    assert first["slotKind"] == "T_MINUS_2H"
    assert first["status"] == "scheduled"
    assert first["windowRule"] == "within_window"
    assert first["clinicId"] == "clinic-2"
    assert first["patientId"] == "pat-1"
    assert first["version"] == 1
    assert data["nextCursor"] is None


@pytest.mark.asyncio
@pytest.mark.usefixtures("seeded")
async def test_upcoming_filters_by_clinic(client: AsyncClient, auth_headers: dict) -> None:
    response = await client.get(
        "/api/v1/appointments/upcoming",
        params={"clinicId": "clinic-1"},
        headers=auth_headers,
    )

    assert response.status_code == 200
    assert [item["appointmentId"] for item in response.json()["items"]] == ["apt-1"]


@pytest.mark.asyncio
@pytest.mark.usefixtures("seeded")
async def test_upcoming_respects_horizon_and_limit(
    client: AsyncClient, auth_headers: dict
) -> None:
    narrow = await client.get(
        "/api/v1/appointments/upcoming",
        params={"horizonHours": 3},
        headers=auth_headers,
    )
    limited = await client.get(
        "/api/v1/appointments/upcoming",
        params={"limit": 1},
        headers=auth_headers,
    )

    assert [item["appointmentId"] for item in narrow.json()["items"]] == ["apt-2"]
    assert len(limited.json()["items"]) == 1


@pytest.mark.asyncio
async def test_upcoming_rejects_out_of_range_query(
    client: AsyncClient, auth_headers: dict
) -> None:
    too_far = await client.get(
        "/api/v1/appointments/upcoming",
        params={"horizonHours": 1000},
        headers=auth_headers,
    )
    too_many = await client.get(
        "/api/v1/appointments/upcoming",
        params={"limit": 0},
        headers=auth_headers,
    )

    assert too_far.status_code == 422
    assert too_many.status_code == 422


@pytest.mark.asyncio
async def test_upcoming_requires_service_token(client: AsyncClient) -> None:
    response = await client.get("/api/v1/appointments/upcoming")

    assert response.status_code == 401
