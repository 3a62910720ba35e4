"""Upcoming reminders endpoint."""

from datetime import timedelta

from fastapi import APIRouter, Query, status

from reminder_service.core.clock import as_utc, utcnow
from reminder_service.dependencies import DatabaseSession, ServiceAuth
from reminder_service.schemas.notifications import UpcomingItem, UpcomingResponse
from reminder_service.services.plan_store import PlanStoreGateway

router = APIRouter()


@router.get(
    "/upcoming",
    response_model=UpcomingResponse,
    response_model_by_alias=True,
    status_code=status.HTTP_200_OK,
    dependencies=[ServiceAuth],
    tags=["Appointments"],
    summary="List upcoming scheduled reminders",
)
async def list_upcoming(
    db: DatabaseSession,
    clinic_id: str | None = Query(None, alias="clinicId"),
    patient_id: str | None = Query(None, alias="patientId"),
    horizon_hours: int = Query(72, alias="horizonHours", ge=1, le=24 * 14),
    limit: int = Query(50, ge=1, le=200),
) -> UpcomingResponse:
    """
    List scheduled reminders due within the horizon, soonest first.

    Args:
        db: Database session
        clinic_id: Only reminders whose latest appointment version is at this clinic
        patient_id: Only reminders for this patient
        horizon_hours: How far ahead to look
        limit: Maximum number of items

    Returns:
        Upcoming reminders with appointment context
    """
    now = utcnow()
    rows = await PlanStoreGateway(db).list_upcoming(
        now=now,
        horizon=now + timedelta(hours=horizon_hours),
        clinic_id=clinic_id,
        patient_id=patient_id,
        limit=limit,
    )
    items = [
        UpcomingItem(
            appointment_id=row.appointment_id,
            slot_kind=row.slot_kind,
            planned_local=row.planned_local_iso,
            planned_utc=as_utc(row.planned_utc),
            window_rule=row.window_rule,
            status=row.status,
            clinic_id=row.clinic_id,
            patient_id=row.patient_id,
            version=row.version,
        )
        for row in rows
    ]
    return UpcomingResponse(items=items, next_cursor=None)
