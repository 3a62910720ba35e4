"""Appointment event ingress endpoint."""

from fastapi import APIRouter, Request, Response, status

from reminder_service.dependencies import Intake, ServiceAuth
from reminder_service.schemas.appointments import (
    AppointmentEvent,
    EventAcceptedResponse,
    EventNoOpResponse,
)

router = APIRouter()


@router.post(
    "/events",
    response_model=EventAcceptedResponse | EventNoOpResponse,
    response_model_by_alias=True,
    response_model_exclude_none=True,
    status_code=status.HTTP_202_ACCEPTED,
    dependencies=[ServiceAuth],
    tags=["Events"],
    summary="Ingest an appointment event",
    responses={
        200: {"model": EventNoOpResponse, "description": "Duplicate version, nothing changed"},
        409: {"description": "A newer version of the appointment is already recorded"},
    },
)
async def ingest_event(
    event: AppointmentEvent,
    request: Request,
    response: Response,
    service: Intake,
) -> EventAcceptedResponse | EventNoOpResponse:
    """
    Admit an appointment event, (re)plan its reminders and enqueue them.

    Args:
        event: Appointment event from the scheduling system
        request: Request object, used for the request id
        response: Response object, used to downgrade duplicates to 200
        service: Intake service

    Returns:
        Accepted response with the plan preview, or a no-op for duplicates
    """
    result = await service.handle_event(
        event, request_id=getattr(request.state, "request_id", None)
    )
    if isinstance(result, EventNoOpResponse):
        response.status_code = status.HTTP_200_OK
    return result
