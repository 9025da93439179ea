from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Body, Depends

from app.dependencies.services import get_caller_id, get_scheduling_service
from app.schemas.appointment import Appointment, AppointmentView
from app.services import SchedulingService
from app.services.exceptions import ServiceError
from app.tools.errors import raise_http_error

router = APIRouter()


@router.get("", response_model=List[AppointmentView])
async def list_appointments(
    page: str = "1",
    caller_id: int = Depends(get_caller_id),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.list_for_caller(caller_id, page)
    except ServiceError as exc:
        raise_http_error(exc)


@router.post("", response_model=Appointment)
async def create_appointment(
    body: Optional[Dict[str, Any]] = Body(default=None),
    caller_id: int = Depends(get_caller_id),
    service: SchedulingService = Depends(get_scheduling_service),
):
    body = body or {}
    try:
        return await service.create(caller_id, body.get("provider_id"), body.get("date"))
    except ServiceError as exc:
        raise_http_error(exc)


@router.delete("/{appointment_id}", response_model=Appointment)
async def cancel_appointment(
    appointment_id: str,
    caller_id: int = Depends(get_caller_id),
    service: SchedulingService = Depends(get_scheduling_service),
):
    try:
        return await service.cancel(caller_id, appointment_id)
    except ServiceError as exc:
        raise_http_error(exc)
