from typing import List

from fastapi import APIRouter, Depends

from app.dependencies.services import get_caller_id, get_notification_service
from app.schemas.notification import Notification
from app.services import NotificationService
from app.services.exceptions import ServiceError
from app.tools.errors import raise_http_error

router = APIRouter()


@router.get("", response_model=List[Notification])
async def list_notifications(
    caller_id: int = Depends(get_caller_id),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        return await service.list_for_caller(caller_id)
    except ServiceError as exc:
        raise_http_error(exc)


@router.put("/{notification_id}", response_model=Notification)
async def mark_notification_read(
    notification_id: str,
    caller_id: int = Depends(get_caller_id),
    service: NotificationService = Depends(get_notification_service),
):
    try:
        return await service.mark_read(caller_id, notification_id)
    except ServiceError as exc:
        raise_http_error(exc)
