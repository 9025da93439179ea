from __future__ import annotations

from datetime import timedelta
from functools import lru_cache

from fastapi import Depends, Header, HTTPException

from app.clients.mail import MailClient
from app.config import Settings, get_settings
from app.jobs.queue import ArqMailDispatcher, MailDispatcher
from app.services import NotificationService, SchedulingService
from app.services.clock import Clock, SystemClock
from app.services.mock_store import get_mock_store
from app.worker import get_redis_settings


@lru_cache(maxsize=1)
def get_clock() -> Clock:
    return SystemClock()


@lru_cache(maxsize=1)
def get_mail_client_cached() -> MailClient:
    settings = get_settings()
    return MailClient(
        settings.mail_service_base_url,
        sender=settings.mail_from,
        timeout=settings.mail_service_timeout,
        use_mock_data=settings.use_mock_data,
        token=settings.mail_service_token,
    )


@lru_cache(maxsize=1)
def get_arq_dispatcher_cached() -> ArqMailDispatcher:
    return ArqMailDispatcher(get_redis_settings())


def get_mail_dispatcher(settings: Settings = Depends(get_settings)) -> MailDispatcher:
    if settings.use_mock_data:
        return get_mock_store().mail_queue
    return get_arq_dispatcher_cached()


def get_caller_id(x_user_id: str | None = Header(default=None)) -> int:
    """Identity of the authenticated caller, set by the upstream auth layer."""
    try:
        caller_id = int(x_user_id) if x_user_id is not None else 0
    except ValueError:
        caller_id = 0
    if caller_id < 1:
        raise HTTPException(status_code=401, detail="Token not provided")
    return caller_id


def get_scheduling_service(
    settings: Settings = Depends(get_settings),
    dispatcher: MailDispatcher = Depends(get_mail_dispatcher),
    clock: Clock = Depends(get_clock),
) -> SchedulingService:
    store = get_mock_store()
    return SchedulingService(
        store.appointments,
        store.users,
        store.notifications,
        dispatcher,
        clock,
        page_size=settings.page_size,
        cancellation_lead=timedelta(hours=settings.cancellation_lead_hours),
        date_pattern=settings.date_pattern,
    )


def get_notification_service(
    settings: Settings = Depends(get_settings),
) -> NotificationService:
    store = get_mock_store()
    return NotificationService(store.notifications, store.users, page_size=settings.page_size)
