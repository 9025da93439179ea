"""Appointment booking and cancellation.

``SchedulingService`` enforces the temporal and ownership rules around an
appointment and fans out notifications: an in-app notice for the provider
on booking (written synchronously) and a ``CancellationMail`` job on
cancellation (delivered later by the mail worker). The appointment write is
always committed first and is never undone by a notification failure.
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from app.config import DEFAULT_DATE_PATTERN
from app.jobs.cancellation_mail import CANCELLATION_MAIL
from app.jobs.queue import MailDispatcher
from app.schemas.appointment import (
    Appointment,
    AppointmentCreateRequest,
    AppointmentView,
    AvatarSummary,
    ProviderSummary,
)
from app.services.clock import Clock
from app.services.exceptions import (
    AlreadyCanceled,
    AppointmentStateConflict,
    Forbidden,
    InvalidInput,
    NotAProvider,
    NotFound,
    PastDate,
    SchemaInvalid,
    SelfBookingForbidden,
    SlotConflictError,
    SlotUnavailable,
    TooLateToCancel,
)
from app.services.formatting import format_human_date, start_of_hour
from app.services.mock_store import (
    AppointmentRepository,
    NotificationRepository,
    UserRecord,
    UserRepository,
)

logger = logging.getLogger(__name__)


class SchedulingService:
    def __init__(
        self,
        appointments: AppointmentRepository,
        users: UserRepository,
        notifications: NotificationRepository,
        mail_dispatcher: MailDispatcher,
        clock: Clock,
        *,
        page_size: int = 20,
        cancellation_lead: timedelta = timedelta(hours=2),
        date_pattern: str = DEFAULT_DATE_PATTERN,
    ) -> None:
        self._appointments = appointments
        self._users = users
        self._notifications = notifications
        self._mail = mail_dispatcher
        self._clock = clock
        self._page_size = page_size
        self._cancellation_lead = cancellation_lead
        self._date_pattern = date_pattern

    async def list_for_caller(self, caller_id: int, page: Any = 1) -> List[AppointmentView]:
        page_number = self._parse_page(page)
        appointments = await self._appointments.find_many_paginated(
            {"user_id": caller_id, "canceled_at": None},
            order_by=("date",),
            limit=self._page_size,
            offset=(page_number - 1) * self._page_size,
        )

        views: List[AppointmentView] = []
        for appointment in appointments:
            provider = await self._users.find_by_id(appointment.provider_id)
            views.append(
                AppointmentView(
                    id=appointment.id,
                    date=appointment.date,
                    provider=self._provider_summary(provider),
                )
            )
        return views

    async def create(self, caller_id: int, provider_id: Any, raw_date: Any) -> Appointment:
        try:
            request = AppointmentCreateRequest(provider_id=provider_id, date=raw_date)
        except ValidationError as exc:
            raise SchemaInvalid(cause=exc) from exc

        if request.provider_id == caller_id:
            raise SelfBookingForbidden()

        provider = await self._users.find_provider_by_id(request.provider_id)
        if provider is None:
            raise NotAProvider()

        hour_start = start_of_hour(request.date)
        if hour_start < self._clock.now():
            raise PastDate()

        taken = await self._appointments.find_one_where(
            provider_id=request.provider_id, canceled_at=None, date=hour_start
        )
        if taken is not None:
            raise SlotUnavailable()

        try:
            appointment = await self._appointments.create(
                user_id=caller_id, provider_id=request.provider_id, date=hour_start
            )
        except SlotConflictError as exc:
            logger.info(
                "Concurrent booking lost the race for provider %s at %s",
                request.provider_id,
                hour_start.isoformat(),
            )
            raise SlotUnavailable(cause=exc) from exc

        logger.info(
            "Appointment %s booked by user %s with provider %s at %s",
            appointment.id,
            caller_id,
            appointment.provider_id,
            appointment.date.isoformat(),
        )
        await self._notify_provider(appointment)
        return appointment

    async def cancel(self, caller_id: int, appointment_id: Any) -> Appointment:
        try:
            appointment_key = int(appointment_id)
        except (TypeError, ValueError) as exc:
            raise InvalidInput("Appointment id must be an integer", cause=exc) from exc

        appointment = await self._appointments.find_by_id(appointment_key)
        if appointment is None:
            raise NotFound("Appointment not found.")

        if appointment.user_id != caller_id:
            raise Forbidden("You don't have permission to cancel this appointment.")

        if appointment.canceled_at is not None:
            raise AlreadyCanceled()

        now = self._clock.now()
        if appointment.date - self._cancellation_lead < now:
            hours = self._cancellation_lead.total_seconds() / 3600
            raise TooLateToCancel(f"You can only cancel appointments {hours:g} hours in advance.")

        appointment.canceled_at = now
        try:
            await self._appointments.save(appointment)
        except AppointmentStateConflict as exc:
            logger.info("Concurrent cancel of appointment %s lost the race", appointment.id)
            raise AlreadyCanceled(cause=exc) from exc
        logger.info("Appointment %s canceled by user %s", appointment.id, caller_id)

        await self._enqueue_cancellation_mail(appointment)
        return appointment

    async def _notify_provider(self, appointment: Appointment) -> None:
        try:
            caller = await self._users.find_by_id(appointment.user_id)
            caller_name = caller.name if caller else f"user #{appointment.user_id}"
            formatted = format_human_date(appointment.date, self._date_pattern)
            await self._notifications.create(
                appointment.provider_id,
                f"New booking from {caller_name} for {formatted}",
            )
        except Exception:
            logger.exception(
                "Failed to notify provider %s about appointment %s",
                appointment.provider_id,
                appointment.id,
            )

    async def _enqueue_cancellation_mail(self, appointment: Appointment) -> None:
        try:
            payload = await self._cancellation_payload(appointment)
            await self._mail.enqueue(CANCELLATION_MAIL, payload)
        except Exception:
            logger.exception(
                "Failed to enqueue %s for appointment %s", CANCELLATION_MAIL, appointment.id
            )

    async def _cancellation_payload(self, appointment: Appointment) -> Dict[str, Any]:
        provider = await self._users.find_by_id(appointment.provider_id)
        user = await self._users.find_by_id(appointment.user_id)
        return {
            "appointment": {
                "id": appointment.id,
                "date": appointment.date.isoformat(),
                "canceled_at": appointment.canceled_at.isoformat() if appointment.canceled_at else None,
                "provider": self._party(appointment.provider_id, provider),
                "user": self._party(appointment.user_id, user),
            }
        }

    @staticmethod
    def _party(user_id: int, record: Optional[UserRecord]) -> Dict[str, Any]:
        if record is None:
            return {"id": user_id, "name": None, "email": None}
        return {"id": record.user_id, "name": record.name, "email": record.email}

    @staticmethod
    def _provider_summary(record: Optional[UserRecord]) -> Optional[ProviderSummary]:
        if record is None:
            return None
        avatar = None
        if record.avatar is not None:
            avatar = AvatarSummary(id=record.avatar.file_id, path=record.avatar.path, url=record.avatar.url)
        return ProviderSummary(id=record.user_id, name=record.name, avatar=avatar)

    @staticmethod
    def _parse_page(page: Any) -> int:
        if isinstance(page, bool):
            raise InvalidInput("page must be a positive integer")
        try:
            page_number = int(page)
        except (TypeError, ValueError) as exc:
            raise InvalidInput("page must be a positive integer", cause=exc) from exc
        if page_number < 1:
            raise InvalidInput("page must be a positive integer")
        return page_number
