from __future__ import annotations

import asyncio
import itertools
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from app.jobs.queue import InMemoryMailQueue
from app.schemas.appointment import Appointment
from app.schemas.notification import Notification
from app.services.clock import Clock, SystemClock
from app.services.exceptions import AppointmentStateConflict, SlotConflictError
from app.services.formatting import to_utc


class _BaseRepository:
    def __init__(self, prefix: str) -> None:
        self._prefix = prefix
        self._counter = itertools.count(1)

    def _next_id(self) -> str:
        return f"{self._prefix}-{next(self._counter):05d}"


class FileRecord:
    def __init__(self, *, file_id: int, path: str, url: str) -> None:
        self.file_id = int(file_id)
        self.path = path
        self.url = url


class UserRecord:
    def __init__(
        self,
        *,
        user_id: int,
        name: str,
        email: str,
        is_provider: bool = False,
        avatar: FileRecord | None = None,
    ) -> None:
        self.user_id = int(user_id)
        self.name = name
        self.email = email.lower()
        self.is_provider = is_provider
        self.avatar = avatar


class UserRepository:
    """Directory of users; the source of truth for the provider flag."""

    def __init__(self, *, seed: bool = True) -> None:
        self._users: Dict[int, UserRecord] = {}
        if seed:
            self._seed_users()

    def _seed_users(self) -> None:
        self.add_user(
            UserRecord(
                user_id=1,
                name="Diego Fernandes",
                email="diego@barbershop.test",
                is_provider=True,
                avatar=FileRecord(
                    file_id=1,
                    path="diego.png",
                    url="http://localhost:8000/files/diego.png",
                ),
            )
        )
        self.add_user(
            UserRecord(
                user_id=2,
                name="Mariana Costa",
                email="mariana@barbershop.test",
                is_provider=True,
                avatar=FileRecord(
                    file_id=2,
                    path="mariana.png",
                    url="http://localhost:8000/files/mariana.png",
                ),
            )
        )
        self.add_user(UserRecord(user_id=3, name="Lucas Almeida", email="lucas@example.com"))
        self.add_user(UserRecord(user_id=4, name="Julia Ribeiro", email="julia@example.com"))

    def add_user(self, record: UserRecord) -> None:
        self._users[record.user_id] = record

    def iter_users(self) -> Iterable[UserRecord]:
        return self._users.values()

    async def find_by_id(self, user_id: int) -> Optional[UserRecord]:
        return self._users.get(user_id)

    async def find_provider_by_id(self, user_id: int) -> Optional[UserRecord]:
        record = self._users.get(user_id)
        if record is None or not record.is_provider:
            return None
        return record


class AppointmentRepository:
    """Appointment rows plus a unique index on (provider_id, date) for active rows."""

    def __init__(self, clock: Clock | None = None) -> None:
        self._clock = clock or SystemClock()
        self._counter = itertools.count(1)
        self._appointments: Dict[int, Appointment] = {}
        self._active_slots: Dict[Tuple[int, datetime], int] = {}
        self._lock = asyncio.Lock()

    async def create(self, *, user_id: int, provider_id: int, date: datetime) -> Appointment:
        slot = (provider_id, to_utc(date))
        async with self._lock:
            if slot in self._active_slots:
                raise SlotConflictError(provider_id, slot[1])
            now = self._clock.now()
            appointment = Appointment(
                id=next(self._counter),
                user_id=user_id,
                provider_id=provider_id,
                date=slot[1],
                canceled_at=None,
                created_at=now,
                updated_at=now,
            )
            self._appointments[appointment.id] = appointment
            self._active_slots[slot] = appointment.id
        return appointment.model_copy()

    async def find_by_id(self, appointment_id: int) -> Optional[Appointment]:
        appointment = self._appointments.get(appointment_id)
        return appointment.model_copy() if appointment is not None else None

    async def find_one_where(self, **filters: Any) -> Optional[Appointment]:
        for appointment in self._appointments.values():
            if self._matches(appointment, filters):
                return appointment.model_copy()
        return None

    async def find_many_paginated(
        self,
        filters: Dict[str, Any],
        *,
        order_by: Sequence[str] = ("date",),
        limit: int = 20,
        offset: int = 0,
    ) -> List[Appointment]:
        matches = [
            appointment
            for appointment in self._appointments.values()
            if self._matches(appointment, filters)
        ]
        matches.sort(key=lambda appointment: tuple(getattr(appointment, field) for field in order_by))
        return [appointment.model_copy() for appointment in matches[offset:offset + limit]]

    async def save(self, appointment: Appointment) -> None:
        async with self._lock:
            stored = self._appointments.get(appointment.id)
            if stored is None:
                raise KeyError(f"Appointment {appointment.id} does not exist")
            # canceled_at is set at most once
            if not stored.is_active:
                raise AppointmentStateConflict(appointment.id)
            slot = (stored.provider_id, stored.date)
            if not appointment.is_active:
                if self._active_slots.get(slot) == appointment.id:
                    del self._active_slots[slot]
            updated = appointment.model_copy(update={"updated_at": self._clock.now()})
            self._appointments[appointment.id] = updated
            appointment.updated_at = updated.updated_at

    def iter_appointments(self) -> Iterable[Appointment]:
        return self._appointments.values()

    @staticmethod
    def _matches(appointment: Appointment, filters: Dict[str, Any]) -> bool:
        for field, expected in filters.items():
            actual = getattr(appointment, field)
            if isinstance(expected, datetime):
                expected = to_utc(expected)
            if actual != expected:
                return False
        return True


class NotificationRepository(_BaseRepository):
    """Append-only in-app notices per recipient."""

    def __init__(self, clock: Clock | None = None) -> None:
        super().__init__("NTF")
        self._clock = clock or SystemClock()
        self._notifications: Dict[str, Notification] = {}

    async def create(self, recipient_id: int, content: str) -> Notification:
        notification = Notification(
            id=self._next_id(),
            recipient_id=recipient_id,
            content=content,
            read=False,
            created_at=self._clock.now(),
        )
        self._notifications[notification.id] = notification
        return notification.model_copy()

    async def list_for_recipient(self, recipient_id: int, limit: int = 20) -> List[Notification]:
        matches = [
            notification
            for notification in self._notifications.values()
            if notification.recipient_id == recipient_id
        ]
        matches.sort(key=lambda notification: notification.created_at, reverse=True)
        return [notification.model_copy() for notification in matches[:limit]]

    async def mark_read(self, notification_id: str, recipient_id: int) -> Optional[Notification]:
        notification = self._notifications.get(notification_id)
        if notification is None or notification.recipient_id != recipient_id:
            return None
        notification.read = True
        return notification.model_copy()

    def iter_notifications(self) -> Iterable[Notification]:
        return self._notifications.values()


@dataclass
class MockDataStore:
    users: UserRepository
    appointments: AppointmentRepository
    notifications: NotificationRepository
    mail_queue: InMemoryMailQueue


_mock_store: Optional[MockDataStore] = None


def get_mock_store() -> MockDataStore:
    global _mock_store
    if _mock_store is None:
        _mock_store = MockDataStore(
            users=UserRepository(),
            appointments=AppointmentRepository(),
            notifications=NotificationRepository(),
            mail_queue=InMemoryMailQueue(),
        )
    return _mock_store


def reset_mock_store() -> None:
    global _mock_store
    _mock_store = None
