from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from app.services.mock_store import reset_mock_store

NOW = datetime(2026, 10, 18, 9, 30, tzinfo=timezone.utc)


class FrozenClock:
    """Clock stub that only moves when told to."""

    def __init__(self, now: datetime = NOW) -> None:
        self.current = now

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current = self.current + timedelta(**kwargs)


@pytest.fixture(autouse=True)
def _reset_store() -> None:
    reset_mock_store()
    yield
    reset_mock_store()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()
