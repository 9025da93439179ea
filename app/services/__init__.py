"""Service package public API definitions.

Service implementations are imported lazily on attribute access. The mail
job modules import ``app.services.exceptions`` and ``app.services.clock``,
while ``SchedulingService`` imports the job modules; importing the services
eagerly here would make that a circular import.
"""

from __future__ import annotations

from importlib import import_module
from typing import TYPE_CHECKING, Any

__all__ = [
    "NotificationService",
    "SchedulingService",
]

_SERVICE_MODULES = {
    "NotificationService": "notification",
    "SchedulingService": "scheduling",
}


def __getattr__(name: str) -> Any:
    if name not in _SERVICE_MODULES:
        raise AttributeError(f"module {__name__!r} has no attribute {name!r}")

    module = import_module(f".{_SERVICE_MODULES[name]}", __name__)
    attr = getattr(module, name)
    globals()[name] = attr
    return attr


if TYPE_CHECKING:  # pragma: no cover - import for static analysis only
    from .notification import NotificationService as NotificationService
    from .scheduling import SchedulingService as SchedulingService
