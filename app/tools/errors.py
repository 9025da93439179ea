from __future__ import annotations

import logging
from typing import Dict, NoReturn, Type

from fastapi import HTTPException

from app.services.exceptions import (
    AlreadyCanceled,
    Forbidden,
    InvalidInput,
    NotAProvider,
    NotFound,
    PastDate,
    SchedulingError,
    SchemaInvalid,
    SelfBookingForbidden,
    ServiceError,
    SlotUnavailable,
    TooLateToCancel,
)

logger = logging.getLogger(__name__)

STATUS_BY_ERROR: Dict[Type[SchedulingError], int] = {
    SchemaInvalid: 400,
    InvalidInput: 400,
    SelfBookingForbidden: 400,
    NotAProvider: 400,
    PastDate: 400,
    TooLateToCancel: 400,
    Forbidden: 403,
    NotFound: 404,
    SlotUnavailable: 409,
    AlreadyCanceled: 409,
}


def raise_http_error(exc: ServiceError) -> NoReturn:
    """Translate a service failure into an ``HTTPException``."""
    if isinstance(exc, SchedulingError):
        status_code = STATUS_BY_ERROR.get(type(exc), 400)
        raise HTTPException(
            status_code=status_code,
            detail={"error": exc.message, "code": exc.code},
        ) from exc

    logger.error("Service failure surfaced to caller: %s", exc)
    raise HTTPException(
        status_code=503,
        detail={"error": "Service temporarily unavailable", "code": "unavailable"},
    ) from exc
