class ServiceError(Exception):
    """Base exception for service layer failures."""

    def __init__(self, message: str, *, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class DownstreamServiceError(ServiceError):
    """Raised when an external service returns an error response."""

    def __init__(self, message: str, status_code: int | None = None, *, cause: Exception | None = None):
        super().__init__(message, cause=cause)
        self.status_code = status_code


class InfrastructureError(ServiceError):
    """Raised when a store or queue backend cannot be reached."""


class SlotConflictError(ServiceError):
    """Raised by the appointment store when an active slot is already taken."""

    def __init__(self, provider_id: int, date, *, cause: Exception | None = None):
        super().__init__(
            f"Provider {provider_id} already has an active appointment at {date}",
            cause=cause,
        )
        self.provider_id = provider_id
        self.date = date


class AppointmentStateConflict(ServiceError):
    """Raised by the appointment store when a canceled row would be written again."""

    def __init__(self, appointment_id: int, *, cause: Exception | None = None):
        super().__init__(f"Appointment {appointment_id} is already canceled", cause=cause)
        self.appointment_id = appointment_id


class SchedulingError(ServiceError):
    """Base class for user-correctable scheduling failures.

    Subclasses carry a stable ``code`` and a default message; neither is tied
    to a transport so routers decide how each kind is surfaced.
    """

    code = "scheduling_error"
    default_message = "The request could not be completed."

    def __init__(self, message: str | None = None, *, cause: Exception | None = None):
        super().__init__(message or self.default_message, cause=cause)

    @property
    def message(self) -> str:
        return str(self)


class SchemaInvalid(SchedulingError):
    code = "schema_invalid"
    default_message = "Validation fails"


class InvalidInput(SchedulingError):
    code = "invalid_input"
    default_message = "Invalid input"


class SelfBookingForbidden(SchedulingError):
    code = "self_booking_forbidden"
    default_message = "You can not create appointments with yourself."


class NotAProvider(SchedulingError):
    code = "not_a_provider"
    default_message = "You can only create appointments with providers."


class PastDate(SchedulingError):
    code = "past_date"
    default_message = "Past dates are not permitted."


class SlotUnavailable(SchedulingError):
    code = "slot_unavailable"
    default_message = "Appointment date is not available."


class NotFound(SchedulingError):
    code = "not_found"
    default_message = "Record not found."


class Forbidden(SchedulingError):
    code = "forbidden"
    default_message = "You don't have permission to perform this action."


class AlreadyCanceled(SchedulingError):
    code = "already_canceled"
    default_message = "This appointment was already canceled."


class TooLateToCancel(SchedulingError):
    code = "too_late_to_cancel"
    default_message = "You can only cancel appointments 2 hours in advance."
