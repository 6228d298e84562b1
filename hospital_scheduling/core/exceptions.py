from fastapi import HTTPException, status


# Scheduling exceptions
class SchedulingError(HTTPException):
    """Base class for every rejected scheduling operation.

    Each subclass carries a stable ``code`` so API clients can render an
    actionable message instead of a generic failure.
    """

    code = "scheduling_error"
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_detail = "Scheduling request rejected"

    def __init__(self, detail: str = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.default_detail,
        )


class ValidationError(SchedulingError):
    code = "validation_error"
    status_code_default = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = "Invalid request"


class InvalidDateError(ValidationError):
    code = "invalid_date"
    default_detail = "Appointments cannot be booked in the past"


class InvalidTemplateError(ValidationError):
    code = "invalid_template"
    default_detail = "Invalid availability template"


class UnauthorizedError(SchedulingError):
    code = "unauthorized"
    status_code_default = status.HTTP_403_FORBIDDEN
    default_detail = "Doctors can only manage their own schedule"


class ForbiddenError(SchedulingError):
    code = "forbidden"
    status_code_default = status.HTTP_403_FORBIDDEN
    default_detail = "Not allowed to perform this action"


class NotFoundError(SchedulingError):
    code = "not_found"
    status_code_default = status.HTTP_404_NOT_FOUND
    default_detail = "Resource not found"


class InvalidTransitionError(SchedulingError):
    code = "invalid_transition"
    status_code_default = status.HTTP_409_CONFLICT
    default_detail = "Status change not allowed"


class SlotUnavailableError(SchedulingError):
    code = "slot_unavailable"
    status_code_default = status.HTTP_409_CONFLICT
    default_detail = "The requested slot is no longer available"


class UnavailableError(SchedulingError):
    code = "unavailable"
    status_code_default = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Scheduling storage is temporarily unavailable"


# Identity exceptions
class AuthenticationError(SchedulingError):
    code = "unauthenticated"
    status_code_default = status.HTTP_401_UNAUTHORIZED
    default_detail = "Could not validate credentials"

    def __init__(self, detail: str = None):
        super().__init__(detail)
        self.headers = {"WWW-Authenticate": "Bearer"}


class EmailTakenError(SchedulingError):
    code = "email_taken"
    status_code_default = status.HTTP_400_BAD_REQUEST
    default_detail = "Email already registered"


class AccountLockedError(SchedulingError):
    code = "account_locked"
    status_code_default = status.HTTP_423_LOCKED
    default_detail = "Account is temporarily locked"


class RateLimitedError(SchedulingError):
    code = "rate_limited"
    status_code_default = status.HTTP_429_TOO_MANY_REQUESTS
    default_detail = "Too many requests. Please try again later."
