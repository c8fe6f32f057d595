"""
Care Circle domain errors.

Services raise these; routers translate them to HTTP via ``status_code`` (or
``public_status_code`` on unauthenticated token routes). Nothing here knows
about FastAPI.
"""

from typing import Optional


class CareCircleError(Exception):
    status_code = 500
    error_code = "CARE_CIRCLE_ERROR"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def public_status_code(self) -> int:
        return self.status_code


class CareCircleValidationError(CareCircleError):
    """Malformed email, tier, token shape, date range or query parameter."""

    status_code = 400
    error_code = "VALIDATION_ERROR"

    def __init__(self, message: str, field: Optional[str] = None):
        super().__init__(message)
        self.field = field


class InvalidTransitionError(CareCircleValidationError):
    """The connection is not in a status that allows the requested event."""

    error_code = "INVALID_TRANSITION"

    def __init__(self, message: str, status: Optional[str] = None, event: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.event = event


class ConcurrentUpdateError(InvalidTransitionError):
    """Lost a compare-and-set race: another request already moved the row."""

    error_code = "ALREADY_PROCESSED"


class CareCircleNotFoundError(CareCircleError):
    status_code = 404
    error_code = "NOT_FOUND"


class CareCircleConflictError(CareCircleError):
    status_code = 409
    error_code = "CONFLICT"


class CareCircleForbiddenError(CareCircleError):
    status_code = 403
    error_code = "FORBIDDEN"


class InviteExpiredError(CareCircleError):
    """Token is past its expiry: 410 on public routes, 400 behind auth."""

    status_code = 400
    error_code = "INVITE_EXPIRED"

    @property
    def public_status_code(self) -> int:
        return 410


class InviteGoneError(CareCircleError):
    """Preview of an invite that has already been processed."""

    status_code = 410
    error_code = "INVITE_GONE"

    def __init__(self, message: str, status: str):
        super().__init__(message)
        self.status = status


class CareCircleInternalError(CareCircleError):
    """Store unavailable or another dependency failure."""

    status_code = 500
    error_code = "INTERNAL_ERROR"
