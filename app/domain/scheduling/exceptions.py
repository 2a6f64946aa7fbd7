"""Scheduling errors.

Each error is an HTTPException so services can raise it straight through the
router, with a machine-readable ``code`` for callers that need to tell a full
slot apart from a doctor on leave.
"""

from fastapi import HTTPException


class SchedulingError(HTTPException):
    status_code = 400
    default_code = "scheduling_error"

    def __init__(self, message: str, code: str = None):
        self.code = code or self.default_code
        self.message = message
        super().__init__(
            status_code=self.status_code, detail={"error": self.code, "message": message}
        )

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"


class SchedulingValidationError(SchedulingError):
    """Malformed input; rejected before the store is touched"""

    status_code = 400
    default_code = "invalid_request"


class NotFoundError(SchedulingError):
    status_code = 404
    default_code = "not_found"


class DoctorUnavailableError(SchedulingError):
    """The doctor cannot take bookings for the requested date"""

    status_code = 409
    default_code = "not_available"


class SlotFullError(SchedulingError):
    status_code = 409
    default_code = "slot_full"


class TransientConflictError(SchedulingError):
    """A race with another writer persisted through every retry"""

    status_code = 409
    default_code = "transient_conflict"


class TransientStoreError(SchedulingError):
    status_code = 503
    default_code = "store_unavailable"
