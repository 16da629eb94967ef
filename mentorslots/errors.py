"""
Error taxonomy for the reservation & scheduling engine.

Every failure surfaced by a service is one of these kinds. ``retryable`` tells
the caller whether repeating the same request can succeed (a transient store
error) or is futile (a slot that is already full).
"""

from typing import Any, Optional


class SchedulingError(Exception):
    status_code = 500
    code = "scheduling_error"
    retryable = False

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.code, "detail": self.message, "retryable": self.retryable}
        if self.details:
            body["context"] = self.details
        return body


class ValidationError(SchedulingError):
    """Malformed or missing input; raised before any state is touched"""

    status_code = 400
    code = "validation_error"


class InvalidArgumentError(ValidationError):
    code = "invalid_argument"


class PermissionDeniedError(SchedulingError):
    status_code = 403
    code = "permission_denied"


class NotFoundError(SchedulingError):
    status_code = 404
    code = "not_found"


class ConflictError(SchedulingError):
    """A state-transition precondition does not hold"""

    status_code = 409
    code = "conflict"


class ReservationRuleError(ConflictError):
    code = "reservation_rule_violation"


class SlotFullError(SchedulingError):
    status_code = 409
    code = "slot_full"


class InsufficientBalanceError(SchedulingError):
    status_code = 409
    code = "insufficient_tickets"


class QuotaExceededError(SchedulingError):
    status_code = 409
    code = "quota_exceeded"


class TransientStoreError(SchedulingError):
    status_code = 503
    code = "store_unavailable"
    retryable = True


class PartialFailure(SchedulingError):
    """Some units of a bulk operation failed; the whole batch was compensated"""

    status_code = 500
    code = "partial_failure"
    retryable = True

    def __init__(self, message: str, results: Optional[list] = None, **details: Any):
        super().__init__(message, **details)
        self.results = results or []

    def to_dict(self) -> dict:
        body = super().to_dict()
        body["results"] = self.results
        return body
