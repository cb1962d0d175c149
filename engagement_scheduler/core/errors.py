"""Errors raised by the scheduling engine.

Every error carries a machine readable ``kind`` next to the human readable
message so callers can branch on the kind and show the message as-is.
"""


class SchedulingError(Exception):
    kind = "scheduling_error"

    def __init__(self, message: str, kind: str | None = None):
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message}


class ValidationError(SchedulingError):
    kind = "validation_error"

    def __init__(self, message: str, field: str | None = None, kind: str | None = None):
        super().__init__(message, kind)
        self.field = field

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["field"] = self.field
        return payload


class MissingField(ValidationError):
    kind = "missing_field"

    def __init__(self, fields: list[str]):
        super().__init__(f"Missing required booking fields: {', '.join(fields)}", field=fields[0])
        self.fields = fields


class InvalidRange(ValidationError):
    kind = "invalid_range"


class ImmutableField(ValidationError):
    kind = "immutable_field"

    def __init__(self, field: str):
        super().__init__(f"Field '{field}' cannot be changed.", field=field)


class InvalidTimeZone(SchedulingError):
    kind = "invalid_time_zone"

    def __init__(self, time_zone):
        super().__init__(f"Invalid time zone: {time_zone}")
        self.time_zone = time_zone


class PolicyViolation(SchedulingError):
    """A booking rule (status, notice, window, date range, capacity) refused the request."""

    kind = "policy_violation"

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["reason"] = self.reason
        return payload


class Conflict(SchedulingError):
    kind = "conflict"

    def __init__(self, message: str, conflicting_bookings: list | None = None):
        super().__init__(message)
        self.conflicting_bookings = list(conflicting_bookings or [])

    def to_dict(self) -> dict:
        payload = super().to_dict()
        payload["conflicting_booking_ids"] = [booking.id for booking in self.conflicting_bookings]
        return payload


class NotFound(SchedulingError):
    kind = "not_found"


class InvalidTransition(SchedulingError):
    kind = "invalid_transition"


class ServiceNotRunning(SchedulingError):
    kind = "service_not_running"

    def __init__(self):
        super().__init__("Scheduling service is not running. Call start() first.")
