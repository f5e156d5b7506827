"""
Domain exceptions.

Gate and limit refusals are not errors; they are reported through
SubmissionResult outcomes. Everything here is a real failure of the
requested operation.
"""


class DispatchError(Exception):
    """Base class for all dispatch failures."""


class ValidationError(DispatchError, ValueError):
    """Malformed identifier or missing/invalid input. No side effects."""


class NotFoundError(DispatchError, LookupError):
    """Unknown incident, technician or schedule."""

    def __init__(self, kind: str, identifier):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class CapacityExceededError(DispatchError):
    """Technician already holds max_concurrent assignments."""


class OverlapError(DispatchError):
    """Requested slot intersects an active schedule of the same technician."""


class TechnicianUnavailableError(DispatchError):
    """Technician is inactive or not accepting work."""


class InvalidTransitionError(DispatchError):
    """Status change not allowed by the lifecycle table."""

    def __init__(self, entity: str, current, target):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal {entity} status transition: "
            f"{getattr(current, 'value', current)} -> {getattr(target, 'value', target)}"
        )


class StoreUnavailableError(DispatchError):
    """
    The persistent store timed out or dropped the connection.

    Fatal to the current operation; callers may retry the whole request.
    """
