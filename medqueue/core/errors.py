"""
Error taxonomy shared by the scheduling and queue engines.

Every public engine operation raises one of these; the HTTP layer maps
`status_code` straight onto the response.
"""


class SchedulingError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(SchedulingError):
    """Malformed identifier or date, or a missing field."""

    status_code = 400


class NotFoundError(SchedulingError):
    """Appointment, ticket, doctor or patient does not exist."""

    status_code = 404


class ConflictError(SchedulingError):
    """Overlapping booking, duplicate check-in, already cancelled, already active ticket."""

    status_code = 409


class StateError(SchedulingError):
    """Operation not allowed for the current status."""

    status_code = 409


class WindowError(SchedulingError):
    """Confirmation or check-in attempted outside its time window."""

    status_code = 422


class UpstreamError(SchedulingError):
    """Identity service unreachable or returned an unexpected payload."""

    status_code = 502


class UnauthorizedError(UpstreamError):
    """The identity service rejected the forwarded credential."""

    status_code = 401
