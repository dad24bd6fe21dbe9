"""
Typed business errors raised by the attempt and proctor engines.

Every expected rule violation is one of these, grouped by ``kind``:

    NotFound, Forbidden, InvalidState, LimitExceeded, TimeExpired,
    ValidationError

The HTTP layer maps ``kind`` to a status code. Storage and connectivity
failures are NOT wrapped here; they propagate as the driver's own
exceptions so callers can retry at the transport layer.
"""


class ExamCoreError(Exception):
    """Base class for all business-rule violations."""
    kind = "Error"

    def __init__(self, message: str = None, **context):
        self.message = message or self.__class__.__name__
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {"error": self.kind, "code": self.__class__.__name__, "detail": self.message}


class NotFound(ExamCoreError):
    kind = "NotFound"


class Forbidden(ExamCoreError):
    kind = "Forbidden"


class InvalidState(ExamCoreError):
    kind = "InvalidState"


class NotPublished(InvalidState):
    pass


class OutOfWindow(InvalidState):
    pass


class NotActive(InvalidState):
    pass


class AlreadyFinalized(InvalidState):
    pass


class LimitExceeded(ExamCoreError):
    kind = "LimitExceeded"


class AttemptLimitExceeded(LimitExceeded):
    pass


class SessionAlreadyActive(LimitExceeded):
    pass


class TimeExpired(ExamCoreError):
    kind = "TimeExpired"


class ValidationError(ExamCoreError):
    kind = "ValidationError"


class UnknownQuestion(ValidationError):
    pass


# HTTP status per error kind; used by the exception handler in main.py
HTTP_STATUS_BY_KIND = {
    "NotFound": 404,
    "Forbidden": 403,
    "InvalidState": 409,
    "LimitExceeded": 409,
    "TimeExpired": 410,
    "ValidationError": 422,
}
