"""
Error taxonomy shared by the services and the API layer.

Every error carries the HTTP-equivalent ``status_code`` it surfaces as.
Internal inconsistencies are not raised; they are logged where detected
and the operation carries on with a best-effort correction.
"""


class DispatchError(Exception):
    status_code = 500

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class ValidationError(DispatchError):
    """Missing or invalid stop, capacity, load or enum value."""

    status_code = 400


class NotFoundError(DispatchError):
    """Route, taxi or request does not exist."""

    status_code = 404


class ConflictError(DispatchError):
    """The entity is not in the state the caller expected."""

    status_code = 400


class ForbiddenError(ConflictError):
    """The caller does not own the taxi or request."""

    status_code = 403


class RequestNoLongerPending(ConflictError):
    def __init__(self, detail: str = "Request is no longer pending."):
        super().__init__(detail)
