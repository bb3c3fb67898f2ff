"""Typed outcomes of the ride services.

Business rejections (validation, missing entities, illegal transitions, full
vehicles) are raised as ``RideServiceError`` subclasses and converted to HTTP
responses by the routes. ``UpstreamUnavailable`` is an infrastructure failure
and is answered by the top-level handler registered in ``main``.
"""


class RideServiceError(Exception):
    status_code = 400

    def __init__(self, message: str, **context):
        super().__init__(message)
        self.message = message
        self.context = context

    @property
    def detail(self) -> dict:
        return {"message": self.message, **self.context}


class ValidationError(RideServiceError):
    status_code = 400


class PermissionDeniedError(RideServiceError):
    status_code = 403


class NotFoundError(RideServiceError):
    status_code = 404


class ConflictError(RideServiceError):
    """Operation is illegal for the entity's current status."""
    status_code = 409

    def __init__(self, message: str, current_status=None, **context):
        if current_status is not None:
            context["currentStatus"] = getattr(current_status, "value", current_status)
        super().__init__(message, **context)
        self.current_status = current_status


class CapacityError(RideServiceError):
    status_code = 409


class UpstreamUnavailable(Exception):
    """The document store could not be reached or did not answer in time."""
