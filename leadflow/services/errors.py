"""
Service-layer errors.

Routes translate these into HTTPException responses.
"""


class ServiceError(Exception):
    """Base class for expected, user-facing service failures."""
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ServiceError):
    status_code = 400


class NotFoundError(ServiceError):
    status_code = 404


class ConflictError(ServiceError):
    status_code = 409
