from __future__ import annotations


class ServiceError(ValueError):
    """Base class for failures raised by the service layer."""


class NotFoundError(ServiceError):
    pass


class ValidationError(ServiceError):
    pass


class RemoteError(ServiceError):
    """A write or read against the database failed; the message is passed through."""
