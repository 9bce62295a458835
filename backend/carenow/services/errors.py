"""
Failure taxonomy for the booking core.

ValidationFailure covers bad input and illegal state transitions and is
never retried. ServerFailure covers collaborator I/O errors and timeouts.
"""
from typing import Optional


class CareNowError(Exception):
    """Base class for booking-core failures."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationFailure(CareNowError):
    """Bad input or an illegal state transition."""

    def __init__(self, message: str, errors: Optional[list[str]] = None):
        self.errors = list(errors) if errors else [message]
        super().__init__(message)


class PartnerConflictFailure(ValidationFailure):
    """Booking is already held by a different partner."""


class ConcurrentUpdateFailure(ValidationFailure):
    """A conditional write lost against a concurrent change."""


class NotFoundFailure(CareNowError):
    def __init__(self, resource: str, resource_id: str):
        self.resource = resource
        self.resource_id = resource_id
        super().__init__(f"{resource} with id '{resource_id}' not found")


class ServerFailure(CareNowError):
    """A collaborator (store, directory, gateway) failed or timed out."""


class RetrievalFailure(ServerFailure):
    """A read or query against a collaborator failed."""
