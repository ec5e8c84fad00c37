"""Domain errors raised by the schedule core.

Every error carries the HTTP status the API answers with, so the transport
layer maps them in one place.
"""

from __future__ import annotations


class ScheduleError(Exception):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(ScheduleError):
    """A field is missing or invalid. Raised before anything is written."""

    status_code = 400


class NotFoundError(ScheduleError):
    status_code = 404


class AuthorizationError(ScheduleError):
    """The acting user's role or ownership does not permit the operation."""

    status_code = 403


class ZeroEffectError(ScheduleError):
    """A change resolved to no concrete activity mutation at all."""

    status_code = 409
