"""
Typed errors returned to gateway callers.

Each error carries a stable ``code`` that clients map to a message, and
the HTTP status the API layer answers with.  None of them is raised after
a partial write: every check runs before the ride is mutated.
"""


class RideError(Exception):
    code = "RIDE_ERROR"
    http_status = 400

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class InvalidTransition(RideError):
    """Guard failed, or the ride is already terminal."""

    code = "INVALID_TRANSITION"
    http_status = 409


class Unauthorized(RideError):
    """Caller role or identity does not match the ride."""

    code = "UNAUTHORIZED"
    http_status = 403


class AlreadyAccepted(InvalidTransition):
    """Lost the race to accept a ride."""

    code = "ALREADY_ACCEPTED"
    http_status = 409


class MissingReason(RideError):
    code = "MISSING_REASON"
    http_status = 422


class NotFound(RideError):
    code = "NOT_FOUND"
    http_status = 404


class DeliveryFailed(RideError):
    """Non-fatal: an outbound dispatch failed and stays queued for retry."""

    code = "DELIVERY_FAILED"
    http_status = 502
