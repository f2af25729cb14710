from __future__ import annotations

from enum import Enum


class Reason(str, Enum):
    PREREQUISITE_MISSING = "prerequisite_missing"
    CLASS_FULL = "class_full"
    ALREADY_REGISTERED = "already_registered"
    CLASS_CLOSED = "class_closed"
    NOT_PENDING = "not_pending"
    NOT_APPROVED = "not_approved"
    BELOW_MINIMUM_ENROLLMENT = "below_minimum_enrollment"


class RegistrarError(Exception):
    """Base for every recoverable failure raised by the registrar core.

    The HTTP layer turns these into JSON responses; state is left as it was
    before the failing call.
    """

    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message}


class ValidationFailed(RegistrarError):
    status_code = 422


class NotFound(RegistrarError):
    status_code = 404


class AuthorizationFailed(RegistrarError):
    status_code = 403


class PreconditionFailed(RegistrarError):
    status_code = 409

    def __init__(self, reason: Reason, message: str):
        super().__init__(message)
        self.reason = reason

    def to_dict(self) -> dict:
        return {"detail": self.message, "reason": self.reason.value}
