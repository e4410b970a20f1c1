"""
Error taxonomy shared by the Session Service, the HTTP layer and the agent.

Check never raises these for ordinary state; its branches are data.
"""

from typing import Any, Dict, Optional


class SessionServiceError(Exception):
    """Base class for errors a staff-session call can fail with."""

    code = "internal"
    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for an HTTP error body."""
        return {"error": self.code, "message": self.message, "details": self.details}


class Unauthenticated(SessionServiceError):
    """No verified identity on the request."""

    code = "unauthenticated"
    status_code = 401


class InvalidArgument(SessionServiceError):
    """A required credential or device id is missing or malformed."""

    code = "invalid_argument"
    status_code = 400


class PermissionDenied(SessionServiceError):
    """Wrong credential, or the identity lacks a staff role."""

    code = "permission_denied"
    status_code = 403


class FailedPrecondition(SessionServiceError):
    """The record is not in a state that allows the call."""

    code = "failed_precondition"
    status_code = 409


class SessionConflict(FailedPrecondition):
    """
    Start was refused because another device owns an active session.

    The record has already been flagged with a transfer request by the
    time this is raised.
    """

    def __init__(self, existing_device_id: Optional[str], existing_end_time: int):
        super().__init__(
            "Active session exists on another device",
            {"existingDeviceId": existing_device_id, "existingEndTime": existing_end_time},
        )
        self.existing_device_id = existing_device_id
        self.existing_end_time = existing_end_time


class ConcurrencyError(SessionServiceError):
    """A compare-and-set kept losing the race and gave up."""

    code = "unavailable"
    status_code = 503


_BY_CODE = {
    cls.code: cls
    for cls in (Unauthenticated, InvalidArgument, PermissionDenied, FailedPrecondition, ConcurrencyError)
}


def error_from_dict(status_code: int, body: Dict[str, Any]) -> SessionServiceError:
    """
    Rebuild a typed error from an HTTP error body.

    Used by the agent's client so both sides of the wire share one taxonomy.
    """
    code = body.get("error")
    message = body.get("message") or f"HTTP {status_code}"
    details = body.get("details") or {}

    if code == FailedPrecondition.code and "existingDeviceId" in details:
        return SessionConflict(details.get("existingDeviceId"), details.get("existingEndTime") or 0)

    cls = _BY_CODE.get(code)
    if cls is None:
        for candidate in _BY_CODE.values():
            if candidate.status_code == status_code:
                cls = candidate
                break
    if cls is None:
        err = SessionServiceError(message, details)
        err.status_code = status_code
        return err
    return cls(message, details)
