# Overview: Domain error taxonomy shared by services, routes and the CLI.

"""
Portal Error Taxonomy

Every failure a caller can observe maps to one of these classes. Each carries
a stable code, the HTTP status the API layer returns, and whether retrying the
same request can succeed.

SECURITY:
- ForbiddenError and UnauthenticatedError always expose a generic message.
  The internal reason is kept on `audit` for the security log and is never
  serialized, so a denied caller cannot tell "missing" from "not visible".
- `audit` is an optional dict filled by the raiser (principal, resource,
  entity_id, operation, reason). concurrency.atomic() reads it after rollback.
"""

from __future__ import annotations


class PortalError(Exception):
    code = "PORTAL_ERROR"
    http_status = 500
    retryable = False
    public_message = None

    def __init__(self, message: str | None = None, *, audit: dict | None = None) -> None:
        message = message or self.public_message or self.code
        super().__init__(message)
        self.message = message
        self.audit = audit

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.public_message or self.message,
            "retryable": self.retryable,
        }


class UnauthenticatedError(PortalError):
    """No resolvable principal for the request."""
    code = "UNAUTHENTICATED"
    http_status = 401
    public_message = "Authentication required"


class ForbiddenError(PortalError):
    """Resolved principal lacks rights. Never reveals whether the record exists."""
    code = "FORBIDDEN"
    http_status = 403
    public_message = "Forbidden"


class InvalidRoleError(PortalError):
    """Role / organization-kind combination is not a defined state."""
    code = "INVALID_ROLE"
    http_status = 403
    public_message = "Invalid role for organization"


class NotFoundError(PortalError):
    code = "NOT_FOUND"
    http_status = 404
    public_message = "Not found"


class ValidationError(PortalError, ValueError):
    """400-level input problem (e.g. deposit amount missing when required)."""
    code = "VALIDATION_ERROR"
    http_status = 400


class InvalidTransitionError(PortalError):
    """
    State machine guard failed. State is left unchanged.

    This is a business error, not a system fault: the caller retries with a
    valid transition or reports it.
    """
    code = "INVALID_TRANSITION"
    http_status = 409


class ConcurrencyConflictError(PortalError):
    """Version-chain compare-and-swap lost. Safe to retry once."""
    code = "CONCURRENCY_CONFLICT"
    http_status = 409
    retryable = True


class DataIntegrityError(PortalError):
    """A stored row violates an invariant. Fatal, never recoverable by retry."""
    code = "DATA_INTEGRITY_ERROR"
    http_status = 500
    public_message = "Data integrity error"


class AppendOnlyViolation(DataIntegrityError):
    """An update or delete of an audit event row reached the ORM flush."""
    code = "APPEND_ONLY_VIOLATION"


ACCESS_ERRORS = (UnauthenticatedError, ForbiddenError, InvalidRoleError)
