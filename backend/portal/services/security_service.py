# Overview: Service-layer operations for the security log; records denied and failed attempts.

from __future__ import annotations

from ..extensions import db
from ..errors import (
    PortalError,
    UnauthenticatedError,
    ForbiddenError,
    InvalidRoleError,
)
from ..models import SecurityEvent
from ..time_utils import utcnow


EVENT_UNAUTHENTICATED = "UNAUTHENTICATED"
EVENT_ACCESS_DENIED = "ACCESS_DENIED"
EVENT_INVALID_ROLE = "INVALID_ROLE"
EVENT_SYSTEM_TRANSITION_FAILED = "SYSTEM_TRANSITION_FAILED"


def log_security_event(
    *,
    event_type: str,
    success: bool,
    organization_id: int | None = None,
    user_id: int | None = None,
    system_name: str | None = None,
    resource: str | None = None,
    action: str | None = None,
    entity_id: int | None = None,
    reason: str | None = None,
) -> SecurityEvent:
    """
    Add a security event to the current session.

    The caller owns the transaction. concurrency.atomic() calls this after a
    rollback and commits it on its own, so the row survives the failure it
    describes.

    event_type examples:
    - UNAUTHENTICATED
    - ACCESS_DENIED
    - INVALID_ROLE
    - SYSTEM_TRANSITION_FAILED
    """
    event = SecurityEvent(
        organization_id=organization_id,
        user_id=user_id,
        system_name=system_name,
        event_type=event_type,
        resource=resource,
        action=action,
        entity_id=entity_id,
        success=success,
        reason=reason,
        occurred_at=utcnow(),
    )
    db.session.add(event)
    return event


def event_type_for(exc: PortalError) -> str:
    if isinstance(exc, UnauthenticatedError):
        return EVENT_UNAUTHENTICATED
    if isinstance(exc, InvalidRoleError):
        return EVENT_INVALID_ROLE
    if isinstance(exc, ForbiddenError):
        return EVENT_ACCESS_DENIED
    return EVENT_SYSTEM_TRANSITION_FAILED


def record_failed_attempt(exc: PortalError, principal=None, **context) -> SecurityEvent:
    """
    Record a denied request or a failed system-triggered transition.

    The exception's `audit` dict (filled by the raiser) wins over the
    context passed by the unit of work, since it knows the concrete record.
    """
    details = dict(context)
    details.update({k: v for k, v in (exc.audit or {}).items() if v is not None})
    principal = details.pop("principal", None) or principal

    return log_security_event(
        event_type=event_type_for(exc),
        success=False,
        organization_id=getattr(principal, "organization_id", None),
        user_id=getattr(principal, "principal_id", None),
        system_name=getattr(principal, "system_name", None),
        resource=details.get("resource"),
        action=details.get("action") or details.get("operation"),
        entity_id=details.get("entity_id"),
        reason=details.get("reason") or exc.message,
    )
