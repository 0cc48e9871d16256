# Overview: Request decorators for API routes: principal resolution and error mapping.

from functools import wraps
from flask import request, jsonify, g, current_app

from .extensions import db
from .errors import PortalError, UnauthenticatedError, DataIntegrityError, ACCESS_ERRORS
from .services import identity_service, security_service


SYSTEM_TOKEN_HEADER = "X-System-Token"


def error_response(exc: PortalError):
    """
    JSON body + status for a portal error.

    Forbidden / Unauthenticated bodies only carry the generic public message,
    so a denied caller learns nothing about whether the record exists.
    Denials raised outside a unit of work (plain reads) are written to the
    security log here; atomic() already recorded the others.
    """
    if isinstance(exc, DataIntegrityError):
        current_app.logger.error("Data integrity error: %s", exc.message)
    if isinstance(exc, ACCESS_ERRORS) and not getattr(exc, "recorded", False):
        db.session.rollback()
        security_service.record_failed_attempt(
            exc,
            getattr(g, "principal", None),
            resource=request.path,
            action=request.method,
        )
        db.session.commit()
        exc.recorded = True
    return jsonify(exc.to_dict()), exc.http_status


def _resolve_request_principal():
    token = request.headers.get(SYSTEM_TOKEN_HEADER)
    if token:
        return identity_service.resolve_system_principal(token)
    header = current_app.config.get("IDENTITY_HEADER", "X-Authenticated-Identity")
    return identity_service.resolve_principal(request.headers.get(header))


def require_principal(f):
    """
    Resolve the caller and put it on g.principal.

    The external identity arrives in IDENTITY_HEADER, set by the
    authenticating gateway in front of this service. The automation actor
    sends X-System-Token instead.

    SECURITY: Returns 401 if the identity or token has no mapping. The
    attempt is written to the security log.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        g.principal = None
        try:
            g.principal = _resolve_request_principal()
        except UnauthenticatedError as e:
            return error_response(e)
        return f(*args, **kwargs)

    return decorated_function


def require_system(f):
    """Endpoint reserved for the automation actor. Use after @require_principal."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        principal = getattr(g, "principal", None)
        if principal is None or not principal.is_system:
            security_service.log_security_event(
                event_type=security_service.EVENT_ACCESS_DENIED,
                success=False,
                organization_id=getattr(principal, "organization_id", None),
                user_id=getattr(principal, "principal_id", None),
                resource=request.path,
                action=request.method,
                reason="automation endpoint requires the system principal",
            )
            db.session.commit()
            return jsonify({"error": "FORBIDDEN", "message": "Forbidden", "retryable": False}), 403
        return f(*args, **kwargs)

    return decorated_function
