# Overview: Flask API routes for generic entity reads, transitions, corrections and admin deletes.

"""
Entity API Routes

DESIGN:
- One read surface for every tenant-scoped collection (/api/<collection>)
- List, count and single-record reads all go through tenant_service, so a
  customer sees the same rows everywhere (no leakage through counts)
- Transitions dispatch to the owning state machine
- Event logs are read-only here; corrections are new events

SECURITY:
- The principal is resolved per request (@require_principal)
- Denials return a generic 403 that never reveals whether a record exists
"""

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PortalError
from ..decorators import require_principal, error_response
from ..services import (
    audit_service,
    identity_service,
    organization_service,
    tenant_service,
    transition_service,
)
from .common import resource_from_url, json_body, int_arg, serialize


entities_bp = Blueprint("entities", __name__, url_prefix="/api")


# =============================================================================
# READS
# =============================================================================

@entities_bp.get("/<collection>")
@require_principal
def list_entities_route(collection: str):
    """
    List a collection.

    Query params:
    - project_id: only rows of this project
    - status: status (approval_status for files)
    - parent_id: for event collections, only events of this record
    - limit / offset
    """
    try:
        resource = resource_from_url(collection)
        filters = {
            "project_id": int_arg("project_id"),
            "status": request.args.get("status") or None,
            "parent_id": int_arg("parent_id"),
        }
        rows = tenant_service.list_entities(
            g.principal,
            resource,
            limit=int_arg("limit"),
            offset=int_arg("offset") or 0,
            **filters,
        )
        total = tenant_service.count_entities(g.principal, resource, **filters)
        return jsonify({
            "items": [serialize(row, g.principal) for row in rows],
            "count": total,
        }), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list %s", collection)
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.get("/<collection>/count")
@require_principal
def count_entities_route(collection: str):
    try:
        resource = resource_from_url(collection)
        total = tenant_service.count_entities(
            g.principal,
            resource,
            project_id=int_arg("project_id"),
            status=request.args.get("status") or None,
            parent_id=int_arg("parent_id"),
        )
        return jsonify({"count": total}), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to count %s", collection)
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.get("/<collection>/<int:entity_id>")
@require_principal
def get_entity_route(collection: str, entity_id: int):
    try:
        resource = resource_from_url(collection)
        record = tenant_service.get_entity(g.principal, resource, entity_id)
        return jsonify(serialize(record, g.principal)), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to get %s %s", collection, entity_id)
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.get("/<collection>/<int:entity_id>/events")
@require_principal
def list_events_route(collection: str, entity_id: int):
    try:
        resource = resource_from_url(collection)
        events = audit_service.list_events(g.principal, resource, entity_id)
        return jsonify({"events": [event.to_dict() for event in events]}), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to list events for %s %s", collection, entity_id)
        return jsonify({"error": "Internal server error"}), 500


# =============================================================================
# WRITES
# =============================================================================

@entities_bp.post("/<collection>/<int:entity_id>/transition")
@require_principal
def transition_route(collection: str, entity_id: int):
    """
    Request a state transition.

    Request body:
    {
        "status": "sent",
        "reason": "...",           (optional; required to reject a proof)
        "occurred_on": "2026-01-20" (optional, shipments)
    }

    Returns:
        200: Updated record (unchanged if already in that state)
        400: Invalid input
        403: Forbidden
        409: Transition not allowed from the current state
    """
    try:
        resource = resource_from_url(collection)
        data = json_body()
        requested = data.pop("status", None) or data.pop("requested_state", None)
        record = transition_service.transition(g.principal, resource, entity_id, requested, data)
        return jsonify(serialize(record, g.principal)), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to transition %s %s", collection, entity_id)
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.post("/<collection>/<int:entity_id>/corrections")
@require_principal
def correction_route(collection: str, entity_id: int):
    """
    Admin: append a compensating correction event.

    Request body:
    {
        "reason": "Payment was recorded against the wrong invoice",
        "corrects_event_id": 42, (optional)
        "data": {...}            (optional)
    }
    """
    try:
        resource = resource_from_url(collection)
        data = json_body()
        payload = dict(data.get("data") or {})
        if data.get("corrects_event_id") is not None:
            payload["corrects_event_id"] = data["corrects_event_id"]
        event = audit_service.record_correction(g.principal, resource, entity_id, data.get("reason"), payload)
        return jsonify(event.to_dict()), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record correction for %s %s", collection, entity_id)
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.delete("/<collection>/<int:entity_id>")
@require_principal
def delete_entity_route(collection: str, entity_id: int):
    """Admin hard delete (correction only). Cascades to events."""
    try:
        resource = resource_from_url(collection)
        removed = audit_service.delete_entity(g.principal, resource, entity_id)
        return jsonify({"deleted": removed}), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to delete %s %s", collection, entity_id)
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.post("/organizations")
@require_principal
def create_organization_route():
    try:
        data = json_body()
        organization = organization_service.create_organization(
            g.principal,
            name=data.get("name"),
            kind=data.get("kind"),
            contact_email=data.get("contact_email"),
            contact_phone=data.get("contact_phone"),
        )
        return jsonify(organization.to_dict()), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create organization")
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.post("/principals")
@require_principal
def register_principal_route():
    try:
        data = json_body()
        user = identity_service.register_principal(
            g.principal,
            organization_id=data.get("organization_id"),
            email=data.get("email"),
            name=data.get("name"),
            role=data.get("role"),
            external_identity=data.get("external_identity"),
        )
        return jsonify(user.to_dict()), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to register principal")
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.post("/principals/<int:user_id>/role")
@require_principal
def change_role_route(user_id: int):
    try:
        data = json_body()
        user = identity_service.change_role(g.principal, user_id, data.get("role"))
        return jsonify(user.to_dict()), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to change role of principal %s", user_id)
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.post("/projects")
@require_principal
def create_project_route():
    try:
        data = json_body()
        project = organization_service.create_project(
            g.principal,
            organization_id=data.get("organization_id"),
            name=data.get("name"),
            description=data.get("description"),
            status=data.get("status") or "active",
        )
        return jsonify(project.to_dict()), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create project")
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.post("/projects/<int:project_id>/status")
@require_principal
def update_project_status_route(project_id: int):
    try:
        data = json_body()
        project = organization_service.update_project_status(g.principal, project_id, data.get("status"))
        return jsonify(project.to_dict()), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update status of project %s", project_id)
        return jsonify({"error": "Internal server error"}), 500


@entities_bp.delete("/principals/<int:user_id>")
@require_principal
def remove_principal_route(user_id: int):
    """Admin only. Changing a person's tenancy is remove + register."""
    try:
        identity_service.remove_principal(g.principal, user_id)
        return jsonify({"deleted": {"resource": "principal", "id": user_id}}), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to remove principal %s", user_id)
        return jsonify({"error": "Internal server error"}), 500
