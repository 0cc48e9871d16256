# Overview: Flask API routes for the workflow-automation actor (system principal only).

"""
Automation API Routes

The scheduler is an external actor. It authenticates with X-System-Token and
goes through the same services as every other caller, so the policy layer
still decides what it may touch:

- POST /api/automation/overdue-sweep   mark sent invoices past due as overdue
- POST /api/automation/events          record an external trigger (reminder
                                       sent, carrier scan, ...) as an event

Failed system-triggered attempts are written to the security log by the
services themselves.
"""

from flask import Blueprint, jsonify, g, current_app

from ..errors import PortalError, ValidationError
from ..decorators import require_principal, require_system, error_response
from ..services import audit_service, invoice_service
from ..validation import coerce_date, coerce_int, require_text
from .common import json_body, resource_from_url


automation_bp = Blueprint("automation", __name__, url_prefix="/api/automation")


@automation_bp.post("/overdue-sweep")
@require_principal
@require_system
def overdue_sweep_route():
    """
    Request body (optional):
    {
        "as_of": "2026-02-05"
    }

    Returns the sweep report: as_of, checked, marked ids, failed attempts.
    """
    try:
        data = json_body()
        today = coerce_date("as_of", data.get("as_of"))
        report = invoice_service.sweep_overdue(g.principal, today=today)
        return jsonify(report), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Overdue sweep failed")
        return jsonify({"error": "Internal server error"}), 500


@automation_bp.post("/events")
@require_principal
@require_system
def record_event_route():
    """
    Request body:
    {
        "collection": "invoices",
        "entity_id": 12,
        "event_type": "reminder_7day",
        "data": {...}  (optional)
    }
    """
    try:
        data = json_body()
        resource = resource_from_url(require_text("collection", data.get("collection"), max_length=64))
        entity_id = coerce_int("entity_id", data.get("entity_id"), minimum=1)
        event_data = data.get("data")
        if event_data is not None and not isinstance(event_data, dict):
            raise ValidationError("data must be an object")
        event = audit_service.record_event(
            g.principal,
            resource,
            entity_id,
            require_text("event_type", data.get("event_type"), max_length=50),
            event_data,
        )
        return jsonify(event.to_dict()), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record automation event")
        return jsonify({"error": "Internal server error"}), 500
