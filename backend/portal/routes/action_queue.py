# Overview: Flask API route for the ranked action queue.

from flask import Blueprint, request, jsonify, g, current_app

from ..errors import PortalError, ValidationError
from ..decorators import require_principal, error_response
from ..services import action_queue_service
from ..time_utils import parse_iso_datetime, utcnow, to_utc_z
from .common import int_arg


action_queue_bp = Blueprint("action_queue", __name__, url_prefix="/api/action-queue")


def _types_arg():
    raw = request.args.get("types")
    if not raw:
        return None
    types = [value.strip() for value in raw.split(",") if value.strip()]
    unknown = sorted(set(types) - set(action_queue_service.ACTION_TYPES))
    if unknown:
        raise ValidationError(f"Unknown action types: {', '.join(unknown)}")
    return types


@action_queue_bp.get("")
@require_principal
def action_queue_route():
    """
    Ranked list of items needing attention, computed from current state.

    Query params:
    - organization_id, project_id: narrow the feed
    - types: comma-separated action types
    - limit
    - as_of: ISO datetime to evaluate date rules against (default now)

    Customers only ever see items of their own organization.
    """
    try:
        try:
            now = parse_iso_datetime(request.args.get("as_of")) or utcnow()
        except ValueError:
            raise ValidationError("as_of must be an ISO-8601 datetime")
        items = action_queue_service.list_action_queue(
            g.principal,
            now=now,
            organization_id=int_arg("organization_id"),
            project_id=int_arg("project_id"),
            types=_types_arg(),
            limit=int_arg("limit"),
        )
        return jsonify({
            "generated_at": to_utc_z(now),
            "items": [item.to_dict() for item in items],
            "summary": action_queue_service.summarize_queue(items),
        }), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to build action queue")
        return jsonify({"error": "Internal server error"}), 500
