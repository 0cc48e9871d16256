# Overview: Flask API routes for shipment creation and tracking updates.

from flask import Blueprint, jsonify, g, current_app

from ..errors import PortalError
from ..decorators import require_principal, error_response
from ..services import shipment_service
from .common import json_body, serialize


shipments_bp = Blueprint("shipments", __name__, url_prefix="/api/shipments")


SHIPMENT_CREATE_FIELDS = (
    "ship_from_address",
    "tracking_number",
    "tracking_url",
    "expected_ship_date",
    "expected_delivery_date",
    "package_count",
    "weight_lbs",
    "dimensions_inches",
    "shipping_cost_cents",
    "insurance_cost_cents",
    "notes",
    "internal_notes",
)


@shipments_bp.post("")
@require_principal
def create_shipment_route():
    """
    Create a pending shipment.

    Request body:
    {
        "project_id": 3,
        "shipment_number": "SHP-0091",
        "carrier": "ups",
        "ship_to_address": {"line1": "...", "city": "...", ...},
        ...optional fields (tracking, dates, package details, notes)
    }
    """
    try:
        data = json_body()
        optional = {key: data[key] for key in SHIPMENT_CREATE_FIELDS if key in data}
        shipment = shipment_service.create_shipment(
            g.principal,
            project_id=data.get("project_id"),
            shipment_number=data.get("shipment_number"),
            carrier=data.get("carrier"),
            ship_to_address=data.get("ship_to_address"),
            **optional,
        )
        return jsonify(serialize(shipment, g.principal)), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create shipment")
        return jsonify({"error": "Internal server error"}), 500


@shipments_bp.post("/<int:shipment_id>/tracking")
@require_principal
def update_tracking_route(shipment_id: int):
    """
    Tracking update from staff or the carrier integration (system principal).

    Only supplied fields change: tracking_number, tracking_url,
    expected_delivery_date, location.
    """
    try:
        data = json_body()
        shipment = shipment_service.update_tracking(
            g.principal,
            shipment_id,
            tracking_number=data.get("tracking_number"),
            tracking_url=data.get("tracking_url"),
            expected_delivery_date=data.get("expected_delivery_date"),
            location=data.get("location"),
        )
        return jsonify(serialize(shipment, g.principal)), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update tracking of shipment %s", shipment_id)
        return jsonify({"error": "Internal server error"}), 500
