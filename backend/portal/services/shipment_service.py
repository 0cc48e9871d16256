# Overview: Service-layer operations for shipments; the shipment state machine.

from __future__ import annotations

from decimal import Decimal, InvalidOperation

from ..extensions import db
from ..errors import InvalidTransitionError, ValidationError
from ..models import Shipment
from ..models.shipments import (
    CARRIERS,
    SHIPMENT_STATUSES,
    SHIPMENT_STATUS_PENDING,
    SHIPMENT_STATUS_PREPARING,
    SHIPMENT_STATUS_SHIPPED,
    SHIPMENT_STATUS_IN_TRANSIT,
    SHIPMENT_STATUS_OUT_FOR_DELIVERY,
    SHIPMENT_STATUS_DELIVERED,
    SHIPMENT_STATUS_FAILED,
    SHIPMENT_STATUS_CANCELLED,
    SHIPMENT_STATUS_RETURNED,
)
from ..time_utils import utcnow, business_today
from ..validation import (
    coerce_int,
    coerce_cents,
    coerce_optional_cents,
    coerce_date,
    require_text,
    optional_text,
    require_choice,
)
from . import audit_service, policy_service, tenant_service
from .concurrency import atomic
from .policy_service import (
    RESOURCE_SHIPMENT,
    RESOURCE_SHIPMENT_EVENT,
    RESOURCE_PROJECT,
    OP_CREATE,
    OP_UPDATE,
)


SHIPMENT_TRANSITIONS = {
    SHIPMENT_STATUS_PENDING: frozenset({SHIPMENT_STATUS_PREPARING}),
    SHIPMENT_STATUS_PREPARING: frozenset({SHIPMENT_STATUS_SHIPPED}),
    SHIPMENT_STATUS_SHIPPED: frozenset({SHIPMENT_STATUS_IN_TRANSIT, SHIPMENT_STATUS_FAILED}),
    SHIPMENT_STATUS_IN_TRANSIT: frozenset({SHIPMENT_STATUS_OUT_FOR_DELIVERY, SHIPMENT_STATUS_FAILED}),
    SHIPMENT_STATUS_OUT_FOR_DELIVERY: frozenset({SHIPMENT_STATUS_DELIVERED, SHIPMENT_STATUS_FAILED}),
    SHIPMENT_STATUS_FAILED: frozenset({
        SHIPMENT_STATUS_PREPARING,
        SHIPMENT_STATUS_CANCELLED,
        SHIPMENT_STATUS_RETURNED,
    }),
    SHIPMENT_STATUS_DELIVERED: frozenset(),
    SHIPMENT_STATUS_CANCELLED: frozenset(),
    SHIPMENT_STATUS_RETURNED: frozenset(),
}

CLOSED_STATUSES = (SHIPMENT_STATUS_CANCELLED, SHIPMENT_STATUS_RETURNED)


def _event(shipment: Shipment, event_type: str, principal, data: dict, **columns) -> None:
    audit_service.append_event(RESOURCE_SHIPMENT_EVENT, shipment.id, event_type, principal=principal, data=data, **columns)


def _coerce_weight(value) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        raise ValidationError("weight_lbs must be a number")
    try:
        weight = Decimal(str(value))
    except InvalidOperation:
        raise ValidationError("weight_lbs must be a number")
    if weight < 0:
        raise ValidationError("weight_lbs must be >= 0")
    return weight.quantize(Decimal("0.01"))


def _coerce_address(name: str, value, *, required: bool) -> dict | None:
    if value is None:
        if required:
            raise ValidationError(f"{name} is required")
        return None
    if not isinstance(value, dict) or not value:
        raise ValidationError(f"{name} must be an address object")
    return value


def create_shipment(
    principal,
    *,
    project_id: int,
    shipment_number: str,
    carrier: str,
    ship_to_address: dict,
    ship_from_address: dict | None = None,
    tracking_number: str | None = None,
    tracking_url: str | None = None,
    expected_ship_date=None,
    expected_delivery_date=None,
    package_count=1,
    weight_lbs=None,
    dimensions_inches: str | None = None,
    shipping_cost_cents=None,
    insurance_cost_cents=0,
    notes: str | None = None,
    internal_notes: str | None = None,
) -> Shipment:
    with atomic(principal, resource=RESOURCE_SHIPMENT, action=OP_CREATE):
        project = tenant_service.get_entity(principal, RESOURCE_PROJECT, project_id)
        policy_service.require(
            principal,
            OP_CREATE,
            RESOURCE_SHIPMENT,
            {"organization_id": project.organization_id, "project_id": project.id},
        )

        shipment_number = require_text("shipment_number", shipment_number, max_length=50)
        if db.session.query(Shipment.id).filter(Shipment.shipment_number == shipment_number).first():
            raise ValidationError(f"Shipment number {shipment_number} already exists")

        shipment = Shipment(
            project_id=project.id,
            organization_id=project.organization_id,
            shipment_number=shipment_number,
            carrier=require_choice("carrier", carrier, CARRIERS),
            tracking_number=optional_text("tracking_number", tracking_number, max_length=100),
            tracking_url=optional_text("tracking_url", tracking_url, max_length=500),
            status=SHIPMENT_STATUS_PENDING,
            status_updated_at=utcnow(),
            expected_ship_date=coerce_date("expected_ship_date", expected_ship_date),
            expected_delivery_date=coerce_date("expected_delivery_date", expected_delivery_date),
            ship_from_address=_coerce_address("ship_from_address", ship_from_address, required=False),
            ship_to_address=_coerce_address("ship_to_address", ship_to_address, required=True),
            package_count=coerce_int("package_count", package_count, minimum=1),
            weight_lbs=_coerce_weight(weight_lbs),
            dimensions_inches=optional_text("dimensions_inches", dimensions_inches, max_length=50),
            shipping_cost_cents=coerce_optional_cents("shipping_cost_cents", shipping_cost_cents),
            insurance_cost_cents=coerce_cents("insurance_cost_cents", insurance_cost_cents),
            notes=optional_text("notes", notes),
            internal_notes=optional_text("internal_notes", internal_notes),
            created_by=principal.principal_id,
        )
        db.session.add(shipment)
        db.session.flush()

        _event(shipment, "created", principal, {
            "shipment_number": shipment.shipment_number,
            "carrier": shipment.carrier,
        }, new_status=shipment.status)
    return shipment


def transition_shipment(principal, shipment_id: int, requested_status: str, payload: dict | None = None) -> Shipment:
    """
    Move a shipment along the carrier lifecycle.

    Entering shipped stamps actual_ship_date if it is empty. Entering
    delivered stamps actual_delivery_date; delivered is terminal, so that
    happens exactly once. payload may carry `occurred_on` (date of the scan)
    and `location`.
    """
    payload = payload or {}
    with atomic(principal, resource=RESOURCE_SHIPMENT, action=f"transition:{requested_status}", entity_id=shipment_id):
        require_choice("status", requested_status, SHIPMENT_STATUSES)
        shipment = tenant_service.load_for_write(principal, RESOURCE_SHIPMENT, shipment_id)
        attrs = policy_service.attributes_for(shipment)
        attrs.update(requested_status=requested_status, changes=("status",))
        policy_service.require(principal, OP_UPDATE, RESOURCE_SHIPMENT, attrs, entity_id=shipment_id)

        if shipment.status == requested_status:
            return shipment
        if requested_status not in SHIPMENT_TRANSITIONS[shipment.status]:
            raise InvalidTransitionError(f"Cannot transition shipment from {shipment.status} to {requested_status}")

        occurred_on = coerce_date("occurred_on", payload.get("occurred_on")) or business_today()
        location = optional_text("location", payload.get("location"), max_length=255)

        old_status = shipment.status
        shipment.status = requested_status
        shipment.status_updated_at = utcnow()
        if requested_status == SHIPMENT_STATUS_SHIPPED and shipment.actual_ship_date is None:
            shipment.actual_ship_date = occurred_on
        if requested_status == SHIPMENT_STATUS_DELIVERED and shipment.actual_delivery_date is None:
            shipment.actual_delivery_date = occurred_on

        data = {"occurred_on": occurred_on.isoformat()}
        reason = optional_text("reason", payload.get("reason"))
        if reason:
            data["reason"] = reason
        _event(
            shipment,
            "status_update",
            principal,
            data,
            old_status=old_status,
            new_status=requested_status,
            location=location,
        )
    return shipment


def update_tracking(
    principal,
    shipment_id: int,
    *,
    tracking_number: str | None = None,
    tracking_url: str | None = None,
    expected_delivery_date=None,
    location: str | None = None,
) -> Shipment:
    """
    Carrier webhook / staff tracking update. Only supplied fields change.
    """
    supplied = {
        "tracking_number": optional_text("tracking_number", tracking_number, max_length=100),
        "tracking_url": optional_text("tracking_url", tracking_url, max_length=500),
        "expected_delivery_date": coerce_date("expected_delivery_date", expected_delivery_date),
        "location": optional_text("location", location, max_length=255),
    }
    supplied = {name: value for name, value in supplied.items() if value is not None}
    if not supplied:
        raise ValidationError("No tracking fields supplied")

    with atomic(principal, resource=RESOURCE_SHIPMENT, action="tracking", entity_id=shipment_id):
        shipment = tenant_service.load_for_write(principal, RESOURCE_SHIPMENT, shipment_id)
        attrs = policy_service.attributes_for(shipment)
        attrs["changes"] = tuple(supplied)
        policy_service.require(principal, OP_UPDATE, RESOURCE_SHIPMENT, attrs, entity_id=shipment_id)

        if shipment.status in CLOSED_STATUSES:
            raise InvalidTransitionError(f"Tracking cannot change on a {shipment.status} shipment")

        changed = {}
        for name in ("tracking_number", "tracking_url", "expected_delivery_date"):
            if name in supplied and getattr(shipment, name) != supplied[name]:
                old = getattr(shipment, name)
                setattr(shipment, name, supplied[name])
                changed[name] = {
                    "old": old.isoformat() if hasattr(old, "isoformat") else old,
                    "new": supplied[name].isoformat() if hasattr(supplied[name], "isoformat") else supplied[name],
                }
        if not changed and "location" not in supplied:
            return shipment

        _event(shipment, "tracking_updated", principal, {"changes": changed}, location=supplied.get("location"))
    return shipment
