# Overview: Shared helpers for API routes: URL resource names, body parsing, serialization.

from flask import request

from ..errors import ValidationError, NotFoundError
from ..models import Invoice, Shipment
from ..services.policy_service import (
    RESOURCE_ORGANIZATION,
    RESOURCE_PRINCIPAL,
    RESOURCE_PROJECT,
    RESOURCE_INVOICE,
    RESOURCE_INVOICE_EVENT,
    RESOURCE_FILE_ASSET,
    RESOURCE_APPROVAL_EVENT,
    RESOURCE_SHIPMENT,
    RESOURCE_SHIPMENT_EVENT,
)


# Models whose to_dict() carries staff-only fields (notes, internal_notes)
INTERNAL_FIELD_MODELS = (Invoice, Shipment)

# URL segment -> policy resource
URL_RESOURCES = {
    "organizations": RESOURCE_ORGANIZATION,
    "principals": RESOURCE_PRINCIPAL,
    "projects": RESOURCE_PROJECT,
    "invoices": RESOURCE_INVOICE,
    "invoice-events": RESOURCE_INVOICE_EVENT,
    "files": RESOURCE_FILE_ASSET,
    "approval-events": RESOURCE_APPROVAL_EVENT,
    "shipments": RESOURCE_SHIPMENT,
    "shipment-events": RESOURCE_SHIPMENT_EVENT,
}


def resource_from_url(segment: str) -> str:
    resource = URL_RESOURCES.get(segment)
    if resource is None:
        raise NotFoundError(f"Unknown collection '{segment}'")
    return resource


def json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


def int_arg(name: str):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer")


def serialize(record, principal) -> dict:
    """to_dict() with internal-only fields dropped for customer principals."""
    if isinstance(record, INTERNAL_FIELD_MODELS):
        return record.to_dict(include_internal=not principal.is_customer)
    return record.to_dict()
