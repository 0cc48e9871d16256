# Overview: Single entry point for state-machine transitions across entity types.

from __future__ import annotations

from ..errors import ValidationError
from . import invoice_service, proof_service, shipment_service
from .policy_service import RESOURCE_INVOICE, RESOURCE_FILE_ASSET, RESOURCE_SHIPMENT


TRANSITION_HANDLERS = {
    RESOURCE_INVOICE: invoice_service.transition_invoice,
    RESOURCE_FILE_ASSET: proof_service.set_approval_status,
    RESOURCE_SHIPMENT: shipment_service.transition_shipment,
}


def transition(principal, resource: str, entity_id: int, requested_state: str, payload: dict | None = None):
    """
    transition(principal, resource, id, requested_state, payload) -> record

    Each call is one unit of work inside the owning state machine:
    authorize, guard, mutate, append the audit event, commit. Requesting
    the state the record is already in returns it unchanged.
    """
    handler = TRANSITION_HANDLERS.get(resource)
    if handler is None:
        raise ValidationError(f"'{resource}' has no state machine")
    if not isinstance(requested_state, str) or not requested_state.strip():
        raise ValidationError("requested state is required")
    return handler(principal, entity_id, requested_state.strip(), payload or {})
