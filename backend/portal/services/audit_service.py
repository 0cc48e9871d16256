# Overview: Service-layer operations for the audit/event log; insert-only.

from __future__ import annotations

from sqlalchemy import event
from sqlalchemy.orm import Session

from ..extensions import db
from ..errors import AppendOnlyViolation, ValidationError
from ..models import (
    Invoice,
    InvoiceEvent,
    FileAsset,
    ApprovalEvent,
    Shipment,
    ShipmentEvent,
    SecurityEvent,
)
from . import policy_service, tenant_service
from .concurrency import atomic
from .policy_service import (
    RESOURCE_INVOICE,
    RESOURCE_INVOICE_EVENT,
    RESOURCE_FILE_ASSET,
    RESOURCE_APPROVAL_EVENT,
    RESOURCE_SHIPMENT,
    RESOURCE_SHIPMENT_EVENT,
    RESOURCE_PROJECT,
    OP_CREATE,
    OP_CORRECT,
    OP_DELETE,
)
"""
Audit Log Invariants (authoritative)

- Event rows are inserted once and never updated or deleted through the ORM.
  A flush that would do either raises AppendOnlyViolation.
- Events are written inside the same transaction as the state change they
  record, by the owning state machine.
- A mistake is fixed with a new "correction" event (admin only), never by
  editing history.
- The only removal path is an admin hard delete of the parent entity, which
  purges its events with a bulk DELETE outside the flush.
"""


CORRECTION_EVENT = "correction"

APPEND_ONLY_MODELS = (InvoiceEvent, ApprovalEvent, ShipmentEvent, SecurityEvent)

# Event resource -> (event model, parent fk attribute, parent resource)
EVENT_TABLES = {
    RESOURCE_INVOICE_EVENT: (InvoiceEvent, "invoice_id", RESOURCE_INVOICE),
    RESOURCE_APPROVAL_EVENT: (ApprovalEvent, "file_asset_id", RESOURCE_FILE_ASSET),
    RESOURCE_SHIPMENT_EVENT: (ShipmentEvent, "shipment_id", RESOURCE_SHIPMENT),
}
EVENT_RESOURCE_FOR_PARENT = {parent: resource for resource, (_, _, parent) in EVENT_TABLES.items()}

# Event types an external trigger (scheduler, carrier webhook, staff) may insert
# directly. State-machine events are only written by the state machines.
TRIGGER_EVENT_TYPES = {
    RESOURCE_INVOICE_EVENT: frozenset({"viewed", "reminder_7day", "reminder_due", "reminder_overdue"}),
    RESOURCE_APPROVAL_EVENT: frozenset({"viewed", "comment", "reminder_sent", "notification_sent"}),
    RESOURCE_SHIPMENT_EVENT: frozenset({"carrier_scan", "exception", "notification_sent"}),
}


def _guard_append_only(session, flush_context, instances):
    for obj in session.dirty:
        if isinstance(obj, APPEND_ONLY_MODELS) and session.is_modified(obj, include_collections=False):
            raise AppendOnlyViolation(f"{type(obj).__name__} {obj.id} is append-only and cannot be updated")
    for obj in session.deleted:
        if isinstance(obj, APPEND_ONLY_MODELS):
            raise AppendOnlyViolation(f"{type(obj).__name__} {obj.id} is append-only and cannot be deleted")


def register_append_only_guard() -> None:
    if not event.contains(Session, "before_flush", _guard_append_only):
        event.listen(Session, "before_flush", _guard_append_only)


def append_event(resource: str, parent_id: int, event_type: str, *, principal, data: dict | None = None, **columns):
    """
    Insert one event row. No authorization here: the caller is a state
    machine that already authorized the transition this event records,
    inside the same unit of work.
    """
    model, fk, _ = EVENT_TABLES[resource]
    row = model(
        event_type=event_type,
        event_data=data or None,
        **principal.actor_fields(),
        **columns,
    )
    setattr(row, fk, parent_id)
    db.session.add(row)
    db.session.flush()
    return row


def _event_resource(resource: str) -> str:
    if resource in EVENT_TABLES:
        return resource
    if resource in EVENT_RESOURCE_FOR_PARENT:
        return EVENT_RESOURCE_FOR_PARENT[resource]
    raise ValidationError(f"'{resource}' has no event log")


def record_event(principal, resource: str, entity_id: int, event_type: str, data: dict | None = None):
    """
    Inbound trigger path: insert an event for an entity (e.g. a reminder the
    scheduler sent). `resource` may name the event table or its parent.
    """
    event_resource = _event_resource(resource)
    _, _, parent_resource = EVENT_TABLES[event_resource]

    with atomic(principal, resource=event_resource, action=OP_CREATE, entity_id=entity_id):
        if event_type not in TRIGGER_EVENT_TYPES[event_resource]:
            raise ValidationError(
                f"Event type '{event_type}' cannot be recorded directly. "
                f"Allowed: {', '.join(sorted(TRIGGER_EVENT_TYPES[event_resource]))}"
            )
        parent = tenant_service.get_entity(principal, parent_resource, entity_id)
        policy_service.require(
            principal,
            OP_CREATE,
            event_resource,
            policy_service.attributes_for(parent),
            entity_id=entity_id,
        )
        row = append_event(event_resource, parent.id, event_type, principal=principal, data=data)
    return row


def record_correction(principal, resource: str, entity_id: int, reason: str, data: dict | None = None):
    """
    Admin-only compensating event. History is never edited; the correction
    says what was wrong and, optionally, which event it corrects.
    """
    event_resource = _event_resource(resource)
    _, _, parent_resource = EVENT_TABLES[event_resource]

    with atomic(principal, resource=event_resource, action=OP_CORRECT, entity_id=entity_id):
        parent = tenant_service.get_entity(principal, parent_resource, entity_id)
        policy_service.require(
            principal,
            OP_CORRECT,
            event_resource,
            policy_service.attributes_for(parent),
            entity_id=entity_id,
        )
        if not (reason or "").strip():
            raise ValidationError("A correction requires a reason")
        payload = dict(data or {})
        payload["reason"] = reason.strip()
        corrects = payload.get("corrects_event_id")
        if corrects is not None:
            model, fk, _ = EVENT_TABLES[event_resource]
            target = db.session.get(model, corrects)
            if target is None or getattr(target, fk) != parent.id:
                raise ValidationError(f"Event {corrects} does not belong to {parent_resource} {parent.id}")
        row = append_event(event_resource, parent.id, CORRECTION_EVENT, principal=principal, data=payload)
    return row


def list_events(principal, resource: str, entity_id: int):
    """Events of one entity, oldest first. The parent must be visible."""
    event_resource = _event_resource(resource)
    model, fk, parent_resource = EVENT_TABLES[event_resource]
    tenant_service.get_entity(principal, parent_resource, entity_id)
    return (
        tenant_service.scoped_query(principal, event_resource)
        .filter(getattr(model, fk) == entity_id)
        .order_by(model.created_at.asc(), model.id.asc())
        .all()
    )


# =============================================================================
# Admin hard delete
# =============================================================================

def _purge(model, *criteria) -> int:
    return db.session.query(model).filter(*criteria).delete(synchronize_session="fetch")


def _purge_invoices(invoice_ids) -> None:
    if invoice_ids:
        _purge(InvoiceEvent, InvoiceEvent.invoice_id.in_(invoice_ids))
        _purge(Invoice, Invoice.id.in_(invoice_ids))


def _purge_files(file_ids) -> None:
    if file_ids:
        _purge(ApprovalEvent, ApprovalEvent.file_asset_id.in_(file_ids))
        _purge(FileAsset, FileAsset.id.in_(file_ids))


def _purge_shipments(shipment_ids) -> None:
    if shipment_ids:
        _purge(ShipmentEvent, ShipmentEvent.shipment_id.in_(shipment_ids))
        _purge(Shipment, Shipment.id.in_(shipment_ids))


def delete_entity(principal, resource: str, entity_id: int) -> dict:
    """
    Admin hard delete for correction. Cascades to the entity's events (and,
    for a project, to its invoices, files and shipments) through bulk
    DELETEs, which bypass the append-only flush guard.

    Deleting a file asset removes its whole version chain, so no chain is
    ever left without a current version.
    """
    if resource not in (RESOURCE_PROJECT, RESOURCE_INVOICE, RESOURCE_FILE_ASSET, RESOURCE_SHIPMENT):
        raise ValidationError(f"'{resource}' cannot be hard deleted")

    with atomic(principal, resource=resource, action=OP_DELETE, entity_id=entity_id):
        record = tenant_service.get_entity(principal, resource, entity_id)
        policy_service.require(principal, OP_DELETE, resource, policy_service.attributes_for(record), entity_id=entity_id)

        removed = {"resource": resource, "id": entity_id}
        if resource == RESOURCE_INVOICE:
            _purge_invoices([record.id])
        elif resource == RESOURCE_SHIPMENT:
            _purge_shipments([record.id])
        elif resource == RESOURCE_FILE_ASSET:
            root_id = record.root_file_id or record.id
            chain_ids = [
                row.id for row in db.session.query(FileAsset.id).filter(FileAsset.root_file_id == root_id)
            ] or [record.id]
            _purge_files(chain_ids)
            removed["file_ids"] = chain_ids
        else:
            project_id = record.id
            _purge_invoices([row.id for row in db.session.query(Invoice.id).filter(Invoice.project_id == project_id)])
            _purge_files([row.id for row in db.session.query(FileAsset.id).filter(FileAsset.project_id == project_id)])
            _purge_shipments([row.id for row in db.session.query(Shipment.id).filter(Shipment.project_id == project_id)])
            _purge(record.__class__, record.__class__.id == project_id)
    return removed
