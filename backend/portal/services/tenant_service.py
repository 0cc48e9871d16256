"""
Multi-Tenant Service: Tenant Scoping Helpers

WHY: Every read of a tenant-scoped table goes through scoped_query(), which
translates the Policy Evaluator's read rules into SQL filters. Lists, counts
and single-record fetches therefore see exactly the same rows, so nothing
leaks through an aggregate or count endpoint.

SECURITY INVARIANTS:
1. A customer principal only sees rows whose organization_id is its own
2. A customer principal never sees a draft invoice or that invoice's events
3. Event rows are filtered through their parent record
4. A customer gets FORBIDDEN for both a missing and an invisible record, so
   ids cannot be probed; internal and system principals get NOT_FOUND

USAGE:
    from portal.services import tenant_service

    invoices = tenant_service.list_entities(principal, "invoice", status="sent")
    invoice = tenant_service.get_entity(principal, "invoice", invoice_id)
"""

from __future__ import annotations

from ..extensions import db
from ..errors import ForbiddenError, NotFoundError, ValidationError
from ..models import Organization, User, Invoice, InvoiceEvent, FileAsset, ApprovalEvent, Shipment, ShipmentEvent
from ..models.invoices import INVOICE_STATUS_DRAFT
from . import policy_service
from .concurrency import lock_for_update
from .policy_service import (
    RESOURCE_MODELS,
    RESOURCE_ORGANIZATION,
    RESOURCE_PRINCIPAL,
    RESOURCE_INVOICE,
    RESOURCE_INVOICE_EVENT,
    RESOURCE_APPROVAL_EVENT,
    RESOURCE_SHIPMENT_EVENT,
    OP_READ,
)


# Event table -> (foreign key column, parent resource)
EVENT_PARENTS = {
    RESOURCE_INVOICE_EVENT: (InvoiceEvent.invoice_id, RESOURCE_INVOICE),
    RESOURCE_APPROVAL_EVENT: (ApprovalEvent.file_asset_id, policy_service.RESOURCE_FILE_ASSET),
    RESOURCE_SHIPMENT_EVENT: (ShipmentEvent.shipment_id, policy_service.RESOURCE_SHIPMENT),
}


def model_for(resource: str):
    try:
        return RESOURCE_MODELS[resource]
    except KeyError:
        raise ValidationError(f"Unknown resource '{resource}'")


def scoped_query(principal, resource: str):
    """
    Query over `resource` containing exactly the rows the principal may read.

    Internal and system principals read every tenant. Customer principals
    are filtered the same way policy_service._rule_customer_read decides.
    """
    policy_service.check_principal(principal)
    model = model_for(resource)
    query = db.session.query(model)

    if principal.is_system or principal.is_internal:
        return query

    org_id = principal.organization_id
    if resource == RESOURCE_ORGANIZATION:
        return query.filter(Organization.id == org_id)
    if resource == RESOURCE_PRINCIPAL:
        return query.filter(User.organization_id == org_id)
    if resource == RESOURCE_INVOICE:
        return query.filter(Invoice.organization_id == org_id, Invoice.status != INVOICE_STATUS_DRAFT)
    if resource == RESOURCE_INVOICE_EVENT:
        return query.join(Invoice, InvoiceEvent.invoice_id == Invoice.id).filter(
            Invoice.organization_id == org_id,
            Invoice.status != INVOICE_STATUS_DRAFT,
        )
    if resource == RESOURCE_APPROVAL_EVENT:
        return query.join(FileAsset, ApprovalEvent.file_asset_id == FileAsset.id).filter(
            FileAsset.organization_id == org_id,
        )
    if resource == RESOURCE_SHIPMENT_EVENT:
        return query.join(Shipment, ShipmentEvent.shipment_id == Shipment.id).filter(
            Shipment.organization_id == org_id,
        )
    return query.filter(model.organization_id == org_id)


def _apply_filters(query, model, *, project_id=None, status=None, parent_id=None, resource=None):
    if project_id is not None:
        if not hasattr(model, "project_id"):
            raise ValidationError(f"{resource} cannot be filtered by project")
        query = query.filter(model.project_id == project_id)
    if status is not None:
        if hasattr(model, "status"):
            query = query.filter(model.status == status)
        elif hasattr(model, "approval_status"):
            query = query.filter(model.approval_status == status)
        else:
            raise ValidationError(f"{resource} cannot be filtered by status")
    if parent_id is not None:
        if resource not in EVENT_PARENTS:
            raise ValidationError(f"{resource} cannot be filtered by parent")
        query = query.filter(EVENT_PARENTS[resource][0] == parent_id)
    return query


def list_entities(principal, resource: str, *, project_id=None, status=None, parent_id=None, limit=None, offset=0):
    model = model_for(resource)
    query = _apply_filters(
        scoped_query(principal, resource),
        model,
        project_id=project_id,
        status=status,
        parent_id=parent_id,
        resource=resource,
    )
    query = query.order_by(model.id.asc())
    if offset:
        query = query.offset(offset)
    if limit is not None:
        query = query.limit(limit)
    return query.all()


def count_entities(principal, resource: str, *, project_id=None, status=None, parent_id=None) -> int:
    model = model_for(resource)
    query = _apply_filters(
        scoped_query(principal, resource),
        model,
        project_id=project_id,
        status=status,
        parent_id=parent_id,
        resource=resource,
    )
    return query.count()


def _missing(principal, resource: str, entity_id):
    if principal.is_customer:
        return ForbiddenError(
            audit={
                "principal": principal,
                "resource": resource,
                "operation": OP_READ,
                "entity_id": entity_id,
                "reason": "record not found",
            }
        )
    return NotFoundError(f"{resource} {entity_id} not found")


def get_entity(principal, resource: str, entity_id: int):
    """
    Single-record read. Returns the record or raises Forbidden / NotFound.
    """
    policy_service.check_principal(principal)
    record = db.session.get(model_for(resource), entity_id)
    if record is None:
        raise _missing(principal, resource, entity_id)
    policy_service.require(principal, OP_READ, resource, policy_service.attributes_for(record), entity_id=entity_id)
    return record


def load_for_write(principal, resource: str, entity_id: int):
    """
    Fetch a record with a row lock for a state-machine write.

    Only existence is checked here. The caller authorizes the concrete
    write with the record's attributes and the requested change.
    """
    policy_service.check_principal(principal)
    model = model_for(resource)
    record = lock_for_update(db.session.query(model).filter(model.id == entity_id)).first()
    if record is None:
        raise _missing(principal, resource, entity_id)
    return record
