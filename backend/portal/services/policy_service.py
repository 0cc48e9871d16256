"""
Policy Evaluator: decides, per operation and per record, whether a principal
may read or write it.

The rule table is evaluated in order and the first rule that matches decides:

    0. system principal      read anything, insert events, system-eligible updates
    1. admin                 read; write except update/delete of append-only events
    2. internal organization read all tenants; staff create/update, no deletes
    3. customer read         own organization only, never a draft invoice or its events
    4. customer write        proof approval carve-out on own organization
    5. append-only inserts   covered by rules 0-2; nothing updates or deletes events
    6. default deny

Before the table runs, the role / organization-kind combination is checked:
an undefined combination raises InvalidRoleError.

authorize() only answers. require() raises ForbiddenError with a generic
public message; the matched rule and reason travel in the error's `audit`
dict to the security log and are never returned to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass

from ..errors import UnauthenticatedError, ForbiddenError, InvalidRoleError
from ..models import (
    Organization,
    Project,
    User,
    Invoice,
    InvoiceEvent,
    FileAsset,
    ApprovalEvent,
    Shipment,
    ShipmentEvent,
)
from ..models.auth import ROLE_ADMIN
from ..models.files import FILE_TYPE_PROOF, APPROVAL_PENDING, APPROVAL_APPROVED, APPROVAL_REJECTED
from ..models.invoices import INVOICE_STATUS_DRAFT, INVOICE_STATUS_OVERDUE
from ..models.shipments import (
    SHIPMENT_STATUS_IN_TRANSIT,
    SHIPMENT_STATUS_OUT_FOR_DELIVERY,
    SHIPMENT_STATUS_DELIVERED,
    SHIPMENT_STATUS_FAILED,
    TRACKING_FIELDS,
)
from ..models.tenancy import ORG_KIND_INTERNAL, ORG_KIND_CUSTOMER
from .identity_service import Principal, validate_role_for_kind


OP_READ = "read"
OP_CREATE = "create"
OP_UPDATE = "update"
OP_DELETE = "delete"
OP_CORRECT = "correct"
OPERATIONS = (OP_READ, OP_CREATE, OP_UPDATE, OP_DELETE, OP_CORRECT)

RESOURCE_ORGANIZATION = "organization"
RESOURCE_PRINCIPAL = "principal"
RESOURCE_PROJECT = "project"
RESOURCE_INVOICE = "invoice"
RESOURCE_INVOICE_EVENT = "invoice_event"
RESOURCE_FILE_ASSET = "file_asset"
RESOURCE_APPROVAL_EVENT = "approval_event"
RESOURCE_SHIPMENT = "shipment"
RESOURCE_SHIPMENT_EVENT = "shipment_event"
RESOURCES = (
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

APPEND_ONLY_RESOURCES = frozenset({
    RESOURCE_INVOICE_EVENT,
    RESOURCE_APPROVAL_EVENT,
    RESOURCE_SHIPMENT_EVENT,
})
OPERATIONAL_RESOURCES = frozenset({
    RESOURCE_PROJECT,
    RESOURCE_INVOICE,
    RESOURCE_FILE_ASSET,
    RESOURCE_SHIPMENT,
})

RESOURCE_MODELS = {
    RESOURCE_ORGANIZATION: Organization,
    RESOURCE_PRINCIPAL: User,
    RESOURCE_PROJECT: Project,
    RESOURCE_INVOICE: Invoice,
    RESOURCE_INVOICE_EVENT: InvoiceEvent,
    RESOURCE_FILE_ASSET: FileAsset,
    RESOURCE_APPROVAL_EVENT: ApprovalEvent,
    RESOURCE_SHIPMENT: Shipment,
    RESOURCE_SHIPMENT_EVENT: ShipmentEvent,
}

# Carrier-driven statuses the automation actor may set.
SYSTEM_SHIPMENT_STATUSES = frozenset({
    SHIPMENT_STATUS_IN_TRANSIT,
    SHIPMENT_STATUS_OUT_FOR_DELIVERY,
    SHIPMENT_STATUS_DELIVERED,
    SHIPMENT_STATUS_FAILED,
})

CUSTOMER_PROOF_FIELDS = frozenset({"approval_status", "rejection_reason"})
# Same-state pairs are allowed so a repeated approval reaches the no-op path.
CUSTOMER_APPROVAL_TRANSITIONS = frozenset({
    (APPROVAL_PENDING, APPROVAL_APPROVED),
    (APPROVAL_PENDING, APPROVAL_REJECTED),
    (APPROVAL_APPROVED, APPROVAL_APPROVED),
    (APPROVAL_REJECTED, APPROVAL_REJECTED),
})


@dataclass(frozen=True)
class Decision:
    allowed: bool
    rule: str
    reason: str = ""

    def __bool__(self) -> bool:
        return self.allowed


def _allow(rule: str) -> Decision:
    return Decision(True, rule)


def _deny(rule: str, reason: str) -> Decision:
    return Decision(False, rule, reason)


def _changes(attrs: dict) -> frozenset:
    return frozenset(attrs.get("changes") or ())


def _is_system_eligible(resource: str, attrs: dict) -> bool:
    requested = attrs.get("requested_status")
    changes = _changes(attrs)
    if resource == RESOURCE_INVOICE:
        return requested == INVOICE_STATUS_OVERDUE and changes <= {"status"}
    if resource == RESOURCE_SHIPMENT:
        if requested is not None:
            return requested in SYSTEM_SHIPMENT_STATUSES and changes <= {"status"}
        return bool(changes) and changes <= set(TRACKING_FIELDS)
    return False


# =============================================================================
# Rule table
# =============================================================================

def _rule_system(principal, operation, resource, attrs):
    if not principal.is_system:
        return None
    if operation == OP_READ:
        return _allow("system")
    if operation == OP_CREATE and resource in APPEND_ONLY_RESOURCES:
        return _allow("system")
    if operation == OP_UPDATE and _is_system_eligible(resource, attrs):
        return _allow("system")
    return _deny("system", f"{operation} on {resource} is not system-eligible")


def _rule_admin(principal, operation, resource, attrs):
    if principal.role != ROLE_ADMIN:
        return None
    if operation == OP_READ:
        return _allow("admin")
    if resource in APPEND_ONLY_RESOURCES:
        if operation in (OP_CREATE, OP_CORRECT):
            return _allow("admin")
        return _deny("admin", f"{resource} is append-only; use a correction")
    if operation == OP_CORRECT:
        return _deny("admin", f"corrections apply to event logs, not {resource}")
    return _allow("admin")


def _rule_internal(principal, operation, resource, attrs):
    if principal.organization_kind != ORG_KIND_INTERNAL:
        return None
    if operation == OP_READ:
        return _allow("internal")
    if resource in APPEND_ONLY_RESOURCES:
        if operation == OP_CREATE:
            return _allow("internal")
        return _deny("internal", f"{resource} is append-only")
    if operation == OP_DELETE:
        return _deny("internal", "hard delete is admin only")
    if resource == RESOURCE_PRINCIPAL and operation in (OP_CREATE, OP_UPDATE):
        if ROLE_ADMIN in (attrs.get("role"), attrs.get("current_role")):
            return _deny("internal", "only admins manage admin principals")
        return _allow("internal")
    if resource in OPERATIONAL_RESOURCES and operation in (OP_CREATE, OP_UPDATE):
        return _allow("internal")
    return _deny("internal", f"{operation} on {resource} is admin only")


def _rule_customer_read(principal, operation, resource, attrs):
    if principal.organization_kind != ORG_KIND_CUSTOMER or operation != OP_READ:
        return None
    if attrs.get("organization_id") != principal.organization_id:
        return _deny("customer_read", "record belongs to another organization")
    if resource in (RESOURCE_INVOICE, RESOURCE_INVOICE_EVENT) and attrs.get("invoice_status") == INVOICE_STATUS_DRAFT:
        return _deny("customer_read", "draft invoices are not visible to customers")
    return _allow("customer_read")


def _rule_customer_proof_approval(principal, operation, resource, attrs):
    if principal.organization_kind != ORG_KIND_CUSTOMER or operation != OP_UPDATE or resource != RESOURCE_FILE_ASSET:
        return None
    if attrs.get("organization_id") != principal.organization_id:
        return _deny("customer_write", "record belongs to another organization")
    if attrs.get("file_type") != FILE_TYPE_PROOF:
        return _deny("customer_write", "only proofs accept customer approval")
    changes = _changes(attrs)
    if not changes or not changes <= CUSTOMER_PROOF_FIELDS:
        return _deny("customer_write", f"customers may not change {sorted(changes - CUSTOMER_PROOF_FIELDS) or 'nothing'}")
    pair = (attrs.get("approval_status"), attrs.get("requested_status"))
    if pair not in CUSTOMER_APPROVAL_TRANSITIONS:
        return _deny("customer_write", f"customers may not move a proof from {pair[0]} to {pair[1]}")
    return _allow("customer_write")


RULES = (
    _rule_system,
    _rule_admin,
    _rule_internal,
    _rule_customer_read,
    _rule_customer_proof_approval,
)


def check_principal(principal: Principal | None) -> Principal:
    """Precondition for every evaluation: a principal with a defined role."""
    if principal is None:
        raise UnauthenticatedError("No principal", audit={"reason": "missing principal"})
    if not principal.is_system:
        try:
            validate_role_for_kind(principal.role, principal.organization_kind)
        except InvalidRoleError as exc:
            exc.audit = dict(exc.audit or {}, principal=principal)
            raise
    return principal


def authorize(principal: Principal | None, operation: str, resource: str, attrs: dict | None = None) -> Decision:
    """
    Evaluate the rule table for one (principal, operation, record).

    attrs is the record's attribute map (see attributes_for) plus, for
    writes, the requested change: `requested_status` and `changes` (the set
    of field names being written).
    """
    check_principal(principal)
    attrs = attrs or {}
    if operation not in OPERATIONS or resource not in RESOURCES:
        return _deny("default_deny", f"unknown {operation} on {resource}")

    for rule in RULES:
        decision = rule(principal, operation, resource, attrs)
        if decision is not None:
            return decision
    return _deny("default_deny", "no rule matched")


def require(
    principal: Principal | None,
    operation: str,
    resource: str,
    attrs: dict | None = None,
    *,
    entity_id: int | None = None,
) -> Decision:
    decision = authorize(principal, operation, resource, attrs)
    if not decision.allowed:
        raise ForbiddenError(
            f"{decision.rule}: {decision.reason}",
            audit={
                "principal": principal,
                "resource": resource,
                "operation": operation,
                "entity_id": entity_id,
                "reason": f"{decision.rule}: {decision.reason}",
            },
        )
    return decision


def attributes_for(record) -> dict:
    """
    Attribute map of a stored record for policy evaluation.

    Event rows carry their parent's tenant and status, so visibility of an
    event always follows visibility of the record it describes.
    """
    if isinstance(record, Organization):
        return {"organization_id": record.id, "kind": record.kind}
    if isinstance(record, User):
        return {"organization_id": record.organization_id, "current_role": record.role}
    if isinstance(record, Project):
        return {"organization_id": record.organization_id, "status": record.status}
    if isinstance(record, Invoice):
        return {
            "organization_id": record.organization_id,
            "project_id": record.project_id,
            "status": record.status,
            "invoice_status": record.status,
        }
    if isinstance(record, InvoiceEvent):
        invoice = record.invoice
        return {
            "organization_id": invoice.organization_id,
            "project_id": invoice.project_id,
            "invoice_status": invoice.status,
            "event_type": record.event_type,
        }
    if isinstance(record, FileAsset):
        return {
            "organization_id": record.organization_id,
            "project_id": record.project_id,
            "file_type": record.file_type,
            "approval_status": record.approval_status,
            "is_current_version": record.is_current_version,
        }
    if isinstance(record, ApprovalEvent):
        asset = record.file_asset
        return {
            "organization_id": asset.organization_id,
            "project_id": asset.project_id,
            "file_type": asset.file_type,
            "event_type": record.event_type,
        }
    if isinstance(record, Shipment):
        return {
            "organization_id": record.organization_id,
            "project_id": record.project_id,
            "status": record.status,
        }
    if isinstance(record, ShipmentEvent):
        shipment = record.shipment
        return {
            "organization_id": shipment.organization_id,
            "project_id": shipment.project_id,
            "event_type": record.event_type,
        }
    raise TypeError(f"No policy attributes for {type(record).__name__}")
