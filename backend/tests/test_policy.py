# Overview: Pytest coverage for the ordered policy rule table.

"""
Policy Evaluator Tests

The rule table is pure: these tests build principals directly and evaluate
attribute maps without touching the database.
"""

import pytest

from portal.errors import ForbiddenError, InvalidRoleError, UnauthenticatedError
from portal.services.identity_service import Principal, system_principal
from portal.services.policy_service import (
    authorize,
    require,
    OP_READ,
    OP_CREATE,
    OP_UPDATE,
    OP_DELETE,
    OP_CORRECT,
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


INTERNAL_ORG = 1
ORG_A = 10
ORG_B = 20

ADMIN = Principal(principal_id=1, organization_id=INTERNAL_ORG, role="admin", organization_kind="internal")
STAFF = Principal(principal_id=2, organization_id=INTERNAL_ORG, role="staff", organization_kind="internal")
CUSTOMER_A = Principal(principal_id=3, organization_id=ORG_A, role="customer", organization_kind="customer")
SYSTEM = system_principal("scheduler")


def _invoice(org=ORG_A, status="sent"):
    return {"organization_id": org, "status": status, "invoice_status": status}


def _proof(org=ORG_A, approval_status="pending", file_type="proof"):
    return {"organization_id": org, "file_type": file_type, "approval_status": approval_status}


def _approval(attrs, requested, changes=("approval_status",)):
    return dict(attrs, requested_status=requested, changes=changes)


class TestPreconditions:

    def test_missing_principal_is_unauthenticated(self):
        with pytest.raises(UnauthenticatedError):
            authorize(None, OP_READ, RESOURCE_INVOICE, _invoice())

    def test_undefined_role_combination_is_invalid_role(self):
        odd = Principal(principal_id=9, organization_id=ORG_A, role="admin", organization_kind="customer")
        with pytest.raises(InvalidRoleError):
            authorize(odd, OP_READ, RESOURCE_INVOICE, _invoice())

    def test_unknown_operation_is_denied(self):
        decision = authorize(ADMIN, "archive", RESOURCE_INVOICE, _invoice())
        assert not decision.allowed
        assert decision.rule == "default_deny"

    def test_require_raises_generic_forbidden(self):
        with pytest.raises(ForbiddenError) as exc_info:
            require(CUSTOMER_A, OP_READ, RESOURCE_INVOICE, _invoice(org=ORG_B), entity_id=5)

        body = exc_info.value.to_dict()
        assert body == {"error": "FORBIDDEN", "message": "Forbidden", "retryable": False}
        assert exc_info.value.audit["entity_id"] == 5
        assert "another organization" in exc_info.value.audit["reason"]


class TestAdminRule:

    @pytest.mark.parametrize("resource", [
        RESOURCE_ORGANIZATION, RESOURCE_PRINCIPAL, RESOURCE_PROJECT, RESOURCE_INVOICE,
        RESOURCE_FILE_ASSET, RESOURCE_SHIPMENT,
    ])
    def test_admin_full_control_of_mutable_records(self, resource):
        for operation in (OP_READ, OP_CREATE, OP_UPDATE, OP_DELETE):
            assert authorize(ADMIN, operation, resource, {"organization_id": ORG_A}).allowed

    @pytest.mark.parametrize("resource", [RESOURCE_INVOICE_EVENT, RESOURCE_APPROVAL_EVENT, RESOURCE_SHIPMENT_EVENT])
    def test_admin_cannot_rewrite_event_history(self, resource):
        attrs = {"organization_id": ORG_A}
        assert authorize(ADMIN, OP_CREATE, resource, attrs).allowed
        assert authorize(ADMIN, OP_CORRECT, resource, attrs).allowed
        assert not authorize(ADMIN, OP_UPDATE, resource, attrs).allowed
        assert not authorize(ADMIN, OP_DELETE, resource, attrs).allowed

    def test_corrections_only_apply_to_event_logs(self):
        assert not authorize(ADMIN, OP_CORRECT, RESOURCE_INVOICE, _invoice()).allowed


class TestInternalRule:

    def test_staff_reads_every_tenant(self):
        assert authorize(STAFF, OP_READ, RESOURCE_INVOICE, _invoice(org=ORG_A, status="draft")).allowed
        assert authorize(STAFF, OP_READ, RESOURCE_INVOICE, _invoice(org=ORG_B)).allowed

    def test_staff_creates_and_updates_operational_records(self):
        for resource in (RESOURCE_PROJECT, RESOURCE_INVOICE, RESOURCE_FILE_ASSET, RESOURCE_SHIPMENT):
            assert authorize(STAFF, OP_CREATE, resource, {"organization_id": ORG_A}).allowed
            assert authorize(STAFF, OP_UPDATE, resource, {"organization_id": ORG_A}).allowed

    def test_staff_never_hard_deletes(self):
        decision = authorize(STAFF, OP_DELETE, RESOURCE_INVOICE, _invoice())
        assert not decision.allowed
        assert decision.rule == "internal"

    def test_staff_cannot_create_organizations(self):
        assert not authorize(STAFF, OP_CREATE, RESOURCE_ORGANIZATION, {"kind": "customer"}).allowed

    def test_staff_manages_customer_principals_but_not_admins(self):
        assert authorize(STAFF, OP_CREATE, RESOURCE_PRINCIPAL, {"organization_id": ORG_A, "role": "customer"}).allowed
        assert not authorize(STAFF, OP_CREATE, RESOURCE_PRINCIPAL, {"organization_id": INTERNAL_ORG, "role": "admin"}).allowed
        assert not authorize(
            STAFF, OP_UPDATE, RESOURCE_PRINCIPAL,
            {"organization_id": INTERNAL_ORG, "current_role": "admin", "role": "staff"},
        ).allowed

    def test_staff_appends_but_never_corrects_events(self):
        assert authorize(STAFF, OP_CREATE, RESOURCE_INVOICE_EVENT, {"organization_id": ORG_A}).allowed
        assert not authorize(STAFF, OP_CORRECT, RESOURCE_INVOICE_EVENT, {"organization_id": ORG_A}).allowed


class TestCustomerRead:

    def test_own_organization_visible(self):
        assert authorize(CUSTOMER_A, OP_READ, RESOURCE_INVOICE, _invoice()).allowed
        assert authorize(CUSTOMER_A, OP_READ, RESOURCE_SHIPMENT, {"organization_id": ORG_A}).allowed
        assert authorize(CUSTOMER_A, OP_READ, RESOURCE_ORGANIZATION, {"organization_id": ORG_A}).allowed

    def test_other_organization_denied(self):
        decision = authorize(CUSTOMER_A, OP_READ, RESOURCE_INVOICE, _invoice(org=ORG_B))
        assert not decision.allowed
        assert decision.rule == "customer_read"

    def test_draft_invoice_and_its_events_hidden(self):
        assert not authorize(CUSTOMER_A, OP_READ, RESOURCE_INVOICE, _invoice(status="draft")).allowed
        assert not authorize(
            CUSTOMER_A, OP_READ, RESOURCE_INVOICE_EVENT,
            {"organization_id": ORG_A, "invoice_status": "draft"},
        ).allowed

    @pytest.mark.parametrize("resource", [RESOURCE_INVOICE, RESOURCE_SHIPMENT, RESOURCE_PROJECT, RESOURCE_INVOICE_EVENT])
    def test_customers_cannot_create(self, resource):
        decision = authorize(CUSTOMER_A, OP_CREATE, resource, {"organization_id": ORG_A})
        assert not decision.allowed
        assert decision.rule == "default_deny"

    def test_customers_cannot_update_invoices(self):
        attrs = dict(_invoice(), requested_status="cancelled", changes=("status",))
        assert not authorize(CUSTOMER_A, OP_UPDATE, RESOURCE_INVOICE, attrs).allowed


class TestCustomerProofApproval:

    @pytest.mark.parametrize("requested", ["approved", "rejected"])
    def test_pending_proof_approve_or_reject(self, requested):
        changes = ("approval_status", "rejection_reason") if requested == "rejected" else ("approval_status",)
        attrs = _approval(_proof(), requested, changes)
        decision = authorize(CUSTOMER_A, OP_UPDATE, RESOURCE_FILE_ASSET, attrs)
        assert decision.allowed
        assert decision.rule == "customer_write"

    def test_repeat_approval_reaches_the_service(self):
        attrs = _approval(_proof(approval_status="approved"), "approved")
        assert authorize(CUSTOMER_A, OP_UPDATE, RESOURCE_FILE_ASSET, attrs).allowed

    @pytest.mark.parametrize("current,requested", [
        ("approved", "final"),
        ("pending", "revision"),
        ("rejected", "approved"),
        ("revision", "approved"),
    ])
    def test_other_approval_moves_are_staff_only(self, current, requested):
        attrs = _approval(_proof(approval_status=current), requested)
        assert not authorize(CUSTOMER_A, OP_UPDATE, RESOURCE_FILE_ASSET, attrs).allowed

    def test_other_organization_proof_denied(self):
        attrs = _approval(_proof(org=ORG_B), "approved")
        assert not authorize(CUSTOMER_A, OP_UPDATE, RESOURCE_FILE_ASSET, attrs).allowed

    def test_only_proofs_accept_approval(self):
        attrs = _approval(_proof(file_type="artwork", approval_status=None), "approved")
        assert not authorize(CUSTOMER_A, OP_UPDATE, RESOURCE_FILE_ASSET, attrs).allowed

    def test_approval_cannot_smuggle_other_fields(self):
        attrs = _approval(_proof(), "approved", changes=("approval_status", "notes"))
        assert not authorize(CUSTOMER_A, OP_UPDATE, RESOURCE_FILE_ASSET, attrs).allowed


class TestSystemRule:

    def test_system_reads_everything(self):
        assert authorize(SYSTEM, OP_READ, RESOURCE_INVOICE, _invoice(status="draft")).allowed

    def test_system_inserts_events(self):
        assert authorize(SYSTEM, OP_CREATE, RESOURCE_INVOICE_EVENT, {"organization_id": ORG_A}).allowed
        assert authorize(SYSTEM, OP_CREATE, RESOURCE_SHIPMENT_EVENT, {"organization_id": ORG_A}).allowed

    def test_system_marks_overdue_only(self):
        overdue = dict(_invoice(), requested_status="overdue", changes=("status",))
        paid = dict(_invoice(), requested_status="paid", changes=("status",))
        assert authorize(SYSTEM, OP_UPDATE, RESOURCE_INVOICE, overdue).allowed
        assert not authorize(SYSTEM, OP_UPDATE, RESOURCE_INVOICE, paid).allowed

    @pytest.mark.parametrize("status,allowed", [
        ("in_transit", True),
        ("out_for_delivery", True),
        ("delivered", True),
        ("failed", True),
        ("shipped", False),
        ("preparing", False),
        ("cancelled", False),
    ])
    def test_system_shipment_statuses(self, status, allowed):
        attrs = {"organization_id": ORG_A, "requested_status": status, "changes": ("status",)}
        assert authorize(SYSTEM, OP_UPDATE, RESOURCE_SHIPMENT, attrs).allowed is allowed

    def test_system_updates_tracking_fields_only(self):
        tracking = {"organization_id": ORG_A, "changes": ("tracking_number", "expected_delivery_date")}
        notes = {"organization_id": ORG_A, "changes": ("tracking_number", "internal_notes")}
        assert authorize(SYSTEM, OP_UPDATE, RESOURCE_SHIPMENT, tracking).allowed
        assert not authorize(SYSTEM, OP_UPDATE, RESOURCE_SHIPMENT, notes).allowed

    def test_system_cannot_create_or_delete_records(self):
        assert not authorize(SYSTEM, OP_CREATE, RESOURCE_INVOICE, {"organization_id": ORG_A}).allowed
        assert not authorize(SYSTEM, OP_DELETE, RESOURCE_SHIPMENT, {"organization_id": ORG_A}).allowed
