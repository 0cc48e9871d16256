# Overview: Pytest coverage for tenant isolation behavior.

"""
Multi-Tenant Isolation Tests

SECURITY TESTS: Prove that a customer principal only ever sees its own
organization's records.

These tests create two customer organizations with projects, invoices,
proofs and shipments, then verify that:
1. Customer A cannot read or write data in Organization B
2. A missing record and an invisible record look the same to a customer
3. Lists, counts and single reads agree (nothing leaks through a count)
4. Draft invoices and their events stay invisible to customers
5. Security events are logged for cross-tenant access attempts
"""

import pytest

from portal.errors import ForbiddenError, NotFoundError
from portal.models import SecurityEvent
from portal.services import invoice_service, proof_service, shipment_service, tenant_service


@pytest.fixture
def invoices(make_invoice, project_a, project_b, staff):
    """One draft and one sent invoice per tenant."""
    draft_a = make_invoice(project_a)
    sent_a = make_invoice(project_a)
    invoice_service.send_invoice(staff, sent_a.id)
    draft_b = make_invoice(project_b)
    sent_b = make_invoice(project_b)
    invoice_service.send_invoice(staff, sent_b.id)
    return {"draft_a": draft_a, "sent_a": sent_a, "draft_b": draft_b, "sent_b": sent_b}


class TestScopedReads:
    """scoped_query() and the policy read rules agree."""

    def test_customer_lists_only_own_sent_invoices(self, db_session, customer_a, invoices):
        rows = tenant_service.list_entities(customer_a, "invoice")
        assert [row.id for row in rows] == [invoices["sent_a"].id]

    def test_count_matches_list(self, db_session, customer_a, invoices):
        listed = tenant_service.list_entities(customer_a, "invoice")
        assert tenant_service.count_entities(customer_a, "invoice") == len(listed)

    def test_staff_lists_every_tenant(self, db_session, staff, invoices):
        assert tenant_service.count_entities(staff, "invoice") == 4

    def test_customer_sees_only_own_organization(self, db_session, customer_a, org_a, org_b, internal_org):
        rows = tenant_service.list_entities(customer_a, "organization")
        assert [row.id for row in rows] == [org_a.id]

    def test_customer_sees_only_own_principals(self, db_session, customer_a, customer_b_user, staff_user, customer_a_user):
        rows = tenant_service.list_entities(customer_a, "principal")
        assert [row.id for row in rows] == [customer_a_user.id]

    def test_draft_invoice_events_hidden(self, db_session, customer_a, invoices):
        """Only the sent invoice's created/sent events are visible."""
        events = tenant_service.list_entities(customer_a, "invoice_event")
        assert {event.invoice_id for event in events} == {invoices["sent_a"].id}
        assert sorted(event.event_type for event in events) == ["created", "sent"]

    def test_event_lists_follow_parent_tenant(self, db_session, customer_a, make_proof, make_shipment, project_a, project_b):
        own_proof = make_proof(project_a)
        make_proof(project_b)
        own_shipment = make_shipment(project_a)
        make_shipment(project_b)

        approval_events = tenant_service.list_entities(customer_a, "approval_event")
        shipment_events = tenant_service.list_entities(customer_a, "shipment_event")

        assert {event.file_asset_id for event in approval_events} == {own_proof.id}
        assert {event.shipment_id for event in shipment_events} == {own_shipment.id}


class TestSingleRecordReads:
    """get_entity() never lets a customer probe ids."""

    def test_own_sent_invoice_visible(self, db_session, customer_a, invoices):
        invoice = tenant_service.get_entity(customer_a, "invoice", invoices["sent_a"].id)
        assert invoice.id == invoices["sent_a"].id

    def test_own_draft_invoice_forbidden(self, db_session, customer_a, invoices):
        with pytest.raises(ForbiddenError):
            tenant_service.get_entity(customer_a, "invoice", invoices["draft_a"].id)

    def test_cross_tenant_invoice_forbidden(self, db_session, customer_a, invoices):
        with pytest.raises(ForbiddenError):
            tenant_service.get_entity(customer_a, "invoice", invoices["sent_b"].id)

    def test_missing_invoice_forbidden_for_customer(self, db_session, customer_a, invoices):
        """A missing id is indistinguishable from another tenant's id."""
        with pytest.raises(ForbiddenError) as missing:
            tenant_service.get_entity(customer_a, "invoice", 999999)
        with pytest.raises(ForbiddenError) as foreign:
            tenant_service.get_entity(customer_a, "invoice", invoices["sent_b"].id)
        assert missing.value.to_dict() == foreign.value.to_dict()

    def test_missing_invoice_not_found_for_staff(self, db_session, staff):
        with pytest.raises(NotFoundError):
            tenant_service.get_entity(staff, "invoice", 999999)


class TestCrossTenantWrites:

    def test_customer_cannot_approve_other_tenant_proof(self, db_session, customer_a, make_proof, project_b):
        proof = make_proof(project_b)
        with pytest.raises(ForbiddenError):
            proof_service.set_approval_status(customer_a, proof.id, "approved")
        db_session.refresh(proof)
        assert proof.approval_status == "pending"

    def test_customer_cannot_touch_other_tenant_shipment(self, db_session, customer_a, make_shipment, project_b):
        shipment = make_shipment(project_b)
        with pytest.raises(ForbiddenError):
            shipment_service.transition_shipment(customer_a, shipment.id, "cancelled")

    def test_customer_cannot_create_in_other_tenant(self, db_session, customer_a, make_invoice, project_b):
        with pytest.raises(ForbiddenError):
            make_invoice(project_b, principal=customer_a)

    def test_cross_tenant_write_logs_security_event(self, db_session, customer_a, org_a, invoices):
        """A denied write leaves an ACCESS_DENIED row carrying the tenant context."""
        target = invoices["sent_b"]
        with pytest.raises(ForbiddenError):
            invoice_service.cancel_invoice(customer_a, target.id)

        event = db_session.query(SecurityEvent).filter_by(event_type="ACCESS_DENIED").one()
        assert event.user_id == customer_a.principal_id
        assert event.organization_id == org_a.id
        assert event.resource == "invoice"
        assert event.entity_id == target.id
        assert event.success is False

        db_session.refresh(target)
        assert target.status == "sent"
