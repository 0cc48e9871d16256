"""
Authorization tests for the portal API.

Verifies:
- Requests without a resolvable principal return 401 (and are logged)
- Customers get a generic 403 for both missing and invisible records
- Internal principals get 404 for missing records
- Staff are denied admin-only operations (403)
- Automation endpoints only accept the system token
"""

import pytest

from portal.models import SecurityEvent
from portal.services import invoice_service
from conftest import SYSTEM_TOKEN


FORBIDDEN_BODY = {"error": "FORBIDDEN", "message": "Forbidden", "retryable": False}


# =============================================================================
# UNAUTHENTICATED ACCESS - 401
# =============================================================================


class TestUnauthenticatedAccess:
    """All protected endpoints return 401 without an identity."""

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/invoices"),
            ("GET", "/api/invoices/1"),
            ("GET", "/api/invoices/count"),
            ("POST", "/api/invoices"),
            ("POST", "/api/invoices/1/transition"),
            ("POST", "/api/invoices/1/payments"),
            ("GET", "/api/files/1/versions"),
            ("POST", "/api/files"),
            ("POST", "/api/shipments"),
            ("GET", "/api/action-queue"),
            ("POST", "/api/automation/overdue-sweep"),
            ("DELETE", "/api/projects/1"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"
        assert resp.get_json()["error"] == "UNAUTHENTICATED"

    def test_unknown_identity_rejected(self, client, auth_headers, staff_user):
        resp = client.get("/api/invoices", headers=auth_headers("idp|stranger"))
        assert resp.status_code == 401

    def test_unauthenticated_attempt_logged(self, client, db_session):
        client.get("/api/action-queue")

        event = db_session.query(SecurityEvent).filter_by(event_type="UNAUTHENTICATED").one()
        assert event.user_id is None
        assert event.resource == "/api/action-queue"
        assert event.action == "GET"
        assert event.reason == "missing identity"

    def test_invalid_system_token_rejected(self, client, db_session):
        resp = client.post("/api/automation/overdue-sweep", headers={"X-System-Token": "guess"})
        assert resp.status_code == 401


# =============================================================================
# CUSTOMER VISIBILITY - 403 / 404
# =============================================================================


class TestCustomerVisibility:

    def test_draft_invoice_forbidden(self, client, auth_headers, customer_a_user, make_invoice, project_a):
        draft = make_invoice(project_a)
        resp = client.get(f"/api/invoices/{draft.id}", headers=auth_headers("idp|buyer-a"))
        assert resp.status_code == 403
        assert resp.get_json() == FORBIDDEN_BODY

    def test_missing_and_foreign_records_look_identical(
        self, client, auth_headers, customer_a_user, staff, make_invoice, project_b,
    ):
        foreign = make_invoice(project_b)
        invoice_service.send_invoice(staff, foreign.id)
        headers = auth_headers("idp|buyer-a")

        foreign_resp = client.get(f"/api/invoices/{foreign.id}", headers=headers)
        missing_resp = client.get("/api/invoices/999999", headers=headers)

        assert foreign_resp.status_code == missing_resp.status_code == 403
        assert foreign_resp.get_json() == missing_resp.get_json() == FORBIDDEN_BODY

    def test_denied_read_logged(self, client, db_session, auth_headers, customer_a, make_invoice, project_a):
        draft = make_invoice(project_a)
        client.get(f"/api/invoices/{draft.id}", headers=auth_headers("idp|buyer-a"))

        event = db_session.query(SecurityEvent).filter_by(event_type="ACCESS_DENIED").one()
        assert event.user_id == customer_a.principal_id
        assert event.entity_id == draft.id
        assert event.resource == "invoice"

    def test_staff_gets_not_found(self, client, auth_headers, staff_user):
        resp = client.get("/api/invoices/999999", headers=auth_headers("idp|staff"))
        assert resp.status_code == 404
        assert resp.get_json()["error"] == "NOT_FOUND"

    def test_customer_cannot_create_invoice(self, client, auth_headers, customer_a_user, project_a):
        resp = client.post("/api/invoices", headers=auth_headers("idp|buyer-a"), json={
            "project_id": project_a.id,
            "invoice_number": "INV-SELF",
            "issue_date": "2026-01-05",
            "due_date": "2026-02-04",
            "amount_subtotal": 100,
        })
        assert resp.status_code == 403


# =============================================================================
# STAFF DENIED ADMIN OPERATIONS - 403
# =============================================================================


class TestStaffDeniedAdminOnly:

    def test_cannot_hard_delete(self, client, auth_headers, staff_user, make_invoice, project_a):
        invoice = make_invoice(project_a)
        resp = client.delete(f"/api/invoices/{invoice.id}", headers=auth_headers("idp|staff"))
        assert resp.status_code == 403

    def test_cannot_create_organization(self, client, auth_headers, staff_user):
        resp = client.post("/api/organizations", headers=auth_headers("idp|staff"), json={
            "name": "Shadow Corp",
            "kind": "customer",
        })
        assert resp.status_code == 403

    def test_cannot_grant_admin(self, client, auth_headers, staff_user, internal_org):
        resp = client.post("/api/principals", headers=auth_headers("idp|staff"), json={
            "organization_id": internal_org.id,
            "email": "new-admin@northside.test",
            "name": "New Admin",
            "role": "admin",
        })
        assert resp.status_code == 403

    def test_cannot_correct_history(self, client, auth_headers, staff_user, make_invoice, project_a):
        invoice = make_invoice(project_a)
        resp = client.post(
            f"/api/invoices/{invoice.id}/corrections",
            headers=auth_headers("idp|staff"),
            json={"reason": "typo"},
        )
        assert resp.status_code == 403

    def test_cannot_call_automation(self, client, db_session, auth_headers, staff_user):
        resp = client.post("/api/automation/overdue-sweep", headers=auth_headers("idp|staff"), json={})
        assert resp.status_code == 403
        assert db_session.query(SecurityEvent).filter_by(event_type="ACCESS_DENIED").count() == 1


# =============================================================================
# ADMIN AND SYSTEM PRINCIPALS
# =============================================================================


class TestPrivilegedAccess:

    def test_admin_creates_customer_organization(self, client, auth_headers, admin_user):
        resp = client.post("/api/organizations", headers=auth_headers("idp|admin"), json={
            "name": "Brightside Foods",
            "kind": "customer",
            "contact_email": "ap@brightside.test",
        })
        assert resp.status_code == 201
        assert resp.get_json()["kind"] == "customer"

    def test_admin_cannot_create_second_internal_org(self, client, auth_headers, admin_user):
        resp = client.post("/api/organizations", headers=auth_headers("idp|admin"), json={
            "name": "Other Ops",
            "kind": "internal",
        })
        assert resp.status_code == 400

    def test_admin_hard_deletes_invoice(self, client, auth_headers, admin_user, make_invoice, project_a):
        invoice = make_invoice(project_a)
        resp = client.delete(f"/api/invoices/{invoice.id}", headers=auth_headers("idp|admin"))
        assert resp.status_code == 200
        assert resp.get_json() == {"deleted": {"resource": "invoice", "id": invoice.id}}

    def test_system_token_runs_sweep(self, client, staff, make_invoice, project_a):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)

        resp = client.post(
            "/api/automation/overdue-sweep",
            headers={"X-System-Token": SYSTEM_TOKEN},
            json={"as_of": "2026-02-10"},
        )

        assert resp.status_code == 200
        assert resp.get_json()["marked"] == [invoice.id]

    def test_system_token_cannot_create_invoice(self, client, project_a, staff_user):
        resp = client.post("/api/invoices", headers={"X-System-Token": SYSTEM_TOKEN}, json={
            "project_id": project_a.id,
            "invoice_number": "INV-BOT",
            "issue_date": "2026-01-05",
            "due_date": "2026-02-04",
            "amount_subtotal": 100,
        })
        assert resp.status_code == 403
