# Overview: Pytest coverage for the read-only integrity scan.

from datetime import date

from portal.models import Invoice, User
from portal.services import integrity_service


def _checks(issues):
    return sorted((issue.check, issue.table) for issue in issues)


class TestIntegrityScan:

    def test_clean_database(self, db_session, make_invoice, make_proof, make_shipment, project_a, admin_user):
        make_invoice(project_a)
        make_proof(project_a)
        make_shipment(project_a)
        assert integrity_service.check_integrity() == []

    def test_tenant_mismatch_detected(self, db_session, project_a, org_b, staff_user):
        invoice = Invoice(
            project_id=project_a.id,
            organization_id=org_b.id,
            invoice_number="INV-LEAK",
            issue_date=date(2026, 1, 5),
            due_date=date(2026, 2, 4),
            amount_subtotal=1000,
            amount_tax=0,
            amount_total=1000,
            created_by=staff_user.id,
        )
        db_session.add(invoice)
        db_session.commit()

        issues = integrity_service.check_integrity()
        assert _checks(issues) == [("tenant_mismatch", "invoices")]
        assert issues[0].record_id == invoice.id

    def test_total_mismatch_detected(self, db_session, project_a, staff_user):
        db_session.add(Invoice(
            project_id=project_a.id,
            organization_id=project_a.organization_id,
            invoice_number="INV-MATH",
            issue_date=date(2026, 1, 5),
            due_date=date(2026, 2, 4),
            amount_subtotal=1000,
            amount_tax=100,
            amount_total=1000,
            created_by=staff_user.id,
        ))
        db_session.commit()

        assert _checks(integrity_service.check_integrity()) == [("total_mismatch", "invoices")]

    def test_invalid_role_detected(self, db_session, internal_org):
        db_session.add(User(organization_id=internal_org.id, email="odd@northside.test", name="Odd", role="customer"))
        db_session.commit()

        issues = integrity_service.check_integrity()
        assert _checks(issues) == [("invalid_role", "users")]
        assert issues[0].to_dict()["detail"] == "role customer in internal organization"
