# Overview: Pytest coverage for the flask CLI command groups.

from datetime import date

import pytest

from portal.models import Invoice, Organization, User
from portal.models.tenancy import ORG_KIND_INTERNAL
from portal.services import invoice_service


@pytest.fixture
def runner(app):
    return app.test_cli_runner()


INIT_ARGS = [
    "system", "init",
    "--org", "Northside Packaging",
    "--admin-email", "Ops@Northside.test",
    "--admin-name", "Ops Admin",
    "--admin-identity", "idp|ops",
]


class TestSystemInit:

    def test_creates_internal_org_and_admin(self, runner, db_session):
        result = runner.invoke(args=INIT_ARGS)

        assert result.exit_code == 0, result.output
        assert "PASS Created internal organization: Northside Packaging" in result.output
        org = db_session.query(Organization).filter_by(kind=ORG_KIND_INTERNAL).one()
        admin = db_session.query(User).filter_by(organization_id=org.id).one()
        assert admin.email == "ops@northside.test"
        assert admin.role == "admin"
        assert admin.external_identity == "idp|ops"

    def test_refuses_second_run(self, runner, db_session):
        runner.invoke(args=INIT_ARGS)
        result = runner.invoke(args=INIT_ARGS)

        assert result.exit_code == 1
        assert "Internal organization already exists" in result.output
        assert db_session.query(Organization).count() == 1


class TestOrgsAndPrincipals:

    def test_create_org_acts_as_first_admin(self, runner, admin_user):
        result = runner.invoke(args=["orgs", "create", "--name", "Brightside Foods", "--contact-email", "ap@brightside.test"])

        assert result.exit_code == 0, result.output
        assert "Kind: customer" in result.output

        listing = runner.invoke(args=["orgs", "list"])
        assert "Brightside Foods" in listing.output

    def test_create_org_without_admin_fails(self, runner, db_session):
        result = runner.invoke(args=["orgs", "create", "--name", "Orphan Co"])
        assert result.exit_code == 1
        assert "No acting principal found" in result.output

    def test_staff_actor_cannot_create_org(self, runner, admin_user, staff_user):
        result = runner.invoke(args=["orgs", "create", "--name", "Shadow Corp", "--actor", staff_user.email])
        assert result.exit_code == 1

    def test_register_customer_principal(self, runner, admin_user, org_a):
        result = runner.invoke(args=[
            "principals", "create",
            "--org-id", str(org_a.id),
            "--email", "Buyer2@acme.test",
            "--name", "Second Buyer",
            "--role", "customer",
            "--identity", "idp|buyer-2",
        ])

        assert result.exit_code == 0, result.output
        listing = runner.invoke(args=["principals", "list", "--org-id", str(org_a.id)])
        assert "buyer2@acme.test" in listing.output
        assert "idp|buyer-2" in listing.output

    def test_customer_role_in_internal_org_rejected(self, runner, admin_user, internal_org):
        result = runner.invoke(args=[
            "principals", "create",
            "--org-id", str(internal_org.id),
            "--email", "odd@northside.test",
            "--name", "Odd",
            "--role", "customer",
        ])
        assert result.exit_code == 1


class TestAutomationAndInspection:

    def test_sweep_overdue(self, runner, db_session, staff, make_invoice, project_a):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)

        result = runner.invoke(args=["automation", "sweep-overdue", "--as-of", "2026-02-10"])

        assert result.exit_code == 0, result.output
        assert "1 checked, 1 marked, 0 failed" in result.output
        assert db_session.get(Invoice, invoice.id).status == "overdue"

    def test_sweep_rejects_bad_date(self, runner, db_session):
        result = runner.invoke(args=["automation", "sweep-overdue", "--as-of", "10/02/2026"])
        assert result.exit_code == 1

    def test_queue_show(self, runner, admin_user, make_invoice, project_a):
        make_invoice(project_a, deposit_required=True, deposit_amount=27500, due_date=date(2099, 1, 1))

        result = runner.invoke(args=["queue", "show"])

        assert result.exit_code == 0, result.output
        assert "deposit_unpaid" in result.output
        assert "Total: 1" in result.output

    def test_queue_show_empty(self, runner, admin_user):
        result = runner.invoke(args=["queue", "show"])
        assert "Action queue is empty." in result.output

    def test_integrity_check_clean(self, runner, admin_user):
        result = runner.invoke(args=["integrity", "check"])
        assert result.exit_code == 0
        assert "PASS No integrity issues found." in result.output

    def test_integrity_check_reports_issues(self, runner, db_session, internal_org):
        db_session.add(User(organization_id=internal_org.id, email="odd@northside.test", name="Odd", role="customer"))
        db_session.commit()

        result = runner.invoke(args=["integrity", "check"])

        assert result.exit_code == 1
        assert "FAIL [invalid_role] users" in result.output
