"""
Pytest fixtures for portal backend tests.

Provides test database setup, tenant fixtures (one internal organization,
two customer organizations), resolved principals, and a test client.
"""

from datetime import date

import pytest

from portal import create_app
from portal.extensions import db
from portal.models import Organization, Project, User
from portal.services import identity_service, invoice_service, proof_service, shipment_service


SYSTEM_TOKEN = "scheduler-test-token"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'SYSTEM_TOKENS': {'scheduler': SYSTEM_TOKEN},
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        db.session.rollback()
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        identity_service.invalidate_identity_cache()

        yield db.session

        # Cleanup after test
        db.session.rollback()
        identity_service.invalidate_identity_cache()


# =============================================================================
# Organizations and principals
# =============================================================================

def _add_user(db_session, org, email, role, identity):
    user = User(
        organization_id=org.id,
        email=email,
        name=email.split("@")[0].title(),
        role=role,
        external_identity=identity,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def internal_org(db_session):
    """The operating company."""
    org = Organization(name="Northside Packaging", kind="internal", contact_email="ops@northside.test")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_a(db_session):
    """Customer organization A (first tenant)."""
    org = Organization(name="Org A - Acme Foods", kind="customer", contact_email="ap@acme.test")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Customer organization B (second tenant)."""
    org = Organization(name="Org B - Beta Brewing", kind="customer", contact_email="ap@beta.test")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def admin_user(db_session, internal_org):
    return _add_user(db_session, internal_org, "admin@northside.test", "admin", "idp|admin")


@pytest.fixture(scope='function')
def staff_user(db_session, internal_org):
    return _add_user(db_session, internal_org, "staff@northside.test", "staff", "idp|staff")


@pytest.fixture(scope='function')
def customer_a_user(db_session, org_a):
    return _add_user(db_session, org_a, "buyer@acme.test", "customer", "idp|buyer-a")


@pytest.fixture(scope='function')
def customer_b_user(db_session, org_b):
    return _add_user(db_session, org_b, "buyer@beta.test", "customer", "idp|buyer-b")


@pytest.fixture(scope='function')
def admin(admin_user):
    return identity_service.principal_for_user(admin_user)


@pytest.fixture(scope='function')
def staff(staff_user):
    return identity_service.principal_for_user(staff_user)


@pytest.fixture(scope='function')
def customer_a(customer_a_user):
    return identity_service.principal_for_user(customer_a_user)


@pytest.fixture(scope='function')
def customer_b(customer_b_user):
    return identity_service.principal_for_user(customer_b_user)


@pytest.fixture(scope='function')
def system():
    return identity_service.system_principal("scheduler")


# =============================================================================
# Projects and operational records
# =============================================================================

@pytest.fixture(scope='function')
def project_a(db_session, org_a, staff_user):
    project = Project(organization_id=org_a.id, name="Acme Cereal Cartons", created_by=staff_user.id)
    db_session.add(project)
    db_session.commit()
    return project


@pytest.fixture(scope='function')
def project_b(db_session, org_b, staff_user):
    project = Project(organization_id=org_b.id, name="Beta Six-Pack Carriers", created_by=staff_user.id)
    db_session.add(project)
    db_session.commit()
    return project


@pytest.fixture(scope='function')
def make_invoice(staff):
    """Factory: draft invoice through the service (events included)."""
    counter = {"n": 0}

    def _make(project, **overrides):
        counter["n"] += 1
        values = {
            "project_id": project.id,
            "invoice_number": f"INV-{project.id}-{counter['n']:04d}",
            "issue_date": date(2026, 1, 5),
            "due_date": date(2026, 2, 4),
            "amount_subtotal": 50000,
            "amount_tax": 5000,
        }
        values.update(overrides)
        principal = values.pop("principal", staff)
        return invoice_service.create_invoice(principal, **values)

    return _make


@pytest.fixture(scope='function')
def make_proof(staff):
    counter = {"n": 0}

    def _make(project, **overrides):
        counter["n"] += 1
        values = {
            "project_id": project.id,
            "file_name": f"proof-{counter['n']}.pdf",
            "file_size_bytes": 120000,
            "file_type": "proof",
            "mime_type": "application/pdf",
            "storage_path": f"projects/{project.id}/proof-{counter['n']}.pdf",
        }
        values.update(overrides)
        principal = values.pop("principal", staff)
        return proof_service.upload_file(principal, **values)

    return _make


@pytest.fixture(scope='function')
def make_shipment(staff):
    counter = {"n": 0}

    def _make(project, **overrides):
        counter["n"] += 1
        values = {
            "project_id": project.id,
            "shipment_number": f"SHP-{project.id}-{counter['n']:04d}",
            "carrier": "ups",
            "ship_to_address": {"line1": "1 Dock Rd", "city": "Springfield", "postal_code": "00001"},
        }
        values.update(overrides)
        principal = values.pop("principal", staff)
        return shipment_service.create_shipment(principal, **values)

    return _make


@pytest.fixture(scope='function')
def auth_headers():
    """Gateway header carrying the authenticated external identity."""
    def _headers(identity):
        return {"X-Authenticated-Identity": identity}

    return _headers
