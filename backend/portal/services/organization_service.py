# Overview: Service-layer operations for organizations and projects.

from __future__ import annotations

from ..extensions import db
from ..errors import ValidationError, NotFoundError
from ..models import Organization, Project, User
from ..models.auth import ROLE_ADMIN
from ..models.tenancy import ORG_KINDS, ORG_KIND_INTERNAL, PROJECT_STATUSES, PROJECT_STATUS_ACTIVE
from ..validation import require_text, optional_text, require_choice
from . import policy_service, tenant_service
from .concurrency import atomic
from .identity_service import invalidate_identity_cache
from .policy_service import RESOURCE_ORGANIZATION, RESOURCE_PROJECT, OP_CREATE, OP_UPDATE


def bootstrap_internal_organization(
    *,
    name: str,
    admin_email: str,
    admin_name: str,
    admin_identity: str,
) -> tuple[Organization, User]:
    """
    Create the operating company and its first admin.

    There is no principal yet to authorize this, so it is only reachable
    from the CLI (`flask system init`). Refuses to run twice.
    """
    with atomic():
        existing = db.session.query(Organization).filter(Organization.kind == ORG_KIND_INTERNAL).first()
        if existing is not None:
            raise ValidationError(f"Internal organization already exists (id={existing.id})")

        organization = Organization(name=require_text("name", name, max_length=255), kind=ORG_KIND_INTERNAL)
        db.session.add(organization)
        db.session.flush()

        admin = User(
            organization_id=organization.id,
            email=require_text("admin_email", admin_email, max_length=255).lower(),
            name=require_text("admin_name", admin_name, max_length=255),
            role=ROLE_ADMIN,
            external_identity=require_text("admin_identity", admin_identity, max_length=255),
        )
        db.session.add(admin)
        db.session.flush()

    invalidate_identity_cache(admin.external_identity)
    return organization, admin


def create_organization(
    principal,
    *,
    name: str,
    kind: str,
    contact_email: str | None = None,
    contact_phone: str | None = None,
) -> Organization:
    """Admin only. A second internal organization is never created."""
    with atomic(principal, resource=RESOURCE_ORGANIZATION, action=OP_CREATE):
        require_choice("kind", kind, ORG_KINDS)
        policy_service.require(principal, OP_CREATE, RESOURCE_ORGANIZATION, {"kind": kind})
        if kind == ORG_KIND_INTERNAL and db.session.query(Organization.id).filter(Organization.kind == ORG_KIND_INTERNAL).first():
            raise ValidationError("Only one internal organization may exist")

        organization = Organization(
            name=require_text("name", name, max_length=255),
            kind=kind,
            contact_email=optional_text("contact_email", contact_email, max_length=255),
            contact_phone=optional_text("contact_phone", contact_phone, max_length=50),
        )
        db.session.add(organization)
        db.session.flush()
    return organization


def create_project(
    principal,
    *,
    organization_id: int,
    name: str,
    description: str | None = None,
    status: str = PROJECT_STATUS_ACTIVE,
) -> Project:
    with atomic(principal, resource=RESOURCE_PROJECT, action=OP_CREATE):
        policy_service.require(principal, OP_CREATE, RESOURCE_PROJECT, {"organization_id": organization_id})
        organization = db.session.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError(f"Organization {organization_id} not found")

        project = Project(
            organization_id=organization.id,
            name=require_text("name", name, max_length=255),
            description=optional_text("description", description),
            status=require_choice("status", status, PROJECT_STATUSES),
            created_by=principal.principal_id,
        )
        db.session.add(project)
        db.session.flush()
    return project


def update_project_status(principal, project_id: int, status: str) -> Project:
    with atomic(principal, resource=RESOURCE_PROJECT, action=OP_UPDATE, entity_id=project_id):
        require_choice("status", status, PROJECT_STATUSES)
        project = tenant_service.load_for_write(principal, RESOURCE_PROJECT, project_id)
        attrs = policy_service.attributes_for(project)
        attrs.update(requested_status=status, changes=("status",))
        policy_service.require(principal, OP_UPDATE, RESOURCE_PROJECT, attrs, entity_id=project_id)
        project.status = status
    return project
