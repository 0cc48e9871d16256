from __future__ import annotations

from ..extensions import db
from portal.time_utils import to_utc_z


ORG_KIND_INTERNAL = "internal"
ORG_KIND_CUSTOMER = "customer"
ORG_KINDS = (ORG_KIND_INTERNAL, ORG_KIND_CUSTOMER)

PROJECT_STATUS_ACTIVE = "active"
PROJECT_STATUS_ON_HOLD = "on_hold"
PROJECT_STATUS_COMPLETED = "completed"
PROJECT_STATUS_CANCELLED = "cancelled"
PROJECT_STATUSES = (
    PROJECT_STATUS_ACTIVE,
    PROJECT_STATUS_ON_HOLD,
    PROJECT_STATUS_COMPLETED,
    PROJECT_STATUS_CANCELLED,
)


class Organization(db.Model):
    """
    Multi-tenant root: Every tenant is an Organization.

    Two kinds exist:
    - internal: the operating company itself. Its staff see every tenant.
    - customer: a client company. Its principals see only their own rows.

    DESIGN:
    - Organizations are the isolation boundary
    - Projects, invoices, file assets and shipments carry organization_id
    - All customer reads are scoped by organization_id
    """
    __tablename__ = "organizations"
    __table_args__ = (
        db.CheckConstraint("kind IN ('internal', 'customer')", name="ck_organizations_kind"),
        db.Index("ix_organizations_kind", "kind"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    kind = db.Column(db.String(20), nullable=False)

    contact_email = db.Column(db.String(255), nullable=True)
    contact_phone = db.Column(db.String(50), nullable=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    @property
    def is_internal(self) -> bool:
        return self.kind == ORG_KIND_INTERNAL

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r} kind={self.kind}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "kind": self.kind,
            "contact_email": self.contact_email,
            "contact_phone": self.contact_phone,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class Project(db.Model):
    """
    Customer work (print jobs, packaging runs, design work).

    MULTI-TENANT: A project belongs to exactly one organization. Invoices,
    file assets and shipments inherit organization_id from their project.
    """
    __tablename__ = "projects"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('active', 'on_hold', 'completed', 'cancelled')",
            name="ck_projects_status",
        ),
        db.Index("ix_projects_org_status", "organization_id", "status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(20), nullable=False, default=PROJECT_STATUS_ACTIVE)

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("projects", lazy=True))

    def __repr__(self) -> str:
        return f"<Project id={self.id} name={self.name!r} organization_id={self.organization_id}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
