from __future__ import annotations

from sqlalchemy.orm import validates

from ..extensions import db
from ..errors import ValidationError
from portal.time_utils import to_utc_z


ROLE_ADMIN = "admin"
ROLE_STAFF = "staff"
ROLE_CUSTOMER = "customer"
ROLES = (ROLE_ADMIN, ROLE_STAFF, ROLE_CUSTOMER)


class User(db.Model):
    """
    Principal: an application user (internal staff or customer contact).

    MULTI-TENANT: Users belong to exactly one organization (organization_id).
    organization_id is IMMUTABLE after creation. Moving a person to another
    tenant is a delete + recreate, never an update; isolation depends on it.

    external_identity links the row to the authentication provider's subject.
    It is unique so an identity resolves to at most one principal.
    """
    __tablename__ = "users"
    __table_args__ = (
        db.CheckConstraint("role IN ('admin', 'staff', 'customer')", name="ck_users_role"),
        db.Index("ix_users_org_id", "organization_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False)

    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    name = db.Column(db.String(255), nullable=False)
    role = db.Column(db.String(20), nullable=False)

    external_identity = db.Column(db.String(255), nullable=True, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    organization = db.relationship("Organization", backref=db.backref("users", lazy=True, passive_deletes=True))

    @validates("organization_id")
    def _validate_organization_id(self, key, value):
        if self.organization_id is not None and value != self.organization_id:
            raise ValidationError("organization_id is immutable; recreate the principal instead")
        return value

    @validates("role")
    def _validate_role(self, key, value):
        if value not in ROLES:
            raise ValidationError(f"Invalid role '{value}'. Must be one of: {', '.join(ROLES)}")
        return value

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "email": self.email,
            "name": self.name,
            "role": self.role,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
