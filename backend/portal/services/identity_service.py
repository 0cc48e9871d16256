"""
Identity Resolver: external identity -> Principal (tenant + role context).

SECURITY INVARIANTS:
1. An identity with no mapping is UNAUTHENTICATED. There is no "no
   organization" fallback principal.
2. The mapping is unique (users.external_identity is UNIQUE), so one
   identity resolves to at most one principal.
3. resolve_principal() is side-effect free. The only in-process state is a
   read-only mapping cache. Entries expire after IDENTITY_CACHE_TTL seconds
   and are dropped at once in the worker that registers, re-roles or removes
   the principal. A TTL of 0 disables the cache.

Every service function takes the resolved Principal as an explicit argument.
Nothing reads an ambient "current user".
"""

from __future__ import annotations

import hmac
import threading
import time
from dataclasses import dataclass

from flask import current_app
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import UnauthenticatedError, InvalidRoleError, NotFoundError, ValidationError
from ..models import User, Organization
from ..models.auth import ROLES, ROLE_ADMIN, ROLE_STAFF, ROLE_CUSTOMER
from ..models.tenancy import ORG_KIND_INTERNAL, ORG_KIND_CUSTOMER
from ..validation import require_text, optional_text, require_choice
from .concurrency import atomic


SYSTEM_ROLE = "system"

# The only defined role / organization-kind combinations.
VALID_ROLES_BY_KIND = {
    ORG_KIND_INTERNAL: frozenset({ROLE_ADMIN, ROLE_STAFF}),
    ORG_KIND_CUSTOMER: frozenset({ROLE_CUSTOMER}),
}


@dataclass(frozen=True)
class Principal:
    principal_id: int | None
    organization_id: int | None
    role: str
    organization_kind: str | None
    system_name: str | None = None

    @property
    def is_system(self) -> bool:
        return self.role == SYSTEM_ROLE

    @property
    def is_internal(self) -> bool:
        return self.organization_kind == ORG_KIND_INTERNAL

    @property
    def is_customer(self) -> bool:
        return not self.is_system and self.organization_kind == ORG_KIND_CUSTOMER

    def actor_fields(self) -> dict:
        """Columns that attribute an audit event to this principal."""
        return {
            "triggered_by": self.principal_id,
            "triggered_by_system": self.system_name,
        }


# external identity -> (Principal, monotonic expiry)
_identity_cache: dict[str, tuple[Principal, float]] = {}
_cache_lock = threading.Lock()


def invalidate_identity_cache(external_identity: str | None = None) -> None:
    with _cache_lock:
        if external_identity is None:
            _identity_cache.clear()
        else:
            _identity_cache.pop(external_identity, None)


def validate_role_for_kind(role: str, organization_kind: str) -> None:
    if role not in VALID_ROLES_BY_KIND.get(organization_kind, ()):
        raise InvalidRoleError(
            f"Role '{role}' is not defined for a {organization_kind} organization",
            audit={"reason": f"role {role} in {organization_kind} organization"},
        )


def principal_for_user(user: User) -> Principal:
    return Principal(
        principal_id=user.id,
        organization_id=user.organization_id,
        role=user.role,
        organization_kind=user.organization.kind,
    )


def resolve_principal(external_identity: str | None) -> Principal:
    """
    Map an authenticated external identity to its Principal.

    Raises UnauthenticatedError when the identity is blank or has no mapping.
    """
    key = (external_identity or "").strip()
    if not key:
        raise UnauthenticatedError("No external identity presented", audit={"reason": "missing identity"})

    ttl = current_app.config.get("IDENTITY_CACHE_TTL", 30)
    now = time.monotonic()
    with _cache_lock:
        cached = _identity_cache.get(key)
    if cached is not None and cached[1] > now:
        return cached[0]

    row = (
        db.session.query(User.id, User.organization_id, User.role, Organization.kind)
        .join(Organization, Organization.id == User.organization_id)
        .filter(User.external_identity == key)
        .first()
    )
    if row is None:
        raise UnauthenticatedError("Unknown external identity", audit={"reason": "unknown identity"})

    principal = Principal(
        principal_id=row[0],
        organization_id=row[1],
        role=row[2],
        organization_kind=row[3],
    )
    with _cache_lock:
        if ttl > 0:
            _identity_cache[key] = (principal, now + ttl)
        else:
            _identity_cache.pop(key, None)
    return principal


def system_principal(name: str) -> Principal:
    """The automation actor (scheduler, carrier webhook) acting in-process."""
    return Principal(
        principal_id=None,
        organization_id=None,
        role=SYSTEM_ROLE,
        organization_kind=None,
        system_name=name,
    )


def resolve_system_principal(token: str | None) -> Principal:
    """
    Resolve the automation actor from a shared token.

    Tokens come from SYSTEM_TOKENS ("name:token,..."). Comparison is
    constant-time.
    """
    presented = (token or "").strip()
    if presented:
        for name, expected in (current_app.config.get("SYSTEM_TOKENS") or {}).items():
            if hmac.compare_digest(presented.encode("utf-8"), expected.encode("utf-8")):
                return system_principal(name)
    raise UnauthenticatedError("Unknown system token", audit={"reason": "invalid system token"})


# =============================================================================
# Principal management
# =============================================================================

def register_principal(
    actor: Principal,
    *,
    organization_id: int,
    email: str,
    name: str,
    role: str,
    external_identity: str | None = None,
) -> User:
    """
    Create a principal in an organization.

    Staff may register principals but never grant admin; only admins may.
    The role must be defined for the organization's kind.
    """
    # Imported here: policy_service depends on Principal from this module.
    from . import policy_service

    with atomic(actor, resource=policy_service.RESOURCE_PRINCIPAL, action=policy_service.OP_CREATE):
        require_choice("role", role, ROLES)
        policy_service.require(
            actor,
            policy_service.OP_CREATE,
            policy_service.RESOURCE_PRINCIPAL,
            {"organization_id": organization_id, "role": role},
        )
        organization = db.session.get(Organization, organization_id)
        if organization is None:
            raise NotFoundError(f"Organization {organization_id} not found")
        validate_role_for_kind(role, organization.kind)

        email = require_text("email", email, max_length=255).lower()
        if db.session.query(User.id).filter(User.email == email).first():
            raise ValidationError(f"A principal with email {email} already exists")
        external_identity = optional_text("external_identity", external_identity, max_length=255)
        if external_identity and db.session.query(User.id).filter(User.external_identity == external_identity).first():
            raise ValidationError("External identity is already mapped to a principal")

        user = User(
            organization_id=organization.id,
            email=email,
            name=require_text("name", name, max_length=255),
            role=role,
            external_identity=external_identity,
        )
        db.session.add(user)
        db.session.flush()

    if external_identity:
        invalidate_identity_cache(external_identity)
    return user


def change_role(actor: Principal, user_id: int, role: str) -> User:
    from . import policy_service, tenant_service

    with atomic(actor, resource=policy_service.RESOURCE_PRINCIPAL, action=policy_service.OP_UPDATE, entity_id=user_id):
        require_choice("role", role, ROLES)
        user = tenant_service.load_for_write(actor, policy_service.RESOURCE_PRINCIPAL, user_id)
        attrs = policy_service.attributes_for(user)
        attrs["role"] = role
        policy_service.require(actor, policy_service.OP_UPDATE, policy_service.RESOURCE_PRINCIPAL, attrs, entity_id=user_id)
        validate_role_for_kind(role, user.organization.kind)
        user.role = role

    invalidate_identity_cache(user.external_identity)
    return user


def remove_principal(actor: Principal, user_id: int) -> None:
    """Admin only. Moving a person to another tenant is remove + register."""
    from . import policy_service, tenant_service

    with atomic(actor, resource=policy_service.RESOURCE_PRINCIPAL, action=policy_service.OP_DELETE, entity_id=user_id):
        user = tenant_service.load_for_write(actor, policy_service.RESOURCE_PRINCIPAL, user_id)
        policy_service.require(
            actor,
            policy_service.OP_DELETE,
            policy_service.RESOURCE_PRINCIPAL,
            policy_service.attributes_for(user),
            entity_id=user_id,
        )
        external_identity = user.external_identity
        db.session.delete(user)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ValidationError("Principal is referenced by existing records and cannot be removed") from exc

    invalidate_identity_cache(external_identity)
