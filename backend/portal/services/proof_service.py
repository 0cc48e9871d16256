# Overview: Service-layer operations for file assets; proof versions and approval.

from __future__ import annotations

from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..errors import (
    ConcurrencyConflictError,
    DataIntegrityError,
    InvalidTransitionError,
    ValidationError,
)
from ..models import FileAsset
from ..models.files import (
    FILE_TYPES,
    APPROVAL_STATUSES,
    APPROVAL_PENDING,
    APPROVAL_APPROVED,
    APPROVAL_REJECTED,
    APPROVAL_REVISION,
    APPROVAL_FINAL,
)
from ..time_utils import utcnow
from ..validation import coerce_int, require_text, optional_text, require_choice
from . import audit_service, policy_service, tenant_service
from .concurrency import atomic, lock_for_update
from .policy_service import (
    RESOURCE_FILE_ASSET,
    RESOURCE_APPROVAL_EVENT,
    RESOURCE_PROJECT,
    OP_CREATE,
    OP_UPDATE,
)


# revision and final are terminal.
APPROVAL_TRANSITIONS = {
    APPROVAL_PENDING: frozenset({APPROVAL_APPROVED, APPROVAL_REJECTED, APPROVAL_REVISION}),
    APPROVAL_APPROVED: frozenset({APPROVAL_FINAL, APPROVAL_REVISION}),
    APPROVAL_REJECTED: frozenset({APPROVAL_REVISION}),
    APPROVAL_REVISION: frozenset(),
    APPROVAL_FINAL: frozenset(),
}

APPROVAL_EVENT_TYPES = {
    APPROVAL_APPROVED: "approved",
    APPROVAL_REJECTED: "rejected",
    APPROVAL_REVISION: "revision_requested",
    APPROVAL_FINAL: "finalized",
}

MAX_FILE_SIZE_BYTES = 2_147_483_647


def _event(asset: FileAsset, event_type: str, principal, data: dict) -> None:
    audit_service.append_event(RESOURCE_APPROVAL_EVENT, asset.id, event_type, principal=principal, data=data)


def upload_file(
    principal,
    *,
    project_id: int,
    file_name: str,
    file_size_bytes,
    file_type: str,
    mime_type: str,
    storage_path: str,
    storage_bucket: str | None = None,
    notes: str | None = None,
) -> FileAsset:
    """
    Register version 1 of a file. It is its own chain root; proofs start
    pending. Storage itself happens elsewhere: only the path is recorded.
    """
    with atomic(principal, resource=RESOURCE_FILE_ASSET, action=OP_CREATE):
        project = tenant_service.get_entity(principal, RESOURCE_PROJECT, project_id)
        require_choice("file_type", file_type, FILE_TYPES)
        policy_service.require(
            principal,
            OP_CREATE,
            RESOURCE_FILE_ASSET,
            {"organization_id": project.organization_id, "project_id": project.id, "file_type": file_type},
        )

        asset = FileAsset(
            project_id=project.id,
            organization_id=project.organization_id,
            file_name=require_text("file_name", file_name, max_length=255),
            file_size_bytes=coerce_int("file_size_bytes", file_size_bytes, minimum=0, maximum=MAX_FILE_SIZE_BYTES),
            file_type=file_type,
            mime_type=require_text("mime_type", mime_type, max_length=100),
            storage_bucket=optional_text("storage_bucket", storage_bucket, max_length=100) or "file-assets",
            storage_path=require_text("storage_path", storage_path, max_length=500),
            version_number=1,
            is_current_version=True,
            parent_file_id=None,
            approval_status=APPROVAL_PENDING if file_type == "proof" else None,
            uploaded_by=principal.principal_id,
            notes=optional_text("notes", notes),
        )
        db.session.add(asset)
        db.session.flush()
        asset.root_file_id = asset.id
        db.session.flush()

        _event(asset, "uploaded", principal, {
            "version_number": asset.version_number,
            "file_name": asset.file_name,
            "file_type": asset.file_type,
        })
    return asset


def current_version(root_file_id: int, *, lock: bool = False) -> FileAsset | None:
    query = db.session.query(FileAsset).filter(
        FileAsset.root_file_id == root_file_id,
        FileAsset.is_current_version.is_(True),
    )
    if lock:
        query = lock_for_update(query)
    rows = query.all()
    if len(rows) > 1:
        raise DataIntegrityError(f"Version chain {root_file_id} has {len(rows)} current versions")
    return rows[0] if rows else None


def upload_revision(
    principal,
    file_id: int,
    *,
    file_name: str,
    file_size_bytes,
    mime_type: str,
    storage_path: str,
    storage_bucket: str | None = None,
    notes: str | None = None,
) -> FileAsset:
    """
    Upload a new version on top of `file_id`, which the caller believes is
    the current version of its chain.

    Compare-and-swap: the predecessor is demoted only if it is still the
    current version. If another upload won the race, nothing changes and
    ConcurrencyConflictError is raised; retrying once with the new current
    id is safe. The partial unique index on (root_file_id) WHERE
    is_current_version backs this at the storage level.
    """
    with atomic(principal, resource=RESOURCE_FILE_ASSET, action="revision", entity_id=file_id):
        base = tenant_service.load_for_write(principal, RESOURCE_FILE_ASSET, file_id)
        attrs = policy_service.attributes_for(base)
        attrs["changes"] = ("is_current_version", "approval_status")
        policy_service.require(principal, OP_CREATE, RESOURCE_FILE_ASSET, attrs, entity_id=file_id)

        root_id = base.root_file_id or base.id
        current = current_version(root_id, lock=True)
        if current is None:
            raise DataIntegrityError(f"Version chain {root_id} has no current version")
        if current.id != base.id:
            raise ConcurrencyConflictError(
                f"File {file_id} is no longer the current version (current is {current.id})",
            )
        if current.approval_status == APPROVAL_FINAL:
            raise InvalidTransitionError("A final proof cannot be revised")

        demoted_values = {"is_current_version": False}
        if current.is_proof:
            demoted_values["approval_status"] = APPROVAL_REVISION
        demoted = (
            db.session.query(FileAsset)
            .filter(FileAsset.id == current.id, FileAsset.is_current_version.is_(True))
            .update(demoted_values, synchronize_session="fetch")
        )
        if demoted != 1:
            raise ConcurrencyConflictError(f"File {file_id} was superseded by a concurrent upload")

        revision = FileAsset(
            project_id=current.project_id,
            organization_id=current.organization_id,
            file_name=require_text("file_name", file_name, max_length=255),
            file_size_bytes=coerce_int("file_size_bytes", file_size_bytes, minimum=0, maximum=MAX_FILE_SIZE_BYTES),
            file_type=current.file_type,
            mime_type=require_text("mime_type", mime_type, max_length=100),
            storage_bucket=optional_text("storage_bucket", storage_bucket, max_length=100) or current.storage_bucket,
            storage_path=require_text("storage_path", storage_path, max_length=500),
            version_number=current.version_number + 1,
            is_current_version=True,
            parent_file_id=current.id,
            root_file_id=root_id,
            approval_status=APPROVAL_PENDING if current.is_proof else None,
            uploaded_by=principal.principal_id,
            notes=optional_text("notes", notes),
        )
        db.session.add(revision)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConcurrencyConflictError(f"Version chain {root_id} already has a newer current version") from exc

        _event(revision, "revision_uploaded", principal, {
            "version_number": revision.version_number,
            "parent_file_id": current.id,
            "file_name": revision.file_name,
        })
    return revision


def set_approval_status(principal, file_id: int, requested_status: str, payload: dict | None = None) -> FileAsset:
    """
    Approval state machine for proofs. Only the current version of a chain
    may change status; a rejection needs a reason.
    """
    payload = payload or {}
    with atomic(principal, resource=RESOURCE_FILE_ASSET, action=f"transition:{requested_status}", entity_id=file_id):
        require_choice("approval_status", requested_status, APPROVAL_STATUSES)
        asset = tenant_service.load_for_write(principal, RESOURCE_FILE_ASSET, file_id)
        reason = optional_text("reason", payload.get("reason") or payload.get("rejection_reason"))

        attrs = policy_service.attributes_for(asset)
        attrs["requested_status"] = requested_status
        attrs["changes"] = ("approval_status", "rejection_reason") if requested_status == APPROVAL_REJECTED else ("approval_status",)
        policy_service.require(principal, OP_UPDATE, RESOURCE_FILE_ASSET, attrs, entity_id=file_id)

        if not asset.is_proof:
            raise InvalidTransitionError(f"{asset.file_type} files have no approval status")
        if asset.approval_status == requested_status:
            return asset
        if not asset.is_current_version:
            raise InvalidTransitionError(f"File {file_id} is version {asset.version_number} and no longer current")
        if requested_status not in APPROVAL_TRANSITIONS.get(asset.approval_status, ()):
            raise InvalidTransitionError(f"Cannot transition proof from {asset.approval_status} to {requested_status}")
        if requested_status == APPROVAL_REJECTED and not reason:
            raise ValidationError("A reason is required to reject a proof")

        old_status = asset.approval_status
        asset.approval_status = requested_status
        if requested_status == APPROVAL_APPROVED:
            asset.approved_by = principal.principal_id
            asset.approved_at = utcnow()
            asset.rejection_reason = None
        elif requested_status == APPROVAL_REJECTED:
            asset.rejection_reason = reason

        data = {"old_status": old_status, "new_status": requested_status, "version_number": asset.version_number}
        if reason:
            data["reason"] = reason
        _event(asset, APPROVAL_EVENT_TYPES[requested_status], principal, data)
    return asset


def version_chain(principal, file_id: int) -> list[FileAsset]:
    """All versions of the chain `file_id` belongs to, oldest first."""
    asset = tenant_service.get_entity(principal, RESOURCE_FILE_ASSET, file_id)
    root_id = asset.root_file_id or asset.id
    return (
        tenant_service.scoped_query(principal, RESOURCE_FILE_ASSET)
        .filter(FileAsset.root_file_id == root_id)
        .order_by(FileAsset.version_number.asc())
        .all()
    )
