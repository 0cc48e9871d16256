from __future__ import annotations

from ..extensions import db
from portal.time_utils import to_utc_z


FILE_TYPE_PROOF = "proof"
FILE_TYPE_ARTWORK = "artwork"
FILE_TYPE_REFERENCE = "reference"
FILE_TYPE_ATTACHMENT = "attachment"
FILE_TYPES = (FILE_TYPE_PROOF, FILE_TYPE_ARTWORK, FILE_TYPE_REFERENCE, FILE_TYPE_ATTACHMENT)

APPROVAL_PENDING = "pending"
APPROVAL_APPROVED = "approved"
APPROVAL_REJECTED = "rejected"
APPROVAL_REVISION = "revision"
APPROVAL_FINAL = "final"
APPROVAL_STATUSES = (
    APPROVAL_PENDING,
    APPROVAL_APPROVED,
    APPROVAL_REJECTED,
    APPROVAL_REVISION,
    APPROVAL_FINAL,
)


class FileAsset(db.Model):
    """
    Uploaded file (proof, artwork, reference, attachment) with version control.

    VERSION CHAIN:
    - Version 1 is its own chain root (root_file_id = id)
    - Each revision links to its predecessor via parent_file_id and shares root_file_id
    - Exactly one row per chain has is_current_version = true

    The partial unique index on (root_file_id) WHERE is_current_version makes a
    second current row impossible even if two uploads race past the service.
    approval_status is only set for proofs.
    """
    __tablename__ = "file_assets"
    __table_args__ = (
        db.CheckConstraint(
            "file_type IN ('proof', 'artwork', 'reference', 'attachment')",
            name="ck_file_assets_file_type",
        ),
        db.CheckConstraint(
            "approval_status IS NULL OR approval_status IN ('pending', 'approved', 'rejected', 'revision', 'final')",
            name="ck_file_assets_approval_status",
        ),
        db.CheckConstraint("version_number >= 1", name="ck_file_assets_version_positive"),
        db.Index(
            "uq_file_assets_current_per_chain",
            "root_file_id",
            unique=True,
            sqlite_where=db.text("is_current_version = 1"),
            postgresql_where=db.text("is_current_version"),
        ),
        db.Index("ix_file_assets_org_type_status", "organization_id", "file_type", "approval_status"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    file_name = db.Column(db.String(255), nullable=False)
    file_size_bytes = db.Column(db.Integer, nullable=False)
    file_type = db.Column(db.String(20), nullable=False, index=True)
    mime_type = db.Column(db.String(100), nullable=False)

    storage_bucket = db.Column(db.String(100), nullable=False, default="file-assets")
    storage_path = db.Column(db.String(500), nullable=False)

    version_number = db.Column(db.Integer, nullable=False, default=1)
    is_current_version = db.Column(db.Boolean, nullable=False, default=True)
    parent_file_id = db.Column(db.Integer, db.ForeignKey("file_assets.id", ondelete="SET NULL"), nullable=True, index=True)
    root_file_id = db.Column(db.Integer, nullable=True, index=True)

    approval_status = db.Column(db.String(20), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    rejection_reason = db.Column(db.Text, nullable=True)

    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    project = db.relationship("Project", backref=db.backref("file_assets", lazy=True, passive_deletes=True))
    organization = db.relationship("Organization")
    parent = db.relationship("FileAsset", remote_side=[id])
    uploader = db.relationship("User", foreign_keys=[uploaded_by])

    @property
    def is_proof(self) -> bool:
        return self.file_type == FILE_TYPE_PROOF

    def __repr__(self) -> str:
        return f"<FileAsset id={self.id} v{self.version_number} current={self.is_current_version}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "organization_id": self.organization_id,
            "file_name": self.file_name,
            "file_size_bytes": self.file_size_bytes,
            "file_type": self.file_type,
            "mime_type": self.mime_type,
            "storage_bucket": self.storage_bucket,
            "storage_path": self.storage_path,
            "version_number": self.version_number,
            "is_current_version": self.is_current_version,
            "parent_file_id": self.parent_file_id,
            "root_file_id": self.root_file_id,
            "approval_status": self.approval_status,
            "approved_by": self.approved_by,
            "approved_at": to_utc_z(self.approved_at),
            "rejection_reason": self.rejection_reason,
            "uploaded_by": self.uploaded_by,
            "notes": self.notes,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class ApprovalEvent(db.Model):
    """
    Proof approval audit log (uploaded, approved, rejected, revision_uploaded, ...).

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "approval_events"
    __table_args__ = (
        db.Index("ix_approval_events_file_created", "file_asset_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    file_asset_id = db.Column(db.Integer, db.ForeignKey("file_assets.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = db.Column(db.String(50), nullable=False, index=True)
    event_data = db.Column(db.JSON, nullable=True)

    triggered_by = db.Column(db.Integer, nullable=True, index=True)
    triggered_by_system = db.Column(db.String(50), nullable=True)

    notification_sent = db.Column(db.Boolean, nullable=False, default=False)
    notification_sent_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    file_asset = db.relationship("FileAsset", backref=db.backref("approval_events", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "file_asset_id": self.file_asset_id,
            "event_type": self.event_type,
            "event_data": self.event_data,
            "triggered_by": self.triggered_by,
            "triggered_by_system": self.triggered_by_system,
            "notification_sent": self.notification_sent,
            "notification_sent_at": to_utc_z(self.notification_sent_at),
            "created_at": to_utc_z(self.created_at),
        }
