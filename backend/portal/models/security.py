from __future__ import annotations

from ..extensions import db
from portal.time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Security event audit log with tenant context.

    Records denied access attempts (ACCESS_DENIED, INVALID_ROLE,
    UNAUTHENTICATED) and failed system-triggered transitions
    (SYSTEM_TRANSITION_FAILED). Written by concurrency.atomic() after the
    failed unit of work has rolled back, so the record survives the rollback.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_user_type", "user_id", "event_type"),
        db.Index("ix_security_events_org_occurred", "organization_id", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nullable for unauthenticated attempts
    organization_id = db.Column(db.Integer, nullable=True, index=True)
    user_id = db.Column(db.Integer, nullable=True, index=True)
    system_name = db.Column(db.String(50), nullable=True)

    event_type = db.Column(db.String(64), nullable=False, index=True)
    resource = db.Column(db.String(255), nullable=True)  # e.g. "invoice" or a request path
    action = db.Column(db.String(64), nullable=True)     # e.g. "update", "transition:overdue"
    entity_id = db.Column(db.Integer, nullable=True)

    success = db.Column(db.Boolean, nullable=False, default=False, index=True)
    reason = db.Column(db.Text, nullable=True)

    occurred_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "organization_id": self.organization_id,
            "user_id": self.user_id,
            "system_name": self.system_name,
            "event_type": self.event_type,
            "resource": self.resource,
            "action": self.action,
            "entity_id": self.entity_id,
            "success": self.success,
            "reason": self.reason,
            "occurred_at": to_utc_z(self.occurred_at),
        }
