from __future__ import annotations

from sqlalchemy.ext.hybrid import hybrid_property

from ..extensions import db
from portal.time_utils import to_utc_z, to_iso_date


INVOICE_STATUS_DRAFT = "draft"
INVOICE_STATUS_SENT = "sent"
INVOICE_STATUS_PAID = "paid"
INVOICE_STATUS_OVERDUE = "overdue"
INVOICE_STATUS_CANCELLED = "cancelled"
INVOICE_STATUSES = (
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_CANCELLED,
)

REMINDER_EVENT_TYPES = ("reminder_7day", "reminder_due", "reminder_overdue")


class Invoice(db.Model):
    """
    Invoice with payment and deposit tracking. All amounts are integer cents.

    INVARIANTS (enforced by check constraints and by invoice_service):
    - amount_paid <= amount_total
    - deposit_required implies deposit_amount is set
    - deposit_paid implies deposit_paid_at is set
    - balance_due is never stored: it is always amount_total - amount_paid

    organization_id is copied from the project at creation and never
    supplied by the caller.
    """
    __tablename__ = "invoices"
    __table_args__ = (
        db.CheckConstraint("amount_subtotal >= 0", name="ck_invoices_subtotal_nonneg"),
        db.CheckConstraint("amount_tax >= 0", name="ck_invoices_tax_nonneg"),
        db.CheckConstraint("amount_total >= 0", name="ck_invoices_total_nonneg"),
        db.CheckConstraint("amount_paid >= 0", name="ck_invoices_paid_nonneg"),
        db.CheckConstraint("amount_paid <= amount_total", name="ck_invoices_paid_le_total"),
        db.CheckConstraint(
            "deposit_required = false OR deposit_amount IS NOT NULL",
            name="ck_invoices_deposit_amount_required",
        ),
        db.CheckConstraint(
            "deposit_amount IS NULL OR deposit_amount >= 0",
            name="ck_invoices_deposit_amount_nonneg",
        ),
        db.CheckConstraint(
            "deposit_paid = false OR deposit_paid_at IS NOT NULL",
            name="ck_invoices_deposit_paid_at_set",
        ),
        db.CheckConstraint(
            "status IN ('draft', 'sent', 'paid', 'overdue', 'cancelled')",
            name="ck_invoices_status",
        ),
        db.Index("ix_invoices_org_status", "organization_id", "status"),
        db.Index("ix_invoices_due_date", "due_date"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"), nullable=False, index=True)
    organization_id = db.Column(db.Integer, db.ForeignKey("organizations.id", ondelete="CASCADE"), nullable=False, index=True)

    invoice_number = db.Column(db.String(50), nullable=False, unique=True, index=True)
    issue_date = db.Column(db.Date, nullable=False)
    due_date = db.Column(db.Date, nullable=False)

    amount_subtotal = db.Column(db.Integer, nullable=False)
    amount_tax = db.Column(db.Integer, nullable=False, default=0)
    amount_total = db.Column(db.Integer, nullable=False)
    amount_paid = db.Column(db.Integer, nullable=False, default=0)

    deposit_required = db.Column(db.Boolean, nullable=False, default=False)
    deposit_amount = db.Column(db.Integer, nullable=True)
    deposit_paid = db.Column(db.Boolean, nullable=False, default=False)
    deposit_paid_at = db.Column(db.DateTime(timezone=True), nullable=True)

    status = db.Column(db.String(20), nullable=False, default=INVOICE_STATUS_DRAFT)
    notes = db.Column(db.Text, nullable=True)  # internal only

    created_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), onupdate=db.func.now())

    project = db.relationship("Project", backref=db.backref("invoices", lazy=True, passive_deletes=True))
    organization = db.relationship("Organization")

    @hybrid_property
    def balance_due(self) -> int:
        return self.amount_total - self.amount_paid

    def __repr__(self) -> str:
        return f"<Invoice id={self.id} number={self.invoice_number!r} status={self.status}>"

    def to_dict(self, include_internal: bool = True) -> dict:
        data = {
            "id": self.id,
            "project_id": self.project_id,
            "organization_id": self.organization_id,
            "invoice_number": self.invoice_number,
            "issue_date": to_iso_date(self.issue_date),
            "due_date": to_iso_date(self.due_date),
            "amount_subtotal": self.amount_subtotal,
            "amount_tax": self.amount_tax,
            "amount_total": self.amount_total,
            "amount_paid": self.amount_paid,
            "balance_due": self.balance_due,
            "deposit_required": self.deposit_required,
            "deposit_amount": self.deposit_amount,
            "deposit_paid": self.deposit_paid,
            "deposit_paid_at": to_utc_z(self.deposit_paid_at),
            "status": self.status,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_internal:
            data["notes"] = self.notes
        return data


class InvoiceEvent(db.Model):
    """
    Invoice audit log.

    IMMUTABLE: Never update or delete. Append-only for audit integrity.
    Corrections are new "correction" events. triggered_by is a plain id
    (no FK) so removing a principal never rewrites history.
    """
    __tablename__ = "invoice_events"
    __table_args__ = (
        db.Index("ix_invoice_events_invoice_created", "invoice_id", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    invoice_id = db.Column(db.Integer, db.ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True)
    event_type = db.Column(db.String(32), nullable=False, index=True)
    event_data = db.Column(db.JSON, nullable=True)

    triggered_by = db.Column(db.Integer, nullable=True, index=True)
    triggered_by_system = db.Column(db.String(50), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)

    invoice = db.relationship("Invoice", backref=db.backref("events", lazy=True, passive_deletes=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "event_type": self.event_type,
            "event_data": self.event_data,
            "triggered_by": self.triggered_by,
            "triggered_by_system": self.triggered_by_system,
            "created_at": to_utc_z(self.created_at),
        }
