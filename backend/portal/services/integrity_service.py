# Overview: Read-only diagnostics that look for rows breaking stored invariants.

from __future__ import annotations

from dataclasses import dataclass, asdict

from flask import current_app
from sqlalchemy import func, or_, and_, case

from ..extensions import db
from ..models import Invoice, FileAsset, Shipment, Project, User, Organization
from ..models.shipments import SHIPMENT_STATUS_DELIVERED
from .identity_service import VALID_ROLES_BY_KIND


@dataclass(frozen=True)
class IntegrityIssue:
    check: str
    table: str
    record_id: int | None
    detail: str

    def to_dict(self) -> dict:
        return asdict(self)


def _tenant_mismatch(model, table: str) -> list[IntegrityIssue]:
    rows = (
        db.session.query(model.id, model.organization_id, Project.organization_id)
        .join(Project, Project.id == model.project_id)
        .filter(model.organization_id != Project.organization_id)
        .all()
    )
    return [
        IntegrityIssue(
            "tenant_mismatch",
            table,
            row_id,
            f"organization_id {child_org} differs from project organization {project_org}",
        )
        for row_id, child_org, project_org in rows
    ]


def _invoice_amounts() -> list[IntegrityIssue]:
    issues = []
    rows = db.session.query(Invoice).filter(
        or_(
            Invoice.amount_paid > Invoice.amount_total,
            Invoice.amount_total != Invoice.amount_subtotal + Invoice.amount_tax,
            and_(Invoice.deposit_required.is_(True), Invoice.deposit_amount.is_(None)),
            and_(Invoice.deposit_paid.is_(True), Invoice.deposit_paid_at.is_(None)),
        )
    )
    for invoice in rows:
        if invoice.amount_paid > invoice.amount_total:
            issues.append(IntegrityIssue("paid_exceeds_total", "invoices", invoice.id,
                                         f"amount_paid {invoice.amount_paid} > amount_total {invoice.amount_total}"))
        if invoice.amount_total != invoice.amount_subtotal + invoice.amount_tax:
            issues.append(IntegrityIssue("total_mismatch", "invoices", invoice.id,
                                         "amount_total != amount_subtotal + amount_tax"))
        if invoice.deposit_required and invoice.deposit_amount is None:
            issues.append(IntegrityIssue("deposit_amount_missing", "invoices", invoice.id,
                                         "deposit required without deposit_amount"))
        if invoice.deposit_paid and invoice.deposit_paid_at is None:
            issues.append(IntegrityIssue("deposit_paid_at_missing", "invoices", invoice.id,
                                         "deposit_paid without deposit_paid_at"))
    return issues


def _version_chains() -> list[IntegrityIssue]:
    chain = func.coalesce(FileAsset.root_file_id, FileAsset.id)
    current_count = func.sum(case((FileAsset.is_current_version.is_(True), 1), else_=0))
    rows = (
        db.session.query(chain.label("root_id"), current_count.label("current_count"))
        .group_by(chain)
        .having(current_count != 1)
        .all()
    )
    return [
        IntegrityIssue("version_chain", "file_assets", row.root_id,
                       f"chain has {row.current_count or 0} current versions (expected 1)")
        for row in rows
    ]


def _delivered_without_date() -> list[IntegrityIssue]:
    rows = db.session.query(Shipment.id).filter(
        Shipment.status == SHIPMENT_STATUS_DELIVERED,
        Shipment.actual_delivery_date.is_(None),
    )
    return [
        IntegrityIssue("delivery_date_missing", "shipments", row.id, "delivered without actual_delivery_date")
        for row in rows
    ]


def _principal_roles() -> list[IntegrityIssue]:
    issues = []
    rows = db.session.query(User.id, User.role, Organization.kind).join(Organization, Organization.id == User.organization_id)
    for user_id, role, kind in rows:
        if role not in VALID_ROLES_BY_KIND.get(kind, ()):
            issues.append(IntegrityIssue("invalid_role", "users", user_id, f"role {role} in {kind} organization"))
    return issues


def check_integrity() -> list[IntegrityIssue]:
    """
    Scan for invariant violations. Read-only: reports, never repairs.
    """
    issues: list[IntegrityIssue] = []
    issues += _tenant_mismatch(Invoice, "invoices")
    issues += _tenant_mismatch(FileAsset, "file_assets")
    issues += _tenant_mismatch(Shipment, "shipments")
    issues += _invoice_amounts()
    issues += _version_chains()
    issues += _delivered_without_date()
    issues += _principal_roles()

    for issue in issues:
        current_app.logger.warning("Integrity issue [%s] %s %s: %s", issue.check, issue.table, issue.record_id, issue.detail)
    return issues
