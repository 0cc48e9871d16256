"""
Action Aggregator: one ranked feed of items needing staff attention.

Six independent predicate scans, each over the caller's scoped query, run
inside one read snapshot and are merged in application code:

    deposit_unpaid        p1  deposit required, unpaid, invoice draft or sent
    invoice_due_soon      p2  sent, balance > 0, due within [today, today + 7]
    invoice_overdue       p1  overdue, balance > 0
    proof_pending         p2  current pending proof uploaded before today - 2
    shipment_no_tracking  p2  shipped over a day ago, still no tracking number
    shipment_overdue      p1  moving, expected delivery already past
    shipment_eta_risk     p2  moving, expected delivery within [today, today + 2]

Order: priority ASC, due_date ASC nulls last, created_date ASC nulls last,
then (type, record_id) so equal keys always come out the same way.

The queue is a pure function of stored state and `now`. Nothing is
persisted, so there is nothing to invalidate when a contributing row changes.
A row that breaks a stored invariant aborts the scan with DataIntegrityError.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import joinedload

from ..errors import DataIntegrityError
from ..models import Invoice, InvoiceEvent, FileAsset, Shipment
from ..models.files import FILE_TYPE_PROOF, APPROVAL_PENDING
from ..models.invoices import (
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_OVERDUE,
    REMINDER_EVENT_TYPES,
)
from ..models.shipments import (
    SHIPMENT_STATUS_PENDING,
    SHIPMENT_STATUS_CANCELLED,
    SHIPMENT_STATUS_DELIVERED,
    SHIPMENT_STATUS_RETURNED,
    SHIPMENT_MOVING_STATUSES,
)
from ..time_utils import utcnow, business_today, to_utc_z, to_iso_date
from . import tenant_service
from .concurrency import snapshot
from .policy_service import RESOURCE_INVOICE, RESOURCE_INVOICE_EVENT, RESOURCE_FILE_ASSET, RESOURCE_SHIPMENT


DEPOSIT_UNPAID = "deposit_unpaid"
INVOICE_DUE_SOON = "invoice_due_soon"
INVOICE_OVERDUE = "invoice_overdue"
PROOF_PENDING = "proof_pending"
SHIPMENT_NO_TRACKING = "shipment_no_tracking"
SHIPMENT_OVERDUE = "shipment_overdue"
SHIPMENT_ETA_RISK = "shipment_eta_risk"
ACTION_TYPES = (
    DEPOSIT_UNPAID,
    INVOICE_DUE_SOON,
    INVOICE_OVERDUE,
    PROOF_PENDING,
    SHIPMENT_NO_TRACKING,
    SHIPMENT_OVERDUE,
    SHIPMENT_ETA_RISK,
)

PRIORITY_CRITICAL = 1
PRIORITY_IMPORTANT = 2

DUE_SOON_DAYS = 7
PROOF_STALE_DAYS = 2
TRACKING_GRACE_DAYS = 1
ETA_RISK_DAYS = 2


@dataclass
class ActionItem:
    type: str
    priority: int
    record_id: int
    identifier: str
    title: str
    description: str
    organization_id: int
    customer_name: str
    project_id: int
    project_name: str
    created_date: date | None
    due_date: date | None
    days_open: int | None
    metadata: dict[str, Any] = field(default_factory=dict)

    def sort_key(self) -> tuple:
        return (
            self.priority,
            self.due_date is None,
            self.due_date or date.min,
            self.created_date is None,
            self.created_date or date.min,
            self.type,
            self.record_id,
        )

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "priority": self.priority,
            "record_id": self.record_id,
            "identifier": self.identifier,
            "title": self.title,
            "description": self.description,
            "organization_id": self.organization_id,
            "customer_name": self.customer_name,
            "project_id": self.project_id,
            "project_name": self.project_name,
            "created_date": to_iso_date(self.created_date),
            "due_date": to_iso_date(self.due_date),
            "days_open": self.days_open,
            "metadata": self.metadata,
        }


def format_cents(cents: int | None) -> str:
    """1234567 -> "$12,345.67"."""
    if cents is None:
        return "$0.00"
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


def _days_between(start: date | None, end: date) -> int | None:
    return (end - start).days if start is not None else None


def _midnight(day: date) -> datetime:
    return datetime(day.year, day.month, day.day)


def _check_invoice(invoice: Invoice) -> None:
    if invoice.amount_paid > invoice.amount_total:
        raise DataIntegrityError(
            f"Invoice {invoice.id} has amount_paid {invoice.amount_paid} above amount_total {invoice.amount_total}"
        )
    if invoice.amount_total != invoice.amount_subtotal + invoice.amount_tax:
        raise DataIntegrityError(f"Invoice {invoice.id} total does not equal subtotal + tax")
    if invoice.deposit_required and invoice.deposit_amount is None:
        raise DataIntegrityError(f"Invoice {invoice.id} requires a deposit but has no deposit_amount")


def _with_parents(query, model):
    return query.options(joinedload(model.project), joinedload(model.organization))


def _item(kind: str, priority: int, record, **values) -> ActionItem:
    return ActionItem(
        type=kind,
        priority=priority,
        record_id=record.id,
        organization_id=record.organization_id,
        customer_name=record.organization.name,
        project_id=record.project_id,
        project_name=record.project.name,
        **values,
    )


# =============================================================================
# Predicate scans
# =============================================================================

def _scan_deposits(principal, today: date) -> list[ActionItem]:
    query = _with_parents(tenant_service.scoped_query(principal, RESOURCE_INVOICE), Invoice).filter(
        Invoice.deposit_required.is_(True),
        Invoice.deposit_paid.is_(False),
        Invoice.status.in_((INVOICE_STATUS_DRAFT, INVOICE_STATUS_SENT)),
    )
    items = []
    for invoice in query.all():
        _check_invoice(invoice)
        items.append(_item(
            DEPOSIT_UNPAID, PRIORITY_CRITICAL, invoice,
            identifier=invoice.invoice_number,
            title=f"Deposit Required: {invoice.invoice_number} - {invoice.project.name}",
            description=f"Unpaid deposit of {format_cents(invoice.deposit_amount)} for {invoice.organization.name}",
            created_date=invoice.issue_date,
            due_date=invoice.due_date,
            days_open=_days_between(invoice.issue_date, today),
            metadata={
                "invoice_id": invoice.id,
                "deposit_amount": invoice.deposit_amount,
                "invoice_total": invoice.amount_total,
                "issue_date": to_iso_date(invoice.issue_date),
                "contact_email": invoice.organization.contact_email,
            },
        ))
    return items


def _scan_due_soon(principal, today: date) -> list[ActionItem]:
    query = _with_parents(tenant_service.scoped_query(principal, RESOURCE_INVOICE), Invoice).filter(
        Invoice.status == INVOICE_STATUS_SENT,
        Invoice.amount_paid < Invoice.amount_total,
        Invoice.due_date >= today,
        Invoice.due_date <= today + timedelta(days=DUE_SOON_DAYS),
    )
    items = []
    for invoice in query.all():
        _check_invoice(invoice)
        days_until_due = (invoice.due_date - today).days
        items.append(_item(
            INVOICE_DUE_SOON, PRIORITY_IMPORTANT, invoice,
            identifier=invoice.invoice_number,
            title=f"Due Soon: {invoice.invoice_number} - {invoice.project.name}",
            description=f"Invoice due in {days_until_due} days - {format_cents(invoice.balance_due)} remaining",
            created_date=invoice.issue_date,
            due_date=invoice.due_date,
            days_open=_days_between(invoice.issue_date, today),
            metadata={
                "invoice_id": invoice.id,
                "balance_due": invoice.balance_due,
                "days_until_due": days_until_due,
                "contact_email": invoice.organization.contact_email,
            },
        ))
    return items


def _last_reminders(principal, invoice_ids: list[int]) -> dict[int, datetime]:
    if not invoice_ids:
        return {}
    rows = (
        tenant_service.scoped_query(principal, RESOURCE_INVOICE_EVENT)
        .with_entities(InvoiceEvent.invoice_id, func.max(InvoiceEvent.created_at))
        .filter(
            InvoiceEvent.invoice_id.in_(invoice_ids),
            InvoiceEvent.event_type.in_(REMINDER_EVENT_TYPES),
        )
        .group_by(InvoiceEvent.invoice_id)
        .all()
    )
    return {invoice_id: last for invoice_id, last in rows}


def _scan_overdue(principal, today: date) -> list[ActionItem]:
    query = _with_parents(tenant_service.scoped_query(principal, RESOURCE_INVOICE), Invoice).filter(
        Invoice.status == INVOICE_STATUS_OVERDUE,
        Invoice.amount_paid < Invoice.amount_total,
    )
    invoices = query.all()
    reminders = _last_reminders(principal, [invoice.id for invoice in invoices])
    items = []
    for invoice in invoices:
        _check_invoice(invoice)
        days_overdue = (today - invoice.due_date).days
        items.append(_item(
            INVOICE_OVERDUE, PRIORITY_CRITICAL, invoice,
            identifier=invoice.invoice_number,
            title=f"OVERDUE: {invoice.invoice_number} - {invoice.project.name}",
            description=f"Invoice {days_overdue} days overdue - {format_cents(invoice.balance_due)} outstanding",
            created_date=invoice.issue_date,
            due_date=invoice.due_date,
            days_open=_days_between(invoice.issue_date, today),
            metadata={
                "invoice_id": invoice.id,
                "balance_due": invoice.balance_due,
                "days_overdue": days_overdue,
                "contact_email": invoice.organization.contact_email,
                "last_reminder": to_utc_z(reminders.get(invoice.id)),
            },
        ))
    return items


def _scan_pending_proofs(principal, today: date) -> list[ActionItem]:
    stale_before = _midnight(today - timedelta(days=PROOF_STALE_DAYS))
    query = (
        _with_parents(tenant_service.scoped_query(principal, RESOURCE_FILE_ASSET), FileAsset)
        .options(joinedload(FileAsset.uploader))
        .filter(
            FileAsset.file_type == FILE_TYPE_PROOF,
            FileAsset.approval_status == APPROVAL_PENDING,
            FileAsset.is_current_version.is_(True),
            FileAsset.created_at < stale_before,
        )
    )
    items = []
    seen_chains: set[int] = set()
    for asset in query.all():
        chain = asset.root_file_id or asset.id
        if chain in seen_chains:
            raise DataIntegrityError(f"Version chain {chain} has more than one current version")
        seen_chains.add(chain)

        uploaded_on = asset.created_at.date() if asset.created_at else None
        days_open = _days_between(uploaded_on, today)
        items.append(_item(
            PROOF_PENDING, PRIORITY_IMPORTANT, asset,
            identifier=str(asset.version_number),
            title=f"Proof Pending: {asset.project.name} v{asset.version_number}",
            description=f"Awaiting approval for {days_open} days",
            created_date=uploaded_on,
            due_date=None,
            days_open=days_open,
            metadata={
                "file_asset_id": asset.id,
                "file_name": asset.file_name,
                "version": asset.version_number,
                "uploaded_at": to_utc_z(asset.created_at),
                "uploaded_by": asset.uploader.name if asset.uploader else None,
                "storage_path": asset.storage_path,
            },
        ))
    return items


def _scan_missing_tracking(principal, today: date) -> list[ActionItem]:
    query = _with_parents(tenant_service.scoped_query(principal, RESOURCE_SHIPMENT), Shipment).filter(
        Shipment.tracking_number.is_(None),
        Shipment.status.notin_((
            SHIPMENT_STATUS_PENDING,
            SHIPMENT_STATUS_CANCELLED,
            SHIPMENT_STATUS_DELIVERED,
            SHIPMENT_STATUS_RETURNED,
        )),
        Shipment.actual_ship_date.isnot(None),
        Shipment.actual_ship_date < today - timedelta(days=TRACKING_GRACE_DAYS),
    )
    items = []
    for shipment in query.all():
        days_open = _days_between(shipment.actual_ship_date, today)
        items.append(_item(
            SHIPMENT_NO_TRACKING, PRIORITY_IMPORTANT, shipment,
            identifier=shipment.shipment_number,
            title=f"Missing Tracking: {shipment.project.name}",
            description=f"Shipment created {days_open} days ago without tracking number",
            created_date=shipment.actual_ship_date,
            due_date=shipment.expected_delivery_date,
            days_open=days_open,
            metadata={
                "shipment_id": shipment.id,
                "shipment_number": shipment.shipment_number,
                "carrier": shipment.carrier,
                "actual_ship_date": to_iso_date(shipment.actual_ship_date),
                "expected_delivery": to_iso_date(shipment.expected_delivery_date),
            },
        ))
    return items


def _scan_eta(principal, today: date) -> list[ActionItem]:
    query = _with_parents(tenant_service.scoped_query(principal, RESOURCE_SHIPMENT), Shipment).filter(
        Shipment.status.in_(SHIPMENT_MOVING_STATUSES),
        Shipment.expected_delivery_date.isnot(None),
        Shipment.expected_delivery_date <= today + timedelta(days=ETA_RISK_DAYS),
    )
    items = []
    for shipment in query.all():
        expected = shipment.expected_delivery_date
        late = expected < today
        days_until_delivery = (expected - today).days
        if late:
            kind, priority = SHIPMENT_OVERDUE, PRIORITY_CRITICAL
            title = f"LATE: {shipment.project.name}"
            description = f"Shipment is {-days_until_delivery} days overdue"
        else:
            kind, priority = SHIPMENT_ETA_RISK, PRIORITY_IMPORTANT
            title = f"Delivery Soon: {shipment.project.name}"
            description = f"Estimated delivery in {days_until_delivery} days"
        items.append(_item(
            kind, priority, shipment,
            identifier=shipment.tracking_number or shipment.shipment_number,
            title=title,
            description=description,
            created_date=shipment.actual_ship_date,
            due_date=expected,
            days_open=_days_between(shipment.actual_ship_date or shipment.expected_ship_date, today),
            metadata={
                "shipment_id": shipment.id,
                "shipment_number": shipment.shipment_number,
                "tracking_number": shipment.tracking_number,
                "carrier": shipment.carrier,
                "status": shipment.status,
                "actual_ship_date": to_iso_date(shipment.actual_ship_date),
                "expected_delivery": to_iso_date(expected),
                "days_until_delivery": days_until_delivery,
                "tracking_url": shipment.tracking_url,
            },
        ))
    return items


SCANS = (
    _scan_deposits,
    _scan_due_soon,
    _scan_overdue,
    _scan_pending_proofs,
    _scan_missing_tracking,
    _scan_eta,
)


def list_action_queue(
    principal,
    *,
    now: datetime | None = None,
    organization_id: int | None = None,
    project_id: int | None = None,
    types=None,
    limit: int | None = None,
) -> list[ActionItem]:
    """
    listActionQueue(principal) -> ordered [ActionItem].

    Customers get items of their own organization only, and never items
    for draft invoices (the scoped queries exclude them). Internal
    principals may narrow by organization_id / project_id / types.
    """
    today = business_today(now or utcnow())
    wanted = set(types) if types else None

    with snapshot():
        items: list[ActionItem] = []
        for scan in SCANS:
            items.extend(scan(principal, today))

    if organization_id is not None:
        items = [item for item in items if item.organization_id == organization_id]
    if project_id is not None:
        items = [item for item in items if item.project_id == project_id]
    if wanted is not None:
        items = [item for item in items if item.type in wanted]

    items.sort(key=ActionItem.sort_key)
    if limit is not None:
        items = items[:limit]
    return items


def summarize_queue(items: list[ActionItem]) -> dict:
    by_type = Counter(item.type for item in items)
    by_priority = Counter(item.priority for item in items)
    return {
        "total": len(items),
        "by_type": {kind: by_type.get(kind, 0) for kind in ACTION_TYPES},
        "by_priority": {str(priority): count for priority, count in sorted(by_priority.items())},
    }

