# Overview: Service-layer operations for invoices; the invoice state machine.

from __future__ import annotations

from datetime import date

from flask import current_app

from ..extensions import db
from ..errors import InvalidTransitionError, ValidationError, PortalError
from ..models import Invoice
from ..models.invoices import (
    INVOICE_STATUSES,
    INVOICE_STATUS_DRAFT,
    INVOICE_STATUS_SENT,
    INVOICE_STATUS_PAID,
    INVOICE_STATUS_OVERDUE,
    INVOICE_STATUS_CANCELLED,
)
from ..time_utils import utcnow, business_today
from ..validation import (
    coerce_cents,
    coerce_optional_cents,
    coerce_bool,
    coerce_date,
    require_text,
    optional_text,
    require_choice,
)
from . import audit_service, policy_service, tenant_service
from .concurrency import atomic
from .policy_service import (
    RESOURCE_INVOICE,
    RESOURCE_INVOICE_EVENT,
    RESOURCE_PROJECT,
    OP_CREATE,
    OP_UPDATE,
)
"""
Invoice Lifecycle Invariants

    draft -> sent -> paid
                  -> overdue -> paid
    draft | sent -> cancelled

- draft -> sent requires amount_total > 0
- sent -> overdue requires due_date < today and balance_due > 0 (system-eligible)
- sent | overdue -> paid happens when recorded payments reach amount_total
- overdue is not cancellable: the debt exists; it is settled or corrected
- Requesting the current status is a no-op: no mutation, no event
- balance_due is never stored; it is amount_total - amount_paid
"""


INVOICE_TRANSITIONS = {
    INVOICE_STATUS_DRAFT: frozenset({INVOICE_STATUS_SENT, INVOICE_STATUS_CANCELLED}),
    INVOICE_STATUS_SENT: frozenset({INVOICE_STATUS_OVERDUE, INVOICE_STATUS_PAID, INVOICE_STATUS_CANCELLED}),
    INVOICE_STATUS_OVERDUE: frozenset({INVOICE_STATUS_PAID}),
    INVOICE_STATUS_PAID: frozenset(),
    INVOICE_STATUS_CANCELLED: frozenset(),
}

TRANSITION_EVENT_TYPES = {
    INVOICE_STATUS_SENT: "sent",
    INVOICE_STATUS_OVERDUE: "marked_overdue",
    INVOICE_STATUS_PAID: "payment_received",
    INVOICE_STATUS_CANCELLED: "cancelled",
}

PAYABLE_STATUSES = (INVOICE_STATUS_SENT, INVOICE_STATUS_OVERDUE)
DEPOSIT_STATUSES = (INVOICE_STATUS_DRAFT, INVOICE_STATUS_SENT, INVOICE_STATUS_OVERDUE)
DRAFT_EDITABLE_FIELDS = (
    "issue_date",
    "due_date",
    "amount_subtotal",
    "amount_tax",
    "deposit_required",
    "deposit_amount",
    "notes",
)


def _validate_deposit(deposit_required: bool, deposit_amount: int | None, amount_total: int) -> None:
    if deposit_required and deposit_amount is None:
        raise ValidationError("deposit_amount is required when deposit_required is set")
    if deposit_amount is not None and deposit_amount > amount_total:
        raise ValidationError("deposit_amount cannot exceed amount_total")


def _validate_dates(issue_date: date, due_date: date) -> None:
    if due_date < issue_date:
        raise ValidationError("due_date cannot be before issue_date")


def _event(invoice: Invoice, event_type: str, principal, data: dict) -> None:
    audit_service.append_event(RESOURCE_INVOICE_EVENT, invoice.id, event_type, principal=principal, data=data)


def create_invoice(
    principal,
    *,
    project_id: int,
    invoice_number: str,
    issue_date,
    due_date,
    amount_subtotal,
    amount_tax=0,
    deposit_required=False,
    deposit_amount=None,
    notes: str | None = None,
) -> Invoice:
    """
    Create a draft invoice for a project. organization_id comes from the
    project, never from the caller.
    """
    with atomic(principal, resource=RESOURCE_INVOICE, action=OP_CREATE):
        project = tenant_service.get_entity(principal, RESOURCE_PROJECT, project_id)
        policy_service.require(
            principal,
            OP_CREATE,
            RESOURCE_INVOICE,
            {"organization_id": project.organization_id, "project_id": project.id},
        )

        invoice_number = require_text("invoice_number", invoice_number, max_length=50)
        issue_date = coerce_date("issue_date", issue_date, required=True)
        due_date = coerce_date("due_date", due_date, required=True)
        _validate_dates(issue_date, due_date)
        subtotal = coerce_cents("amount_subtotal", amount_subtotal)
        tax = coerce_cents("amount_tax", amount_tax)
        deposit_required = coerce_bool("deposit_required", deposit_required)
        deposit_amount = coerce_optional_cents("deposit_amount", deposit_amount)
        _validate_deposit(deposit_required, deposit_amount, subtotal + tax)

        if db.session.query(Invoice.id).filter(Invoice.invoice_number == invoice_number).first():
            raise ValidationError(f"Invoice number {invoice_number} already exists")

        invoice = Invoice(
            project_id=project.id,
            organization_id=project.organization_id,
            invoice_number=invoice_number,
            issue_date=issue_date,
            due_date=due_date,
            amount_subtotal=subtotal,
            amount_tax=tax,
            amount_total=subtotal + tax,
            amount_paid=0,
            deposit_required=deposit_required,
            deposit_amount=deposit_amount,
            deposit_paid=False,
            status=INVOICE_STATUS_DRAFT,
            notes=optional_text("notes", notes),
            created_by=principal.principal_id,
        )
        db.session.add(invoice)
        db.session.flush()

        _event(invoice, "created", principal, {
            "invoice_number": invoice.invoice_number,
            "amount_total": invoice.amount_total,
            "deposit_required": invoice.deposit_required,
            "deposit_amount": invoice.deposit_amount,
        })
    return invoice


def update_draft(principal, invoice_id: int, **changes) -> Invoice:
    """
    Edit a draft's dates, amounts, deposit terms or notes.

    amount_total is recomputed from subtotal + tax on every edit. Only
    notes stay editable once the invoice has left draft.
    """
    unknown = set(changes) - set(DRAFT_EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
    if not changes:
        raise ValidationError("No changes supplied")

    with atomic(principal, resource=RESOURCE_INVOICE, action=OP_UPDATE, entity_id=invoice_id):
        invoice = tenant_service.load_for_write(principal, RESOURCE_INVOICE, invoice_id)
        attrs = policy_service.attributes_for(invoice)
        attrs["changes"] = tuple(changes)
        policy_service.require(principal, OP_UPDATE, RESOURCE_INVOICE, attrs, entity_id=invoice_id)

        if invoice.status != INVOICE_STATUS_DRAFT and set(changes) != {"notes"}:
            raise InvalidTransitionError(f"Invoice {invoice.invoice_number} is {invoice.status}; only drafts can be edited")

        issue_date = coerce_date("issue_date", changes.get("issue_date", invoice.issue_date), required=True)
        due_date = coerce_date("due_date", changes.get("due_date", invoice.due_date), required=True)
        _validate_dates(issue_date, due_date)
        subtotal = coerce_cents("amount_subtotal", changes.get("amount_subtotal", invoice.amount_subtotal))
        tax = coerce_cents("amount_tax", changes.get("amount_tax", invoice.amount_tax))
        deposit_required = coerce_bool("deposit_required", changes.get("deposit_required", invoice.deposit_required))
        deposit_amount = coerce_optional_cents("deposit_amount", changes.get("deposit_amount", invoice.deposit_amount))
        _validate_deposit(deposit_required, deposit_amount, subtotal + tax)
        if subtotal + tax < invoice.amount_paid:
            raise ValidationError("amount_total cannot drop below amount_paid")

        invoice.issue_date = issue_date
        invoice.due_date = due_date
        invoice.amount_subtotal = subtotal
        invoice.amount_tax = tax
        invoice.amount_total = subtotal + tax
        invoice.deposit_required = deposit_required
        invoice.deposit_amount = deposit_amount
        if "notes" in changes:
            invoice.notes = optional_text("notes", changes["notes"])
    return invoice


def transition_invoice(principal, invoice_id: int, requested_status: str, payload: dict | None = None, *, today: date | None = None) -> Invoice:
    """
    Move an invoice to `requested_status` if the transition table and its
    guard allow it. Requesting the current status is a no-op.
    """
    payload = payload or {}
    with atomic(principal, resource=RESOURCE_INVOICE, action=f"transition:{requested_status}", entity_id=invoice_id):
        require_choice("status", requested_status, INVOICE_STATUSES)
        invoice = tenant_service.load_for_write(principal, RESOURCE_INVOICE, invoice_id)
        attrs = policy_service.attributes_for(invoice)
        attrs.update(requested_status=requested_status, changes=("status",))
        policy_service.require(principal, OP_UPDATE, RESOURCE_INVOICE, attrs, entity_id=invoice_id)

        if invoice.status == requested_status:
            return invoice
        if requested_status not in INVOICE_TRANSITIONS[invoice.status]:
            raise InvalidTransitionError(f"Cannot transition invoice from {invoice.status} to {requested_status}")

        today = today or business_today()
        if requested_status == INVOICE_STATUS_SENT and invoice.amount_total <= 0:
            raise InvalidTransitionError("An invoice must have a positive total before it is sent")
        if requested_status == INVOICE_STATUS_OVERDUE:
            if not invoice.due_date < today:
                raise InvalidTransitionError(f"Invoice {invoice.invoice_number} is not past due ({invoice.due_date.isoformat()})")
            if invoice.balance_due <= 0:
                raise InvalidTransitionError(f"Invoice {invoice.invoice_number} has no balance due")
        if requested_status == INVOICE_STATUS_PAID and invoice.amount_paid < invoice.amount_total:
            raise InvalidTransitionError("An invoice becomes paid only when payments cover the total")

        old_status = invoice.status
        invoice.status = requested_status
        data = {"old_status": old_status, "new_status": requested_status}
        if requested_status == INVOICE_STATUS_OVERDUE:
            data.update(due_date=invoice.due_date.isoformat(), balance_due=invoice.balance_due, as_of=today.isoformat())
        reason = optional_text("reason", payload.get("reason"))
        if reason:
            data["reason"] = reason
        _event(invoice, TRANSITION_EVENT_TYPES[requested_status], principal, data)
    return invoice


def send_invoice(principal, invoice_id: int) -> Invoice:
    return transition_invoice(principal, invoice_id, INVOICE_STATUS_SENT)


def mark_overdue(principal, invoice_id: int, *, today: date | None = None) -> Invoice:
    return transition_invoice(principal, invoice_id, INVOICE_STATUS_OVERDUE, today=today)


def cancel_invoice(principal, invoice_id: int, reason: str | None = None) -> Invoice:
    return transition_invoice(principal, invoice_id, INVOICE_STATUS_CANCELLED, {"reason": reason})


def record_payment(principal, invoice_id: int, amount, *, reference: str | None = None, method: str | None = None) -> Invoice:
    """
    Record an amount already reported as paid (no settlement happens here).

    Emits payment_partial while a balance remains, payment_received (and
    status paid) once the total is covered. Over-payment is rejected.
    """
    with atomic(principal, resource=RESOURCE_INVOICE, action="payment", entity_id=invoice_id):
        amount = coerce_cents("amount", amount, allow_zero=False)
        invoice = tenant_service.load_for_write(principal, RESOURCE_INVOICE, invoice_id)
        attrs = policy_service.attributes_for(invoice)
        attrs["changes"] = ("amount_paid", "status")
        policy_service.require(principal, OP_UPDATE, RESOURCE_INVOICE, attrs, entity_id=invoice_id)

        if invoice.status not in PAYABLE_STATUSES:
            raise InvalidTransitionError(f"Payments can only be recorded against sent or overdue invoices (invoice is {invoice.status})")
        if amount > invoice.balance_due:
            raise ValidationError(f"Payment of {amount} exceeds balance due of {invoice.balance_due}")

        old_status = invoice.status
        invoice.amount_paid += amount
        data = {
            "amount": amount,
            "amount_paid": invoice.amount_paid,
            "balance_due": invoice.balance_due,
            "reference": optional_text("reference", reference),
            "method": optional_text("method", method),
        }
        if invoice.amount_paid >= invoice.amount_total:
            invoice.status = INVOICE_STATUS_PAID
            data.update(old_status=old_status, new_status=INVOICE_STATUS_PAID)
            _event(invoice, "payment_received", principal, data)
        else:
            _event(invoice, "payment_partial", principal, data)
    return invoice


def record_deposit(principal, invoice_id: int, amount=None, *, reference: str | None = None) -> Invoice:
    """
    Record the deposit as paid. The deposit counts toward amount_paid.

    A deposit already recorded is a no-op. A deposit that would settle the
    whole invoice is only accepted once the invoice has been sent.
    """
    with atomic(principal, resource=RESOURCE_INVOICE, action="deposit", entity_id=invoice_id):
        invoice = tenant_service.load_for_write(principal, RESOURCE_INVOICE, invoice_id)
        attrs = policy_service.attributes_for(invoice)
        attrs["changes"] = ("amount_paid", "deposit_paid", "deposit_paid_at", "status")
        policy_service.require(principal, OP_UPDATE, RESOURCE_INVOICE, attrs, entity_id=invoice_id)

        if not invoice.deposit_required:
            raise ValidationError(f"Invoice {invoice.invoice_number} does not require a deposit")
        if invoice.deposit_paid:
            return invoice
        if invoice.status not in DEPOSIT_STATUSES:
            raise InvalidTransitionError(f"Cannot record a deposit on a {invoice.status} invoice")

        amount = invoice.deposit_amount if amount is None else coerce_cents("amount", amount, allow_zero=False)
        if amount > invoice.balance_due:
            raise ValidationError(f"Deposit of {amount} exceeds balance due of {invoice.balance_due}")
        settles = invoice.amount_paid + amount >= invoice.amount_total
        if settles and invoice.status == INVOICE_STATUS_DRAFT:
            raise ValidationError("A deposit cannot settle a draft invoice; send it first")

        invoice.amount_paid += amount
        invoice.deposit_paid = True
        invoice.deposit_paid_at = utcnow()
        _event(invoice, "deposit_received", principal, {
            "amount": amount,
            "deposit_amount": invoice.deposit_amount,
            "amount_paid": invoice.amount_paid,
            "balance_due": invoice.balance_due,
            "reference": optional_text("reference", reference),
        })
        if settles:
            old_status = invoice.status
            invoice.status = INVOICE_STATUS_PAID
            _event(invoice, "payment_received", principal, {
                "amount": amount,
                "amount_paid": invoice.amount_paid,
                "balance_due": invoice.balance_due,
                "old_status": old_status,
                "new_status": INVOICE_STATUS_PAID,
            })
    return invoice


def sweep_overdue(principal, *, today: date | None = None) -> dict:
    """
    Daily overdue sweep for the automation actor.

    Each invoice is marked in its own transaction. A failure is recorded as
    a failed attempt (security log) and reported; nothing is retried here.
    """
    today = today or business_today()
    candidate_ids = [
        row.id
        for row in tenant_service.scoped_query(principal, RESOURCE_INVOICE)
        .with_entities(Invoice.id)
        .filter(
            Invoice.status == INVOICE_STATUS_SENT,
            Invoice.due_date < today,
            Invoice.amount_paid < Invoice.amount_total,
        )
        .order_by(Invoice.id.asc())
        .all()
    ]

    marked: list[int] = []
    failed: list[dict] = []
    for invoice_id in candidate_ids:
        try:
            mark_overdue(principal, invoice_id, today=today)
            marked.append(invoice_id)
        except PortalError as exc:
            current_app.logger.warning("Overdue sweep could not mark invoice %s: %s", invoice_id, exc.message)
            failed.append({"invoice_id": invoice_id, "error": exc.code, "message": exc.message})

    current_app.logger.info(
        "Overdue sweep for %s: %d candidates, %d marked, %d failed",
        today.isoformat(), len(candidate_ids), len(marked), len(failed),
    )
    return {
        "as_of": today.isoformat(),
        "checked": len(candidate_ids),
        "marked": marked,
        "failed": failed,
    }
