# Overview: Pytest coverage for the invoice state machine, payments and deposits.

"""
Invoice Lifecycle Tests

    draft -> sent -> paid
                  -> overdue -> paid
    draft | sent -> cancelled
"""

from datetime import date

import pytest

from portal.errors import ForbiddenError, InvalidTransitionError, ValidationError
from portal.models import InvoiceEvent, SecurityEvent
from portal.services import invoice_service


def _event_types(db_session, invoice):
    rows = (
        db_session.query(InvoiceEvent)
        .filter_by(invoice_id=invoice.id)
        .order_by(InvoiceEvent.id.asc())
        .all()
    )
    return [row.event_type for row in rows]


class TestCreateDraft:

    def test_create_draft_invoice(self, db_session, make_invoice, project_a, org_a):
        invoice = make_invoice(project_a)

        assert invoice.status == "draft"
        assert invoice.organization_id == org_a.id
        assert invoice.amount_total == 55000
        assert invoice.amount_paid == 0
        assert invoice.balance_due == 55000
        assert _event_types(db_session, invoice) == ["created"]

    def test_deposit_amount_required_when_deposit_required(self, db_session, make_invoice, project_a):
        with pytest.raises(ValidationError):
            make_invoice(project_a, deposit_required=True)

    def test_deposit_cannot_exceed_total(self, db_session, make_invoice, project_a):
        with pytest.raises(ValidationError):
            make_invoice(project_a, deposit_required=True, deposit_amount=60000)

    def test_due_date_before_issue_date_rejected(self, db_session, make_invoice, project_a):
        with pytest.raises(ValidationError):
            make_invoice(project_a, due_date=date(2026, 1, 1))

    def test_fractional_amount_rejected(self, db_session, make_invoice, project_a):
        with pytest.raises(ValidationError):
            make_invoice(project_a, amount_subtotal="500.25")

    def test_duplicate_invoice_number_rejected(self, db_session, make_invoice, project_a):
        make_invoice(project_a, invoice_number="INV-DUP")
        with pytest.raises(ValidationError):
            make_invoice(project_a, invoice_number="INV-DUP")

    def test_customer_cannot_create(self, db_session, make_invoice, project_a, customer_a):
        with pytest.raises(ForbiddenError):
            make_invoice(project_a, principal=customer_a)


class TestDraftEdits:

    def test_edit_recomputes_total(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        invoice_service.update_draft(staff, invoice.id, amount_subtotal=80000, amount_tax=8000)
        assert invoice.amount_total == 88000

    def test_sent_invoice_only_accepts_notes(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)

        with pytest.raises(InvalidTransitionError):
            invoice_service.update_draft(staff, invoice.id, amount_subtotal=1)

        invoice_service.update_draft(staff, invoice.id, notes="Called AP on Monday")
        assert invoice.notes == "Called AP on Monday"
        assert invoice.amount_total == 55000

    def test_unknown_field_rejected(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        with pytest.raises(ValidationError):
            invoice_service.update_draft(staff, invoice.id, amount_paid=55000)


class TestTransitions:

    def test_send(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)

        assert invoice.status == "sent"
        assert _event_types(db_session, invoice) == ["created", "sent"]

    def test_send_requires_positive_total(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a, amount_subtotal=0, amount_tax=0)
        with pytest.raises(InvalidTransitionError):
            invoice_service.send_invoice(staff, invoice.id)
        db_session.refresh(invoice)
        assert invoice.status == "draft"

    def test_repeat_request_is_noop(self, db_session, make_invoice, project_a, staff):
        """Requesting the current status changes nothing and writes no event."""
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)
        invoice_service.send_invoice(staff, invoice.id)

        assert invoice.status == "sent"
        assert _event_types(db_session, invoice) == ["created", "sent"]

    def test_cannot_skip_to_paid(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)
        with pytest.raises(InvalidTransitionError):
            invoice_service.transition_invoice(staff, invoice.id, "paid")

    def test_cancel_draft_with_reason(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        invoice_service.cancel_invoice(staff, invoice.id, reason="Duplicate of INV-7")

        assert invoice.status == "cancelled"
        event = db_session.query(InvoiceEvent).filter_by(invoice_id=invoice.id, event_type="cancelled").one()
        assert event.event_data["reason"] == "Duplicate of INV-7"
        assert event.triggered_by == staff.principal_id

    def test_cancelled_is_terminal(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        invoice_service.cancel_invoice(staff, invoice.id)
        with pytest.raises(InvalidTransitionError):
            invoice_service.send_invoice(staff, invoice.id)

    def test_unknown_status_rejected(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        with pytest.raises(ValidationError):
            invoice_service.transition_invoice(staff, invoice.id, "archived")

    def test_customer_cannot_send(self, db_session, make_invoice, project_a, customer_a):
        invoice = make_invoice(project_a)
        with pytest.raises(ForbiddenError):
            invoice_service.send_invoice(customer_a, invoice.id)


class TestOverdue:

    def test_system_marks_past_due_invoice(self, db_session, make_invoice, project_a, staff, system):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)

        invoice_service.mark_overdue(system, invoice.id, today=date(2026, 2, 10))

        assert invoice.status == "overdue"
        event = db_session.query(InvoiceEvent).filter_by(invoice_id=invoice.id, event_type="marked_overdue").one()
        assert event.triggered_by is None
        assert event.triggered_by_system == "scheduler"
        assert event.event_data["balance_due"] == 55000

    def test_not_yet_due_rejected_and_logged(self, db_session, make_invoice, project_a, staff, system):
        """A failed system-triggered transition is recorded as a failed attempt."""
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)

        with pytest.raises(InvalidTransitionError):
            invoice_service.mark_overdue(system, invoice.id, today=date(2026, 2, 4))

        db_session.refresh(invoice)
        assert invoice.status == "sent"
        failure = db_session.query(SecurityEvent).filter_by(event_type="SYSTEM_TRANSITION_FAILED").one()
        assert failure.system_name == "scheduler"
        assert failure.entity_id == invoice.id
        assert failure.action == "transition:overdue"

    def test_overdue_cannot_be_cancelled(self, db_session, make_invoice, project_a, staff, system):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)
        invoice_service.mark_overdue(system, invoice.id, today=date(2026, 3, 1))

        with pytest.raises(InvalidTransitionError):
            invoice_service.cancel_invoice(staff, invoice.id)

    def test_system_cannot_cancel(self, db_session, make_invoice, project_a, staff, system):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)
        with pytest.raises(ForbiddenError):
            invoice_service.cancel_invoice(system, invoice.id)

    def test_sweep_marks_only_past_due_sent_invoices(self, db_session, make_invoice, project_a, project_b, staff, system):
        past_due = make_invoice(project_a)
        not_due = make_invoice(project_b, due_date=date(2026, 3, 1))
        draft = make_invoice(project_a)
        invoice_service.send_invoice(staff, past_due.id)
        invoice_service.send_invoice(staff, not_due.id)

        report = invoice_service.sweep_overdue(system, today=date(2026, 2, 10))

        assert report == {"as_of": "2026-02-10", "checked": 1, "marked": [past_due.id], "failed": []}
        db_session.refresh(not_due)
        db_session.refresh(draft)
        assert not_due.status == "sent"
        assert draft.status == "draft"

    def test_sweep_is_idempotent(self, db_session, make_invoice, project_a, staff, system):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)
        invoice_service.sweep_overdue(system, today=date(2026, 2, 10))

        report = invoice_service.sweep_overdue(system, today=date(2026, 2, 11))

        assert report["checked"] == 0
        assert _event_types(db_session, invoice).count("marked_overdue") == 1


class TestPayments:

    def test_partial_then_full_payment(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)

        invoice_service.record_payment(staff, invoice.id, 20000, reference="ACH-1")
        assert invoice.status == "sent"
        assert invoice.balance_due == 35000

        invoice_service.record_payment(staff, invoice.id, 35000, reference="ACH-2")
        assert invoice.status == "paid"
        assert invoice.balance_due == 0
        assert _event_types(db_session, invoice) == ["created", "sent", "payment_partial", "payment_received"]

    def test_overdue_invoice_can_be_paid(self, db_session, make_invoice, project_a, staff, system):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)
        invoice_service.mark_overdue(system, invoice.id, today=date(2026, 2, 10))

        invoice_service.record_payment(staff, invoice.id, 55000)
        assert invoice.status == "paid"

    def test_overpayment_rejected(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)

        with pytest.raises(ValidationError):
            invoice_service.record_payment(staff, invoice.id, 55001)

        db_session.refresh(invoice)
        assert invoice.amount_paid == 0

    def test_payment_on_draft_rejected(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        with pytest.raises(InvalidTransitionError):
            invoice_service.record_payment(staff, invoice.id, 1000)

    @pytest.mark.parametrize("amount", [0, -5, "12.50", True])
    def test_invalid_amount_rejected(self, db_session, make_invoice, project_a, staff, amount):
        invoice = make_invoice(project_a)
        invoice_service.send_invoice(staff, invoice.id)
        with pytest.raises(ValidationError):
            invoice_service.record_payment(staff, invoice.id, amount)


class TestDeposits:

    def test_deposit_on_draft(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a, deposit_required=True, deposit_amount=27500)

        invoice_service.record_deposit(staff, invoice.id)

        assert invoice.deposit_paid is True
        assert invoice.deposit_paid_at is not None
        assert invoice.amount_paid == 27500
        assert invoice.status == "draft"
        assert _event_types(db_session, invoice) == ["created", "deposit_received"]

    def test_repeat_deposit_is_noop(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a, deposit_required=True, deposit_amount=27500)
        invoice_service.record_deposit(staff, invoice.id)
        invoice_service.record_deposit(staff, invoice.id)

        assert invoice.amount_paid == 27500
        assert _event_types(db_session, invoice).count("deposit_received") == 1

    def test_deposit_not_required_rejected(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a)
        with pytest.raises(ValidationError):
            invoice_service.record_deposit(staff, invoice.id, 1000)

    def test_full_deposit_cannot_settle_draft(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a, deposit_required=True, deposit_amount=55000)
        with pytest.raises(ValidationError):
            invoice_service.record_deposit(staff, invoice.id)

    def test_full_deposit_settles_sent_invoice(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a, deposit_required=True, deposit_amount=55000)
        invoice_service.send_invoice(staff, invoice.id)

        invoice_service.record_deposit(staff, invoice.id)

        assert invoice.status == "paid"
        assert _event_types(db_session, invoice) == ["created", "sent", "deposit_received", "payment_received"]

    def test_deposit_then_balance(self, db_session, make_invoice, project_a, staff):
        invoice = make_invoice(project_a, deposit_required=True, deposit_amount=27500)
        invoice_service.record_deposit(staff, invoice.id)
        invoice_service.send_invoice(staff, invoice.id)

        invoice_service.record_payment(staff, invoice.id, 27500)

        assert invoice.status == "paid"
        assert invoice.amount_paid == 55000
