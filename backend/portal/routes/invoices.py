# Overview: Flask API routes for invoice creation, draft edits, payments and deposits.

"""
Invoice API Routes

DESIGN:
- Invoices start as drafts; status moves only through
  POST /api/invoices/<id>/transition (entities blueprint)
- Payments and deposits record amounts already reported as paid;
  nothing is settled here
- Amounts are integer cents

SECURITY:
- Staff/Admin only for every write
- Customers never see drafts, and never see internal notes
"""

from flask import Blueprint, jsonify, g, current_app

from ..errors import PortalError, ValidationError
from ..decorators import require_principal, error_response
from ..services import invoice_service
from .common import json_body, serialize


invoices_bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@invoices_bp.post("")
@require_principal
def create_invoice_route():
    """
    Create a draft invoice.

    Request body:
    {
        "project_id": 3,
        "invoice_number": "INV-2026-0042",
        "issue_date": "2026-01-05",
        "due_date": "2026-02-04",
        "amount_subtotal": 50000,
        "amount_tax": 5000,            (optional)
        "deposit_required": true,      (optional)
        "deposit_amount": 27500,       (required when deposit_required)
        "notes": "..."                 (optional, internal)
    }

    Returns:
        201: Invoice created (status draft)
        400: Invalid input
        403: Forbidden
    """
    try:
        data = json_body()
        invoice = invoice_service.create_invoice(
            g.principal,
            project_id=data.get("project_id"),
            invoice_number=data.get("invoice_number"),
            issue_date=data.get("issue_date"),
            due_date=data.get("due_date"),
            amount_subtotal=data.get("amount_subtotal"),
            amount_tax=data.get("amount_tax", 0),
            deposit_required=data.get("deposit_required", False),
            deposit_amount=data.get("deposit_amount"),
            notes=data.get("notes"),
        )
        return jsonify(serialize(invoice, g.principal)), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to create invoice")
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.patch("/<int:invoice_id>")
@require_principal
def update_draft_route(invoice_id: int):
    """Edit a draft. Once sent, only notes can change."""
    try:
        data = json_body()
        unknown = set(data) - set(invoice_service.DRAFT_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")
        invoice = invoice_service.update_draft(g.principal, invoice_id, **data)
        return jsonify(serialize(invoice, g.principal)), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to update invoice %s", invoice_id)
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/payments")
@require_principal
def record_payment_route(invoice_id: int):
    """
    Record a reported payment.

    Request body:
    {
        "amount": 25000,
        "reference": "CHK-1001",  (optional)
        "method": "check"         (optional)
    }

    Returns:
        200: Updated invoice (status paid once the balance reaches zero)
        400: Amount invalid or above the balance due
        409: Invoice is not sent or overdue
    """
    try:
        data = json_body()
        invoice = invoice_service.record_payment(
            g.principal,
            invoice_id,
            data.get("amount"),
            reference=data.get("reference"),
            method=data.get("method"),
        )
        return jsonify(serialize(invoice, g.principal)), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record payment for invoice %s", invoice_id)
        return jsonify({"error": "Internal server error"}), 500


@invoices_bp.post("/<int:invoice_id>/deposit")
@require_principal
def record_deposit_route(invoice_id: int):
    try:
        data = json_body()
        invoice = invoice_service.record_deposit(
            g.principal,
            invoice_id,
            data.get("amount"),
            reference=data.get("reference"),
        )
        return jsonify(serialize(invoice, g.principal)), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to record deposit for invoice %s", invoice_id)
        return jsonify({"error": "Internal server error"}), 500
