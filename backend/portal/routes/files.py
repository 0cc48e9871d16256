# Overview: Flask API routes for file uploads, proof revisions and version chains.

"""
File / Proof API Routes

Only metadata lives here: the bytes are stored elsewhere and the caller
sends the storage path.

A revision is uploaded against the version the caller last saw. If that
version is no longer current, the upload fails with 409 CONCURRENCY_CONFLICT
and the caller should reload the chain and retry.
"""

from flask import Blueprint, jsonify, g, current_app

from ..errors import PortalError
from ..decorators import require_principal, error_response
from ..services import proof_service
from .common import json_body, serialize


files_bp = Blueprint("files", __name__, url_prefix="/api/files")


@files_bp.post("")
@require_principal
def upload_file_route():
    """
    Register a new file (version 1 of its chain).

    Request body:
    {
        "project_id": 3,
        "file_name": "carton-proof.pdf",
        "file_size_bytes": 482133,
        "file_type": "proof",
        "mime_type": "application/pdf",
        "storage_path": "projects/3/carton-proof.pdf",
        "storage_bucket": "project-files",  (optional)
        "notes": "..."                      (optional)
    }
    """
    try:
        data = json_body()
        asset = proof_service.upload_file(
            g.principal,
            project_id=data.get("project_id"),
            file_name=data.get("file_name"),
            file_size_bytes=data.get("file_size_bytes"),
            file_type=data.get("file_type"),
            mime_type=data.get("mime_type"),
            storage_path=data.get("storage_path"),
            storage_bucket=data.get("storage_bucket"),
            notes=data.get("notes"),
        )
        return jsonify(serialize(asset, g.principal)), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upload file")
        return jsonify({"error": "Internal server error"}), 500


@files_bp.post("/<int:file_id>/revisions")
@require_principal
def upload_revision_route(file_id: int):
    try:
        data = json_body()
        asset = proof_service.upload_revision(
            g.principal,
            file_id,
            file_name=data.get("file_name"),
            file_size_bytes=data.get("file_size_bytes"),
            mime_type=data.get("mime_type"),
            storage_path=data.get("storage_path"),
            storage_bucket=data.get("storage_bucket"),
            notes=data.get("notes"),
        )
        return jsonify(serialize(asset, g.principal)), 201

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to upload revision of file %s", file_id)
        return jsonify({"error": "Internal server error"}), 500


@files_bp.get("/<int:file_id>/versions")
@require_principal
def version_chain_route(file_id: int):
    try:
        chain = proof_service.version_chain(g.principal, file_id)
        return jsonify({"versions": [serialize(asset, g.principal) for asset in chain]}), 200

    except PortalError as e:
        return error_response(e)
    except Exception:
        current_app.logger.exception("Failed to load version chain of file %s", file_id)
        return jsonify({"error": "Internal server error"}), 500
