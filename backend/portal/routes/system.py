# Overview: Health and version endpoints.

"""
System health endpoints.

/health checks database connectivity and runs the read-only integrity scan,
so drift between stored rows and the invariants the services maintain shows
up in monitoring rather than in the action queue.
"""

import sys
import time
from flask import Blueprint, current_app

from ..extensions import db
from ..models import Organization, User
from ..models.tenancy import ORG_KIND_INTERNAL
from ..services import integrity_service
from ..time_utils import utcnow, to_utc_z

system_bp = Blueprint("system", __name__)


def check_database_health() -> dict:
    start_time = time.time()
    try:
        organization_count = db.session.query(Organization).count()
        user_count = db.session.query(User).count()
        internal = db.session.query(Organization.id).filter(Organization.kind == ORG_KIND_INTERNAL).first()

        elapsed_ms = (time.time() - start_time) * 1000
        result = {
            "status": "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {
                "organizations": organization_count,
                "principals": user_count,
            },
        }
        if internal is None:
            result["status"] = "degraded"
            result["warning"] = "No internal organization; run `flask system init`"
        return result
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Database error",
        }


def check_integrity_health() -> dict:
    """Integrity findings degrade the service; they never take it down."""
    start_time = time.time()
    try:
        issues = integrity_service.check_integrity()
        elapsed_ms = (time.time() - start_time) * 1000
        by_check: dict[str, int] = {}
        for issue in issues:
            by_check[issue.check] = by_check.get(issue.check, 0) + 1
        return {
            "status": "degraded" if issues else "healthy",
            "latency_ms": round(elapsed_ms, 2),
            "details": {"issue_count": len(issues), "by_check": by_check},
        }
    except Exception:
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Integrity health check failed")
        return {
            "status": "unhealthy",
            "latency_ms": round(elapsed_ms, 2),
            "error": "Integrity check error",
        }
    finally:
        db.session.rollback()


@system_bp.get("/health")
def health():
    """
    Returns:
    - 200: healthy or degraded
    - 503: database unreachable or a check crashed
    """
    start_time = time.time()

    database_health = check_database_health()
    integrity_health = check_integrity_health()

    all_checks = [database_health, integrity_health]
    if any(check["status"] == "unhealthy" for check in all_checks):
        overall_status, http_status = "unhealthy", 503
    elif any(check["status"] == "degraded" for check in all_checks):
        overall_status, http_status = "degraded", 200
    else:
        overall_status, http_status = "healthy", 200

    return {
        "status": overall_status,
        "timestamp": to_utc_z(utcnow()),
        "total_latency_ms": round((time.time() - start_time) * 1000, 2),
        "checks": {
            "database": database_health,
            "integrity": integrity_health,
        },
    }, http_status


@system_bp.get("/version")
def version():
    """Non-sensitive deployment info. No secrets, credentials or paths."""
    return {
        "api_version": "1.0.0",
        "environment": "production" if not current_app.debug else "development",
        "python_version": sys.version.split()[0],
        "server_time": to_utc_z(utcnow()),
    }
