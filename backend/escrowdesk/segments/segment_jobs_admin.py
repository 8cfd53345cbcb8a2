from __future__ import annotations

from flask import Blueprint, current_app, request

from escrowdesk.auth import admin_required
from escrowdesk.errors import ValidationError
from escrowdesk.jobs.escrow_reconciler import reconcile_escrow
from escrowdesk.jobs.escrow_runner import run_escrow_sweep
from escrowdesk.models import AuditLog
from escrowdesk.utils.params import parse_limit

jobs_admin_bp = Blueprint("jobs_admin_bp", __name__, url_prefix="/api/admin")


def _body() -> dict:
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


@jobs_admin_bp.post("/jobs/escrow-sweep")
@admin_required
def escrow_sweep():
    data = _body()
    limit = parse_limit(data.get("limit"), current_app.config["ESCROW_SWEEP_LIMIT"], maximum=5000)
    return run_escrow_sweep(limit=limit), 200


@jobs_admin_bp.post("/jobs/reconcile")
@admin_required
def reconcile():
    data = _body()
    limit = parse_limit(data.get("limit"), 500, maximum=5000)
    return {"ok": True, **reconcile_escrow(limit=limit)}, 200


@jobs_admin_bp.get("/audit")
@admin_required
def audit_log():
    limit = parse_limit(request.args.get("limit"), 100)
    q = AuditLog.query
    action = (request.args.get("action") or "").strip()
    if action:
        q = q.filter_by(action=action)
    rows = q.order_by(AuditLog.id.desc()).limit(limit).all()
    return {"ok": True, "items": [r.to_dict() for r in rows]}, 200
