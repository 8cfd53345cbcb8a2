from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user, login_required

from escrowdesk.errors import BuyerBlocked, Forbidden, ValidationError
from escrowdesk.services import risk

risk_bp = Blueprint("risk_bp", __name__, url_prefix="/api")


@risk_bp.get("/risk/buyers/<int:buyer_id>")
@login_required
def buyer_risk(buyer_id: int):
    role = (current_user.role or "").strip().lower()
    if int(current_user.id) != int(buyer_id) and role not in ("seller", "admin"):
        raise Forbidden()
    return {"ok": True, "risk": risk.get_risk_score(buyer_id).to_dict()}, 200


@risk_bp.get("/seller/risk-policy")
@login_required
def get_policy():
    policy = risk.get_policy(current_user.id)
    return {"ok": True, "policy": policy.to_dict() if policy else None}, 200


@risk_bp.put("/seller/risk-policy")
@login_required
def put_policy():
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    policy = risk.upsert_policy(current_user.id, data)
    return {"ok": True, "policy": policy.to_dict()}, 200


@risk_bp.get("/sellers/<int:seller_id>/admission")
@login_required
def admission_preview(seller_id: int):
    """Would the caller be admitted as a buyer of this seller right now."""
    try:
        risk.admit_order(current_user.id, seller_id)
    except BuyerBlocked as exc:
        return {"ok": True, "admitted": False, "reason": exc.reason, "message": exc.message}, 200
    return {"ok": True, "admitted": True, "reason": None, "message": None}, 200
