from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user

from escrowdesk.auth import admin_required
from escrowdesk.errors import AlreadySettled, InvalidState, ValidationError, public_settlement_error
from escrowdesk.models import DesignOrder, OrderStatus
from escrowdesk.services import disputes
from escrowdesk.utils.idempotency import idempotent
from escrowdesk.utils.params import parse_limit

disputes_admin_bp = Blueprint("disputes_admin_bp", __name__, url_prefix="/api/admin")


@disputes_admin_bp.get("/disputes")
@admin_required
def list_disputes():
    limit = parse_limit(request.args.get("limit"), 100)
    rows = (
        DesignOrder.query.filter_by(status=OrderStatus.DISPUTED)
        .order_by(DesignOrder.disputed_at.asc())
        .limit(limit)
        .all()
    )
    return {"ok": True, "items": [o.to_dict(viewer_id=current_user.id) for o in rows]}, 200


@disputes_admin_bp.post("/orders/<int:order_id>/resolve")
@admin_required
@idempotent("disputes.resolve")
def resolve(order_id: int):
    data = request.get_json(silent=True) or {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    try:
        result = disputes.resolve_dispute(
            order_id,
            data.get("action"),
            data.get("notes"),
            current_user.id,
            seller_share=data.get("seller_share"),
        )
    except (AlreadySettled, InvalidState) as exc:
        raise public_settlement_error(exc) from exc
    return {"ok": True, "settlement": result.to_dict()}, 200


@disputes_admin_bp.get("/orders/<int:order_id>/resolution")
@admin_required
def resolution(order_id: int):
    return {"ok": True, "settlement": disputes.get_resolution(order_id).to_dict()}, 200
