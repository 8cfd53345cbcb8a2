from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user, login_required

from escrowdesk.auth import admin_required
from escrowdesk.errors import ValidationError
from escrowdesk.services import ledger, orders
from escrowdesk.utils.idempotency import idempotent
from escrowdesk.utils.money import to_minor

orders_bp = Blueprint("orders_bp", __name__, url_prefix="/api")


def _body() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("JSON object body required")
    return data


def _optional_int(data: dict, name: str):
    raw = data.get(name)
    if raw is None or raw == "":
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValidationError(f"{name} must be an integer")


def _order_payload(order) -> dict:
    return {"ok": True, "order": order.to_dict(viewer_id=current_user.id)}


@orders_bp.post("/orders")
@login_required
@idempotent("orders.create")
def create_order():
    data = _body()
    seller_id = _optional_int(data, "seller_id")
    if seller_id is None:
        raise ValidationError("seller_id is required")
    order = orders.create_order(
        buyer_id=current_user.id,
        seller_id=seller_id,
        service_id=data.get("service_id"),
        amount=data.get("amount"),
        revisions_allowed=_optional_int(data, "revisions_allowed"),
        delivery_days=_optional_int(data, "delivery_days"),
        fund_from_wallet=bool(data.get("fund_from_wallet")),
    )
    return _order_payload(order), 201


@orders_bp.post("/orders/<int:order_id>/capture")
@admin_required
@idempotent("orders.capture")
def capture_payment(order_id: int):
    """Payment capture confirmation from the gateway side; opens escrow."""
    data = _body()
    reference = (data.get("payment_reference") or "").strip()
    if not reference:
        raise ValidationError("payment_reference is required")
    escrow = ledger.open_escrow(order_id, to_minor(data.get("amount"), "amount"), reference)
    return {"ok": True, "escrow": escrow.to_dict()}, 200


@orders_bp.post("/orders/<int:order_id>/accept")
@login_required
@idempotent("orders.accept")
def accept(order_id: int):
    return _order_payload(orders.accept(order_id, current_user.id)), 200


@orders_bp.post("/orders/<int:order_id>/deliver")
@login_required
@idempotent("orders.deliver")
def deliver(order_id: int):
    data = _body()
    return _order_payload(orders.deliver(order_id, current_user.id, data.get("note"))), 200


@orders_bp.post("/orders/<int:order_id>/revision")
@login_required
@idempotent("orders.revision")
def request_revision(order_id: int):
    data = _body()
    return _order_payload(orders.request_revision(order_id, current_user.id, data.get("note"))), 200


@orders_bp.post("/orders/<int:order_id>/redeliver")
@login_required
@idempotent("orders.redeliver")
def redeliver(order_id: int):
    data = _body()
    return _order_payload(orders.redeliver(order_id, current_user.id, data.get("note"))), 200


@orders_bp.post("/orders/<int:order_id>/confirm")
@login_required
@idempotent("orders.confirm")
def confirm(order_id: int):
    return _order_payload(orders.confirm_delivery(order_id, current_user.id)), 200


@orders_bp.post("/orders/<int:order_id>/cancel")
@login_required
@idempotent("orders.cancel")
def cancel(order_id: int):
    data = _body()
    return _order_payload(orders.cancel(order_id, current_user.id, data.get("reason"))), 200


@orders_bp.post("/orders/<int:order_id>/dispute")
@login_required
@idempotent("orders.dispute")
def open_dispute(order_id: int):
    data = _body()
    return _order_payload(orders.open_dispute(order_id, current_user.id, data.get("reason"))), 200


@orders_bp.get("/orders/my")
@login_required
def my_orders():
    role = (request.args.get("as") or "").strip().lower() or None
    if role not in (None, "buyer", "seller"):
        raise ValidationError("as must be buyer or seller")
    rows = orders.list_orders_for_user(current_user.id, as_role=role)
    return {"ok": True, "items": [o.to_dict(viewer_id=current_user.id) for o in rows]}, 200


@orders_bp.get("/orders/<int:order_id>")
@login_required
def get_order(order_id: int):
    return _order_payload(orders.get_order(order_id, current_user.id)), 200


@orders_bp.get("/orders/<int:order_id>/timeline")
@login_required
def timeline(order_id: int):
    events = orders.get_timeline(order_id, current_user.id)
    return {"ok": True, "items": [e.to_dict() for e in events]}, 200


@orders_bp.get("/orders/<int:order_id>/escrow")
@login_required
def get_escrow(order_id: int):
    order = orders.get_order(order_id, current_user.id)
    escrow = ledger.get_escrow(order.id)
    return {
        "ok": True,
        "escrow": escrow.to_dict(),
        "transitions": [t.to_dict() for t in ledger.list_transitions(order.id)],
    }, 200
