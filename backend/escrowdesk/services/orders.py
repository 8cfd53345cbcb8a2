"""Design order lifecycle.

Every public action is one atomic unit: the order row is re-read under lock,
the action's allowed source states are checked against that fresh row, the
transition is applied and any ledger effect commits with it.
"""

from __future__ import annotations

import secrets
from datetime import timedelta

from flask import current_app

from escrowdesk.errors import Forbidden, InvalidState, NotFound, RevisionLimitExceeded, ValidationError
from escrowdesk.extensions import db
from escrowdesk.models import DesignOrder, EscrowRecord, EscrowStatus, OrderEvent, OrderStatus, User
from escrowdesk.services import ledger, risk
from escrowdesk.services.tx import atomic, load_for_update
from escrowdesk.utils.clock import utcnow
from escrowdesk.utils.money import from_minor, to_minor
from escrowdesk.utils.wallets import ensure_wallet


S = OrderStatus

# Closed state graph. Anything not listed here is rejected.
ALLOWED_TRANSITIONS = {
    S.PENDING_ACCEPT: {S.IN_PROGRESS, S.CANCELLED},
    S.IN_PROGRESS: {S.DELIVERED, S.CANCELLED, S.DISPUTED},
    S.REVISION_REQUESTED: {S.DELIVERED, S.DISPUTED},
    S.DELIVERED: {S.PENDING_CONFIRM, S.REVISION_REQUESTED, S.DISPUTED},
    S.PENDING_CONFIRM: {S.COMPLETED, S.REVISION_REQUESTED, S.DISPUTED},
    S.DISPUTED: {S.COMPLETED, S.CANCELLED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
}

CANCELLABLE = (S.PENDING_ACCEPT, S.IN_PROGRESS)
DISPUTABLE = (S.IN_PROGRESS, S.REVISION_REQUESTED, S.DELIVERED, S.PENDING_CONFIRM)
CONFIRMABLE = (S.DELIVERED, S.PENDING_CONFIRM)


def can_transition(from_status: str, to_status: str) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, set())


def _require_status(order: DesignOrder, allowed, action: str) -> None:
    if order.status not in allowed:
        raise InvalidState(f"Cannot {action} an order that is {order.status}")


def _event(order: DesignOrder, actor_id, event: str, *, from_status=None, note: str = "", visible_at=None, now=None) -> None:
    key = f"order:{int(order.id)}:{event}:v{int(order.version or 0)}"
    if OrderEvent.query.filter_by(idempotency_key=key).first():
        return
    db.session.add(
        OrderEvent(
            order_id=order.id,
            actor_user_id=actor_id,
            event=event,
            from_status=from_status,
            to_status=order.status,
            note=(note or "")[:240],
            idempotency_key=key,
            visible_at=visible_at,
            created_at=now or utcnow(),
        )
    )


def move(order: DesignOrder, to_status: str, *, actor_id, event: str, note: str = "", visible_at=None, now=None) -> None:
    """Apply one edge of the state graph to a locked order and log it."""
    now = now or utcnow()
    from_status = order.status
    if not can_transition(from_status, to_status):
        raise InvalidState(f"Transition {from_status} -> {to_status} is not allowed")
    order.status = to_status
    order.updated_at = now
    _event(order, actor_id, event, from_status=from_status, note=note, visible_at=visible_at, now=now)
    current_app.logger.info(
        "order %s %s -> %s (%s) actor=%s",
        order.order_number,
        from_status,
        to_status,
        event,
        actor_id if actor_id is not None else "system",
    )


def load_locked(order_id: int) -> tuple[DesignOrder, EscrowRecord]:
    order = load_for_update(DesignOrder, int(order_id), what="Order")
    return order, ledger.escrow_for_update(order.id)


def _require_seller(order: DesignOrder, actor_id) -> None:
    if actor_id is None or int(actor_id) != int(order.seller_id):
        raise Forbidden("Only the assigned seller can do this")


def _require_buyer(order: DesignOrder, actor_id) -> None:
    if actor_id is None or int(actor_id) != int(order.buyer_id):
        raise Forbidden("Only the buyer can do this")


def _require_visible(order: DesignOrder, now, action: str) -> None:
    # Worded as the buyer sees the order while the delivery is deferred.
    if not order.delivery_visible(now):
        raise InvalidState(f"Cannot {action} an order that is {S.IN_PROGRESS}")


def _stamp_delivery(order: DesignOrder, now) -> None:
    delay = risk.gate_delivery_delay(order, now=now)
    order.delivered_at = now
    order.delivery_delay_minutes = delay
    order.visible_delivered_at = now + timedelta(minutes=delay)
    order.confirm_due_at = order.visible_delivered_at + timedelta(hours=int(current_app.config["AUTO_CONFIRM_HOURS"]))
    if delay:
        current_app.logger.info("order %s delivery visible after %s minutes", order.order_number, delay)


def _order_number(now) -> str:
    return f"DO-{now:%Y%m%d}-{secrets.token_hex(3).upper()}"


def create_order(
    buyer_id: int,
    seller_id: int,
    service_id: str,
    amount,
    *,
    revisions_allowed: int | None = None,
    delivery_days: int | None = None,
    payment_reference: str | None = None,
    fund_from_wallet: bool = False,
    now=None,
) -> DesignOrder:
    """Admit and create an order with its escrow in ``pending``.

    With ``payment_reference`` (a confirmed gateway capture) or
    ``fund_from_wallet`` the escrow is opened in the same unit.
    """
    now = now or utcnow()
    service_id = str(service_id or "").strip()
    if not service_id:
        raise ValidationError("service_id is required")
    amount_minor = to_minor(amount, "amount")
    cfg = current_app.config
    revisions = int(cfg["DEFAULT_REVISIONS"] if revisions_allowed is None else revisions_allowed)
    days = int(cfg["DEFAULT_DELIVERY_DAYS"] if delivery_days is None else delivery_days)
    if revisions < 0 or days <= 0:
        raise ValidationError("revisions_allowed must be >= 0 and delivery_days > 0")
    if int(buyer_id) == int(seller_id):
        raise Forbidden("You cannot order your own service")
    if db.session.get(User, int(seller_id)) is None:
        raise NotFound("Seller not found")
    if db.session.get(User, int(buyer_id)) is None:
        raise NotFound("Buyer not found")

    ensure_wallet(buyer_id)
    ensure_wallet(seller_id)
    risk.ensure_score(buyer_id, now=now)

    with atomic("order.create"):
        # Serializes concurrent checkouts by the same buyer.
        load_for_update(User, int(buyer_id), what="Buyer")
        risk.admit_order(buyer_id, seller_id, amount_minor, now=now)

        order = DesignOrder(
            order_number=_order_number(now),
            buyer_id=int(buyer_id),
            seller_id=int(seller_id),
            service_id=service_id[:64],
            amount_minor=amount_minor,
            status=S.PENDING_ACCEPT,
            revisions_allowed=revisions,
            revisions_used=0,
            deadline_at=now + timedelta(days=days),
            created_at=now,
            updated_at=now,
        )
        order.escrow = EscrowRecord(
            held_minor=0,
            status=EscrowStatus.PENDING,
            currency=cfg["WALLET_CURRENCY"],
            created_at=now,
            updated_at=now,
        )
        db.session.add(order)
        db.session.flush()
        _event(order, int(buyer_id), "created", note=f"Order created for {from_minor(amount_minor)}", now=now)
        if payment_reference or fund_from_wallet:
            ledger.open_locked(order, order.escrow, amount_minor, payment_reference, now=now)
    current_app.logger.info(
        "order %s created buyer=%s seller=%s amount=%s",
        order.order_number,
        buyer_id,
        seller_id,
        from_minor(amount_minor),
    )
    return order


def accept(order_id: int, seller_id: int, *, now=None) -> DesignOrder:
    now = now or utcnow()
    with atomic("order.accept"):
        order, escrow = load_locked(order_id)
        _require_seller(order, seller_id)
        _require_status(order, (S.PENDING_ACCEPT,), "accept")
        if escrow.status != EscrowStatus.HOLDING:
            raise InvalidState("Payment has not been captured for this order")
        move(order, S.IN_PROGRESS, actor_id=seller_id, event="accepted", note="Seller accepted order", now=now)
    return order


def deliver(order_id: int, seller_id: int, note: str | None = None, *, now=None) -> DesignOrder:
    now = now or utcnow()
    with atomic("order.deliver"):
        order, _ = load_locked(order_id)
        _require_seller(order, seller_id)
        _require_status(order, (S.IN_PROGRESS,), "deliver")
        _stamp_delivery(order, now)
        order.delivery_note = (note or "").strip()[:400] or None
        move(
            order,
            S.DELIVERED,
            actor_id=seller_id,
            event="delivered",
            note=note or "Seller delivered",
            visible_at=order.visible_delivered_at,
            now=now,
        )
    return order


def request_revision(order_id: int, buyer_id: int, note: str | None = None, *, now=None) -> DesignOrder:
    now = now or utcnow()
    with atomic("order.request_revision"):
        order, _ = load_locked(order_id)
        _require_buyer(order, buyer_id)
        _require_status(order, CONFIRMABLE, "request a revision on")
        _require_visible(order, now, "request a revision on")
        if int(order.revisions_used or 0) >= int(order.revisions_allowed or 0):
            raise RevisionLimitExceeded()
        order.revisions_used = int(order.revisions_used or 0) + 1
        order.revision_note = (note or "").strip()[:400] or None
        order.confirm_due_at = None
        move(
            order,
            S.REVISION_REQUESTED,
            actor_id=buyer_id,
            event="revision_requested",
            note=note or f"Revision {order.revisions_used} of {order.revisions_allowed} requested",
            now=now,
        )
    return order


def redeliver(order_id: int, seller_id: int, note: str | None = None, *, now=None) -> DesignOrder:
    now = now or utcnow()
    with atomic("order.redeliver"):
        order, _ = load_locked(order_id)
        _require_seller(order, seller_id)
        _require_status(order, (S.REVISION_REQUESTED,), "redeliver")
        _stamp_delivery(order, now)
        order.delivery_note = (note or "").strip()[:400] or None
        move(
            order,
            S.DELIVERED,
            actor_id=seller_id,
            event="redelivered",
            note=note or "Seller delivered a revision",
            visible_at=order.visible_delivered_at,
            now=now,
        )
    return order


def complete_locked(order: DesignOrder, escrow: EscrowRecord, *, actor_id=None, auto: bool = False, now=None) -> DesignOrder:
    """delivered|pending_confirm -> completed, releasing escrow to the seller."""
    now = now or utcnow()
    if order.status == S.DELIVERED:
        move(order, S.PENDING_CONFIRM, actor_id=actor_id, event="confirmation_window_opened", now=now)
    move(
        order,
        S.COMPLETED,
        actor_id=actor_id,
        event="auto_confirmed" if auto else "confirmed",
        note="Auto-confirmed after the confirmation window" if auto else "Buyer confirmed delivery",
        now=now,
    )
    order.completed_at = now
    order.auto_confirmed = bool(auto)
    ledger.release_locked(order, escrow, actor_id=actor_id, notes="auto-confirm" if auto else "buyer confirmed", now=now)
    risk.recompute_locked(order.buyer_id, now=now)
    return order


def confirm_delivery(order_id: int, buyer_id: int, *, now=None) -> DesignOrder:
    now = now or utcnow()
    with atomic("order.confirm_delivery"):
        order, escrow = load_locked(order_id)
        _require_buyer(order, buyer_id)
        _require_status(order, CONFIRMABLE, "confirm")
        _require_visible(order, now, "confirm")
        complete_locked(order, escrow, actor_id=buyer_id, now=now)
    return order


def open_confirmation_window(order_id: int, *, now=None) -> DesignOrder:
    """delivered -> pending_confirm once the delivery is visible to the buyer."""
    now = now or utcnow()
    with atomic("order.open_confirmation_window"):
        order, _ = load_locked(order_id)
        _require_status(order, (S.DELIVERED,), "open the confirmation window of")
        _require_visible(order, now, "open the confirmation window of")
        move(order, S.PENDING_CONFIRM, actor_id=None, event="confirmation_window_opened", now=now)
    return order


def auto_confirm(order_id: int, *, now=None) -> DesignOrder:
    now = now or utcnow()
    with atomic("order.auto_confirm"):
        order, escrow = load_locked(order_id)
        _require_status(order, CONFIRMABLE, "auto-confirm")
        if order.confirm_due_at is None or order.confirm_due_at > now:
            raise InvalidState("Confirmation window has not elapsed")
        complete_locked(order, escrow, actor_id=None, auto=True, now=now)
    return order


def cancel(order_id: int, actor_id: int, reason: str | None = None, *, now=None) -> DesignOrder:
    now = now or utcnow()
    with atomic("order.cancel"):
        order, escrow = load_locked(order_id)
        actor = db.session.get(User, int(actor_id)) if actor_id is not None else None
        if actor is None or not (order.is_party(actor.id) or actor.is_admin):
            raise Forbidden("Only the buyer, the seller or an admin can cancel")
        if order.status == S.DELIVERED and actor.id == order.buyer_id and not order.delivery_visible(now):
            raise InvalidState("This order can no longer be cancelled; open a dispute instead")
        _require_status(order, CANCELLABLE, "cancel")
        move(order, S.CANCELLED, actor_id=actor.id, event="cancelled", note=reason or "Order cancelled", now=now)
        order.cancelled_at = now
        order.cancelled_by = actor.id
        order.cancel_reason = (reason or "").strip()[:400] or None
        if escrow.status == EscrowStatus.HOLDING:
            ledger.refund_locked(order, escrow, actor_id=actor.id, notes=reason or "order cancelled", now=now)
        risk.recompute_locked(order.buyer_id, now=now)
    return order


def open_dispute(order_id: int, actor_id: int, reason: str, *, now=None) -> DesignOrder:
    now = now or utcnow()
    reason = (reason or "").strip()
    if not reason:
        raise ValidationError("A dispute needs a reason")
    with atomic("order.open_dispute"):
        order, escrow = load_locked(order_id)
        if not order.is_party(actor_id):
            raise Forbidden("Only the buyer or the seller can open a dispute")
        _require_status(order, DISPUTABLE, "dispute")
        if escrow.status != EscrowStatus.HOLDING:
            raise InvalidState("No escrowed funds to dispute")
        move(order, S.DISPUTED, actor_id=actor_id, event="dispute_opened", note=reason, now=now)
        order.dispute_reason = reason
        order.disputed_at = now
        order.disputed_by = int(actor_id)
    current_app.logger.warning("order %s disputed by %s: %s", order.order_number, actor_id, reason[:120])
    return order


def _can_view(order: DesignOrder, viewer_id) -> bool:
    if viewer_id is None:
        return True
    if order.is_party(viewer_id):
        return True
    viewer = db.session.get(User, int(viewer_id))
    return bool(viewer and viewer.is_admin)


def get_order(order_id: int, viewer_id: int | None = None) -> DesignOrder:
    order = db.session.get(DesignOrder, int(order_id))
    if order is None:
        raise NotFound("Order not found")
    if not _can_view(order, viewer_id):
        raise Forbidden()
    return order


def get_timeline(order_id: int, viewer_id: int | None = None, *, now=None) -> list[OrderEvent]:
    """Events oldest first; the buyer does not see deferred deliveries early."""
    order = get_order(order_id, viewer_id)
    now = now or utcnow()
    rows = OrderEvent.query.filter_by(order_id=order.id).order_by(OrderEvent.id.asc()).all()
    if viewer_id is not None and int(viewer_id) == int(order.seller_id):
        return rows
    return [e for e in rows if e.visible_at is None or e.visible_at <= now]


def list_orders_for_user(user_id: int, *, as_role: str | None = None, limit: int = 200) -> list[DesignOrder]:
    q = DesignOrder.query
    if as_role == "buyer":
        q = q.filter(DesignOrder.buyer_id == int(user_id))
    elif as_role == "seller":
        q = q.filter(DesignOrder.seller_id == int(user_id))
    else:
        q = q.filter(db.or_(DesignOrder.buyer_id == int(user_id), DesignOrder.seller_id == int(user_id)))
    return q.order_by(DesignOrder.created_at.desc(), DesignOrder.id.desc()).limit(int(limit)).all()
