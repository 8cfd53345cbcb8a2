"""Admin resolution of disputed orders.

This is the only path out of ``disputed``. One call settles the escrow with
exactly one ledger operation and closes the order in the same transaction.
"""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass

from flask import current_app

from escrowdesk.errors import AlreadySettled, Forbidden, InvalidState, NotFound, ValidationError
from escrowdesk.extensions import db
from escrowdesk.models import AuditLog, EscrowStatus, OrderStatus, User
from escrowdesk.services import ledger, orders, risk
from escrowdesk.services.tx import atomic
from escrowdesk.utils.clock import utcnow
from escrowdesk.utils.money import from_minor, to_minor


ACTIONS = ("seller", "buyer", "split")


@dataclass
class SettlementResult:
    order_id: int
    order_number: str
    resolution: str
    seller_amount: str
    buyer_amount: str
    order_status: str
    escrow_status: str
    resolved_by: int

    def to_dict(self) -> dict:
        return asdict(self)


def _resolver(resolver_id) -> User:
    user = db.session.get(User, int(resolver_id)) if resolver_id is not None else None
    if user is None or not user.is_admin:
        raise Forbidden("Only an admin can resolve disputes")
    return user


def resolve_dispute(order_id: int, action: str, notes: str | None, resolver_id: int, seller_share=None, *, now=None) -> SettlementResult:
    """Settle a disputed order in favour of the seller, the buyer, or a split.

    ``seller_share`` (decimal amount) is required for ``split``; the buyer
    gets the remainder of the held amount.
    """
    now = now or utcnow()
    action = (action or "").strip().lower()
    if action not in ACTIONS:
        raise ValidationError(f"action must be one of {', '.join(ACTIONS)}")
    admin = _resolver(resolver_id)
    share_minor = None
    if action == "split":
        if seller_share is None:
            raise ValidationError("seller_share is required for a split")
        share_minor = to_minor(seller_share, "seller_share", allow_zero=True)
    notes = (notes or "").strip() or None

    with atomic("dispute.resolve"):
        order, escrow = orders.load_locked(order_id)
        if order.is_terminal and order.dispute_resolution:
            raise AlreadySettled()
        if order.status != OrderStatus.DISPUTED:
            raise InvalidState(f"Order is {order.status}, not disputed")
        if escrow.is_settled:
            raise AlreadySettled()
        if escrow.status != EscrowStatus.HOLDING:
            raise InvalidState("Disputed order has no escrowed funds")

        held = int(escrow.held_minor)
        if action == "seller":
            ledger.release_locked(order, escrow, actor_id=admin.id, notes=notes, now=now)
            to_status = OrderStatus.COMPLETED
        elif action == "buyer":
            ledger.refund_locked(order, escrow, actor_id=admin.id, notes=notes, now=now)
            to_status = OrderStatus.CANCELLED
        else:
            if share_minor > held:
                raise ValidationError(f"seller_share cannot exceed the held {from_minor(held)}")
            ledger.partial_resolve_locked(order, escrow, share_minor, held - share_minor, actor_id=admin.id, notes=notes, now=now)
            to_status = OrderStatus.COMPLETED

        orders.move(order, to_status, actor_id=admin.id, event="dispute_resolved", note=notes or f"Resolved for {action}", now=now)
        order.dispute_resolution = action
        order.dispute_resolved_at = now
        order.resolved_by = admin.id
        order.resolution_notes = notes
        if to_status == OrderStatus.COMPLETED:
            order.completed_at = now
        else:
            order.cancelled_at = now
            order.cancelled_by = admin.id
            order.cancel_reason = "dispute resolved for buyer"

        db.session.add(
            AuditLog(
                actor_user_id=admin.id,
                action="dispute_resolved",
                target_type="order",
                target_id=order.id,
                meta=json.dumps(
                    {
                        "order_number": order.order_number,
                        "resolution": action,
                        "seller_share": from_minor(escrow.seller_share_minor or 0),
                        "buyer_share": from_minor(escrow.buyer_share_minor or 0),
                        "notes": notes or "",
                    }
                ),
                created_at=now,
            )
        )
        risk.recompute_locked(order.buyer_id, now=now)

    current_app.logger.info("dispute on %s resolved for %s by admin=%s", order.order_number, action, admin.id)
    return SettlementResult(
        order_id=int(order.id),
        order_number=order.order_number,
        resolution=action,
        seller_amount=from_minor(escrow.seller_share_minor or 0),
        buyer_amount=from_minor(escrow.buyer_share_minor or 0),
        order_status=order.status,
        escrow_status=escrow.status,
        resolved_by=int(admin.id),
    )


def get_resolution(order_id: int) -> SettlementResult:
    order = orders.get_order(order_id)
    if not order.dispute_resolution:
        raise NotFound("Order has no dispute resolution")
    escrow = ledger.get_escrow(order.id)
    return SettlementResult(
        order_id=int(order.id),
        order_number=order.order_number,
        resolution=order.dispute_resolution,
        seller_amount=from_minor(escrow.seller_share_minor or 0),
        buyer_amount=from_minor(escrow.buyer_share_minor or 0),
        order_status=order.status,
        escrow_status=escrow.status,
        resolved_by=int(order.resolved_by),
    )
