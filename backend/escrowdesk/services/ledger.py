"""Escrow ledger: the only code that moves money.

Public functions each run as one atomic unit. The ``*_locked`` helpers assume
the caller already holds an open unit with the order and escrow rows loaded
under lock; the order state machine and the dispute engine use those so the
ledger mutation commits together with the order transition.
"""

from __future__ import annotations

from flask import current_app
from sqlalchemy import select

from escrowdesk.errors import AlreadySettled, AmountMismatch, InvalidState, NotFound, ValidationError
from escrowdesk.extensions import db
from escrowdesk.models import DesignOrder, EscrowRecord, EscrowStatus, EscrowTransition, Wallet, WalletTxn
from escrowdesk.services.tx import atomic, load_for_update
from escrowdesk.utils.clock import utcnow
from escrowdesk.utils.money import from_minor
from escrowdesk.utils.wallets import post_txn, release_frozen, wallet_for


def _ref(order: DesignOrder) -> str:
    return f"order:{int(order.id)}"


def escrow_for_update(order_id: int) -> EscrowRecord:
    stmt = (
        select(EscrowRecord)
        .filter_by(order_id=int(order_id))
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    escrow = db.session.execute(stmt).scalar_one_or_none()
    if escrow is None:
        raise NotFound("Escrow record not found")
    return escrow


def _log_transition(escrow: EscrowRecord, from_status: str, to_status: str, *, amount_minor: int, actor_id, reason: str, key: str, now) -> None:
    db.session.add(
        EscrowTransition(
            escrow_id=escrow.id,
            order_id=escrow.order_id,
            from_status=from_status,
            to_status=to_status,
            amount_minor=int(amount_minor),
            actor_id=actor_id,
            idempotency_key=key[:160],
            reason=(reason or "")[:240],
            created_at=now,
        )
    )


def _require_holding(escrow: EscrowRecord) -> None:
    if escrow.status != EscrowStatus.HOLDING:
        raise AlreadySettled()


def _settle(escrow: EscrowRecord, to_status: str, kind: str, *, actor_id, notes, now, seller_share: int, buyer_share: int) -> None:
    from_status = escrow.status
    escrow.status = to_status
    escrow.settlement_kind = kind
    escrow.settled_at = now
    escrow.settled_by = actor_id
    escrow.seller_share_minor = seller_share
    escrow.buyer_share_minor = buyer_share
    escrow.resolution_notes = notes
    escrow.updated_at = now
    _log_transition(
        escrow,
        from_status,
        to_status,
        amount_minor=escrow.held_minor,
        actor_id=actor_id,
        reason=notes or kind,
        key=f"escrow:{kind}",
        now=now,
    )


def open_locked(order: DesignOrder, escrow: EscrowRecord, amount_minor: int, payment_reference: str | None = None, *, now=None) -> EscrowRecord:
    now = now or utcnow()
    if escrow.is_settled:
        raise AlreadySettled()
    if escrow.status == EscrowStatus.HOLDING:
        if payment_reference and escrow.payment_reference == payment_reference:
            return escrow
        raise InvalidState("Escrow is already holding funds for this order")
    if order.is_terminal:
        raise InvalidState(f"Order is {order.status}")
    if int(amount_minor) != int(order.amount_minor):
        raise AmountMismatch(
            f"Captured {from_minor(amount_minor)} but the order amount is {from_minor(order.amount_minor)}"
        )

    buyer_wallet = wallet_for(order.buyer_id)
    ref = _ref(order)
    if payment_reference:
        taken = EscrowRecord.query.filter(
            EscrowRecord.payment_reference == payment_reference,
            EscrowRecord.id != escrow.id,
        ).first()
        if taken:
            raise ValidationError("payment_reference already used")
        post_txn(
            wallet=buyer_wallet,
            direction="credit",
            amount_minor=amount_minor,
            kind="payment_capture",
            reference=ref,
            note=f"Payment {payment_reference} captured for order {order.order_number}",
            idempotency_key=f"capture:{payment_reference}",
        )
    post_txn(
        wallet=buyer_wallet,
        direction="debit",
        amount_minor=amount_minor,
        kind="escrow_hold",
        reference=ref,
        note=f"Escrow hold for order {order.order_number}",
        idempotency_key=f"{ref}:escrow_hold",
        freeze=True,
    )

    escrow.status = EscrowStatus.HOLDING
    escrow.held_minor = int(amount_minor)
    escrow.held_at = now
    escrow.payment_reference = payment_reference
    escrow.updated_at = now
    # Touch the order so a concurrent transition on it loses the version race.
    order.updated_at = now
    _log_transition(
        escrow,
        EscrowStatus.PENDING,
        EscrowStatus.HOLDING,
        amount_minor=amount_minor,
        actor_id=None,
        reason=f"payment {payment_reference}" if payment_reference else "wallet checkout",
        key="escrow:open",
        now=now,
    )
    current_app.logger.info("escrow opened order=%s held=%s", order.order_number, from_minor(amount_minor))
    return escrow


def release_locked(order: DesignOrder, escrow: EscrowRecord, *, actor_id=None, notes: str | None = None, now=None) -> EscrowRecord:
    now = now or utcnow()
    _require_holding(escrow)
    held = int(escrow.held_minor)
    release_frozen(wallet_for(order.buyer_id), held)
    post_txn(
        wallet=wallet_for(order.seller_id),
        direction="credit",
        amount_minor=held,
        kind="escrow_release",
        reference=_ref(order),
        note=f"Escrow release for order {order.order_number}",
        idempotency_key=f"{_ref(order)}:escrow_release",
    )
    _settle(escrow, EscrowStatus.RELEASED, "release", actor_id=actor_id, notes=notes, now=now, seller_share=held, buyer_share=0)
    current_app.logger.info("escrow released order=%s seller=%s amount=%s", order.order_number, order.seller_id, from_minor(held))
    return escrow


def refund_locked(order: DesignOrder, escrow: EscrowRecord, *, actor_id=None, notes: str | None = None, now=None) -> EscrowRecord:
    now = now or utcnow()
    _require_holding(escrow)
    held = int(escrow.held_minor)
    buyer_wallet = wallet_for(order.buyer_id)
    release_frozen(buyer_wallet, held)
    post_txn(
        wallet=buyer_wallet,
        direction="credit",
        amount_minor=held,
        kind="escrow_refund",
        reference=_ref(order),
        note=f"Escrow refund for order {order.order_number}",
        idempotency_key=f"{_ref(order)}:escrow_refund",
    )
    _settle(escrow, EscrowStatus.REFUNDED, "refund", actor_id=actor_id, notes=notes, now=now, seller_share=0, buyer_share=held)
    current_app.logger.info("escrow refunded order=%s buyer=%s amount=%s", order.order_number, order.buyer_id, from_minor(held))
    return escrow


def partial_resolve_locked(
    order: DesignOrder,
    escrow: EscrowRecord,
    seller_share_minor: int,
    buyer_share_minor: int,
    *,
    actor_id=None,
    notes: str | None = None,
    now=None,
) -> EscrowRecord:
    now = now or utcnow()
    _require_holding(escrow)
    held = int(escrow.held_minor)
    seller_share = int(seller_share_minor)
    buyer_share = int(buyer_share_minor)
    if seller_share < 0 or buyer_share < 0 or seller_share + buyer_share != held:
        raise AmountMismatch(
            f"Shares {from_minor(seller_share)} + {from_minor(buyer_share)} must equal the held {from_minor(held)}"
        )

    buyer_wallet = wallet_for(order.buyer_id)
    release_frozen(buyer_wallet, held)
    if seller_share:
        post_txn(
            wallet=wallet_for(order.seller_id),
            direction="credit",
            amount_minor=seller_share,
            kind="escrow_split_seller",
            reference=_ref(order),
            note=f"Split settlement (seller share) for order {order.order_number}",
            idempotency_key=f"{_ref(order)}:escrow_split_seller",
        )
    if buyer_share:
        post_txn(
            wallet=buyer_wallet,
            direction="credit",
            amount_minor=buyer_share,
            kind="escrow_split_buyer",
            reference=_ref(order),
            note=f"Split settlement (buyer share) for order {order.order_number}",
            idempotency_key=f"{_ref(order)}:escrow_split_buyer",
        )
    _settle(
        escrow,
        EscrowStatus.RELEASED,
        "split",
        actor_id=actor_id,
        notes=notes,
        now=now,
        seller_share=seller_share,
        buyer_share=buyer_share,
    )
    current_app.logger.info(
        "escrow split order=%s seller_share=%s buyer_share=%s",
        order.order_number,
        from_minor(seller_share),
        from_minor(buyer_share),
    )
    return escrow


def open_escrow(order_id: int, amount_minor: int, payment_reference: str | None = None, *, now=None) -> EscrowRecord:
    """pending -> holding once payment capture is confirmed."""
    with atomic("escrow.open"):
        order = load_for_update(DesignOrder, int(order_id), what="Order")
        escrow = escrow_for_update(order.id)
        open_locked(order, escrow, amount_minor, payment_reference, now=now)
    return escrow


def release(order_id: int, *, actor_id=None, notes: str | None = None, now=None) -> EscrowRecord:
    with atomic("escrow.release"):
        order = load_for_update(DesignOrder, int(order_id), what="Order")
        escrow = escrow_for_update(order.id)
        release_locked(order, escrow, actor_id=actor_id, notes=notes, now=now)
    return escrow


def refund(order_id: int, *, actor_id=None, notes: str | None = None, now=None) -> EscrowRecord:
    with atomic("escrow.refund"):
        order = load_for_update(DesignOrder, int(order_id), what="Order")
        escrow = escrow_for_update(order.id)
        refund_locked(order, escrow, actor_id=actor_id, notes=notes, now=now)
    return escrow


def partial_resolve(order_id: int, seller_share_minor: int, buyer_share_minor: int, *, actor_id=None, notes: str | None = None, now=None) -> EscrowRecord:
    with atomic("escrow.partial_resolve"):
        order = load_for_update(DesignOrder, int(order_id), what="Order")
        escrow = escrow_for_update(order.id)
        partial_resolve_locked(order, escrow, seller_share_minor, buyer_share_minor, actor_id=actor_id, notes=notes, now=now)
    return escrow


def get_escrow(order_id: int) -> EscrowRecord:
    escrow = EscrowRecord.query.filter_by(order_id=int(order_id)).first()
    if escrow is None:
        raise NotFound("Escrow record not found")
    return escrow


def list_transitions(order_id: int) -> list[EscrowTransition]:
    return (
        EscrowTransition.query.filter_by(order_id=int(order_id))
        .order_by(EscrowTransition.id.asc())
        .all()
    )


def get_wallet(user_id: int) -> Wallet:
    return wallet_for(user_id)


def list_wallet_txns(user_id: int, *, limit: int = 100) -> list[WalletTxn]:
    return (
        WalletTxn.query.filter_by(user_id=int(user_id))
        .order_by(WalletTxn.id.desc())
        .limit(int(limit))
        .all()
    )
