from __future__ import annotations

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from escrowdesk.errors import InsufficientFunds, InvalidState, NotFound
from escrowdesk.extensions import db
from escrowdesk.models import Wallet, WalletTxn
from escrowdesk.utils.clock import utcnow


def ensure_wallet(user_id: int) -> Wallet:
    """Create the wallet row if missing. Commits; call outside an atomic unit."""
    w = Wallet.query.filter_by(user_id=int(user_id)).first()
    if w:
        return w
    w = Wallet(user_id=int(user_id), balance_minor=0, escrow_frozen_minor=0, currency=current_app.config["WALLET_CURRENCY"])
    try:
        db.session.add(w)
        db.session.commit()
        return w
    except IntegrityError:
        db.session.rollback()
        w = Wallet.query.filter_by(user_id=int(user_id)).first()
        if w:
            return w
        raise


def wallet_for(user_id: int) -> Wallet:
    w = Wallet.query.filter_by(user_id=int(user_id)).first()
    if not w:
        raise NotFound(f"Wallet for user {int(user_id)} not found")
    return w


def _bump(wallet: Wallet, *, balance: int = 0, frozen: int = 0, require_balance: int = 0, require_frozen: int = 0) -> bool:
    # SQL-side arithmetic; the WHERE clause is the only balance check.
    stmt = update(Wallet).where(Wallet.id == wallet.id)
    if require_balance:
        stmt = stmt.where(Wallet.balance_minor >= require_balance)
    if require_frozen:
        stmt = stmt.where(Wallet.escrow_frozen_minor >= require_frozen)
    stmt = stmt.values(
        balance_minor=Wallet.balance_minor + balance,
        escrow_frozen_minor=Wallet.escrow_frozen_minor + frozen,
        updated_at=utcnow(),
    ).execution_options(synchronize_session="fetch")
    result = db.session.execute(stmt)
    return result.rowcount == 1


def post_txn(
    *,
    wallet: Wallet,
    direction: str,
    amount_minor: int,
    kind: str,
    reference: str,
    note: str,
    idempotency_key: str | None = None,
    freeze: bool = False,
) -> WalletTxn:
    """Idempotent wallet posting inside the caller's transaction.

    ``freeze`` moves a debit into escrow_frozen. One txn per idempotency_key
    (or user/kind/direction/reference).
    """
    key = (idempotency_key or f"{int(wallet.user_id)}:{kind}:{direction}:{reference}")[:160]
    existing = WalletTxn.query.filter_by(idempotency_key=key).first()
    if existing:
        return existing

    amt = int(amount_minor)
    if amt <= 0:
        raise ValueError("wallet postings must be positive")

    if direction == "credit":
        _bump(wallet, balance=amt)
    elif direction == "debit":
        ok = _bump(
            wallet,
            balance=-amt,
            frozen=amt if freeze else 0,
            require_balance=amt,
        )
        if not ok:
            raise InsufficientFunds()
    else:
        raise ValueError(f"unknown direction {direction!r}")

    txn = WalletTxn(
        wallet_id=wallet.id,
        user_id=wallet.user_id,
        direction=direction,
        amount_minor=amt,
        kind=kind,
        reference=reference,
        idempotency_key=key,
        note=(note or "")[:240],
    )
    db.session.add(txn)
    return txn


def release_frozen(wallet: Wallet, amount_minor: int) -> None:
    """Take funds out of escrow_frozen; the caller decides who gets credited."""
    amt = int(amount_minor)
    if amt <= 0:
        return
    if not _bump(wallet, frozen=-amt, require_frozen=amt):
        raise InvalidState(f"Escrowed funds missing from wallet {int(wallet.id)}")
