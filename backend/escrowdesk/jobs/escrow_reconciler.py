from __future__ import annotations

import json

from flask import current_app
from sqlalchemy import func

from escrowdesk.extensions import db
from escrowdesk.models import AuditLog, EscrowRecord, EscrowStatus, Wallet, WalletTxn
from escrowdesk.utils.clock import utcnow


def _sum_ledger(wallet_id: int) -> int:
    """Net spendable balance implied by the wallet's postings."""
    credits = db.session.query(func.coalesce(func.sum(WalletTxn.amount_minor), 0)).filter(
        WalletTxn.wallet_id == int(wallet_id),
        WalletTxn.direction == "credit",
    ).scalar() or 0
    debits = db.session.query(func.coalesce(func.sum(WalletTxn.amount_minor), 0)).filter(
        WalletTxn.wallet_id == int(wallet_id),
        WalletTxn.direction == "debit",
    ).scalar() or 0
    return int(credits) - int(debits)


def _log_anomaly(action: str, target_type: str, target_id, meta: dict, now) -> None:
    current_app.logger.warning("reconciliation anomaly %s %s=%s %s", action, target_type, target_id, meta.get("issues"))
    db.session.add(
        AuditLog(
            actor_user_id=None,
            action=action,
            target_type=target_type,
            target_id=target_id,
            meta=json.dumps(meta),
            created_at=now,
        )
    )


def reconcile_escrow(*, limit: int = 500) -> dict:
    """Detect money-safety anomalies; never auto-corrects.

    Checks every wallet's stored balance against its postings, and the total
    escrowed in ``holding`` records against the total frozen in wallets.
    Anomalies are written to AuditLog.
    """
    checked = 0
    anomalies = 0
    now = utcnow()

    wallets = Wallet.query.order_by(Wallet.id.asc()).limit(int(limit)).all()
    for w in wallets:
        checked += 1
        computed = _sum_ledger(int(w.id))
        stored = int(w.balance_minor or 0)
        frozen = int(w.escrow_frozen_minor or 0)

        issues = []
        if computed != stored:
            issues.append("ledger_mismatch")
        if stored < 0:
            issues.append("negative_balance")
        if frozen < 0:
            issues.append("negative_frozen")
        if not issues:
            continue

        anomalies += 1
        _log_anomaly(
            "wallet_anomaly",
            "wallet",
            int(w.id),
            {
                "issues": issues,
                "wallet_id": int(w.id),
                "user_id": int(w.user_id),
                "computed_balance_minor": computed,
                "stored_balance_minor": stored,
                "escrow_frozen_minor": frozen,
                "currency": w.currency,
                "at": now.isoformat(),
            },
            now,
        )

    held_total = int(
        db.session.query(func.coalesce(func.sum(EscrowRecord.held_minor), 0))
        .filter(EscrowRecord.status == EscrowStatus.HOLDING)
        .scalar()
        or 0
    )
    frozen_total = int(db.session.query(func.coalesce(func.sum(Wallet.escrow_frozen_minor), 0)).scalar() or 0)
    escrow_balanced = held_total == frozen_total
    if not escrow_balanced:
        anomalies += 1
        _log_anomaly(
            "escrow_anomaly",
            "escrow",
            None,
            {
                "issues": ["held_frozen_mismatch"],
                "held_total_minor": held_total,
                "frozen_total_minor": frozen_total,
                "at": now.isoformat(),
            },
            now,
        )

    if anomalies:
        db.session.commit()
    return {
        "checked": checked,
        "anomalies": anomalies,
        "held_total_minor": held_total,
        "frozen_total_minor": frozen_total,
        "escrow_balanced": escrow_balanced,
    }
