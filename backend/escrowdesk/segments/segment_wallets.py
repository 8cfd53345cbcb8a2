from __future__ import annotations

from flask import Blueprint, request
from flask_login import current_user, login_required

from escrowdesk.services import ledger
from escrowdesk.utils.params import parse_limit
from escrowdesk.utils.wallets import ensure_wallet

wallets_bp = Blueprint("wallets_bp", __name__, url_prefix="/api/wallet")


@wallets_bp.get("")
@login_required
def get_wallet():
    ensure_wallet(current_user.id)
    return {"ok": True, "wallet": ledger.get_wallet(current_user.id).to_dict()}, 200


@wallets_bp.get("/txns")
@login_required
def wallet_txns():
    limit = parse_limit(request.args.get("limit"), 100)
    rows = ledger.list_wallet_txns(current_user.id, limit=limit)
    return {"ok": True, "items": [t.to_dict() for t in rows]}, 200
