"""Buyer risk scores and the seller admission gate."""

from __future__ import annotations

import json

from flask import current_app
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from escrowdesk.errors import BuyerBlocked, Forbidden, NotFound, ValidationError
from escrowdesk.extensions import db
from escrowdesk.models import BuyerRiskScore, DesignOrder, EscrowRecord, EscrowStatus, OrderStatus, SellerRiskPolicy, User
from escrowdesk.services.tx import atomic
from escrowdesk.utils.clock import utcnow


POLICY_BOOL_FIELDS = (
    "block_new_buyers",
    "block_disputed_buyers",
    "delay_delivery_for_risky",
    "require_email_verified",
    "require_phone_verified",
)
POLICY_INT_FIELDS = (
    "new_buyer_threshold_days",
    "max_disputes_allowed",
    "max_concurrent_orders",
    "delay_minutes",
    "min_buyer_completed_orders",
)


def _user(user_id: int, what: str = "User") -> User:
    user = db.session.get(User, int(user_id))
    if user is None:
        raise NotFound(f"{what} not found")
    return user


def _count(*criteria) -> int:
    return int(db.session.query(func.count(DesignOrder.id)).filter(*criteria).scalar() or 0)


def buyer_stats(buyer_id: int) -> dict:
    """Live order counts for a buyer straight from the order table."""
    bid = int(buyer_id)
    refunded = (
        db.session.query(func.count(EscrowRecord.id))
        .join(DesignOrder, DesignOrder.id == EscrowRecord.order_id)
        .filter(DesignOrder.buyer_id == bid, EscrowRecord.status == EscrowStatus.REFUNDED)
        .scalar()
    )
    return {
        "total_orders": _count(DesignOrder.buyer_id == bid),
        "completed_orders": _count(DesignOrder.buyer_id == bid, DesignOrder.status == OrderStatus.COMPLETED),
        # A dispute counts even after it is resolved.
        "disputed_orders": _count(DesignOrder.buyer_id == bid, DesignOrder.disputed_at.isnot(None)),
        "cancelled_orders": _count(DesignOrder.buyer_id == bid, DesignOrder.status == OrderStatus.CANCELLED),
        "refunded_orders": int(refunded or 0),
    }


def score_from_stats(stats: dict) -> float:
    total = int(stats.get("total_orders") or 0)
    if total <= 0:
        return 0.0
    cfg = current_app.config
    dispute_rate = int(stats.get("disputed_orders") or 0) / total
    cancel_rate = int(stats.get("cancelled_orders") or 0) / total
    raw = 100.0 * (float(cfg["RISK_DISPUTE_WEIGHT"]) * dispute_rate + float(cfg["RISK_CANCEL_WEIGHT"]) * cancel_rate)
    return min(100.0, round(raw, 2))


def _factors(stats: dict, user: User, age_days: int) -> list:
    factors = []
    total = int(stats.get("total_orders") or 0)
    if age_days < int(current_app.config["NEW_ACCOUNT_DAYS"]):
        factors.append("new account")
    if total:
        dispute_rate = 100.0 * int(stats.get("disputed_orders") or 0) / total
        if dispute_rate > 20:
            factors.append("high dispute rate")
        elif dispute_rate > 10:
            factors.append("dispute history")
        if 100.0 * int(stats.get("cancelled_orders") or 0) / total > 30:
            factors.append("frequent cancellations")
    if not user.email_verified:
        factors.append("email not verified")
    if not user.phone_verified:
        factors.append("phone not verified")
    return factors


def recompute_locked(buyer_id: int, *, now=None) -> BuyerRiskScore:
    """Refresh the score row inside the caller's unit.

    Checkout creates the row up front with ``ensure_score``, so terminal
    transitions only update it.
    """
    now = now or utcnow()
    user = _user(buyer_id, "Buyer")
    stats = buyer_stats(user.id)
    age_days = user.account_age_days(now)
    score = score_from_stats(stats)

    row = BuyerRiskScore.query.filter_by(buyer_id=int(user.id)).first()
    if row is None:
        row = BuyerRiskScore(buyer_id=int(user.id))
        db.session.add(row)
    for key, value in stats.items():
        setattr(row, key, value)
    row.risk_score = score
    row.is_high_risk = score >= float(current_app.config["RISK_HIGH_THRESHOLD"])
    row.risk_factors = json.dumps(_factors(stats, user, age_days))
    row.account_age_days = age_days
    row.is_email_verified = bool(user.email_verified)
    row.is_phone_verified = bool(user.phone_verified)
    row.last_updated = now
    current_app.logger.info("risk score buyer=%s score=%.2f high_risk=%s", user.id, score, row.is_high_risk)
    return row


def ensure_score(buyer_id: int, *, now=None) -> BuyerRiskScore:
    """Create the buyer's score row if missing. Commits; call outside an atomic unit."""
    row = BuyerRiskScore.query.filter_by(buyer_id=int(buyer_id)).first()
    if row is not None:
        return row
    try:
        row = recompute_locked(buyer_id, now=now)
        db.session.commit()
        return row
    except IntegrityError:
        db.session.rollback()
        row = BuyerRiskScore.query.filter_by(buyer_id=int(buyer_id)).first()
        if row is not None:
            return row
        raise


def compute_score(buyer_id: int, *, now=None) -> BuyerRiskScore:
    ensure_score(buyer_id, now=now)
    with atomic("risk.compute_score"):
        row = recompute_locked(buyer_id, now=now)
    return row


def get_risk_score(buyer_id: int) -> BuyerRiskScore:
    return ensure_score(buyer_id)


def get_policy(seller_id: int) -> SellerRiskPolicy | None:
    return SellerRiskPolicy.query.filter_by(seller_id=int(seller_id)).first()


def _parse_countries(raw) -> list:
    if raw is None:
        return []
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("blacklisted_countries must be a list of ISO country codes")
    out = []
    for c in raw:
        code = str(c or "").strip().upper()
        if not code:
            continue
        if len(code) != 2 or not code.isalpha():
            raise ValidationError(f"Invalid country code {c!r}")
        if code not in out:
            out.append(code)
    return out


def upsert_policy(seller_id: int, fields: dict, *, now=None) -> SellerRiskPolicy:
    now = now or utcnow()
    seller = _user(seller_id, "Seller")
    if (seller.role or "").strip().lower() != "seller":
        raise Forbidden("Only sellers have a risk policy")
    fields = fields or {}

    with atomic("risk.upsert_policy"):
        policy = SellerRiskPolicy.query.filter_by(seller_id=int(seller.id)).first()
        if policy is None:
            policy = SellerRiskPolicy(seller_id=int(seller.id), created_at=now)
            db.session.add(policy)
        for name in POLICY_BOOL_FIELDS:
            if name in fields:
                policy_value = fields.get(name)
                if not isinstance(policy_value, bool):
                    raise ValidationError(f"{name} must be true or false")
                setattr(policy, name, policy_value)
        for name in POLICY_INT_FIELDS:
            if name in fields:
                try:
                    value = int(fields.get(name))
                except (TypeError, ValueError):
                    raise ValidationError(f"{name} must be an integer")
                if value < 0:
                    raise ValidationError(f"{name} cannot be negative")
                setattr(policy, name, value)
        if "blacklisted_countries" in fields:
            policy.blacklisted_countries = json.dumps(_parse_countries(fields.get("blacklisted_countries")))
        policy.updated_at = now
    current_app.logger.info("risk policy updated seller=%s", seller.id)
    return policy


def _open_orders_with(buyer_id: int, seller_id: int) -> int:
    return _count(
        DesignOrder.buyer_id == int(buyer_id),
        DesignOrder.seller_id == int(seller_id),
        DesignOrder.status.notin_(OrderStatus.TERMINAL),
    )


def admit_order(buyer_id: int, seller_id: int, amount_minor: int | None = None, *, now=None) -> bool:
    """Raise BuyerBlocked with the first failing check; True when admitted."""
    policy = get_policy(seller_id)
    if policy is None:
        return True
    now = now or utcnow()
    buyer = _user(buyer_id, "Buyer")
    stats = buyer_stats(buyer.id)

    def _block(reason: str, message: str):
        current_app.logger.warning(
            "admission denied buyer=%s seller=%s reason=%s", buyer.id, seller_id, reason
        )
        raise BuyerBlocked(reason, message)

    threshold = int(policy.new_buyer_threshold_days or 0)
    if policy.block_new_buyers and buyer.account_age_days(now) < threshold:
        _block("account_too_new", "buyer account too new")
    if policy.block_disputed_buyers and stats["disputed_orders"] > int(policy.max_disputes_allowed or 0):
        _block("too_many_disputes", "buyer has too many disputes")
    limit = int(policy.max_concurrent_orders or 0)
    if limit > 0 and _open_orders_with(buyer.id, seller_id) >= limit:
        _block("too_many_open_orders", "too many open orders with this seller")
    if policy.require_email_verified and not buyer.email_verified:
        _block("email_not_verified", "verified email required")
    if policy.require_phone_verified and not buyer.phone_verified:
        _block("phone_not_verified", "verified phone required")
    minimum = int(policy.min_buyer_completed_orders or 0)
    if minimum > 0 and stats["completed_orders"] < minimum:
        _block("not_enough_completed_orders", f"at least {minimum} completed orders required")
    if buyer.country and buyer.country.upper() in policy.countries():
        _block("country_not_accepted", "seller does not accept orders from this country")
    return True


def gate_delivery_delay(order: DesignOrder, *, now=None) -> int:
    """Minutes to defer the buyer-visible delivery time; 0 when not gated."""
    policy = get_policy(order.seller_id)
    if policy is None or not policy.delay_delivery_for_risky:
        return 0
    score = BuyerRiskScore.query.filter_by(buyer_id=int(order.buyer_id)).first()
    if score is None:
        score = recompute_locked(order.buyer_id, now=now)
    if not score.is_high_risk:
        return 0
    return int(policy.delay_minutes or 0)
