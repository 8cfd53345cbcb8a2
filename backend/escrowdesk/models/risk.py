import json

from escrowdesk.extensions import db
from escrowdesk.utils.clock import utcnow


def _json_list(raw) -> list:
    if not raw:
        return []
    try:
        value = json.loads(raw)
    except ValueError:
        return []
    return value if isinstance(value, list) else []


class BuyerRiskScore(db.Model):
    __tablename__ = "buyer_risk_scores"

    id = db.Column(db.Integer, primary_key=True)
    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    total_orders = db.Column(db.Integer, nullable=False, default=0)
    completed_orders = db.Column(db.Integer, nullable=False, default=0)
    disputed_orders = db.Column(db.Integer, nullable=False, default=0)
    cancelled_orders = db.Column(db.Integer, nullable=False, default=0)
    refunded_orders = db.Column(db.Integer, nullable=False, default=0)

    # 0-100, higher = riskier
    risk_score = db.Column(db.Float, nullable=False, default=0.0)
    is_high_risk = db.Column(db.Boolean, nullable=False, default=False)
    risk_factors = db.Column(db.Text, nullable=True)  # JSON list

    account_age_days = db.Column(db.Integer, nullable=False, default=0)
    is_email_verified = db.Column(db.Boolean, nullable=False, default=False)
    is_phone_verified = db.Column(db.Boolean, nullable=False, default=False)

    last_updated = db.Column(db.DateTime, nullable=False, default=utcnow)

    def factors(self) -> list:
        return _json_list(self.risk_factors)

    def to_dict(self):
        return {
            "buyer_id": int(self.buyer_id),
            "risk_score": float(self.risk_score or 0.0),
            "is_high_risk": bool(self.is_high_risk),
            "risk_factors": self.factors(),
            "total_orders": int(self.total_orders or 0),
            "completed_orders": int(self.completed_orders or 0),
            "disputed_orders": int(self.disputed_orders or 0),
            "cancelled_orders": int(self.cancelled_orders or 0),
            "refunded_orders": int(self.refunded_orders or 0),
            "account_age_days": int(self.account_age_days or 0),
            "is_email_verified": bool(self.is_email_verified),
            "is_phone_verified": bool(self.is_phone_verified),
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class SellerRiskPolicy(db.Model):
    __tablename__ = "seller_risk_policies"

    id = db.Column(db.Integer, primary_key=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    block_new_buyers = db.Column(db.Boolean, nullable=False, default=False)
    new_buyer_threshold_days = db.Column(db.Integer, nullable=False, default=7)

    block_disputed_buyers = db.Column(db.Boolean, nullable=False, default=False)
    max_disputes_allowed = db.Column(db.Integer, nullable=False, default=0)

    # 0 = unlimited
    max_concurrent_orders = db.Column(db.Integer, nullable=False, default=0)

    delay_delivery_for_risky = db.Column(db.Boolean, nullable=False, default=False)
    delay_minutes = db.Column(db.Integer, nullable=False, default=0)

    require_email_verified = db.Column(db.Boolean, nullable=False, default=False)
    require_phone_verified = db.Column(db.Boolean, nullable=False, default=False)

    min_buyer_completed_orders = db.Column(db.Integer, nullable=False, default=0)

    blacklisted_countries = db.Column(db.Text, nullable=True)  # JSON list of ISO codes

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def countries(self) -> list:
        return [str(c).upper() for c in _json_list(self.blacklisted_countries)]

    def to_dict(self):
        return {
            "seller_id": int(self.seller_id),
            "block_new_buyers": bool(self.block_new_buyers),
            "new_buyer_threshold_days": int(self.new_buyer_threshold_days or 0),
            "block_disputed_buyers": bool(self.block_disputed_buyers),
            "max_disputes_allowed": int(self.max_disputes_allowed or 0),
            "max_concurrent_orders": int(self.max_concurrent_orders or 0),
            "delay_delivery_for_risky": bool(self.delay_delivery_for_risky),
            "delay_minutes": int(self.delay_minutes or 0),
            "require_email_verified": bool(self.require_email_verified),
            "require_phone_verified": bool(self.require_phone_verified),
            "min_buyer_completed_orders": int(self.min_buyer_completed_orders or 0),
            "blacklisted_countries": self.countries(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
