from escrowdesk.extensions import db
from escrowdesk.utils.clock import utcnow
from escrowdesk.utils.money import from_minor


class Wallet(db.Model):
    __tablename__ = "wallets"

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, unique=True, index=True)

    # Spendable funds.
    balance_minor = db.Column(db.BigInteger, nullable=False, default=0)
    # Funds taken out of the spendable balance and held in escrow.
    escrow_frozen_minor = db.Column(db.BigInteger, nullable=False, default=0)
    currency = db.Column(db.String(8), nullable=False, default="USD")

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "user_id": int(self.user_id),
            "balance": from_minor(self.balance_minor),
            "escrow_frozen": from_minor(self.escrow_frozen_minor),
            "currency": self.currency or "USD",
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
