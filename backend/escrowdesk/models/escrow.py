from escrowdesk.extensions import db
from escrowdesk.utils.clock import utcnow
from escrowdesk.utils.money import from_minor


class EscrowStatus:
    PENDING = "pending"
    HOLDING = "holding"
    RELEASED = "released"
    REFUNDED = "refunded"

    SETTLED = (RELEASED, REFUNDED)


class EscrowRecord(db.Model):
    __tablename__ = "escrow_records"

    id = db.Column(db.Integer, primary_key=True)
    order_id = db.Column(
        db.Integer,
        db.ForeignKey("design_orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
        index=True,
    )

    held_minor = db.Column(db.BigInteger, nullable=False, default=0)
    status = db.Column(db.String(16), nullable=False, default=EscrowStatus.PENDING, index=True)
    currency = db.Column(db.String(8), nullable=False, default="USD")

    payment_reference = db.Column(db.String(80), nullable=True, unique=True)
    held_at = db.Column(db.DateTime, nullable=True)

    settled_at = db.Column(db.DateTime, nullable=True)
    # NULL means the system settled it (auto-confirm sweep).
    settled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    settlement_kind = db.Column(db.String(16), nullable=True)  # release | refund | split
    seller_share_minor = db.Column(db.BigInteger, nullable=True)
    buyer_share_minor = db.Column(db.BigInteger, nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version = db.Column(db.Integer, nullable=False)

    order = db.relationship("DesignOrder", back_populates="escrow")

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_settled(self) -> bool:
        return self.status in EscrowStatus.SETTLED

    def to_dict(self) -> dict:
        return {
            "id": int(self.id),
            "order_id": int(self.order_id),
            "held_amount": from_minor(self.held_minor),
            "status": self.status,
            "currency": self.currency,
            "held_at": self.held_at.isoformat() if self.held_at else None,
            "settled_at": self.settled_at.isoformat() if self.settled_at else None,
            "settled_by": int(self.settled_by) if self.settled_by is not None else None,
            "settlement_kind": self.settlement_kind,
            "seller_share": from_minor(self.seller_share_minor) if self.seller_share_minor is not None else None,
            "buyer_share": from_minor(self.buyer_share_minor) if self.buyer_share_minor is not None else None,
            "resolution_notes": self.resolution_notes,
        }
