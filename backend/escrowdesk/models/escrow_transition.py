from escrowdesk.extensions import db
from escrowdesk.utils.clock import utcnow
from escrowdesk.utils.money import from_minor


class EscrowTransition(db.Model):
    """Append-only custody log; one row per escrow status change."""

    __tablename__ = "escrow_transitions"
    __table_args__ = (
        db.UniqueConstraint("order_id", "idempotency_key", name="uq_escrow_transition_order_key"),
    )

    id = db.Column(db.Integer, primary_key=True)
    escrow_id = db.Column(db.Integer, db.ForeignKey("escrow_records.id"), nullable=False, index=True)
    order_id = db.Column(db.Integer, nullable=False, index=True)
    from_status = db.Column(db.String(16), nullable=False, default="")
    to_status = db.Column(db.String(16), nullable=False)
    amount_minor = db.Column(db.BigInteger, nullable=False, default=0)
    actor_id = db.Column(db.Integer, nullable=True)
    idempotency_key = db.Column(db.String(160), nullable=False)
    reason = db.Column(db.String(240), nullable=True)
    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "escrow_id": int(self.escrow_id),
            "order_id": int(self.order_id),
            "from_status": self.from_status or "",
            "to_status": self.to_status or "",
            "amount": from_minor(self.amount_minor),
            "actor_id": int(self.actor_id) if self.actor_id is not None else None,
            "reason": self.reason or "",
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
