from escrowdesk.extensions import db
from escrowdesk.utils.clock import utcnow
from escrowdesk.utils.money import from_minor


class OrderStatus:
    PENDING_ACCEPT = "pending_accept"
    IN_PROGRESS = "in_progress"
    REVISION_REQUESTED = "revision_requested"
    DELIVERED = "delivered"
    PENDING_CONFIRM = "pending_confirm"
    COMPLETED = "completed"
    DISPUTED = "disputed"
    CANCELLED = "cancelled"

    ALL = (
        PENDING_ACCEPT,
        IN_PROGRESS,
        REVISION_REQUESTED,
        DELIVERED,
        PENDING_CONFIRM,
        COMPLETED,
        DISPUTED,
        CANCELLED,
    )
    TERMINAL = (COMPLETED, CANCELLED)


def _iso(value):
    return value.isoformat() if value else None


class DesignOrder(db.Model):
    __tablename__ = "design_orders"

    id = db.Column(db.Integer, primary_key=True)
    order_number = db.Column(db.String(32), nullable=False, unique=True, index=True)

    buyer_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    seller_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    service_id = db.Column(db.String(64), nullable=False, index=True)

    amount_minor = db.Column(db.BigInteger, nullable=False)

    status = db.Column(db.String(32), nullable=False, default=OrderStatus.PENDING_ACCEPT, index=True)
    # pending_accept -> in_progress -> delivered -> pending_confirm -> completed
    # revision_requested <-> delivered; disputed from in_progress..pending_confirm
    # cancelled only before delivery

    revisions_allowed = db.Column(db.Integer, nullable=False, default=0)
    revisions_used = db.Column(db.Integer, nullable=False, default=0)

    deadline_at = db.Column(db.DateTime, nullable=True)

    # Delivery timing; visible_delivered_at is what the buyer sees.
    delivered_at = db.Column(db.DateTime, nullable=True)
    visible_delivered_at = db.Column(db.DateTime, nullable=True, index=True)
    confirm_due_at = db.Column(db.DateTime, nullable=True, index=True)
    delivery_delay_minutes = db.Column(db.Integer, nullable=False, default=0)
    delivery_note = db.Column(db.String(400), nullable=True)
    revision_note = db.Column(db.String(400), nullable=True)

    # Dispute
    dispute_reason = db.Column(db.Text, nullable=True)
    disputed_at = db.Column(db.DateTime, nullable=True)
    disputed_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    dispute_resolution = db.Column(db.String(16), nullable=True)
    dispute_resolved_at = db.Column(db.DateTime, nullable=True)
    resolved_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)

    # Closing
    completed_at = db.Column(db.DateTime, nullable=True)
    auto_confirmed = db.Column(db.Boolean, nullable=False, default=False)
    cancelled_at = db.Column(db.DateTime, nullable=True)
    cancelled_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=True)
    cancel_reason = db.Column(db.String(400), nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    version = db.Column(db.Integer, nullable=False)

    escrow = db.relationship(
        "EscrowRecord",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def is_terminal(self) -> bool:
        return self.status in OrderStatus.TERMINAL

    @property
    def revisions_remaining(self) -> int:
        return max(0, int(self.revisions_allowed or 0) - int(self.revisions_used or 0))

    def is_party(self, user_id) -> bool:
        return user_id is not None and int(user_id) in (int(self.buyer_id), int(self.seller_id))

    def delivery_visible(self, now=None) -> bool:
        if self.visible_delivered_at is None:
            return False
        return (now or utcnow()) >= self.visible_delivered_at

    def to_dict(self, viewer_id=None, now=None) -> dict:
        # The seller sees the real delivery time; everyone else sees the deferred one.
        is_seller = viewer_id is not None and int(viewer_id) == int(self.seller_id)
        delivered_at = self.delivered_at if is_seller else self.visible_delivered_at
        status = self.status
        if not is_seller and status == OrderStatus.DELIVERED and not self.delivery_visible(now):
            status = OrderStatus.IN_PROGRESS
            delivered_at = None
        return {
            "id": int(self.id),
            "order_number": self.order_number,
            "buyer_id": int(self.buyer_id),
            "seller_id": int(self.seller_id),
            "service_id": self.service_id,
            "amount": from_minor(self.amount_minor),
            "status": status,
            "revisions_allowed": int(self.revisions_allowed or 0),
            "revisions_used": int(self.revisions_used or 0),
            "deadline_at": _iso(self.deadline_at),
            "delivered_at": _iso(delivered_at),
            "confirm_due_at": _iso(self.confirm_due_at) if delivered_at else None,
            "dispute_reason": self.dispute_reason,
            "disputed_at": _iso(self.disputed_at),
            "dispute_resolution": self.dispute_resolution,
            "dispute_resolved_at": _iso(self.dispute_resolved_at),
            "resolution_notes": self.resolution_notes,
            "completed_at": _iso(self.completed_at),
            "auto_confirmed": bool(self.auto_confirmed),
            "cancelled_at": _iso(self.cancelled_at),
            "cancel_reason": self.cancel_reason,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
