from escrowdesk.extensions import db
from escrowdesk.utils.clock import utcnow


class IdempotencyKey(db.Model):
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        db.UniqueConstraint("user_id", "key", name="uq_idempotency_user_key"),
    )

    id = db.Column(db.Integer, primary_key=True)

    key = db.Column(db.String(128), nullable=False)
    user_id = db.Column(db.Integer, nullable=True)
    route = db.Column(db.String(128), nullable=False, default="")
    request_hash = db.Column(db.String(64), nullable=False, default="")

    # NULL until the first call finishes.
    response_json = db.Column(db.Text, nullable=True)
    status_code = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime, nullable=False, default=utcnow)

    def to_dict(self):
        return {
            "id": int(self.id),
            "key": self.key,
            "user_id": int(self.user_id) if self.user_id is not None else None,
            "route": self.route,
            "request_hash": self.request_hash,
            "status_code": int(self.status_code) if self.status_code is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
