from flask_login import UserMixin

from escrowdesk.extensions import db
from escrowdesk.utils.clock import utcnow


class User(db.Model, UserMixin):
    """Identity projection owned by the accounts service; read-only here."""

    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False, default="")
    email = db.Column(db.String(255), unique=True, index=True, nullable=False)
    phone = db.Column(db.String(32), unique=True, index=True, nullable=True)

    role = db.Column(db.String(32), nullable=False, default="buyer")

    email_verified = db.Column(db.Boolean, nullable=False, default=False)
    phone_verified = db.Column(db.Boolean, nullable=False, default=False)
    # ISO 3166-1 alpha-2
    country = db.Column(db.String(2), nullable=True)

    created_at = db.Column(db.DateTime, default=utcnow, nullable=False)

    @property
    def is_admin(self) -> bool:
        return (self.role or "").strip().lower() == "admin"

    def account_age_days(self, now=None) -> int:
        if not self.created_at:
            return 0
        delta = (now or utcnow()) - self.created_at
        return max(0, delta.days)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role or "buyer",
            "email_verified": bool(self.email_verified),
            "phone_verified": bool(self.phone_verified),
            "country": self.country,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
