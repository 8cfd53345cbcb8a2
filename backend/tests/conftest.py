"""Pytest configuration and fixtures."""

import itertools
from datetime import timedelta

import pytest
from sqlalchemy import select

from escrowdesk import create_app
from escrowdesk.extensions import db
from escrowdesk.models import User, Wallet
from escrowdesk.services import orders, risk
from escrowdesk.utils.clock import utcnow
from escrowdesk.utils.jwt_utils import create_access_token

TEST_CONFIG = {
    "TESTING": True,
    "ENV": "test",
    "SECRET_KEY": "test-only-secret-key-0123456789abcdef",
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "ESCROW_SWEEP_ON_REQUEST": False,
    "AUTO_CONFIRM_HOURS": 72,
    "DEFAULT_REVISIONS": 2,
    "DEFAULT_DELIVERY_DAYS": 3,
    "RISK_DISPUTE_WEIGHT": 0.7,
    "RISK_CANCEL_WEIGHT": 0.3,
    "RISK_HIGH_THRESHOLD": 50.0,
    "NEW_ACCOUNT_DAYS": 7,
    "WALLET_CURRENCY": "USD",
}

_seq = itertools.count(1)


@pytest.fixture()
def app():
    app = create_app(TEST_CONFIG)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()


@pytest.fixture()
def race_app(tmp_path):
    """File-backed database so two app contexts hold truly separate connections."""
    app = create_app({**TEST_CONFIG, "SQLALCHEMY_DATABASE_URI": f"sqlite:///{tmp_path / 'race.db'}"})
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


@pytest.fixture()
def race_parties(race_app):
    """Buyer, seller and admin ids in the file-backed database."""
    with race_app.app_context():
        return {role: create_user(role).id for role in ("buyer", "seller", "admin")}


@pytest.fixture()
def ctx(app):
    """Service-level tests run inside one application context."""
    with app.app_context():
        yield app


@pytest.fixture()
def client(app):
    return app.test_client()


def create_user(role="buyer", *, age_days=30, email_verified=True, phone_verified=True, country=None) -> User:
    n = next(_seq)
    user = User(
        name=f"{role} {n}",
        email=f"{role}{n}@example.com",
        phone=f"+1555{n:07d}",
        role=role,
        email_verified=email_verified,
        phone_verified=phone_verified,
        country=country,
        created_at=utcnow() - timedelta(days=age_days),
    )
    db.session.add(user)
    db.session.commit()
    return user


@pytest.fixture()
def make_user(ctx):
    return create_user


@pytest.fixture()
def buyer(make_user):
    return make_user("buyer")


@pytest.fixture()
def seller(make_user):
    return make_user("seller")


@pytest.fixture()
def admin(make_user):
    return make_user("admin")


@pytest.fixture()
def paid_order(buyer, seller):
    """Create an order whose payment capture has already been confirmed."""

    def _make(amount="100.00", *, buyer_user=None, seller_user=None, **kwargs):
        b = buyer_user or buyer
        s = seller_user or seller
        return orders.create_order(
            b.id,
            s.id,
            "svc-logo-design",
            amount,
            payment_reference=f"pay-{next(_seq)}",
            **kwargs,
        )

    return _make


@pytest.fixture()
def wallet_of(ctx):
    """(balance_minor, escrow_frozen_minor) read straight from the table."""

    def _read(user_id):
        row = db.session.execute(
            select(Wallet.balance_minor, Wallet.escrow_frozen_minor).where(Wallet.user_id == int(user_id))
        ).one()
        return int(row[0]), int(row[1])

    return _read


@pytest.fixture()
def high_risk_buyer(make_user, paid_order, admin):
    """A buyer with one cancelled order and one dispute lost to a refund (score 65)."""
    from escrowdesk.services import disputes

    b = make_user("buyer")
    other_seller = make_user("seller")
    first = paid_order(buyer_user=b, seller_user=other_seller)
    orders.cancel(first.id, b.id, "changed my mind")
    second = paid_order(buyer_user=b, seller_user=other_seller)
    orders.accept(second.id, other_seller.id)
    orders.open_dispute(second.id, b.id, "never started")
    disputes.resolve_dispute(second.id, "buyer", "seller unresponsive", admin.id)
    score = risk.get_risk_score(b.id)
    assert score.is_high_risk
    return b


@pytest.fixture()
def auth_headers(app):
    def _headers(user_id):
        with app.app_context():
            token = create_access_token(int(user_id))
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture()
def api_users(app):
    """Buyer, seller and admin ids created outside any request."""
    with app.app_context():
        return {
            "buyer": create_user("buyer").id,
            "seller": create_user("seller").id,
            "admin": create_user("admin").id,
        }
