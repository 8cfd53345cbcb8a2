"""Buyer risk scoring, seller admission policy and delivery gating."""

from datetime import timedelta

import pytest

from escrowdesk.errors import BuyerBlocked, Forbidden, InvalidState, ValidationError
from escrowdesk.models import BuyerRiskScore, DesignOrder, OrderStatus
from escrowdesk.services import orders, risk
from escrowdesk.utils.clock import utcnow


def _blocked_reason(buyer_id, seller_id):
    with pytest.raises(BuyerBlocked) as exc:
        orders.create_order(buyer_id, seller_id, "svc-1", "50.00")
    return exc.value.reason


class TestScore:
    def test_no_orders_scores_zero(self, ctx, buyer):
        score = risk.compute_score(buyer.id)
        assert score.risk_score == 0.0
        assert not score.is_high_risk
        assert score.risk_factors is not None
        assert score.factors() == []

    def test_weighted_rates(self, ctx, high_risk_buyer):
        score = risk.get_risk_score(high_risk_buyer.id)
        # 2 orders: 1 disputed, 2 cancelled -> 0.7 * 50 + 0.3 * 100
        assert score.total_orders == 2
        assert score.risk_score == 65.0
        assert "high dispute rate" in score.factors()
        assert "frequent cancellations" in score.factors()

    def test_score_from_stats_is_capped(self, ctx):
        stats = {"total_orders": 1, "disputed_orders": 3, "cancelled_orders": 3}
        assert risk.score_from_stats(stats) == 100.0

    def test_unverified_new_account_factors(self, ctx, make_user):
        user = make_user("buyer", age_days=2, email_verified=False, phone_verified=False)
        factors = risk.compute_score(user.id).factors()
        assert factors == ["new account", "email not verified", "phone not verified"]

    def test_completion_keeps_score_fresh(self, ctx, paid_order, buyer, seller):
        order = paid_order()
        orders.accept(order.id, seller.id)
        orders.deliver(order.id, seller.id)
        orders.confirm_delivery(order.id, buyer.id)

        score = risk.get_risk_score(buyer.id)
        assert score.total_orders == 1
        assert score.completed_orders == 1
        assert score.risk_score == 0.0

    def test_checkout_creates_the_score_row_once(self, ctx, paid_order, buyer, seller):
        first = paid_order()
        second = paid_order()
        # The row exists before any terminal transition needs to update it.
        assert BuyerRiskScore.query.filter_by(buyer_id=buyer.id).count() == 1

        for order in (first, second):
            orders.accept(order.id, seller.id)
            orders.deliver(order.id, seller.id)
            orders.confirm_delivery(order.id, buyer.id)

        rows = BuyerRiskScore.query.filter_by(buyer_id=buyer.id).all()
        assert len(rows) == 1
        assert rows[0].completed_orders == 2

    def test_ensure_score_keeps_the_existing_row(self, ctx, buyer):
        created = risk.ensure_score(buyer.id)
        assert risk.ensure_score(buyer.id).id == created.id
        assert BuyerRiskScore.query.filter_by(buyer_id=buyer.id).count() == 1


class TestPolicy:
    def test_only_sellers_have_policies(self, ctx, buyer):
        with pytest.raises(Forbidden):
            risk.upsert_policy(buyer.id, {"block_new_buyers": True})

    @pytest.mark.parametrize(
        "fields",
        [
            {"block_new_buyers": "yes"},
            {"delay_minutes": -1},
            {"max_concurrent_orders": "many"},
            {"blacklisted_countries": ["Nigeria"]},
            {"blacklisted_countries": 42},
        ],
    )
    def test_invalid_fields(self, ctx, seller, fields):
        with pytest.raises(ValidationError):
            risk.upsert_policy(seller.id, fields)
        assert risk.get_policy(seller.id) is None

    def test_upsert_is_partial(self, ctx, seller):
        risk.upsert_policy(seller.id, {"block_new_buyers": True, "new_buyer_threshold_days": 14})
        policy = risk.upsert_policy(seller.id, {"blacklisted_countries": "ng, GH,ng"})

        assert policy.block_new_buyers is True
        assert policy.new_buyer_threshold_days == 14
        assert policy.countries() == ["NG", "GH"]


class TestAdmission:
    def test_no_policy_admits(self, ctx, make_user, seller):
        newbie = make_user("buyer", age_days=0, email_verified=False)
        assert risk.admit_order(newbie.id, seller.id) is True

    def test_new_account_blocked(self, ctx, make_user, seller):
        risk.upsert_policy(seller.id, {"block_new_buyers": True, "new_buyer_threshold_days": 7})
        newbie = make_user("buyer", age_days=3)

        assert _blocked_reason(newbie.id, seller.id) == "account_too_new"
        assert DesignOrder.query.count() == 0

    def test_threshold_day_is_admitted(self, ctx, make_user, seller):
        risk.upsert_policy(seller.id, {"block_new_buyers": True, "new_buyer_threshold_days": 7})
        assert risk.admit_order(make_user("buyer", age_days=7).id, seller.id)

    def test_first_failing_check_wins(self, ctx, make_user, seller):
        risk.upsert_policy(
            seller.id,
            {
                "block_new_buyers": True,
                "require_email_verified": True,
                "require_phone_verified": True,
            },
        )
        user = make_user("buyer", age_days=1, email_verified=False, phone_verified=False)
        assert _blocked_reason(user.id, seller.id) == "account_too_new"

        risk.upsert_policy(seller.id, {"block_new_buyers": False})
        assert _blocked_reason(user.id, seller.id) == "email_not_verified"

    def test_phone_verification(self, ctx, make_user, seller):
        risk.upsert_policy(seller.id, {"require_phone_verified": True})
        assert _blocked_reason(make_user("buyer", phone_verified=False).id, seller.id) == "phone_not_verified"

    def test_dispute_allowance_is_inclusive(self, ctx, high_risk_buyer, seller):
        risk.upsert_policy(seller.id, {"block_disputed_buyers": True, "max_disputes_allowed": 1})
        assert risk.admit_order(high_risk_buyer.id, seller.id)

        risk.upsert_policy(seller.id, {"max_disputes_allowed": 0})
        assert _blocked_reason(high_risk_buyer.id, seller.id) == "too_many_disputes"

    def test_concurrent_order_cap(self, ctx, paid_order, buyer, seller, make_user):
        risk.upsert_policy(seller.id, {"max_concurrent_orders": 1})
        first = paid_order()
        assert _blocked_reason(buyer.id, seller.id) == "too_many_open_orders"

        # The cap is per seller.
        other = make_user("seller")
        assert paid_order(seller_user=other).status == OrderStatus.PENDING_ACCEPT

        orders.cancel(first.id, buyer.id)
        assert paid_order().status == OrderStatus.PENDING_ACCEPT

    def test_minimum_completed_orders(self, ctx, buyer, seller):
        risk.upsert_policy(seller.id, {"min_buyer_completed_orders": 2})
        with pytest.raises(BuyerBlocked) as exc:
            risk.admit_order(buyer.id, seller.id)
        assert exc.value.reason == "not_enough_completed_orders"
        assert exc.value.message == "at least 2 completed orders required"

    def test_blacklisted_country(self, ctx, make_user, seller):
        risk.upsert_policy(seller.id, {"blacklisted_countries": ["ng"]})
        assert _blocked_reason(make_user("buyer", country="NG").id, seller.id) == "country_not_accepted"
        assert risk.admit_order(make_user("buyer", country="KE").id, seller.id)
        assert risk.admit_order(make_user("buyer").id, seller.id)


class TestDeliveryGate:
    def test_risky_buyer_sees_delivery_late(self, ctx, high_risk_buyer, make_user, paid_order):
        seller = make_user("seller")
        risk.upsert_policy(seller.id, {"delay_delivery_for_risky": True, "delay_minutes": 60})
        t0 = utcnow()

        order = paid_order(buyer_user=high_risk_buyer, seller_user=seller, now=t0)
        orders.accept(order.id, seller.id, now=t0)
        delivered = orders.deliver(order.id, seller.id, "final", now=t0)

        assert delivered.delivered_at == t0
        assert delivered.delivery_delay_minutes == 60
        assert delivered.visible_delivered_at == t0 + timedelta(minutes=60)
        assert delivered.confirm_due_at == t0 + timedelta(minutes=60, hours=72)

        early = t0 + timedelta(minutes=30)
        assert delivered.to_dict(high_risk_buyer.id, early)["status"] == OrderStatus.IN_PROGRESS
        assert delivered.to_dict(high_risk_buyer.id, early)["delivered_at"] is None
        assert delivered.to_dict(seller.id, early)["status"] == OrderStatus.DELIVERED
        assert [e.event for e in orders.get_timeline(order.id, high_risk_buyer.id, now=early)] == ["created", "accepted"]
        with pytest.raises(InvalidState):
            orders.confirm_delivery(order.id, high_risk_buyer.id, now=early)

        later = t0 + timedelta(minutes=61)
        assert delivered.to_dict(high_risk_buyer.id, later)["status"] == OrderStatus.DELIVERED
        assert orders.confirm_delivery(order.id, high_risk_buyer.id, now=later).status == OrderStatus.COMPLETED

    def test_low_risk_buyer_is_not_delayed(self, ctx, paid_order, buyer, seller):
        risk.upsert_policy(seller.id, {"delay_delivery_for_risky": True, "delay_minutes": 60})
        order = paid_order()
        orders.accept(order.id, seller.id)
        delivered = orders.deliver(order.id, seller.id)

        assert delivered.delivery_delay_minutes == 0
        assert delivered.visible_delivered_at == delivered.delivered_at

    def test_deferred_delivery_is_not_revealed_by_errors(self, ctx, high_risk_buyer, make_user, paid_order, wallet_of):
        seller = make_user("seller")
        risk.upsert_policy(seller.id, {"delay_delivery_for_risky": True, "delay_minutes": 60})
        t0 = utcnow()
        order = paid_order(buyer_user=high_risk_buyer, seller_user=seller, now=t0)
        orders.accept(order.id, seller.id, now=t0)
        orders.deliver(order.id, seller.id, "final", now=t0)
        early = t0 + timedelta(minutes=5)

        for attempt in (
            lambda: orders.cancel(order.id, high_risk_buyer.id, "changed my mind", now=early),
            lambda: orders.confirm_delivery(order.id, high_risk_buyer.id, now=early),
            lambda: orders.request_revision(order.id, high_risk_buyer.id, "tweak", now=early),
        ):
            with pytest.raises(InvalidState) as exc:
                attempt()
            assert "deliver" not in exc.value.message.lower()

        assert orders.get_order(order.id).status == OrderStatus.DELIVERED
        assert wallet_of(high_risk_buyer.id)[1] == 10000


def test_score_row_insert_race_keeps_one_row(race_app, race_parties, monkeypatch):
    buyer_id = race_parties["buyer"]
    real_factors = risk._factors
    rival = []

    def factors_after_rival(*args):
        if not rival:
            rival.append("started")
            # The rival inserts the row between this unit's lookup and its commit.
            with race_app.app_context():
                rival.append(risk.ensure_score(buyer_id).id)
        return real_factors(*args)

    monkeypatch.setattr(risk, "_factors", factors_after_rival)

    with race_app.app_context():
        row = risk.ensure_score(buyer_id)
        assert row.id == rival[1]
        assert BuyerRiskScore.query.filter_by(buyer_id=buyer_id).count() == 1
