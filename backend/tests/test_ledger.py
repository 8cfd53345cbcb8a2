"""Escrow ledger: custody, settlement-once and money conservation."""

import pytest

from escrowdesk.errors import AlreadySettled, AmountMismatch, InsufficientFunds, InvalidState, ValidationError
from escrowdesk.extensions import db
from escrowdesk.models import DesignOrder, EscrowStatus, EscrowTransition, WalletTxn
from escrowdesk.services import ledger, orders
from escrowdesk.utils.money import MAX_MINOR, from_minor, to_minor


class TestMoney:
    def test_parses_decimal_strings(self):
        assert to_minor("100") == 10000
        assert to_minor("12.5") == 1250
        assert to_minor(0.1) == 10
        assert from_minor(6000) == "60.00"

    @pytest.mark.parametrize("raw", ["10.005", "abc", "", None, "-1", "0", "NaN"])
    def test_rejects_bad_amounts(self, raw):
        with pytest.raises(ValidationError):
            to_minor(raw)

    def test_zero_allowed_when_asked(self):
        assert to_minor("0", allow_zero=True) == 0

    def test_amount_must_fit_a_bigint_column(self):
        assert to_minor("92233720368547758.07") == MAX_MINOR
        for raw in ("92233720368547758.08", "100000000000000000", "1e400"):
            with pytest.raises(ValidationError):
                to_minor(raw)
        with pytest.raises(ValidationError):
            to_minor("100000000000000000", "seller_share", allow_zero=True)


class TestOpen:
    def test_open_holds_exact_order_amount(self, ctx, paid_order, buyer, wallet_of):
        order = paid_order("100.00")
        escrow = ledger.get_escrow(order.id)

        assert escrow.status == EscrowStatus.HOLDING
        assert escrow.held_minor == order.amount_minor == 10000
        # Captured funds went straight from spendable into escrow.
        assert wallet_of(buyer.id) == (0, 10000)

    def test_amount_mismatch_leaves_escrow_pending(self, ctx, buyer, seller, wallet_of):
        order = orders.create_order(buyer.id, seller.id, "svc-1", "100.00")

        with pytest.raises(AmountMismatch):
            ledger.open_escrow(order.id, 9999, "pay-short")

        assert ledger.get_escrow(order.id).status == EscrowStatus.PENDING
        assert wallet_of(buyer.id) == (0, 0)
        assert WalletTxn.query.count() == 0

    def test_reopen_with_same_reference_is_noop(self, ctx, buyer, seller, wallet_of):
        order = orders.create_order(buyer.id, seller.id, "svc-1", "100.00")
        ledger.open_escrow(order.id, 10000, "pay-abc")
        again = ledger.open_escrow(order.id, 10000, "pay-abc")

        assert again.status == EscrowStatus.HOLDING
        assert wallet_of(buyer.id) == (0, 10000)
        assert EscrowTransition.query.filter_by(order_id=order.id).count() == 1

    def test_reopen_with_other_reference_is_rejected(self, ctx, buyer, seller):
        order = orders.create_order(buyer.id, seller.id, "svc-1", "100.00")
        ledger.open_escrow(order.id, 10000, "pay-abc")

        with pytest.raises(InvalidState):
            ledger.open_escrow(order.id, 10000, "pay-other")

    def test_payment_reference_cannot_fund_two_orders(self, ctx, buyer, seller):
        first = orders.create_order(buyer.id, seller.id, "svc-1", "100.00")
        second = orders.create_order(buyer.id, seller.id, "svc-2", "100.00")
        ledger.open_escrow(first.id, 10000, "pay-shared")

        with pytest.raises(ValidationError):
            ledger.open_escrow(second.id, 10000, "pay-shared")

    def test_wallet_checkout_without_funds_creates_nothing(self, ctx, buyer, seller):
        with pytest.raises(InsufficientFunds):
            orders.create_order(buyer.id, seller.id, "svc-1", "100.00", fund_from_wallet=True)

        assert DesignOrder.query.count() == 0

    def test_wallet_checkout_uses_refunded_balance(self, ctx, paid_order, buyer, seller, wallet_of):
        refunded = paid_order("100.00")
        orders.cancel(refunded.id, buyer.id, "wrong brief")
        assert wallet_of(buyer.id) == (10000, 0)

        order = orders.create_order(buyer.id, seller.id, "svc-2", "40.00", fund_from_wallet=True)

        assert ledger.get_escrow(order.id).status == EscrowStatus.HOLDING
        assert wallet_of(buyer.id) == (6000, 4000)


class TestSettlement:
    def test_release_happens_once(self, ctx, paid_order, buyer, seller, wallet_of):
        order = paid_order("100.00")
        orders.accept(order.id, seller.id)
        orders.deliver(order.id, seller.id, "final files")
        orders.confirm_delivery(order.id, buyer.id)
        assert wallet_of(seller.id) == (10000, 0)

        with pytest.raises(AlreadySettled):
            ledger.release(order.id)
        with pytest.raises(AlreadySettled):
            ledger.refund(order.id)
        with pytest.raises(AlreadySettled):
            ledger.partial_resolve(order.id, 5000, 5000)

        assert wallet_of(seller.id) == (10000, 0)
        assert wallet_of(buyer.id) == (0, 0)

    def test_refund_returns_funds_to_spendable_balance(self, ctx, paid_order, buyer, wallet_of):
        order = paid_order("25.50")
        escrow = ledger.refund(order.id, notes="manual refund")

        assert escrow.status == EscrowStatus.REFUNDED
        assert escrow.buyer_share_minor == 2550
        assert wallet_of(buyer.id) == (2550, 0)

    def test_split_must_conserve_held_amount(self, ctx, paid_order, wallet_of, buyer):
        order = paid_order("100.00")

        with pytest.raises(AmountMismatch):
            ledger.partial_resolve(order.id, 6000, 3999)
        with pytest.raises(AmountMismatch):
            ledger.partial_resolve(order.id, 10001, -1)

        escrow = ledger.get_escrow(order.id)
        db.session.refresh(escrow)
        assert escrow.status == EscrowStatus.HOLDING
        assert wallet_of(buyer.id) == (0, 10000)

    def test_split_credits_both_parties(self, ctx, paid_order, buyer, seller, wallet_of):
        order = paid_order("100.00")
        escrow = ledger.partial_resolve(order.id, 6000, 4000, notes="half done")

        assert escrow.status == EscrowStatus.RELEASED
        assert escrow.settlement_kind == "split"
        assert wallet_of(seller.id) == (6000, 0)
        assert wallet_of(buyer.id) == (4000, 0)

    def test_every_custody_change_is_logged(self, ctx, paid_order):
        order = paid_order("100.00")
        ledger.refund(order.id)

        rows = ledger.list_transitions(order.id)
        assert [(r.from_status, r.to_status) for r in rows] == [
            (EscrowStatus.PENDING, EscrowStatus.HOLDING),
            (EscrowStatus.HOLDING, EscrowStatus.REFUNDED),
        ]
