"""HTTP surface: auth, error envelopes, idempotent retries."""

import pytest

from escrowdesk.extensions import db
from escrowdesk.models import DesignOrder, User


@pytest.fixture()
def call(client, auth_headers):
    def _call(method, path, user_id=None, json=None, key=None):
        headers = auth_headers(user_id) if user_id is not None else {}
        if key:
            headers["Idempotency-Key"] = key
        return client.open(path, method=method, json=json, headers=headers)

    return _call


def _new_order(call, users, amount="100.00", **extra):
    body = {"seller_id": users["seller"], "service_id": "svc-brand-kit", "amount": amount, **extra}
    res = call("POST", "/api/orders", users["buyer"], body)
    assert res.status_code == 201, res.get_json()
    return res.get_json()["order"]["id"]


def _captured_order(call, users, amount="100.00"):
    order_id = _new_order(call, users, amount)
    res = call("POST", f"/api/orders/{order_id}/capture", users["admin"], {"payment_reference": f"gw-{order_id}", "amount": amount})
    assert res.status_code == 200, res.get_json()
    return order_id


def test_health(client):
    res = client.get("/api/health")
    assert res.status_code == 200
    assert res.get_json()["db"] == "ok"


def test_requires_bearer_token(call, api_users):
    res = call("POST", "/api/orders", json={"seller_id": api_users["seller"]})
    assert res.status_code == 401
    assert res.get_json()["error"] == "unauthorized"

    res = call("GET", "/api/orders/my")
    assert res.status_code == 401


def test_full_order_flow(call, api_users):
    u = api_users
    order_id = _captured_order(call, u)

    res = call("GET", f"/api/orders/{order_id}/escrow", u["buyer"])
    assert res.get_json()["escrow"]["status"] == "holding"
    assert res.get_json()["escrow"]["held_amount"] == "100.00"

    assert call("POST", f"/api/orders/{order_id}/accept", u["seller"]).status_code == 200
    res = call("POST", f"/api/orders/{order_id}/deliver", u["seller"], {"note": "brand kit v1"})
    assert res.get_json()["order"]["status"] == "delivered"

    res = call("POST", f"/api/orders/{order_id}/confirm", u["buyer"])
    assert res.status_code == 200
    assert res.get_json()["order"]["status"] == "completed"

    wallet = call("GET", "/api/wallet", u["seller"]).get_json()["wallet"]
    assert wallet["balance"] == "100.00"
    assert wallet["escrow_frozen"] == "0.00"

    txns = call("GET", "/api/wallet/txns", u["seller"]).get_json()["items"]
    assert [t["kind"] for t in txns] == ["escrow_release"]

    escrow = call("GET", f"/api/orders/{order_id}/escrow", u["buyer"]).get_json()
    assert escrow["escrow"]["status"] == "released"
    assert len(escrow["transitions"]) == 2

    events = call("GET", f"/api/orders/{order_id}/timeline", u["buyer"]).get_json()["items"]
    assert events[0]["event"] == "created"
    assert events[-1]["event"] == "confirmed"

    mine = call("GET", "/api/orders/my?as=seller", u["seller"]).get_json()["items"]
    assert [o["id"] for o in mine] == [order_id]


def test_idempotent_create_replays(app, call, api_users):
    u = api_users
    body = {"seller_id": u["seller"], "service_id": "svc-1", "amount": "42.00"}

    first = call("POST", "/api/orders", u["buyer"], body, key="checkout-1")
    second = call("POST", "/api/orders", u["buyer"], body, key="checkout-1")

    assert first.status_code == second.status_code == 201
    assert first.get_json()["order"]["id"] == second.get_json()["order"]["id"]
    with app.app_context():
        assert DesignOrder.query.count() == 1

    changed = call("POST", "/api/orders", u["buyer"], {**body, "amount": "43.00"}, key="checkout-1")
    assert changed.status_code == 409
    assert changed.get_json()["error"] == "idempotency_conflict"


def test_idempotent_error_is_replayed(call, api_users):
    u = api_users
    body = {"seller_id": u["seller"], "service_id": "svc-1", "amount": "1.005"}

    first = call("POST", "/api/orders", u["buyer"], body, key="bad-amount")
    again = call("POST", "/api/orders", u["buyer"], body, key="bad-amount")

    assert first.status_code == again.status_code == 400
    assert again.get_json() == first.get_json()


def test_error_envelopes(call, api_users, app):
    u = api_users
    order_id = _captured_order(call, u)
    with app.app_context():
        stranger = User(name="other seller", email="other-seller@example.com", role="seller")
        db.session.add(stranger)
        db.session.commit()
        stranger_id = stranger.id

    res = call("POST", f"/api/orders/{order_id}/accept", stranger_id)
    assert res.status_code == 403
    assert res.get_json()["error"] == "forbidden"

    res = call("POST", f"/api/orders/{order_id}/confirm", u["buyer"])
    assert res.status_code == 409
    assert res.get_json()["error"] == "invalid_state"

    res = call("POST", "/api/orders", u["buyer"], {"seller_id": u["seller"], "service_id": "svc", "amount": "10.001"})
    assert res.status_code == 400
    assert res.get_json()["error"] == "validation_error"

    res = call("GET", "/api/orders/999999", u["buyer"])
    assert res.status_code == 404
    assert res.get_json()["error"] == "not_found"

    res = call("GET", "/api/does-not-exist", u["buyer"])
    assert res.status_code == 404
    assert res.get_json()["ok"] is False


def test_admission_denied(call, api_users):
    u = api_users
    res = call("PUT", "/api/seller/risk-policy", u["seller"], {"block_new_buyers": True, "new_buyer_threshold_days": 60})
    assert res.status_code == 200
    assert res.get_json()["policy"]["new_buyer_threshold_days"] == 60

    preview = call("GET", f"/api/sellers/{u['seller']}/admission", u["buyer"]).get_json()
    assert preview["admitted"] is False
    assert preview["reason"] == "account_too_new"

    res = call("POST", "/api/orders", u["buyer"], {"seller_id": u["seller"], "service_id": "svc", "amount": "10.00"})
    assert res.status_code == 422
    body = res.get_json()
    assert body["error"] == "admission_denied"
    assert body["reason"] == "account_too_new"


def test_buyer_cannot_set_policy(call, api_users):
    res = call("PUT", "/api/seller/risk-policy", api_users["buyer"], {"block_new_buyers": True})
    assert res.status_code == 403


def test_capture_is_admin_only(call, api_users):
    u = api_users
    order_id = _new_order(call, u)
    res = call("POST", f"/api/orders/{order_id}/capture", u["buyer"], {"payment_reference": "gw-x", "amount": "100.00"})
    assert res.status_code == 403


def test_dispute_resolution_over_http(call, api_users):
    u = api_users
    order_id = _captured_order(call, u)
    call("POST", f"/api/orders/{order_id}/accept", u["seller"])

    res = call("POST", f"/api/orders/{order_id}/dispute", u["buyer"], {"reason": "not as described"})
    assert res.get_json()["order"]["status"] == "disputed"

    queue = call("GET", "/api/admin/disputes", u["admin"]).get_json()["items"]
    assert [o["id"] for o in queue] == [order_id]

    res = call("POST", f"/api/admin/orders/{order_id}/resolve", u["buyer"], {"action": "buyer"})
    assert res.status_code == 403

    res = call("POST", f"/api/admin/orders/{order_id}/resolve", u["admin"], {"action": "split", "seller_share": "60"})
    assert res.status_code == 200
    settlement = res.get_json()["settlement"]
    assert (settlement["seller_amount"], settlement["buyer_amount"]) == ("60.00", "40.00")

    res = call("POST", f"/api/admin/orders/{order_id}/resolve", u["admin"], {"action": "seller"})
    assert res.status_code == 409
    assert res.get_json()["message"] == "order already resolved"

    stored = call("GET", f"/api/admin/orders/{order_id}/resolution", u["admin"]).get_json()["settlement"]
    assert stored["resolution"] == "split"

    assert call("GET", "/api/wallet", u["buyer"]).get_json()["wallet"]["balance"] == "40.00"


def test_admin_jobs(call, api_users):
    u = api_users
    assert call("POST", "/api/admin/jobs/escrow-sweep", u["seller"]).status_code == 403

    sweep = call("POST", "/api/admin/jobs/escrow-sweep", u["admin"]).get_json()
    assert sweep["ok"] and sweep["processed"] == 0

    recon = call("POST", "/api/admin/jobs/reconcile", u["admin"]).get_json()
    assert recon["anomalies"] == 0
    assert recon["escrow_balanced"]


def test_oversized_amounts_are_rejected(call, api_users):
    u = api_users
    huge = "100000000000000000"
    res = call("POST", "/api/orders", u["buyer"], {"seller_id": u["seller"], "service_id": "svc", "amount": huge})
    assert res.status_code == 400
    assert res.get_json()["error"] == "validation_error"

    order_id = _new_order(call, u)
    res = call("POST", f"/api/orders/{order_id}/capture", u["admin"], {"payment_reference": "gw-huge", "amount": huge})
    assert res.status_code == 400
    assert res.get_json()["error"] == "validation_error"


def test_list_limits_are_validated(call, api_users):
    u = api_users
    res = call("GET", "/api/admin/disputes?limit=abc", u["admin"])
    assert res.status_code == 400
    assert res.get_json()["error"] == "validation_error"

    assert call("GET", "/api/admin/disputes?limit=-5", u["admin"]).status_code == 200
    assert call("GET", "/api/admin/disputes?limit=100000", u["admin"]).status_code == 200

    assert call("GET", "/api/wallet/txns?limit=x", u["buyer"]).status_code == 400
    assert call("GET", "/api/admin/audit?limit=1.5", u["admin"]).status_code == 400
    assert call("POST", "/api/admin/jobs/escrow-sweep", u["admin"], {"limit": "lots"}).status_code == 400
    assert call("POST", "/api/admin/jobs/reconcile", u["admin"], [1, 2]).status_code == 400
