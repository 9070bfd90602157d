import pytest

from storefront import models


@pytest.fixture
def pending_order(client, make_user, bearer, make_product, db_session):
    user = make_user("owner")
    headers = bearer(user)
    product = make_product(price="19.99")
    r = client.post("/checkout", json={"items": [{"id": product.id, "quantity": 2}]}, headers=headers)
    assert r.status_code == 200
    order = db_session.query(models.Order).one()
    return order, headers


def test_signed_completion_marks_paid(client, pending_order, signed_event):
    order, headers = pending_order
    body, sig = signed_event("checkout.session.completed", order.external_session_id)
    r = client.post("/webhooks/payment", content=body, headers=sig)
    assert r.status_code == 200
    assert r.json() == {"received": True, "order_id": order.id, "status": "paid"}

    r = client.get("/orders", headers=headers)
    assert r.json()[0]["status"] == "paid"
    assert r.json()[0]["total"] == "39.98"


def test_replayed_completion_applies_once(client, db_session, pending_order, signed_event):
    order, _ = pending_order
    body, sig = signed_event("checkout.session.completed", order.external_session_id)
    for _ in range(3):
        r = client.post("/webhooks/payment", content=body, headers=sig)
        assert r.status_code == 200
        assert r.json()["status"] == "paid"
    assert db_session.query(models.Order).filter_by(external_session_id=order.external_session_id).count() == 1


def test_bad_signature_changes_nothing(client, db_session, pending_order, signed_event):
    order, _ = pending_order
    body, sig = signed_event("checkout.session.completed", order.external_session_id, secret_override="whsec_forged")
    r = client.post("/webhooks/payment", content=body, headers=sig)
    assert r.status_code == 400
    assert r.json()["error"] == "invalid_signature"

    r = client.post("/webhooks/payment", content=body, headers={"Content-Type": "application/json"})
    assert r.status_code == 400

    db_session.refresh(order)
    assert order.status == models.ORDER_PENDING


def test_expired_session_cancels_order(client, db_session, pending_order, signed_event):
    order, _ = pending_order
    body, sig = signed_event("checkout.session.expired", order.external_session_id, payment_status="unpaid")
    r = client.post("/webhooks/payment", content=body, headers=sig)
    assert r.json()["status"] == "cancelled"


def test_unknown_session_is_acknowledged(client, signed_event):
    body, sig = signed_event("checkout.session.completed", "cs_never_seen")
    r = client.post("/webhooks/payment", content=body, headers=sig)
    assert r.status_code == 200
    assert r.json()["order_id"] is None


def test_owner_cancels_pending_order(client, gateway, pending_order):
    order, headers = pending_order
    r = client.post(f"/orders/{order.id}/cancel", headers=headers)
    assert r.status_code == 200
    assert r.json()["status"] == "cancelled"
    assert gateway.expired == [order.external_session_id]

    # cancelled is terminal
    r = client.post(f"/orders/{order.id}/cancel", headers=headers)
    assert r.status_code == 409
    assert r.json()["error"] == "invalid_transition"


def test_cannot_cancel_paid_order(client, pending_order, signed_event):
    order, headers = pending_order
    body, sig = signed_event("checkout.session.completed", order.external_session_id)
    client.post("/webhooks/payment", content=body, headers=sig)
    r = client.post(f"/orders/{order.id}/cancel", headers=headers)
    assert r.status_code == 409


def test_cancel_requires_owner(client, make_user, bearer, pending_order):
    order, _ = pending_order
    other = bearer(make_user("stranger"))
    assert client.post(f"/orders/{order.id}/cancel", headers=other).status_code == 404
    assert client.post(f"/orders/{order.id}/cancel").status_code == 401


def test_cancel_keeps_order_pending_when_gateway_fails(client, gateway, db_session, pending_order):
    order, headers = pending_order
    gateway.fail_expire = True
    r = client.post(f"/orders/{order.id}/cancel", headers=headers)
    assert r.status_code == 502
    db_session.refresh(order)
    assert order.status == models.ORDER_PENDING


def test_orders_are_private(client, make_user, bearer, pending_order):
    other = bearer(make_user("nosy"))
    r = client.get("/orders", headers=other)
    assert r.status_code == 200
    assert r.json() == []
    assert client.get("/orders").status_code == 401
