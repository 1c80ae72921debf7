import hashlib
import hmac
import json
import time
from urllib.parse import parse_qs, urlparse

import httpx
import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from conftest import auth, run_db
from retrohall.model import admins
from retrohall.payments import StripeCheckout
from retrohall.server import create_app


def place_order(client, make_product, user_id, **product):
    p = make_product(**product)
    return client.post(
        "/api/orders", json={"product_id": p["id"]}, headers=auth(user_id)
    ).json()["order_id"]


def post_event(client, mockpay, event):
    payload = json.dumps(event).encode()
    return client.post(
        "/payments/webhook",
        content=payload,
        headers={
            "x-mockpay-signature": mockpay.sign(payload),
            "content-type": "application/json",
        },
    )


def test_checkout_session_saved_on_order(client, make_product, user_id):
    oid = place_order(client, make_product, user_id)
    r = client.post(f"/api/orders/{oid}/checkout", headers=auth(user_id))
    assert r.status_code == 200
    body = r.json()
    assert body["id"].startswith("mock_")
    assert body["url"] == f"/mockpay/{body['id']}"

    order = client.get(f"/api/orders/{oid}", headers=auth(user_id)).json()
    assert order["checkout_session_id"] == body["id"]
    assert order["checkout_url"] == body["url"]


def test_checkout_rejects_non_pending_and_free(
    client, make_product, staff, user_id
):
    free = place_order(client, make_product, user_id, price=0)
    r = client.post(f"/api/orders/{free}/checkout", headers=auth(user_id))
    assert r.status_code == 400
    assert r.json()["detail"] == "Order total must be > 0"

    oid = place_order(client, make_product, user_id)
    client.post(f"/api/orders/{oid}/cancel", headers=auth(user_id))
    r = client.post(f"/api/orders/{oid}/checkout", headers=auth(user_id))
    assert r.status_code == 400
    assert "got cancelled" in r.json()["detail"]

    r = client.post("/api/orders/missing/checkout", headers=auth(user_id))
    assert r.status_code == 404


def test_webhook_pays_order_once(client, mockpay, make_product, user_id):
    oid = place_order(client, make_product, user_id)
    psid = client.post(
        f"/api/orders/{oid}/checkout", headers=auth(user_id)
    ).json()["id"]

    event = mockpay.build_event("completed", psid, oid, user_id)
    r = post_event(client, mockpay, event)
    assert r.json() == {"ok": True, "order_status": "paid"}

    order = client.get(f"/api/orders/{oid}", headers=auth(user_id)).json()
    assert order["status"] == "paid"
    assert order["paid_at"] is not None
    assert order["payment_intent_id"].startswith("pi_mock_")

    # replay of the same event
    r = post_event(client, mockpay, event)
    assert r.json() == {"ok": True, "idempotent": True}

    # a second, distinct completion does not pay twice
    again = mockpay.build_event("completed", psid, oid, user_id)
    r = post_event(client, mockpay, again)
    assert r.json()["ignored"] is True
    order2 = client.get(f"/api/orders/{oid}", headers=auth(user_id)).json()
    assert order2["paid_at"] == order["paid_at"]
    assert order2["payment_intent_id"] == order["payment_intent_id"]


def test_webhook_session_of_another_order_conflicts(
    client, mockpay, make_product, user_id
):
    a = place_order(client, make_product, user_id)
    b = place_order(client, make_product, user_id)
    psid_a = client.post(
        f"/api/orders/{a}/checkout", headers=auth(user_id)
    ).json()["id"]
    psid_b = client.post(
        f"/api/orders/{b}/checkout", headers=auth(user_id)
    ).json()["id"]

    crossed = mockpay.build_event("completed", psid_a, b, user_id)
    r = post_event(client, mockpay, crossed)
    assert r.status_code == 409
    order = client.get(f"/api/orders/{b}", headers=auth(user_id)).json()
    assert order["status"] == "pending"
    assert order["checkout_session_id"] == psid_b

    # the event was not recorded, so a redelivery is not swallowed
    assert post_event(client, mockpay, crossed).status_code == 409

    ok = mockpay.build_event("completed", psid_b, b, user_id)
    r = post_event(client, mockpay, ok)
    assert r.json() == {"ok": True, "order_status": "paid"}


def test_webhook_never_revives_cancelled_order(
    client, mockpay, make_product, user_id
):
    oid = place_order(client, make_product, user_id)
    psid = client.post(
        f"/api/orders/{oid}/checkout", headers=auth(user_id)
    ).json()["id"]
    client.post(f"/api/orders/{oid}/cancel", headers=auth(user_id))

    r = post_event(
        client, mockpay, mockpay.build_event("completed", psid, oid, user_id)
    )
    assert r.json()["order_status"] == "cancelled"
    order = client.get(f"/api/orders/{oid}", headers=auth(user_id)).json()
    assert order["status"] == "cancelled"


def test_webhook_expired_clears_checkout_url(
    client, mockpay, make_product, user_id
):
    oid = place_order(client, make_product, user_id)
    psid = client.post(
        f"/api/orders/{oid}/checkout", headers=auth(user_id)
    ).json()["id"]

    r = post_event(
        client, mockpay, mockpay.build_event("expired", psid, oid, user_id)
    )
    assert r.json()["order_status"] == "pending"
    order = client.get(f"/api/orders/{oid}", headers=auth(user_id)).json()
    assert order["status"] == "pending"
    assert order["checkout_url"] is None


def test_webhook_bad_signature(client, mockpay, make_product, user_id):
    oid = place_order(client, make_product, user_id)
    payload = json.dumps(
        mockpay.build_event("completed", "mock_x", oid, user_id)
    ).encode()
    r = client.post(
        "/payments/webhook",
        content=payload,
        headers={"x-mockpay-signature": "Zm9vYmFy"},
    )
    assert r.status_code == 400
    r = client.post("/payments/webhook", content=payload)
    assert r.status_code == 400


def test_webhook_other_kinds_acknowledged(client, mockpay):
    event = {"id": "evt_1", "type": "payment_intent.created", "data": {}}
    r = post_event(client, mockpay, event)
    assert r.json() == {"ok": True, "ignored": True}


def test_return_shim_redirects_into_app(client):
    r = client.get(
        "/payments/return",
        params={"order_id": "o 1", "result": "success", "session_id": "cs_1"},
        follow_redirects=False,
    )
    assert r.status_code == 302
    assert r.headers["cache-control"] == "no-store"
    loc = r.headers["location"]
    assert loc.startswith("myapp://orders/return?")
    q = parse_qs(urlparse(loc).query)
    assert q == {"order_id": ["o 1"], "result": ["success"],
                 "session_id": ["cs_1"]}


def test_mockpay_page_and_emit(client, app, make_product, user_id):
    oid = place_order(client, make_product, user_id, price=12.5)
    psid = client.post(
        f"/api/orders/{oid}/checkout", headers=auth(user_id)
    ).json()["id"]

    page = client.get(f"/mockpay/{psid}")
    assert page.status_code == 200
    assert oid in page.text
    assert "12.50" in page.text

    # deliver the webhook back into the same app
    client.portal.call(app.state.http.aclose)
    app.state.http = httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://testserver"
    )
    r = client.post(
        f"/mockpay/{psid}/emit", data={"t": "completed"},
        follow_redirects=False,
    )
    assert r.status_code == 303
    assert r.headers["location"].startswith("/payments/return?")
    assert "result=success" in r.headers["location"]

    order = client.get(f"/api/orders/{oid}", headers=auth(user_id)).json()
    assert order["status"] == "paid"

    assert client.get("/mockpay/mock_unknown").status_code == 404
    assert client.post(
        f"/mockpay/{psid}/emit", data={"t": "refund"}
    ).status_code == 400


# ----------------------------
# Stripe
# ----------------------------
WHSEC = "whsec_test"


def stripe_sig(payload: bytes, ts=None, secret=WHSEC) -> str:
    ts = int(time.time()) if ts is None else ts
    mac = hmac.new(
        secret.encode(), f"{ts}.".encode() + payload, hashlib.sha256
    ).hexdigest()
    return f"t={ts},v1={mac}"


@pytest.fixture
def stripe():
    return StripeCheckout(
        api_key="sk_test_123",
        webhook_secret=WHSEC,
        api_url="https://stripe.test",
        currency="usd",
    )


def test_stripe_verify_webhook(stripe):
    payload = b'{"id": "evt_1", "type": "checkout.session.completed"}'
    event = stripe.verify_webhook(
        payload, {"stripe-signature": stripe_sig(payload)}
    )
    assert stripe.event_kind(event) == "completed"

    with pytest.raises(HTTPException) as e:
        stripe.verify_webhook(
            payload, {"stripe-signature": stripe_sig(payload, secret="x")}
        )
    assert e.value.status_code == 400

    with pytest.raises(HTTPException) as e:
        stripe.verify_webhook(
            payload,
            {"stripe-signature": stripe_sig(payload, ts=int(time.time()) - 600)},
        )
    assert e.value.detail == "Signature expired"


def test_stripe_checkout_flow(tmp_path, stripe):
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["form"] = parse_qs(request.content.decode())
        seen["auth"] = request.headers.get("authorization")
        return httpx.Response(
            200, json={"id": "cs_test_1", "url": "https://pay.test/cs_test_1"}
        )

    app = create_app(
        database_url=f"sqlite:///{tmp_path / 'stripe.db'}",
        adapter=stripe,
        notify_backend="memory",
    )
    with TestClient(app) as client:
        run_db(client, admins.promote, "staff-1", "staff")
        p = client.post(
            "/api/admin/products",
            json={"title": "EarthBound", "system": "SNES",
                  "category": "Games", "price": 199.995, "stock_qty": 1},
            headers=auth("staff-1"),
        ).json()
        oid = client.post(
            "/api/orders", json={"product_id": p["id"]}, headers=auth("u1")
        ).json()["order_id"]

        client.portal.call(app.state.http.aclose)
        app.state.http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler)
        )
        r = client.post(f"/api/orders/{oid}/checkout", headers=auth("u1"))
        assert r.json() == {"id": "cs_test_1",
                            "url": "https://pay.test/cs_test_1"}

        form = seen["form"]
        assert seen["url"] == "https://stripe.test/v1/checkout/sessions"
        assert seen["auth"].startswith("Basic ")
        assert form["mode"] == ["payment"]
        assert form["metadata[order_id]"] == [oid]
        assert form["metadata[user_id]"] == ["u1"]
        assert form["line_items[0][price_data][unit_amount]"] == ["20000"]
        assert form["line_items[0][price_data][product_data][name]"] == [
            "EarthBound"
        ]
        assert form["line_items[0][price_data][product_data][description]"] \
            == ["System: SNES"]
        assert "session_id={CHECKOUT_SESSION_ID}" in form["success_url"][0]
        assert "result=cancel" in form["cancel_url"][0]

        event = {
            "id": "evt_stripe_1",
            "type": "checkout.session.completed",
            "data": {"object": {
                "id": "cs_test_1",
                "payment_intent": "pi_123",
                "metadata": {"order_id": oid, "user_id": "u1"},
            }},
        }
        payload = json.dumps(event).encode()
        r = client.post(
            "/payments/webhook", content=payload,
            headers={"stripe-signature": stripe_sig(payload)},
        )
        assert r.json()["order_status"] == "paid"
        order = client.get(f"/api/orders/{oid}", headers=auth("u1")).json()
        assert order["payment_intent_id"] == "pi_123"


def test_stripe_provider_error_is_502(tmp_path, stripe):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            400, json={"error": {"message": "Invalid currency"}}
        )

    app = create_app(
        database_url=f"sqlite:///{tmp_path / 'stripe.db'}",
        adapter=stripe,
        notify_backend="memory",
    )
    with TestClient(app) as client:
        run_db(client, admins.promote, "staff-1", "staff")
        p = client.post(
            "/api/admin/products",
            json={"title": "Mother 3", "system": "GBA",
                  "category": "Games", "price": 80, "stock_qty": 1},
            headers=auth("staff-1"),
        ).json()
        oid = client.post(
            "/api/orders", json={"product_id": p["id"]}, headers=auth("u1")
        ).json()["order_id"]
        client.portal.call(app.state.http.aclose)
        app.state.http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler)
        )
        r = client.post(f"/api/orders/{oid}/checkout", headers=auth("u1"))
        assert r.status_code == 502
        assert r.json()["detail"] == "Invalid currency"


@pytest.mark.parametrize("status,kwargs", [
    (503, {"text": "<html>Service Unavailable</html>"}),
    (200, {"json": {}}),
    (200, {"json": ["cs_1"]}),
    (200, {"text": "not json"}),
])
def test_stripe_malformed_reply_is_502(tmp_path, stripe, status, kwargs):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status, **kwargs)

    app = create_app(
        database_url=f"sqlite:///{tmp_path / 'stripe.db'}",
        adapter=stripe,
        notify_backend="memory",
    )
    with TestClient(app) as client:
        run_db(client, admins.promote, "staff-1", "staff")
        p = client.post(
            "/api/admin/products",
            json={"title": "Ecco", "system": "Genesis",
                  "category": "Games", "price": 20, "stock_qty": 1},
            headers=auth("staff-1"),
        ).json()
        oid = client.post(
            "/api/orders", json={"product_id": p["id"]}, headers=auth("u1")
        ).json()["order_id"]
        client.portal.call(app.state.http.aclose)
        app.state.http = httpx.AsyncClient(
            transport=httpx.MockTransport(handler)
        )
        r = client.post(f"/api/orders/{oid}/checkout", headers=auth("u1"))
        assert r.status_code == 502
        assert r.json()["detail"] == "Payment provider error"
