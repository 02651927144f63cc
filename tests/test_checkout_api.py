import json

import pytest

from fakes import FakeResponse, stripe_event
from storefront.middleware.idempotency import _keyed_locks

BLACKBOARD = {
    "productId": 101,
    "quantity": 1,
    "name": "BlackBoard Professional",
    "unitPrice": {"usd": "149.00", "eur": "149.00"},
    "bundleKind": "flagship",
}

BILLING = {
    "firstName": "Ana",
    "lastName": "Roth",
    "address1": "Hauptstr. 1",
    "city": "Berlin",
    "postcode": "10115",
    "country": "DE",
    "email": "ana@example.com",
}


@pytest.fixture(autouse=True)
def _catalog(woo):
    woo.seed_product(
        101,
        "BlackBoard Professional",
        usd="149.00",
        eur="149.00",
        bundle_kind="flagship",
        reseller={"enabled": True, "min_quantity": 10, "price_usd": "99.00", "price_eur": "95.00"},
    )
    woo.seed_product(7, "Resistance Band", eur="19.00")


def _checkout(client, headers=None, **overrides):
    body = {"items": [BLACKBOARD], "currency": "USD", "billing": BILLING, "paymentMethod": "stripe"}
    body.update(overrides)
    r = client.post("/api/checkout", json=body, headers=headers or {})
    return r.status_code, r.json()


def test_blackboard_checkout_then_duplicate_webhook(client, woo, post_webhook):
    # 1) Checkout: el regalo aparece en el precio pero no en line_items
    st, js = _checkout(client)
    assert st == 200 and js["success"] is True
    lines = js["pricing"]["lines"]
    freebie = [ln for ln in lines if ln["isFreebie"]][0]
    assert freebie["name"] == "Functional Foot Workshop"
    assert freebie["effectivePrice"] == "0.00" and freebie["quantity"] == 1

    order_id = js["order"]["orderId"]
    assert js["order"]["paymentUrl"].endswith(f"cs_test_{order_id}")
    created = woo.created[0]
    assert [li["product_id"] for li in created["line_items"]] == [101]
    meta = {m["key"]: m["value"] for m in created["meta_data"]}
    assert json.loads(meta["_bundled_freebies"])[0]["product_id"] == 999

    # 2) Webhook y entrega duplicada del mismo evento
    payload = stripe_event(order_id, session_id=f"cs_test_{order_id}")
    assert post_webhook(payload)[0] == 200
    st, js = post_webhook(payload)
    assert st == 200 and js["outcome"] == "already_terminal"

    assert woo.orders[order_id]["status"] == "processing"
    payment_notes = [n for n in woo.notes[order_id] if n.startswith("Stripe payment completed")]
    assert len(payment_notes) == 1


def test_checkout_adds_home_shipping(client):
    st, js = _checkout(client, currency="EUR")
    assert st == 200
    assert js["pricing"]["shippingEstimate"] == "5.90"
    assert js["pricing"]["grandTotal"] == "154.90"


def test_rejected_coupon_blocks_checkout(client, woo):
    st, js = _checkout(client, couponCode="GHOST")
    assert st == 400
    assert js["detail"] == "COUPON_INVALID_CODE" and "does not exist" in js["message"]
    assert woo.created == []


def test_valid_coupon_is_applied_server_side(client, woo):
    woo.coupons["save10"] = {"id": 5, "code": "save10", "status": "publish", "discount_type": "percent", "amount": "10"}
    st, js = _checkout(client, couponCode="save10", paymentMethod="bacs")
    assert st == 200
    assert js["pricing"]["couponDiscount"] == "14.90"
    assert js["order"]["paymentUrl"] is None
    assert woo.created[0]["coupon_lines"] == [{"code": "SAVE10"}]


def test_vat_fallback_is_flagged_on_the_order(client, woo, vies):
    billing = dict(BILLING, country="FR")
    st, js = _checkout(client, billing=billing, vatNumber="FR12345678901", paymentMethod="bacs")
    assert st == 200
    meta = {m["key"]: m["value"] for m in woo.created[0]["meta_data"]}
    assert meta["_vat_fallback_validation"] == "yes" and meta["_vat_validated"] == "yes"


def test_vies_valid_number_recorded(client, woo, vies):
    vies.handler = lambda m, url, kw: FakeResponse(200, {"isValid": True, "name": "ACME"})
    billing = dict(BILLING, country="FR")
    st, _ = _checkout(client, billing=billing, vatNumber="FR12345678901", paymentMethod="bacs")
    assert st == 200
    meta = {m["key"]: m["value"] for m in woo.created[0]["meta_data"]}
    assert "_vat_fallback_validation" not in meta and meta["_vat_validated"] == "yes"


def test_reseller_identity_gets_reseller_price(client):
    item = dict(BLACKBOARD, quantity=10)
    headers = {"X-User-Id": "42", "X-User-Role": "reseller"}
    st, js = _checkout(client, headers=headers, items=[item], paymentMethod="bacs")
    assert st == 200
    assert js["pricing"]["lines"][0]["effectivePrice"] == "99.00"
    assert js["pricing"]["resellerDiscount"] == "500.00"


def test_orphan_freebie_never_reaches_the_order(client, woo):
    orphan = {"productId": 999, "quantity": 1, "isFreebie": True, "parentProductId": 555, "unitPrice": {"usd": "49"}}
    st, js = _checkout(client, items=[orphan])
    assert st == 422 and js["detail"] == "FREEBIE_PARENT_MISSING"
    assert woo.created == []


def test_idempotency_key_replays_first_response(client, woo):
    headers = {"Idempotency-Key": "checkout-abc-1"}
    st1, js1 = _checkout(client, headers=headers, paymentMethod="bacs")
    st2, js2 = _checkout(client, headers=headers, paymentMethod="bacs")

    assert st1 == st2 == 200
    assert js2["replay"] is True
    assert js1["order"]["orderId"] == js2["order"]["orderId"]
    assert len(woo.created) == 1


def test_same_idempotency_key_from_two_users_creates_two_orders(client, woo):
    first = {"Idempotency-Key": "shared-key-1", "X-User-Id": "1"}
    second = {"Idempotency-Key": "shared-key-1", "X-User-Id": "2"}
    other_billing = dict(BILLING, email="ben@example.com")

    st1, js1 = _checkout(client, headers=first, paymentMethod="bacs")
    r = client.post(
        "/api/checkout",
        json={"items": [BLACKBOARD], "currency": "USD", "billing": other_billing, "paymentMethod": "bacs"},
        headers=second,
    )

    assert st1 == 200 and r.status_code == 200
    assert "Idempotent-Replay" not in r.headers and "replay" not in r.json()
    assert r.json()["order"]["orderId"] != js1["order"]["orderId"]
    assert len(woo.created) == 2


def test_idempotency_key_reused_with_another_body_is_rejected(client, woo):
    headers = {"Idempotency-Key": "reused-key-1", "X-User-Id": "1"}
    st1, _ = _checkout(client, headers=headers, paymentMethod="bacs")
    st2, js2 = _checkout(client, headers=headers, paymentMethod="bacs", customerNote="leave at the door")

    assert st1 == 200
    assert st2 == 422 and js2["detail"] == "IDEMPOTENCY_KEY_REUSED"
    assert len(woo.created) == 1


def test_idempotency_locks_are_released(client):
    for n in range(3):
        _checkout(client, headers={"Idempotency-Key": f"lock-key-{n}"}, paymentMethod="bacs")
    assert len(_keyed_locks) == 0


def test_without_idempotency_key_each_submit_creates_an_order(client, woo):
    _checkout(client, paymentMethod="bacs")
    _checkout(client, paymentMethod="bacs")
    assert len(woo.created) == 2


def test_malformed_body_is_422(client):
    r = client.post("/api/checkout", json={"items": "nope"})
    assert r.status_code == 422


def test_client_prices_and_reseller_rules_are_ignored(client, woo):
    tampered = dict(
        BLACKBOARD,
        quantity=10,
        unitPrice={"usd": "0.01"},
        bundleKind="none",
        resellerPricing={"enabled": True, "minQuantity": 1, "priceUsd": "0.01"},
    )
    headers = {"X-User-Id": "42", "X-User-Role": "reseller"}
    st, js = _checkout(client, headers=headers, items=[tampered], paymentMethod="bacs")
    assert st == 200

    # Precio y regla reseller del catalogo: 10 x 149 con precio reseller 99
    line = woo.created[0]["line_items"][0]
    assert line["subtotal"] == "1490.00" and line["total"] == "990.00"
    assert js["pricing"]["resellerDiscount"] == "500.00"
    # El bundle sale del catalogo: el regalo se agrega igual
    assert [ln["productId"] for ln in js["pricing"]["lines"] if ln["isFreebie"]] == [999]


def test_spoofed_freebie_is_rejected(client, woo):
    spoofed = {"productId": 555, "quantity": 3, "isFreebie": True, "parentProductId": 101, "name": "Expensive thing"}
    st, js = _checkout(client, items=[BLACKBOARD, spoofed])
    assert st == 422 and js["detail"] == "FREEBIE_NOT_COMPANION"
    assert woo.created == []


def test_freebie_for_product_that_is_not_a_bundle_is_rejected(client, woo):
    band = {"productId": 7, "quantity": 1, "bundleKind": "flagship"}
    freebie = {"productId": 999, "quantity": 1, "isFreebie": True, "parentProductId": 7}
    st, js = _checkout(client, items=[band, freebie], currency="EUR")
    assert st == 422 and js["detail"] == "FREEBIE_PARENT_NOT_FLAGSHIP"
    assert woo.created == []


def test_client_freebie_line_is_rebuilt_from_configuration(client, woo):
    freebie = {"productId": 999, "quantity": 1, "isFreebie": True, "parentProductId": 101, "name": "Free stuff"}
    st, js = _checkout(client, items=[BLACKBOARD, freebie], paymentMethod="bacs")
    assert st == 200
    freebies = [ln for ln in js["pricing"]["lines"] if ln["isFreebie"]]
    assert len(freebies) == 1 and freebies[0]["name"] == "Functional Foot Workshop"


def test_unknown_product_is_rejected(client, woo):
    st, js = _checkout(client, items=[{"productId": 4242, "quantity": 1}])
    assert st == 400 and js["detail"] == "PRODUCT_NOT_FOUND"
    assert woo.created == []
