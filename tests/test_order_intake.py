import json
from decimal import Decimal

import pytest

from fakes import FakePayPal, FakeStripeGateway
from storefront.core.config import settings
from storefront.core.errors import UpstreamUnavailable, ValidationError
from storefront.core.schemas import Address, CartLine, VatDecision
from storefront.services.orders import OrderIntake, build_order_payload
from storefront.services.pricing import price_cart

BILLING = Address(first_name="Ana", last_name="Roth", country="DE", city="Berlin", email="ana@example.com")


@pytest.fixture
def priced(companion):
    cart = [
        CartLine(
            product_id=101,
            quantity=1,
            name="BlackBoard Professional",
            unit_price={"usd": "149.00", "eur": "149.00"},
            bundle_kind="flagship",
        )
    ]
    return price_cart(cart, "EUR", shipping_estimate=Decimal("5.90"), companion=companion)


def test_payload_excludes_freebies_from_line_items(priced):
    payload = build_order_payload(priced, BILLING, None, "bacs")

    assert payload["status"] == "pending" and payload["set_paid"] is False
    assert [li["product_id"] for li in payload["line_items"]] == [101]
    assert payload["line_items"][0]["total"] == "149.00"
    assert payload["shipping"] == payload["billing"]
    assert payload["shipping_lines"][0]["total"] == "5.90"

    meta = {m["key"]: m["value"] for m in payload["meta_data"]}
    freebies = json.loads(meta["_bundled_freebies"])
    assert freebies == [
        {"product_id": 999, "name": "Functional Foot Workshop", "quantity": 1, "parent_product_id": 101}
    ]
    assert meta["_storefront_grand_total"] == "154.90"


def test_payload_flags_vat_fallback(priced):
    vat = VatDecision(country_code="FR", vat_number="FR12345678901", taxable=False, valid=True, used_fallback=True)
    payload = build_order_payload(priced, BILLING, None, "bacs", vat=vat, affiliate_ref="aff-7")
    meta = {m["key"]: m["value"] for m in payload["meta_data"]}
    assert meta["_vat_number"] == "FR12345678901"
    assert meta["_vat_validated"] == "yes"
    assert meta["_vat_fallback_validation"] == "yes"
    assert meta["_affiliate_ref"] == "aff-7"


def test_bank_transfer_has_no_payment_url(woo, priced):
    created = OrderIntake(woo, settings).create_order(priced, BILLING, None, "bacs")
    assert created.payment_url is None
    assert created.status == "pending" and created.total == Decimal("154.90")
    # Nota de fulfillment con el regalo
    assert "Functional Foot Workshop" in woo.notes[created.order_id][0]


def test_stripe_order_gets_checkout_url(woo, priced):
    gateway = FakeStripeGateway("whsec_x")
    created = OrderIntake(woo, settings, stripe=gateway).create_order(priced, BILLING, None, "stripe")
    assert created.payment_url == f"https://checkout.stripe.test/cs_test_{created.order_id}"
    assert gateway.sessions[0]["total"] == Decimal("154.90")


def test_paypal_order_gets_approve_url(woo, priced):
    paypal = FakePayPal()
    created = OrderIntake(woo, settings, paypal=paypal).create_order(priced, BILLING, None, "paypal")
    assert created.payment_url.startswith("https://paypal.test/checkoutnow")
    assert paypal.created[0]["return_url"].endswith("/api/capture-paypal-payment")


def test_creating_twice_gives_two_orders(woo, priced):
    intake = OrderIntake(woo, settings)
    a = intake.create_order(priced, BILLING, None, "bacs")
    b = intake.create_order(priced, BILLING, None, "bacs")
    assert a.order_id != b.order_id


def test_empty_cart_is_rejected(woo):
    empty = price_cart([], "EUR")
    with pytest.raises(ValidationError) as exc:
        OrderIntake(woo, settings).create_order(empty, BILLING, None, "bacs")
    assert exc.value.code == "CART_EMPTY"
    assert woo.created == []


def test_payment_init_failure_is_upstream(woo, priced):
    gateway = FakeStripeGateway("whsec_x", fail=True)
    with pytest.raises(UpstreamUnavailable) as exc:
        OrderIntake(woo, settings, stripe=gateway).create_order(priced, BILLING, None, "stripe")
    assert exc.value.code == "PAYMENT_INIT_FAILED"
    assert "Order 1001 was created" in exc.value.message


def test_freebie_note_failure_does_not_fail_creation(woo, priced):
    woo.fail_notes = UpstreamUnavailable("notes down")
    created = OrderIntake(woo, settings).create_order(priced, BILLING, None, "bacs")
    assert created.order_id in woo.orders
