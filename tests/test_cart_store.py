import random

import pytest

from storefront.core.errors import IntegrityViolation, ValidationError
from storefront.core.schemas import CartLine
from storefront.services.carts import CartStore, add_item, remove_item, update_quantity


def _flagship(product_id=101):
    return CartLine(
        product_id=product_id,
        quantity=1,
        name="BlackBoard Professional",
        unit_price={"usd": "149.00", "eur": "149.00"},
        bundle_kind="flagship",
    )


def _plain(product_id=7):
    return CartLine(product_id=product_id, quantity=1, name="Resistance Band", unit_price={"eur": "19.00"})


def _freebies_for(lines, parent):
    return [ln for ln in lines if ln.is_freebie and ln.parent_product_id == parent]


def test_add_flagship_appends_one_freebie(companion):
    lines = add_item([], _flagship(), 1, companion)
    assert len(lines) == 2
    freebie = _freebies_for(lines, 101)[0]
    assert freebie.product_id == 999 and freebie.quantity == 1 and freebie.virtual is True


def test_adding_same_product_merges_quantity(companion):
    lines = add_item([], _flagship(), 1, companion)
    lines = add_item(lines, _flagship(), 2, companion)
    parent = [ln for ln in lines if not ln.is_freebie][0]
    assert parent.quantity == 3
    assert len(_freebies_for(lines, 101)) == 1


def test_quantity_changes_never_touch_freebie(companion):
    lines = add_item([], _flagship(), 1, companion)
    lines = update_quantity(lines, 101, 5)
    freebies = _freebies_for(lines, 101)
    assert len(freebies) == 1 and freebies[0].quantity == 1


def test_removing_parent_removes_its_freebie(companion):
    lines = add_item([], _flagship(), 1, companion)
    lines = add_item(lines, _plain(), 1, companion)
    lines = remove_item(lines, 101)
    assert [ln.product_id for ln in lines] == [7]


def test_quantity_zero_removes_line_and_freebie(companion):
    lines = add_item([], _flagship(), 2, companion)
    assert update_quantity(lines, 101, 0) == []


def test_update_unknown_product(companion):
    lines = add_item([], _plain(), 1, companion)
    with pytest.raises(ValidationError) as exc:
        update_quantity(lines, 404, 2)
    assert exc.value.code == "NOT_IN_CART"


def test_freebie_cannot_be_added_directly(companion):
    freebie = CartLine(product_id=999, quantity=1, is_freebie=True, parent_product_id=101)
    with pytest.raises(ValidationError):
        add_item([], freebie, 1, companion)


def test_freebie_invariant_under_random_mutations(companion):
    rnd = random.Random(7)
    lines = []
    for _ in range(200):
        op = rnd.choice(["add", "qty", "remove"])
        pid = rnd.choice([101, 102, 7])
        item = _flagship(pid) if pid != 7 else _plain()
        if op == "add":
            lines = add_item(lines, item, rnd.randint(1, 3), companion)
        elif op == "qty" and any(ln.same_item(pid) for ln in lines):
            lines = update_quantity(lines, pid, rnd.randint(-1, 6))
        else:
            lines = remove_item(lines, pid)
        for parent in (101, 102):
            has_parent = any(ln.same_item(parent) for ln in lines)
            assert len(_freebies_for(lines, parent)) == (1 if has_parent else 0)
        assert not _freebies_for(lines, 7)


def test_store_round_trip(db, companion):
    store = CartStore(db)
    assert store.load("tok-1") == []

    lines = add_item([], _flagship(), 1, companion)
    store.save("tok-1", lines, user_id="42")
    loaded = store.load("tok-1")
    assert [ln.model_dump() for ln in loaded] == [ln.model_dump() for ln in lines]

    store.clear("tok-1")
    assert store.load("tok-1") == []


def test_store_refuses_orphan_freebie(db):
    orphan = CartLine(product_id=999, quantity=1, is_freebie=True, parent_product_id=101)
    with pytest.raises(IntegrityViolation):
        CartStore(db).save("tok-2", [orphan])


def test_cart_http_flow(client):
    # 1) Agregar bundle flagship: llega con su regalo
    item = {
        "productId": 101,
        "quantity": 1,
        "name": "BlackBoard Professional",
        "unitPrice": {"usd": "149.00", "eur": "149.00"},
        "bundleKind": "flagship",
    }
    r = client.post("/api/cart/abc/items", json={"item": item})
    assert r.status_code == 200
    items = r.json()["items"]
    assert [it["isFreebie"] for it in items] == [False, True]

    # 2) Cambiar cantidad del padre
    r = client.patch("/api/cart/abc/items/101", json={"quantity": 4})
    assert r.status_code == 200
    items = r.json()["items"]
    assert items[0]["quantity"] == 4 and items[1]["quantity"] == 1

    # 3) Precio del carrito guardado (sin envio: no se indico pais)
    r = client.post("/api/cart/abc/price", json={"currency": "USD"})
    assert r.status_code == 200
    pricing = r.json()["pricing"]
    assert pricing["grandTotal"] == "596.00"
    assert pricing["lines"][1]["effectivePrice"] == "0.00"

    # 4) Quitar el padre quita el regalo
    r = client.delete("/api/cart/abc/items/101")
    assert r.status_code == 200 and r.json()["items"] == []

    r = client.get("/api/cart/abc")
    assert r.status_code == 200 and r.json()["items"] == []


def test_stateless_price_reports_rejected_coupon(client):
    body = {
        "items": [{"productId": 7, "quantity": 2, "unitPrice": {"eur": "19.00"}}],
        "currency": "EUR",
        "couponCode": "nope",
        "shippingCountry": "FR",
    }
    r = client.post("/api/cart/price", json=body)
    assert r.status_code == 200
    js = r.json()
    assert js["couponError"]["reason"] == "invalid_code"
    assert js["pricing"]["couponDiscount"] == "0.00"
    assert js["pricing"]["shippingEstimate"] == "12.90"
    assert js["pricing"]["grandTotal"] == "50.90"
