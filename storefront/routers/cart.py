"""
Carrito persistido por token y pricing sin estado.

Estos precios son una vista previa con los datos del carrito; el precio que se cobra
lo calcula /api/checkout contra el catalogo.
"""
from typing import List, Optional

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from ..core.config import Settings, get_settings
from ..core.schemas import ApiModel, CartLine, CouponRejected, Currency, PricedCart
from ..db import get_db
from ..deps import Identity, get_companion, get_coupon_validator, get_identity
from ..services.carts import CartStore, add_item, remove_item, update_quantity
from ..services.coupons import CouponValidator
from ..services.freebies import FreebieCompanion
from ..services.pricing import price_cart
from ..services.shipping import estimate_shipping

router = APIRouter(prefix="/api/cart", tags=["cart"])


class AddItemRequest(ApiModel):
    item: CartLine
    quantity: Optional[int] = None


class QuantityRequest(ApiModel):
    quantity: int
    variation_id: Optional[int] = None


class PriceRequest(ApiModel):
    items: List[CartLine] = []
    currency: Currency = "EUR"
    coupon_code: Optional[str] = None
    shipping_country: Optional[str] = None


class PriceResponse(ApiModel):
    pricing: PricedCart
    coupon_error: Optional[CouponRejected] = None


class CartResponse(ApiModel):
    token: str
    items: List[CartLine]


def price_with_coupon(
    lines: List[CartLine],
    req: PriceRequest,
    identity: Identity,
    validator: CouponValidator,
    companion: FreebieCompanion,
    settings: Settings,
) -> PriceResponse:
    coupon, rejected = None, None
    if req.coupon_code:
        verdict = validator.validate(
            req.coupon_code, lines, currency=req.currency, customer_id=identity.customer_id
        )
        if isinstance(verdict, CouponRejected):
            rejected = verdict
        else:
            coupon = verdict
    shipping = estimate_shipping(lines, req.shipping_country, req.currency, settings)
    priced = price_cart(
        lines,
        req.currency,
        is_reseller=identity.is_reseller,
        coupon=coupon,
        shipping_estimate=shipping,
        companion=companion,
    )
    return PriceResponse(pricing=priced, coupon_error=rejected)


@router.post("/price", response_model=PriceResponse)
def price(
    req: PriceRequest = Body(...),
    identity: Identity = Depends(get_identity),
    validator: CouponValidator = Depends(get_coupon_validator),
    companion: FreebieCompanion = Depends(get_companion),
    settings: Settings = Depends(get_settings),
):
    return price_with_coupon(req.items, req, identity, validator, companion, settings)


@router.get("/{token}", response_model=CartResponse)
def get_cart(token: str, db: Session = Depends(get_db)):
    return CartResponse(token=token, items=CartStore(db).load(token))


@router.post("/{token}/items", response_model=CartResponse)
def add_to_cart(
    token: str,
    req: AddItemRequest = Body(...),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    companion: FreebieCompanion = Depends(get_companion),
):
    store = CartStore(db)
    lines = add_item(store.load(token), req.item, req.quantity or req.item.quantity, companion)
    store.save(token, lines, user_id=identity.user_id)
    return CartResponse(token=token, items=lines)


@router.patch("/{token}/items/{product_id}", response_model=CartResponse)
def change_quantity(
    token: str,
    product_id: int,
    req: QuantityRequest = Body(...),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    store = CartStore(db)
    lines = update_quantity(store.load(token), product_id, req.quantity, req.variation_id)
    store.save(token, lines, user_id=identity.user_id)
    return CartResponse(token=token, items=lines)


@router.delete("/{token}/items/{product_id}", response_model=CartResponse)
def remove_from_cart(
    token: str,
    product_id: int,
    variation_id: Optional[int] = None,
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
):
    store = CartStore(db)
    lines = remove_item(store.load(token), product_id, variation_id)
    store.save(token, lines, user_id=identity.user_id)
    return CartResponse(token=token, items=lines)


@router.delete("/{token}")
def clear_cart(token: str, db: Session = Depends(get_db)):
    CartStore(db).clear(token)
    return {"ok": True, "token": token}


@router.post("/{token}/price", response_model=PriceResponse)
def price_stored_cart(
    token: str,
    req: Optional[PriceRequest] = Body(default=None),
    db: Session = Depends(get_db),
    identity: Identity = Depends(get_identity),
    validator: CouponValidator = Depends(get_coupon_validator),
    companion: FreebieCompanion = Depends(get_companion),
    settings: Settings = Depends(get_settings),
):
    lines = CartStore(db).load(token)
    return price_with_coupon(lines, req or PriceRequest(), identity, validator, companion, settings)
