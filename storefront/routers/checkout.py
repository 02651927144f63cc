"""
Checkout: cupon, IVA y alta de la orden.

El carrito se re-precia siempre en el servidor: de cada linea solo se toman producto,
variacion y cantidad; precio, regla reseller, bundle y regalos salen del catalogo
de WooCommerce. El cupon se re-valida en cada intento (ultima verificacion antes de
crear la orden).
"""
import logging
from typing import List, Optional

from fastapi import APIRouter, Body, Depends

from ..core.config import Settings, get_settings
from ..core.errors import ValidationError
from ..core.schemas import (
    Address,
    ApiModel,
    CartLine,
    CouponRejected,
    CouponResult,
    Currency,
    OrderCreated,
    PricedCart,
    VatDecision,
)
from ..deps import (
    Identity,
    get_catalog,
    get_companion,
    get_coupon_validator,
    get_identity,
    get_order_intake,
    get_vat_resolver,
)
from ..services.catalog import Catalog
from ..services.coupons import CouponValidator
from ..services.freebies import FreebieCompanion
from ..services.orders import OrderIntake
from ..services.pricing import price_cart
from ..services.shipping import estimate_shipping
from ..services.vat import VatResolver

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["checkout"])


class CouponValidateRequest(ApiModel):
    coupon_code: str = ""
    cart_items: List[CartLine] = []
    customer_id: Optional[int] = None
    customer_email: Optional[str] = None
    currency: Currency = "EUR"


class CouponValidateResponse(ApiModel):
    success: bool
    coupon: Optional[CouponResult] = None
    error: Optional[str] = None
    reason: Optional[str] = None


class VatValidateRequest(ApiModel):
    vat_number: str = ""
    country_code: str


class VatValidateResponse(ApiModel):
    valid: bool
    taxable: Optional[bool] = None
    name: Optional[str] = None
    address: Optional[str] = None
    fallback_validation: bool = False
    service_unavailable: bool = False
    error: Optional[str] = None


class CheckoutRequest(ApiModel):
    items: List[CartLine]
    currency: Currency = "EUR"
    billing: Address
    shipping: Optional[Address] = None
    payment_method: str = "stripe"
    coupon_code: Optional[str] = None
    vat_number: Optional[str] = None
    customer_note: str = ""
    affiliate_ref: Optional[str] = None


class CheckoutResponse(ApiModel):
    success: bool = True
    order: OrderCreated
    pricing: PricedCart


@router.post("/coupons/validate", response_model=CouponValidateResponse)
def validate_coupon(
    req: CouponValidateRequest = Body(...),
    identity: Identity = Depends(get_identity),
    validator: CouponValidator = Depends(get_coupon_validator),
):
    verdict = validator.validate(
        req.coupon_code,
        req.cart_items,
        currency=req.currency,
        customer_id=req.customer_id or identity.customer_id,
        customer_email=req.customer_email,
    )
    if isinstance(verdict, CouponRejected):
        return CouponValidateResponse(success=False, error=verdict.message, reason=verdict.reason)
    return CouponValidateResponse(success=True, coupon=verdict)


def _vat_response(decision: VatDecision) -> VatValidateResponse:
    return VatValidateResponse(
        valid=decision.valid,
        taxable=decision.taxable,
        name=decision.validated_name,
        address=decision.address,
        fallback_validation=decision.used_fallback,
        service_unavailable=decision.service_unavailable,
        error=decision.error,
    )


@router.post("/vat/validate", response_model=VatValidateResponse)
def validate_vat(
    req: VatValidateRequest = Body(...),
    resolver: VatResolver = Depends(get_vat_resolver),
):
    if not req.country_code.strip():
        raise ValidationError("countryCode is required", code="COUNTRY_REQUIRED")
    return _vat_response(resolver.resolve(req.country_code, req.vat_number))


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    req: CheckoutRequest = Body(...),
    identity: Identity = Depends(get_identity),
    catalog: Catalog = Depends(get_catalog),
    validator: CouponValidator = Depends(get_coupon_validator),
    resolver: VatResolver = Depends(get_vat_resolver),
    intake: OrderIntake = Depends(get_order_intake),
    companion: FreebieCompanion = Depends(get_companion),
    settings: Settings = Depends(get_settings),
):
    # 1) Lineas desde el catalogo (nada de precios del cliente)
    items = catalog.resolve(req.items, companion)

    # 2) Cupon: ultima verificacion autoritativa
    coupon = None
    if req.coupon_code:
        verdict = validator.validate(
            req.coupon_code,
            items,
            currency=req.currency,
            customer_id=identity.customer_id,
            customer_email=req.billing.email,
        )
        if isinstance(verdict, CouponRejected):
            logger.info("Checkout blocked by coupon %r: %s", req.coupon_code, verdict.reason)
            raise ValidationError(verdict.message, code=f"COUPON_{verdict.reason.upper()}")
        coupon = verdict

    # 3) IVA: nunca bloquea el checkout; el fallback queda marcado en la orden
    vat = None
    if req.vat_number:
        vat = resolver.resolve(req.billing.country, req.vat_number)

    # 4) Precio en el servidor
    ship_to = (req.shipping or req.billing).country
    shipping = estimate_shipping(items, ship_to, req.currency, settings)
    priced = price_cart(
        items,
        req.currency,
        is_reseller=identity.is_reseller,
        coupon=coupon,
        shipping_estimate=shipping,
        companion=companion,
    )

    # 5) Orden pending + URL de pago
    order = intake.create_order(
        priced,
        req.billing,
        req.shipping,
        req.payment_method,
        customer_id=identity.customer_id,
        customer_note=req.customer_note,
        vat=vat,
        affiliate_ref=req.affiliate_ref,
    )
    return CheckoutResponse(order=order, pricing=priced)
