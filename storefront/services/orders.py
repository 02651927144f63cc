"""
Alta de ordenes en WooCommerce a partir de un PricedCart.

La orden nace `pending` con `set_paid=false`. Los regalos NO van en `line_items`
(una linea de 0 puede ser rechazada por la regla "amount > 0"); se registran en la
meta `_bundled_freebies` y en una nota privada para fulfillment.
Crear dos veces produce dos ordenes: el reintento de creacion es del llamador.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from ..core.errors import StorefrontError, UpstreamUnavailable, ValidationError
from ..core.money import money, to_decimal
from ..core.schemas import Address, OrderCreated, PricedCart, VatDecision

logger = logging.getLogger(__name__)

FREEBIES_META_KEY = "_bundled_freebies"

METHOD_TITLES = {
    "stripe": "Credit Card (Stripe)",
    "paypal": "PayPal",
    "bacs": "Direct Bank Transfer",
}
REDIRECT_METHODS = ("stripe", "paypal")


def freebie_manifest(priced: PricedCart) -> List[Dict[str, Any]]:
    return [
        {
            "product_id": ln.product_id,
            "name": ln.name,
            "quantity": ln.quantity,
            "parent_product_id": ln.parent_product_id,
        }
        for ln in priced.freebie_lines
    ]


def build_order_payload(
    priced: PricedCart,
    billing: Address,
    shipping: Optional[Address],
    payment_method: str,
    *,
    customer_id: Optional[int] = None,
    customer_note: str = "",
    vat: Optional[VatDecision] = None,
    affiliate_ref: Optional[str] = None,
) -> Dict[str, Any]:
    line_items = []
    for ln in priced.chargeable_lines:
        item = {
            "product_id": ln.product_id,
            "quantity": ln.quantity,
            "subtotal": str(ln.line_subtotal),
            "total": str(ln.line_total),
        }
        if ln.variation_id:
            item["variation_id"] = ln.variation_id
        line_items.append(item)

    meta = [{"key": "_storefront_grand_total", "value": str(priced.grand_total)}]
    freebies = freebie_manifest(priced)
    if freebies:
        meta.append({"key": FREEBIES_META_KEY, "value": json.dumps(freebies)})
    if priced.coupon_code:
        meta.append({"key": "_storefront_coupon_discount", "value": str(priced.coupon_discount)})
    if priced.reseller_discount > 0:
        meta.append({"key": "_reseller_discount", "value": str(priced.reseller_discount)})
    if vat is not None and vat.vat_number:
        meta.append({"key": "_vat_number", "value": vat.vat_number})
        meta.append({"key": "_vat_validated", "value": "yes" if vat.valid else "no"})
        if vat.used_fallback:
            # VIES no disponible: la orden queda marcada para revision manual
            meta.append({"key": "_vat_fallback_validation", "value": "yes"})
    if affiliate_ref:
        meta.append({"key": "_affiliate_ref", "value": str(affiliate_ref)})

    payload: Dict[str, Any] = {
        "status": "pending",
        "set_paid": False,
        "currency": priced.currency,
        "payment_method": payment_method,
        "payment_method_title": METHOD_TITLES.get(payment_method, "Manual"),
        "billing": billing.to_woo(),
        "shipping": (shipping or billing).to_woo(),
        "line_items": line_items,
        "customer_note": customer_note or "",
        "meta_data": meta,
    }
    if customer_id:
        payload["customer_id"] = customer_id
    if priced.coupon_code:
        payload["coupon_lines"] = [{"code": priced.coupon_code}]
    if priced.shipping_estimate > 0:
        payload["shipping_lines"] = [
            {"method_id": "flat_rate", "method_title": "Flat rate", "total": str(priced.shipping_estimate)}
        ]
    return payload


class OrderIntake:
    def __init__(self, woo, settings, stripe=None, paypal=None):
        self.woo = woo
        self.settings = settings
        self.stripe = stripe
        self.paypal = paypal

    def create_order(
        self,
        priced: PricedCart,
        billing: Address,
        shipping: Optional[Address],
        payment_method: str,
        **extra,
    ) -> OrderCreated:
        if not priced.chargeable_lines:
            raise ValidationError("Cart is empty", code="CART_EMPTY")
        if payment_method in REDIRECT_METHODS and priced.grand_total <= 0:
            raise ValidationError("Order total must be greater than zero", code="AMOUNT_NOT_POSITIVE")

        # 1) Crear la orden pending (WooCommerce asigna el id)
        payload = build_order_payload(priced, billing, shipping, payment_method, **extra)
        order = self.woo.create_order(payload)
        order_id = int(order["id"])
        order_number = str(order.get("number") or order_id)
        total = to_decimal(order.get("total")) or priced.grand_total
        logger.info("Created pending order %s (%s %s, %s)", order_id, total, priced.currency, payment_method)

        # 2) Nota para fulfillment (no fatal)
        freebies = priced.freebie_lines
        if freebies:
            names = ", ".join(f"{f.name or f.product_id} (for product {f.parent_product_id})" for f in freebies)
            try:
                self.woo.add_order_note(order_id, f"Bundled free items to ship: {names}")
            except StorefrontError as e:
                logger.warning("Could not add freebie note to order %s: %s", order_id, e.message)

        # 3) URL de pago para metodos con redireccion
        payment_url = None
        try:
            if payment_method == "stripe" and self.stripe is not None:
                _session_id, payment_url = self.stripe.create_checkout_session(
                    order_id,
                    order_number,
                    money(total),
                    priced.currency,
                    billing.email,
                    self.settings.public_base_url,
                    f"{self.settings.brand_name} products",
                )
            elif payment_method == "paypal" and self.paypal is not None:
                created = self.paypal.create_order(
                    order_id,
                    order_number,
                    money(total),
                    priced.currency,
                    return_url=f"{self.settings.public_base_url}/api/capture-paypal-payment",
                    cancel_url=f"{self.settings.public_base_url}/checkout?canceled=true",
                    brand_name=self.settings.brand_name,
                )
                payment_url = created["approve_url"]
        except StorefrontError as e:
            logger.error("Payment initiation failed for pending order %s: %s", order_id, e.message)
            raise UpstreamUnavailable(
                f"Order {order_id} was created but payment could not be started: {e.message}",
                code="PAYMENT_INIT_FAILED",
            ) from e

        return OrderCreated(
            order_id=order_id,
            order_key=str(order.get("order_key") or ""),
            order_number=order_number,
            status=str(order.get("status") or "pending"),
            total=money(total),
            payment_method=payment_method,
            payment_url=payment_url,
        )
