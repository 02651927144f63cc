"""
Entradas de pago: webhook de Stripe, redirect de captura PayPal y confirmacion manual.

Las tres terminan en PaymentReconciler.reconcile. Un fallo de escritura se propaga
como 5xx para que el proveedor reintente; nunca se responde 200 sin haber aplicado.
"""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Body, Depends, Header, Query, Request
from fastapi.responses import RedirectResponse
from starlette.concurrency import run_in_threadpool

from ..core.config import Settings, get_settings
from ..core.errors import StorefrontError
from ..core.schemas import ApiModel
from ..deps import get_reconciler, get_stripe_gateway, get_woo_client, require_admin
from ..services.orders import FREEBIES_META_KEY
from ..services.reconciler import (
    ManualConfirm,
    PaymentReconciler,
    PaypalCaptureRedirect,
    StripeWebhookEvent,
)
from ..services.stripe_gateway import StripeGateway
from ..services.woo_client import WooClient

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["payments"])


class CompletePaymentRequest(ApiModel):
    transaction_id: str
    payment_method: str = "bacs"
    amount: Optional[Decimal] = None
    currency: str = "EUR"
    status: str = "completed"


@router.post("/webhooks/stripe")
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(default=None, alias="stripe-signature"),
    gateway: StripeGateway = Depends(get_stripe_gateway),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    # La firma se calcula sobre el cuerpo crudo: leerlo antes de cualquier parseo
    payload = await request.body()
    event = gateway.verify_webhook(payload, stripe_signature)
    result = await run_in_threadpool(reconciler.reconcile, StripeWebhookEvent.from_payload(event))
    return {
        "received": True,
        "outcome": result.outcome.value,
        "orderId": result.order_id,
        "status": result.status,
    }


def _redirect(base_url: str, path: str, params: Dict[str, Any]) -> RedirectResponse:
    return RedirectResponse(f"{base_url}{path}?{urlencode(params)}", status_code=302)


@router.get("/capture-paypal-payment")
def capture_paypal_payment(
    token: str = Query(default=""),
    reconciler: PaymentReconciler = Depends(get_reconciler),
    settings: Settings = Depends(get_settings),
):
    base = settings.public_base_url.rstrip("/")
    try:
        result = reconciler.reconcile(PaypalCaptureRedirect(paypal_order_token=token))
    except StorefrontError as e:
        # El cliente ya salio del checkout: lo devolvemos con un codigo legible
        logger.error("PayPal capture for token %r failed: %s (%s)", token, e.message, e.code)
        return _redirect(
            base, "/checkout", {"error": "payment_failed", "message": e.message, "code": e.code}
        )
    return _redirect(base, "/order-success", {"order": result.order_id, "paypal_id": token})


@router.post("/orders/{order_id}/complete-payment", dependencies=[Depends(require_admin)])
def complete_payment(
    order_id: int,
    req: CompletePaymentRequest = Body(...),
    reconciler: PaymentReconciler = Depends(get_reconciler),
):
    result = reconciler.reconcile(
        ManualConfirm(
            order_id=order_id,
            transaction_id=req.transaction_id,
            method=req.payment_method,
            amount=req.amount,
            currency=req.currency,
            status=req.status,
        )
    )
    return {
        "success": True,
        "outcome": result.outcome.value,
        "orderId": result.order_id,
        "status": result.status,
        "transactionId": result.transaction_id,
    }


@router.get("/orders/{order_id}")
def order_summary(order_id: int, woo: WooClient = Depends(get_woo_client)):
    order = woo.get_order(order_id)
    meta = {m.get("key"): m.get("value") for m in order.get("meta_data") or []}
    return {
        "id": order.get("id"),
        "number": order.get("number"),
        "status": order.get("status"),
        "total": order.get("total"),
        "currency": order.get("currency"),
        "paymentMethod": order.get("payment_method"),
        "transactionId": order.get("transaction_id") or None,
        "datePaid": order.get("date_paid"),
        "lineItems": [
            {"name": li.get("name"), "quantity": li.get("quantity"), "total": li.get("total")}
            for li in order.get("line_items") or []
        ],
        "bundledFreebies": meta.get(FREEBIES_META_KEY),
    }
