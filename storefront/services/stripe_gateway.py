import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import stripe

from ..core.errors import AuthenticationError, UpstreamUnavailable, ValidationError

logger = logging.getLogger(__name__)


class StripeGateway:
    def __init__(self, secret_key: str, webhook_secret: str, tolerance: int = 300):
        self.secret_key = secret_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verifica la firma `stripe-signature` (HMAC-SHA256 sobre "t.body") ANTES de parsear.
        Cualquier fallo es 400 y no toca ninguna orden.
        """
        if not signature:
            raise AuthenticationError("No signature", code="NO_SIGNATURE", status_code=400)
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not configured; rejecting webhook")
            raise AuthenticationError(
                "Webhook secret not configured", code="INVALID_SIGNATURE", status_code=400
            )
        try:
            text = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(text, signature, self.webhook_secret, self.tolerance)
        except UnicodeDecodeError as e:
            raise AuthenticationError("Webhook body is not UTF-8", code="INVALID_SIGNATURE", status_code=400) from e
        except stripe.SignatureVerificationError as e:
            logger.warning("Stripe webhook signature verification failed: %s", e)
            raise AuthenticationError(
                f"Webhook Error: {e}", code="INVALID_SIGNATURE", status_code=400
            ) from e
        try:
            event = json.loads(text)
        except ValueError as e:
            raise ValidationError("Webhook payload is not JSON", code="INVALID_PAYLOAD") from e
        if not isinstance(event, dict):
            raise ValidationError("Webhook payload is not an event", code="INVALID_PAYLOAD")
        return event

    def create_checkout_session(
        self,
        order_id: int,
        order_number: str,
        total: Decimal,
        currency: str,
        customer_email: Optional[str],
        base_url: str,
        description: str,
    ) -> Tuple[str, str]:
        try:
            session = stripe.checkout.Session.create(
                api_key=self.secret_key,
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency.lower(),
                            "product_data": {"name": f"Order #{order_number}", "description": description},
                            "unit_amount": int((total * 100).to_integral_value()),
                        },
                        "quantity": 1,
                    }
                ],
                mode="payment",
                success_url=f"{base_url}/order-success?order={order_id}&session_id={{CHECKOUT_SESSION_ID}}",
                cancel_url=f"{base_url}/checkout?canceled=true",
                customer_email=customer_email or None,
                metadata={
                    "order_id": str(order_id),
                    "order_number": str(order_number),
                    "woocommerce_order_id": str(order_id),
                    "source": "storefront",
                },
            )
        except stripe.StripeError as e:
            raise UpstreamUnavailable(
                f"Stripe checkout session failed: {e}", code="STRIPE_SESSION_FAILED"
            ) from e
        return session.id, session.url
