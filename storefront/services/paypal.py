"""Cliente REST de PayPal: token OAuth, creacion de orden y captura."""
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

import requests

from ..core.errors import PaymentNotCompleted, UpstreamUnavailable

logger = logging.getLogger(__name__)


def _json_or_empty(resp) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _issue(data: Dict[str, Any]) -> Optional[str]:
    for d in data.get("details") or []:
        if d.get("issue"):
            return d["issue"]
    return None


def capture_details(data: Dict[str, Any]) -> Tuple[str, Optional[str], Optional[str]]:
    """(status, custom_id, capture_id) de una respuesta de captura u orden de PayPal."""
    status = data.get("status") or ""
    units = data.get("purchase_units") or [{}]
    unit = units[0] or {}
    captures = (unit.get("payments") or {}).get("captures") or []
    capture = captures[0] if captures else {}
    custom_id = unit.get("custom_id") or capture.get("custom_id")
    return status, custom_id, capture.get("id")


class PayPalClient:
    def __init__(self, api_url: str, client_id: str, secret: str, timeout: float = 15.0, session=None):
        self.api_url = api_url.rstrip("/")
        self.client_id = client_id
        self.secret = secret
        self.timeout = timeout
        self.session = session or requests.Session()

    def _send(self, method: str, path: str, **kwargs):
        try:
            resp = self.session.request(method, f"{self.api_url}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise UpstreamUnavailable(f"PayPal unreachable on {path}: {e}", code="PAYPAL_UNREACHABLE") from e
        if resp.status_code >= 500 or resp.status_code == 429:
            raise UpstreamUnavailable(
                f"PayPal returned {resp.status_code} on {path}", code="PAYPAL_UNAVAILABLE"
            )
        return resp

    def access_token(self) -> str:
        resp = self._send(
            "POST",
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(self.client_id, self.secret),
            headers={"Accept": "application/json"},
        )
        token = _json_or_empty(resp).get("access_token")
        if not resp.ok or not token:
            raise UpstreamUnavailable(
                f"PayPal OAuth failed ({resp.status_code})", code="PAYPAL_AUTH"
            )
        return token

    def _authed(self, method: str, path: str, json=None):
        headers = {
            "Authorization": f"Bearer {self.access_token()}",
            "Content-Type": "application/json",
            "Prefer": "return=representation",
        }
        return self._send(method, path, json=json, headers=headers)

    def create_order(
        self,
        order_id: int,
        order_number: str,
        total: Decimal,
        currency: str,
        return_url: str,
        cancel_url: str,
        brand_name: str,
    ) -> Dict[str, Any]:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "reference_id": str(order_number),
                    "description": f"{brand_name} order #{order_number}",
                    "custom_id": str(order_id),
                    "amount": {"currency_code": currency, "value": f"{total:.2f}"},
                }
            ],
            "application_context": {
                "brand_name": brand_name,
                "return_url": return_url,
                "cancel_url": cancel_url,
            },
        }
        resp = self._authed("POST", "/v2/checkout/orders", json=body)
        data = _json_or_empty(resp)
        if not resp.ok:
            raise UpstreamUnavailable(
                data.get("message") or "PayPal order creation failed", code="PAYPAL_CREATE_FAILED"
            )
        links = data.get("links") or []
        approve = next((ln.get("href") for ln in links if ln.get("rel") in ("approve", "payer-action")), None)
        return {"id": data.get("id"), "approve_url": approve}

    def get_order(self, token: str) -> Dict[str, Any]:
        resp = self._authed("GET", f"/v2/checkout/orders/{token}")
        data = _json_or_empty(resp)
        if not resp.ok:
            raise PaymentNotCompleted(
                data.get("message") or f"PayPal order {token} not found", code="PAYPAL_ORDER_NOT_FOUND"
            )
        return data

    def capture_order(self, token: str) -> Dict[str, Any]:
        resp = self._authed("POST", f"/v2/checkout/orders/{token}/capture")
        data = _json_or_empty(resp)
        if resp.ok:
            return data
        issue = _issue(data)
        if issue == "ORDER_ALREADY_CAPTURED":
            # Refresco del redirect: la captura ya ocurrio, leemos el estado actual
            logger.info("PayPal order %s already captured; reading current state", token)
            return self.get_order(token)
        logger.warning("PayPal capture failed for %s: %s %s", token, resp.status_code, issue)
        raise PaymentNotCompleted(
            data.get("message") or "Payment capture failed", code=issue or "PAYPAL_CAPTURE_FAILED"
        )
