"""
Cliente REST de WooCommerce (/wp-json/wc/v3). WooCommerce es el sistema de registro de
las ordenes: este servicio solo lee y hace PUT, nunca inventa ids.

Mapeo de fallos:
- red / timeout / 5xx / 429 / credenciales -> UpstreamUnavailable (reintentable)
- 404 -> WooNotFound
- otro 4xx -> ValidationError con el code/message de WooCommerce
"""
import logging
from typing import Any, Dict, Optional

import requests

from ..core.errors import IntegrityViolation, UpstreamUnavailable, ValidationError

logger = logging.getLogger(__name__)


class WooNotFound(IntegrityViolation):
    status_code = 404
    default_code = "NOT_FOUND"


def _json_or_empty(resp) -> Dict[str, Any]:
    try:
        data = resp.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


class WooClient:
    def __init__(
        self,
        base_url: str,
        consumer_key: str,
        consumer_secret: str,
        timeout: float = 15.0,
        session=None,
    ):
        self.api_url = f"{base_url.rstrip('/')}/wp-json/wc/v3"
        self.auth = (consumer_key, consumer_secret)
        self.timeout = timeout
        self.session = session or requests.Session()

    def request(self, method: str, endpoint: str, *, json=None, params=None):
        url = f"{self.api_url}{endpoint}"
        try:
            resp = self.session.request(
                method, url, json=json, params=params, auth=self.auth, timeout=self.timeout
            )
        except requests.Timeout as e:
            raise UpstreamUnavailable(
                f"WooCommerce timeout on {method} {endpoint}", code="WOO_TIMEOUT"
            ) from e
        except requests.RequestException as e:
            raise UpstreamUnavailable(
                f"WooCommerce unreachable on {method} {endpoint}: {e}", code="WOO_UNREACHABLE"
            ) from e

        status = resp.status_code
        if status >= 500 or status == 429:
            raise UpstreamUnavailable(
                f"WooCommerce returned {status} on {method} {endpoint}", code="WOO_UNAVAILABLE"
            )
        if status in (401, 403):
            raise UpstreamUnavailable(
                f"WooCommerce rejected the API credentials ({status})", code="WOO_AUTH"
            )
        if status == 404:
            raise WooNotFound(f"WooCommerce resource not found: {endpoint}")
        if not resp.ok:
            data = _json_or_empty(resp)
            raise ValidationError(
                data.get("message") or f"WooCommerce rejected {method} {endpoint} ({status})",
                code=str(data.get("code") or "WOO_REJECTED").upper(),
            )
        return resp.json()

    # === Ordenes ===
    def get_order(self, order_id: int) -> Dict[str, Any]:
        return self.request("GET", f"/orders/{order_id}")

    def update_order(self, order_id: int, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("PUT", f"/orders/{order_id}", json=data)

    def create_order(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return self.request("POST", "/orders", json=data)

    def add_order_note(self, order_id: int, note: str, customer_note: bool = False) -> Dict[str, Any]:
        return self.request(
            "POST", f"/orders/{order_id}/notes", json={"note": note, "customer_note": customer_note}
        )

    # === Cupones ===
    def find_coupon(self, code: str) -> Optional[Dict[str, Any]]:
        rows = self.request("GET", "/coupons", params={"code": code})
        if isinstance(rows, list) and rows:
            return rows[0]
        return None

    # === Catalogo ===
    def get_product(self, product_id: int) -> Dict[str, Any]:
        return self.request("GET", f"/products/{product_id}")

    def get_variation(self, product_id: int, variation_id: int) -> Dict[str, Any]:
        return self.request("GET", f"/products/{product_id}/variations/{variation_id}")
