"""
Lineas del carrito resueltas contra el catalogo de WooCommerce.

Del cliente solo se aceptan producto, variacion y cantidad. Precio por moneda, regla
reseller, `bundle_kind` y `virtual` se leen del producto; los regalos se rehacen
desde la configuracion del acompanante.

Meta de producto:
- `_price_usd` / `_price_eur`: precio por moneda (si falta se usa `price` en la
  moneda de la tienda);
- `_bundle_kind`: `none` | `flagship`;
- `_reseller_pricing` (o el campo `reseller_pricing`): objeto o JSON con
  enabled, min_quantity, price_usd, price_eur.
"""
import json
import logging
from typing import Any, Dict, List, Optional

from ..core.errors import ValidationError
from ..core.money import to_decimal
from ..core.schemas import CartLine, CurrencyPrices, ResellerPricingRule
from .freebies import FreebieCompanion, check_freebie_integrity, make_freebie
from .woo_client import WooNotFound

logger = logging.getLogger(__name__)

_PURCHASABLE = ("publish",)


def _meta(raw: Dict[str, Any]) -> Dict[str, Any]:
    return {m.get("key"): m.get("value") for m in raw.get("meta_data") or [] if isinstance(m, dict)}


def _reseller_rule(raw: Dict[str, Any], meta: Dict[str, Any]) -> Optional[ResellerPricingRule]:
    value = raw.get("reseller_pricing") or meta.get("_reseller_pricing")
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            logger.warning("Product %s has an unreadable reseller rule", raw.get("id"))
            return None
    if not isinstance(value, dict):
        return None
    try:
        return ResellerPricingRule.model_validate(value)
    except ValueError:
        logger.warning("Product %s has an invalid reseller rule: %r", raw.get("id"), value)
        return None


def product_prices(raw: Dict[str, Any], store_currency: str = "EUR") -> CurrencyPrices:
    meta = _meta(raw)
    prices = {
        "usd": to_decimal(meta.get("_price_usd")),
        "eur": to_decimal(meta.get("_price_eur")),
    }
    key = store_currency.lower()
    if prices.get(key) is None:
        prices[key] = to_decimal(raw.get("price"))
    return CurrencyPrices(**prices)


def line_from_product(
    product: Dict[str, Any],
    quantity: int,
    variation: Optional[Dict[str, Any]] = None,
    store_currency: str = "EUR",
) -> CartLine:
    meta = _meta(product)
    kind = str(meta.get("_bundle_kind") or "none").lower()
    prices = product_prices(product, store_currency)
    if variation is not None:
        # La variacion manda en precio; el bundle se decide en el producto
        own = product_prices(variation, store_currency)
        prices = CurrencyPrices(
            usd=own.usd if own.usd is not None else prices.usd,
            eur=own.eur if own.eur is not None else prices.eur,
        )
    return CartLine(
        product_id=int(product["id"]),
        variation_id=int(variation["id"]) if variation is not None else None,
        quantity=quantity,
        name=str(product.get("name") or ""),
        unit_price=prices,
        bundle_kind="flagship" if kind == "flagship" else "none",
        reseller_pricing=_reseller_rule(product, meta),
        virtual=bool((variation or product).get("virtual")),
    )


class Catalog:
    def __init__(self, woo, store_currency: str = "EUR"):
        self.woo = woo
        self.store_currency = store_currency

    def _product(self, product_id: int, cache: Dict[int, Dict[str, Any]]) -> Dict[str, Any]:
        if product_id not in cache:
            try:
                cache[product_id] = self.woo.get_product(product_id)
            except WooNotFound:
                raise ValidationError(
                    f"Product {product_id} does not exist", code="PRODUCT_NOT_FOUND"
                ) from None
        product = cache[product_id]
        if product.get("status", "publish") not in _PURCHASABLE or product.get("purchasable") is False:
            raise ValidationError(
                f"Product {product_id} is not available for purchase", code="PRODUCT_UNAVAILABLE"
            )
        return product

    def _variation(self, product_id: int, variation_id: int) -> Dict[str, Any]:
        try:
            return self.woo.get_variation(product_id, variation_id)
        except WooNotFound:
            raise ValidationError(
                f"Variation {variation_id} of product {product_id} does not exist",
                code="PRODUCT_NOT_FOUND",
            ) from None

    def resolve(self, lines: List[CartLine], companion: FreebieCompanion) -> List[CartLine]:
        # 1) Lineas cobrables desde el catalogo
        cache: Dict[int, Dict[str, Any]] = {}
        out: List[CartLine] = []
        for ln in lines:
            if ln.is_freebie:
                continue
            product = self._product(ln.product_id, cache)
            variation = (
                self._variation(ln.product_id, ln.variation_id) if ln.variation_id is not None else None
            )
            out.append(line_from_product(product, ln.quantity, variation, self.store_currency))

        # 2) Regalos del cliente contra el bundle real; se reemplazan por los canonicos
        freebies = [ln for ln in lines if ln.is_freebie]
        check_freebie_integrity(out + freebies, companion)
        return out + [make_freebie(ln.parent_product_id, companion) for ln in freebies]
