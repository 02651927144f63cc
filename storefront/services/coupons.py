"""
Validacion de cupones contra WooCommerce.

Se re-valida en cada intento de checkout (no se cachea): uso, stock y vigencia pueden
cambiar entre el armado del carrito y el pago. Cualquier respuesta no exitosa se
traduce en CouponRejected, nunca en error fatal: el checkout sigue sin cupon.
"""
import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import Iterable, List, Optional, Union

from ..core.errors import StorefrontError
from ..core.money import ZERO, money, to_decimal
from ..core.schemas import CartLine, CouponRejected, CouponResult, Currency
from .pricing import coupon_discounts, coupon_eligible, unit_price

logger = logging.getLogger(__name__)

_TYPES = ("percent", "fixed_cart", "fixed_product")


def _parse_dt(v) -> Optional[datetime]:
    if not v:
        return None
    try:
        dt = datetime.fromisoformat(str(v).replace("Z", "+00:00"))
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _int(v) -> Optional[int]:
    try:
        return int(v)
    except (TypeError, ValueError):
        return None


def _ids(values) -> List[int]:
    return [i for i in (_int(v) for v in values or []) if i is not None]


def _reject(reason: str, message: str) -> CouponRejected:
    return CouponRejected(reason=reason, message=message)


def coupon_from_woo(raw: dict) -> CouponResult:
    return CouponResult(
        id=_int(raw.get("id")) or 0,
        code=str(raw.get("code") or "").upper(),
        discount_type=raw.get("discount_type"),
        amount=to_decimal(raw.get("amount")) or ZERO,
        description=raw.get("description") or "",
        free_shipping=bool(raw.get("free_shipping")),
        individual_use=bool(raw.get("individual_use")),
        product_ids=_ids(raw.get("product_ids")),
        excluded_product_ids=_ids(raw.get("excluded_product_ids")),
    )


class CouponValidator:
    def __init__(self, woo):
        self.woo = woo

    def validate(
        self,
        code: str,
        cart_lines: List[CartLine],
        currency: Currency = "EUR",
        customer_id: Optional[int] = None,
        customer_email: Optional[str] = None,
        applied_codes: Iterable[str] = (),
        now: Optional[datetime] = None,
    ) -> Union[CouponResult, CouponRejected]:
        code = (code or "").strip()
        if not code:
            return _reject("invalid_code", "Please enter a coupon code")

        # 1) Consulta remota; cualquier fallo es un rechazo, no un error
        try:
            raw = self.woo.find_coupon(code)
        except StorefrontError as e:
            logger.warning("Coupon lookup for %r failed: %s", code, e.message)
            return _reject("invalid_code", "Coupon could not be verified, please try again")
        if not raw or raw.get("discount_type") not in _TYPES:
            return _reject("invalid_code", f"Coupon \"{code}\" does not exist")
        if raw.get("status") not in (None, "publish"):
            return _reject("invalid_code", f"Coupon \"{code}\" is not active")

        # 2) Vigencia
        now = now or datetime.now(timezone.utc)
        expires = _parse_dt(raw.get("date_expires_gmt") or raw.get("date_expires"))
        if expires and expires < now:
            return _reject("expired", f"Coupon \"{code}\" has expired")

        # 3) Limites de uso (datos mal formados en WooCommerce: rechazo, no error)
        usage_limit = _int(raw.get("usage_limit"))
        if usage_limit:
            used = _int(raw.get("usage_count") or 0)
            if used is None:
                logger.warning("Coupon %r has a malformed usage_count: %r", code, raw.get("usage_count"))
                return _reject("invalid_code", "Coupon could not be verified, please try again")
            if used >= usage_limit:
                return _reject("not_eligible", "Coupon usage limit has been reached")
        per_user = _int(raw.get("usage_limit_per_user"))
        if per_user and (customer_id is not None or customer_email):
            used_by = [str(u).lower() for u in raw.get("used_by") or []]
            mine = {str(customer_id)} if customer_id is not None else set()
            if customer_email:
                mine.add(customer_email.lower())
            if sum(1 for u in used_by if u in mine) >= per_user:
                return _reject("not_eligible", "You have already used this coupon")

        restrictions = [e.lower() for e in raw.get("email_restrictions") or []]
        if restrictions and (not customer_email or customer_email.lower() not in restrictions):
            return _reject("not_eligible", "This coupon is not available for your account")

        coupon = coupon_from_woo(raw)
        others = [c.strip().upper() for c in applied_codes if c and c.strip().upper() != coupon.code]
        if others and coupon.individual_use:
            return _reject("not_eligible", "This coupon cannot be combined with other coupons")

        # 4) Productos elegibles y montos minimos/maximos
        chargeable = [ln for ln in cart_lines if not ln.is_freebie]
        eligible = [ln for ln in chargeable if coupon_eligible(coupon, ln)]
        if not eligible:
            return _reject("not_eligible", "Coupon does not apply to the products in your cart")

        subtotal = sum((money(unit_price(ln, currency) * ln.quantity) for ln in chargeable), ZERO)
        minimum = to_decimal(raw.get("minimum_amount")) or ZERO
        maximum = to_decimal(raw.get("maximum_amount")) or ZERO
        if minimum > 0 and subtotal < minimum:
            return _reject("not_eligible", f"Minimum order amount for this coupon is {minimum}")
        if maximum > 0 and subtotal > maximum:
            return _reject("not_eligible", f"Maximum order amount for this coupon is {maximum}")

        # 5) Vista previa del descuento (sin precios reseller)
        disc = coupon_discounts(
            coupon,
            [(i, ln, money(unit_price(ln, currency) * ln.quantity)) for i, ln in enumerate(eligible)],
        )
        coupon.discount_amount = money(sum(disc.values(), Decimal("0")))
        return coupon
