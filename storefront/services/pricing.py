"""
Motor de precios: carrito -> PricedCart. Funciones puras, sin I/O.

Reglas:
- Precio de reventa (reseller) si el cliente es reseller, la regla esta activa y
  quantity >= min_quantity.
- Cupon sobre las lineas elegibles (los regalos nunca son elegibles).
- Si reseller y cupon aplican a la misma linea, gana el menor total para el cliente;
  en empate se queda el precio reseller.
- Moneda explicita; si falta el precio en esa moneda se usa el de la otra, nunca 0.
"""
from decimal import Decimal
from typing import Dict, List, Optional, Sequence, Tuple

from ..core.errors import ValidationError
from ..core.money import ZERO, money
from ..core.schemas import CartLine, CouponResult, Currency, CurrencyPrices, PricedCart, PricedLine
from .freebies import FreebieCompanion, check_freebie_integrity, ensure_freebies

_OTHER = {"USD": "EUR", "EUR": "USD"}


def pick_price(prices: CurrencyPrices, currency: Currency) -> Optional[Decimal]:
    value = prices.get(currency)
    if value is None:
        value = prices.get(_OTHER[currency])
    return money(value) if value is not None else None


def unit_price(line: CartLine, currency: Currency) -> Decimal:
    value = pick_price(line.unit_price, currency)
    if value is None:
        raise ValidationError(
            f"Product {line.product_id} has no price in USD or EUR", code="PRICE_MISSING"
        )
    return value


def reseller_applies(line: CartLine, is_reseller: bool) -> bool:
    rule = line.reseller_pricing
    if not is_reseller or rule is None or line.is_freebie:
        return False
    return rule.enabled and line.quantity >= rule.min_quantity


def reseller_unit_price(line: CartLine, currency: Currency, is_reseller: bool) -> Optional[Decimal]:
    if not reseller_applies(line, is_reseller):
        return None
    price = pick_price(line.reseller_pricing.prices(), currency)
    if price is None:
        return None
    return min(price, unit_price(line, currency))


def coupon_eligible(coupon: CouponResult, line: CartLine) -> bool:
    if line.is_freebie:
        return False
    ids = {line.product_id}
    if line.variation_id is not None:
        ids.add(line.variation_id)
    if coupon.excluded_product_ids and ids & set(coupon.excluded_product_ids):
        return False
    if coupon.product_ids:
        return bool(ids & set(coupon.product_ids))
    return True


def coupon_discounts(
    coupon: CouponResult, candidates: Sequence[Tuple[int, CartLine, Decimal]]
) -> Dict[int, Decimal]:
    """
    Descuento por linea. `candidates` = (clave, linea, subtotal original de la linea).
    fixed_cart reparte el monto proporcionalmente; la ultima linea absorbe el redondeo.
    """
    if not candidates:
        return {}
    amount = money(coupon.amount)
    out: Dict[int, Decimal] = {}

    if coupon.discount_type == "percent":
        pct = min(amount, Decimal("100"))
        for key, _line, sub in candidates:
            out[key] = min(money(sub * pct / Decimal("100")), sub)
        return out

    if coupon.discount_type == "fixed_product":
        for key, line, sub in candidates:
            out[key] = min(money(amount * line.quantity), sub)
        return out

    # fixed_cart
    base = sum((sub for _k, _l, sub in candidates), ZERO)
    if base <= 0:
        return {key: ZERO for key, _l, _s in candidates}
    total = min(amount, base)
    remaining = total
    for pos, (key, _line, sub) in enumerate(candidates):
        if pos == len(candidates) - 1:
            share = min(remaining, sub)
        else:
            share = min(money(total * sub / base), sub, remaining)
        out[key] = share
        remaining -= share
    return out


def price_cart(
    lines: List[CartLine],
    currency: Currency,
    *,
    is_reseller: bool = False,
    coupon: Optional[CouponResult] = None,
    shipping_estimate: Decimal = ZERO,
    companion: Optional[FreebieCompanion] = None,
) -> PricedCart:
    # 1) Integridad de regalos: nunca debe llegar a la creacion de la orden
    check_freebie_integrity(lines, companion)
    if companion is not None:
        lines = ensure_freebies(lines, companion)

    # 2) Precio base y reseller por linea cobrable
    subtotals: Dict[int, Decimal] = {}
    originals: Dict[int, Decimal] = {}
    reseller_totals: Dict[int, Optional[Decimal]] = {}
    for i, line in enumerate(lines):
        if line.is_freebie:
            continue
        originals[i] = unit_price(line, currency)
        subtotals[i] = money(originals[i] * line.quantity)
        r_unit = reseller_unit_price(line, currency, is_reseller)
        reseller_totals[i] = money(r_unit * line.quantity) if r_unit is not None else None

    # 3) Cupon: nos quedamos solo con las lineas donde el cupon mejora el precio
    coupon_totals: Dict[int, Decimal] = {}
    if coupon is not None:
        takers = [i for i in subtotals if coupon_eligible(coupon, lines[i])]
        while True:
            disc = coupon_discounts(coupon, [(i, lines[i], subtotals[i]) for i in takers])
            keep = [
                i
                for i in takers
                if reseller_totals[i] is None or subtotals[i] - disc[i] < reseller_totals[i]
            ]
            if keep == takers:
                break
            takers = keep
        coupon_totals = {i: subtotals[i] - disc[i] for i in takers if disc[i] > 0}

    # 4) Lineas
    priced: List[PricedLine] = []
    reseller_discount = ZERO
    coupon_discount = ZERO
    for i, line in enumerate(lines):
        if line.is_freebie:
            shown = pick_price(line.unit_price, currency) or ZERO
            priced.append(
                PricedLine(
                    product_id=line.product_id,
                    variation_id=line.variation_id,
                    name=line.name,
                    quantity=line.quantity,
                    is_freebie=True,
                    parent_product_id=line.parent_product_id,
                    virtual=line.virtual,
                    original_price=shown,
                    effective_price=ZERO,
                    line_subtotal=ZERO,
                    line_total=ZERO,
                    discount_reason="none",
                )
            )
            continue

        sub = subtotals[i]
        if i in coupon_totals:
            total, reason = coupon_totals[i], "coupon"
            coupon_discount += sub - total
        elif reseller_totals[i] is not None:
            total, reason = reseller_totals[i], "reseller"
            reseller_discount += sub - total
        else:
            total, reason = sub, "none"
        priced.append(
            PricedLine(
                product_id=line.product_id,
                variation_id=line.variation_id,
                name=line.name,
                quantity=line.quantity,
                virtual=line.virtual,
                original_price=originals[i],
                effective_price=min(money(total / line.quantity), originals[i]),
                line_subtotal=sub,
                line_total=total,
                discount_reason=reason,
            )
        )

    # 5) Totales
    subtotal = sum(subtotals.values(), ZERO)
    discount_total = reseller_discount + coupon_discount
    free_shipping = bool(coupon and coupon.free_shipping)
    shipping = ZERO if free_shipping else money(shipping_estimate)
    return PricedCart(
        lines=priced,
        currency=currency,
        subtotal=money(subtotal),
        reseller_discount=money(reseller_discount),
        coupon_discount=money(coupon_discount),
        discount_total=money(discount_total),
        shipping_estimate=shipping,
        grand_total=money(subtotal - discount_total + shipping),
        coupon_code=coupon.code if coupon else None,
        free_shipping=free_shipping,
    )
