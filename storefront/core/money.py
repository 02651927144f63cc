from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


def money(v) -> Decimal:
    return (
        v.quantize(CENT, rounding=ROUND_HALF_UP)
        if isinstance(v, Decimal)
        else Decimal(str(v)).quantize(CENT, rounding=ROUND_HALF_UP)
    )


def to_decimal(v) -> Optional[Decimal]:
    # WooCommerce devuelve montos como string ("149.00", "" o None)
    if v is None or v == "":
        return None
    try:
        return money(v)
    except ArithmeticError:
        return None
