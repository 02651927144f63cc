from decimal import Decimal
from typing import List, Optional

from ..core.money import ZERO, money
from ..core.schemas import CartLine, Currency
from .vat import EU_COUNTRIES


def shipping_zone(country: Optional[str], home_country: str) -> str:
    country = (country or "").upper()
    if country == home_country.upper():
        return "home"
    if country in EU_COUNTRIES:
        return "eu"
    return "world"


def estimate_shipping(
    lines: List[CartLine], country: Optional[str], currency: Currency, settings
) -> Decimal:
    """Tarifa plana por zona; 0 si el carrito no tiene productos fisicos."""
    if not country:
        return ZERO
    if not any(not ln.is_freebie and not ln.virtual for ln in lines):
        return ZERO
    zone = shipping_zone(country, settings.home_country)
    rate = getattr(settings, f"shipping_{zone}_{currency.lower()}")
    return money(rate)
