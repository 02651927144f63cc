"""
Regalos (freebies) de los bundles flagship.

Un producto con `bundle_kind == "flagship"` lleva exactamente un regalo: la linea del
producto acompanante a precio 0 y cantidad 1, ligada por `parent_product_id`.
La marca se decide al sincronizar el catalogo; aqui nunca se compara por nombre.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import List, Optional

from ..core.errors import IntegrityViolation
from ..core.schemas import CartLine, CurrencyPrices


@dataclass(frozen=True)
class FreebieCompanion:
    product_id: int
    name: str
    price_usd: Optional[Decimal] = None
    price_eur: Optional[Decimal] = None


def companion_from_settings(settings) -> FreebieCompanion:
    return FreebieCompanion(
        product_id=settings.freebie_product_id,
        name=settings.freebie_name,
        price_usd=settings.freebie_price_usd,
        price_eur=settings.freebie_price_eur,
    )


def make_freebie(parent_product_id: int, companion: FreebieCompanion) -> CartLine:
    return CartLine(
        product_id=companion.product_id,
        quantity=1,
        name=companion.name,
        unit_price=CurrencyPrices(usd=companion.price_usd, eur=companion.price_eur),
        is_freebie=True,
        parent_product_id=parent_product_id,
        virtual=True,
    )


def check_freebie_integrity(
    lines: List[CartLine], companion: Optional[FreebieCompanion] = None
) -> None:
    """
    Cada regalo: padre presente y flagship, uno por padre, cantidad 1 y, si se conoce
    el acompanante, debe ser ese producto.
    """
    parents = {ln.product_id: ln.bundle_kind for ln in lines if not ln.is_freebie}
    seen = set()
    for ln in lines:
        if not ln.is_freebie:
            continue
        if ln.parent_product_id is None or ln.parent_product_id not in parents:
            raise IntegrityViolation(
                f"Free item {ln.product_id} has no parent product in the cart",
                code="FREEBIE_PARENT_MISSING",
            )
        if ln.parent_product_id in seen:
            raise IntegrityViolation(
                f"More than one free item for product {ln.parent_product_id}",
                code="FREEBIE_DUPLICATED",
            )
        if parents[ln.parent_product_id] != "flagship":
            raise IntegrityViolation(
                f"Product {ln.parent_product_id} does not include a free item",
                code="FREEBIE_PARENT_NOT_FLAGSHIP",
            )
        if companion is not None and ln.product_id != companion.product_id:
            raise IntegrityViolation(
                f"Product {ln.product_id} is not the bundled free item",
                code="FREEBIE_NOT_COMPANION",
            )
        if ln.quantity != 1:
            raise IntegrityViolation(
                f"Free item for product {ln.parent_product_id} must have quantity 1",
                code="FREEBIE_QUANTITY",
            )
        seen.add(ln.parent_product_id)


def has_freebie(lines: List[CartLine], parent_product_id: int) -> bool:
    return any(ln.is_freebie and ln.parent_product_id == parent_product_id for ln in lines)


def ensure_freebies(lines: List[CartLine], companion: FreebieCompanion) -> List[CartLine]:
    """Devuelve una lista nueva con el regalo de cada flagship que aun no lo tiene."""
    out = list(lines)
    for ln in lines:
        if ln.is_freebie or ln.bundle_kind != "flagship":
            continue
        if not has_freebie(out, ln.product_id):
            out.append(make_freebie(ln.product_id, companion))
    return out


def drop_orphan_freebies(lines: List[CartLine]) -> List[CartLine]:
    parents = {ln.product_id for ln in lines if not ln.is_freebie}
    return [ln for ln in lines if not ln.is_freebie or ln.parent_product_id in parents]
