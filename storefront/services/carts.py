"""
Carrito explicito (CartStore) con frontera load/save, y mutaciones puras sobre lineas.

Invariantes:
- a lo sumo un regalo por producto padre;
- quitar el padre quita su regalo;
- cambiar la cantidad del padre no duplica ni quita el regalo.
"""
import json
from typing import List, Optional

from sqlalchemy.orm import Session

from ..core.errors import ValidationError
from ..core.schemas import CartLine
from ..models.cart import StoredCart
from .freebies import FreebieCompanion, check_freebie_integrity, drop_orphan_freebies, ensure_freebies


def add_item(
    lines: List[CartLine], item: CartLine, quantity: int, companion: FreebieCompanion
) -> List[CartLine]:
    if item.is_freebie:
        raise ValidationError("Free items are added automatically", code="FREEBIE_NOT_ADDABLE")
    if quantity <= 0:
        raise ValidationError("Quantity must be positive", code="INVALID_QUANTITY")

    out = []
    merged = False
    for ln in lines:
        if not merged and ln.same_item(item.product_id, item.variation_id):
            ln = ln.model_copy(update={"quantity": ln.quantity + quantity})
            merged = True
        out.append(ln)
    if not merged:
        out.append(item.model_copy(update={"quantity": quantity}))
    return ensure_freebies(out, companion)


def remove_item(
    lines: List[CartLine], product_id: int, variation_id: Optional[int] = None
) -> List[CartLine]:
    kept = [ln for ln in lines if not ln.same_item(product_id, variation_id)]
    return drop_orphan_freebies(kept)


def update_quantity(
    lines: List[CartLine], product_id: int, quantity: int, variation_id: Optional[int] = None
) -> List[CartLine]:
    if quantity <= 0:
        return remove_item(lines, product_id, variation_id)
    if not any(ln.same_item(product_id, variation_id) for ln in lines):
        raise ValidationError(f"Product {product_id} is not in the cart", code="NOT_IN_CART")
    return [
        ln.model_copy(update={"quantity": quantity}) if ln.same_item(product_id, variation_id) else ln
        for ln in lines
    ]


class CartStore:
    def __init__(self, db: Session):
        self.db = db

    def load(self, token: str) -> List[CartLine]:
        row = self.db.get(StoredCart, token)
        if row is None:
            return []
        data = json.loads(row.payload or "[]")
        return [CartLine.model_validate(d) for d in data]

    def save(self, token: str, lines: List[CartLine], user_id: Optional[str] = None) -> None:
        check_freebie_integrity(lines)
        payload = json.dumps([ln.model_dump(mode="json") for ln in lines])
        row = self.db.get(StoredCart, token)
        if row is None:
            row = StoredCart(token=token, user_id=user_id, payload=payload)
            self.db.add(row)
        else:
            row.payload = payload
            if user_id:
                row.user_id = user_id
        self.db.commit()

    def clear(self, token: str) -> None:
        row = self.db.get(StoredCart, token)
        if row is not None:
            self.db.delete(row)
            self.db.commit()
