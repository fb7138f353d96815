from __future__ import annotations
from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from billing.errors import ValidationError
from billing.models.common import gen_id
from billing.models.invoice import LineItem
from billing.models.product import Product


def _check_quantity(quantity: int) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise ValidationError(f"quantity must be an integer >= 1 (got {quantity!r})")
    return quantity


class BillComposer:
    """
    Facture en cours de saisie : lignes indexées par line_id (ordre de saisie conservé)
    + nom/téléphone client. Purement en mémoire.
    """

    def __init__(self) -> None:
        self._lines: Dict[str, LineItem] = {}
        self.customer_name: str = ""
        self.customer_phone: str = ""

    def __len__(self) -> int:
        return len(self._lines)

    def items(self) -> List[LineItem]:
        return list(self._lines.values())

    def add_item(self, product: Product, quantity: int = 1, unit_price: Optional[Decimal] = None) -> LineItem:
        _check_quantity(quantity)
        snapshot = product.model_copy()
        if unit_price is not None:
            # même produit, autre tarif : nouvelle ligne distincte
            try:
                snapshot = Product(id=product.id, name=product.name, price=unit_price, remote_ref=product.remote_ref)
            except PydanticValidationError as e:
                raise ValidationError(f"invalid unit price {unit_price!r}") from e
        line = LineItem(product=snapshot, quantity=quantity, line_id=gen_id())
        self._lines[line.line_id] = line
        return line

    def remove_item(self, line_id: str) -> LineItem:
        return self._lines.pop(line_id)

    def set_quantity(self, line_id: str, quantity: int) -> LineItem:
        current = self._lines[line_id]
        _check_quantity(quantity)
        line = current.model_copy(update={"quantity": quantity})
        self._lines[line_id] = line
        return line

    def clear(self) -> None:
        self._lines.clear()
        self.customer_name = ""
        self.customer_phone = ""
