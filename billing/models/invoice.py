from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from .product import Product


class LineItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product: Product  # snapshot, pas une référence vers le catalogue
    quantity: int = Field(default=1, ge=1)
    line_id: Optional[str] = None

    @property
    def line_total(self) -> Decimal:
        return self.product.price * self.quantity


class Invoice(BaseModel):
    """
    Brouillon tant que persisted_id est absent, facture persistée ensuite.
    Le modèle est figé : une facture n'est jamais modifiée en place,
    la persistance produit une copie (model_copy) avec l'id distant.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    invoice_number: str
    date: datetime
    customer_name: str = ""
    customer_phone: str = ""
    items: Tuple[LineItem, ...] = ()

    subtotal: Decimal
    tax_amount: Decimal
    grand_total: Decimal

    owner_id: str
    persisted_id: Optional[str] = None
    created_at: Optional[datetime] = None

    @property
    def is_draft(self) -> bool:
        return self.persisted_id is None

    def to_record(self) -> dict:
        """Forme stockée : tout sauf les champs attribués par le serveur."""
        return self.model_dump(mode="json", exclude={"persisted_id", "created_at"})
