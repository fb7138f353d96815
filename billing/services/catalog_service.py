from __future__ import annotations

import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from billing.errors import RemoteReadFailure, RemoteWriteFailure, ValidationError
from billing.models.common import Result
from billing.models.product import Product
from billing.storage.document_store import Document, DocumentStore, StoreError

logger = logging.getLogger(__name__)

PRODUCTS = "products"

# Catalogue embarqué : utilisé tant que le magasin distant est vide ou injoignable.
DEFAULT_PRODUCTS: Tuple[Product, ...] = (
    Product(id=1, name="Groundnut Oil 1L", price=Decimal("250")),
    Product(id=2, name="Groundnut Oil 5L", price=Decimal("1200")),
    Product(id=3, name="Groundnut Oil 15L Tin", price=Decimal("3450")),
    Product(id=4, name="Cottonseed Oil 1L", price=Decimal("180")),
    Product(id=5, name="Sesame Oil 1L", price=Decimal("360")),
    Product(id=6, name="Groundnut Oil Cake 1kg", price=Decimal("60")),
)


# ---------- Helpers (prix & validation) ---------- #

def parse_price(value: Any) -> Decimal:
    """
    Accepte Decimal / int / float / str ("18,50" -> 18.50).
    Lève ValidationError si le prix n'est pas un montant fini > 0.
    """
    if isinstance(value, bool) or value is None:
        raise ValidationError("Enter a valid price greater than 0.")
    if isinstance(value, Decimal):
        amount = value
    else:
        txt = str(value).strip().replace(",", ".")
        try:
            amount = Decimal(txt)
        except InvalidOperation:
            raise ValidationError("Enter a valid price greater than 0.") from None
    if not amount.is_finite() or amount <= 0:
        raise ValidationError("Enter a valid price greater than 0.")
    return amount


def validate_product_input(name: Any, price: Any) -> Tuple[str, Decimal]:
    name = str(name).strip() if name is not None else ""
    if not name:
        raise ValidationError("Product name is required.")
    return name, parse_price(price)


def _price_text(price: Decimal) -> str:
    return format(price.normalize(), "f")


# ----------------- Service Catalogue ----------------- #

class CatalogService:
    """
    Catalogue de travail (en mémoire) réconcilié avec la collection distante "products".
    - load : remplace le catalogue par la collection distante, sinon DEFAULT_PRODUCTS
    - add : écriture distante d'abord, ajout local seulement si elle réussit
    - delete : suppression distante d'abord, retrait local seulement ensuite
    Les mutations sont sérialisées : l'id suivant est toujours calculé sur le dernier
    catalogue confirmé.
    """

    def __init__(self, store: DocumentStore, defaults: Tuple[Product, ...] = DEFAULT_PRODUCTS) -> None:
        self.store = store
        self.defaults = tuple(defaults)
        self._products: List[Product] = list(self.defaults)
        self._lock = asyncio.Lock()

    @property
    def products(self) -> Tuple[Product, ...]:
        return tuple(self._products)

    def get(self, product_id: int) -> Optional[Product]:
        for p in self._products:
            if p.id == product_id:
                return p
        return None

    def next_id(self) -> int:
        return max([p.id for p in self._products] + [0]) + 1

    def search(self, term: str) -> List[Product]:
        term = (term or "").strip().lower()
        if not term:
            return list(self._products)
        return [
            p for p in self._products
            if term in p.name.lower() or term in str(p.id) or term in _price_text(p.price)
        ]

    # ---------- Helpers (hydratation) ---------- #

    @staticmethod
    def _hydrate(doc: Document) -> Product:
        d = doc.data
        return Product(id=int(d["id"]), name=d["name"], price=parse_price(d["price"]), remote_ref=doc.ref)

    def _fallback(self) -> None:
        self._products = list(self.defaults)

    # ---------- API ---------- #

    async def load(self) -> Result[Tuple[Product, ...]]:
        # même verrou que add/delete : pas d'id calculé sur un catalogue en cours de remplacement
        async with self._lock:
            try:
                docs = await self.store.list(PRODUCTS, order_by="id")
                loaded = [self._hydrate(d) for d in docs]
            except (StoreError, KeyError, TypeError, ValueError, PydanticValidationError) as e:
                logger.warning("Failed to load products, using defaults: %s", e)
                self._fallback()
                return Result.failure(RemoteReadFailure(f"Failed to load products: {e}"))

            if not loaded:
                logger.info("No products in store, using defaults")
                self._fallback()
            else:
                self._products = loaded
            return Result.success(self.products)

    async def add(self, name: Any, price: Any) -> Result[Product]:
        try:
            name, amount = validate_product_input(name, price)
        except ValidationError as e:
            return Result.failure(e)

        async with self._lock:
            new_id = self.next_id()
            try:
                ref = await self.store.create(PRODUCTS, {"id": new_id, "name": name, "price": str(amount)})
            except StoreError as e:
                logger.warning("Failed to add product %r: %s", name, e)
                return Result.failure(RemoteWriteFailure("Failed to add product. Please try again."))
            product = Product(id=new_id, name=name, price=amount, remote_ref=ref)
            self._products.append(product)

        logger.info("Product %s (%s) added", product.id, product.name)
        return Result.success(product)

    async def delete(self, product_id: int, remote_ref: Optional[str] = None) -> Result[bool]:
        """
        Retourne True si un produit a été retiré du catalogue de travail.
        Un produit sans document distant (catalogue par défaut) n'est retiré que localement.
        Les factures déjà enregistrées ne sont pas touchées (lignes = snapshots).
        """
        async with self._lock:
            ref = remote_ref
            if ref is None:
                match = next((p for p in self._products if p.id == product_id and p.remote_ref), None)
                ref = match.remote_ref if match else None

            if ref is not None:
                try:
                    await self.store.delete(PRODUCTS, ref)
                except StoreError as e:
                    logger.warning("Failed to delete product %s from store: %s", product_id, e)
                    return Result.failure(RemoteWriteFailure("Failed to delete product from database."))

            before = len(self._products)
            self._products = [p for p in self._products if p.id != product_id]
            removed = len(self._products) != before

        if removed:
            logger.info("Product %s deleted", product_id)
        return Result.success(removed)
