from __future__ import annotations
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, NamedTuple, Union

from billing.models.invoice import LineItem

TWO_PLACES = Decimal("0.01")


class Totals(NamedTuple):
    subtotal: Decimal
    tax_amount: Decimal
    grand_total: Decimal


def compute_totals(line_items: Iterable[LineItem], tax_rate: Union[Decimal, str, int]) -> Totals:
    """
    Sous-total, taxe et total TTC en arithmétique décimale exacte.
    Aucun arrondi ici : l'arrondi à 2 décimales est réservé à l'affichage.
    """
    rate = Decimal(str(tax_rate)) if not isinstance(tax_rate, Decimal) else tax_rate
    subtotal = sum((item.product.price * item.quantity for item in line_items), Decimal("0"))
    tax_amount = subtotal * rate
    return Totals(subtotal, tax_amount, subtotal + tax_amount)


def format_money(amount: Decimal, symbol: str = "") -> str:
    txt = f"{Decimal(amount).quantize(TWO_PLACES, rounding=ROUND_HALF_UP):.2f}"
    return f"{symbol}{txt}" if symbol else txt
