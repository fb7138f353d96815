from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from billing.errors import FetchError
from billing.models.common import Result
from billing.models.invoice import Invoice
from billing.services.invoice_service import INVOICES
from billing.services.settings_service import Settings, load_settings
from billing.storage.document_store import Document, DocumentStore, StoreError

logger = logging.getLogger(__name__)


def format_date(value: datetime, fmt: str = "%d/%m/%Y") -> str:
    if value.tzinfo is not None:
        value = value.astimezone()
    return value.strftime(fmt)


def short_date(value: datetime) -> str:
    """Date courte en-IN sans zéros : 1/1/2026."""
    if value.tzinfo is not None:
        value = value.astimezone()
    return f"{value.day}/{value.month}/{value.year}"


def filter_invoices(invoices: Iterable[Invoice], term: str, date_format: str = "%d/%m/%Y") -> List[Invoice]:
    """
    Filtre local (n° de facture, nom client, date), insensible à la casse.
    La date est comparée au format configuré et à la forme courte sans zéros.
    """
    term = (term or "").strip().lower()
    if not term:
        return list(invoices)
    return [
        inv for inv in invoices
        if term in inv.invoice_number.lower()
        or term in inv.customer_name.lower()
        or term in format_date(inv.date, date_format).lower()
        or term in short_date(inv.date)
    ]


class HistoryService:
    """
    Factures enregistrées de l'opérateur, les plus récentes d'abord.
    Garde en cache le dernier résultat ; ce cache n'est qu'une vue en lecture seule.
    """

    def __init__(self, store: DocumentStore, settings: Optional[Settings] = None) -> None:
        self.store = store
        self.settings = settings or load_settings()
        self._invoices: Tuple[Invoice, ...] = ()

    @property
    def invoices(self) -> Tuple[Invoice, ...]:
        return self._invoices

    @staticmethod
    def _hydrate(doc: Document) -> Invoice:
        data = dict(doc.data)
        data["persisted_id"] = doc.ref
        # la date affichée est celle du serveur, pas celle du poste client
        data["date"] = data["created_at"]
        return Invoice.model_validate(data)

    async def list_invoices(self, owner_id: str) -> Result[Tuple[Invoice, ...]]:
        try:
            docs = await self.store.query(
                INVOICES,
                where=[("owner_id", "==", owner_id)],
                order_by="created_at",
                descending=True,
            )
        except StoreError as e:
            logger.warning("Failed to fetch invoice history for %s: %s", owner_id, e)
            self._invoices = ()
            return Result.failure(FetchError())

        out: List[Invoice] = []
        for doc in docs:
            try:
                out.append(self._hydrate(doc))
            except (PydanticValidationError, KeyError) as e:
                # on ignore les enregistrements illisibles pour ne pas casser l'historique
                logger.warning("Skipping unreadable invoice %s: %s", doc.ref, e)
        self._invoices = tuple(out)
        return Result.success(self._invoices)

    def filter(self, term: str) -> List[Invoice]:
        return filter_invoices(self._invoices, term, self.settings.date_format)
