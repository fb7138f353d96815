# billing/services/invoice_service.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional

from billing.errors import InvalidState, RemoteWriteFailure, Unauthorized, ValidationError
from billing.models.common import Result
from billing.models.invoice import Invoice, LineItem
from billing.services.calculator import compute_totals
from billing.services.session_service import Operator, OperatorSession
from billing.services.settings_service import Settings, load_settings
from billing.storage.document_store import DocumentStore, StoreError

logger = logging.getLogger(__name__)

INVOICES = "invoices"


class LifecycleState(str, Enum):
    NO_DRAFT = "NO_DRAFT"
    DRAFT_COMPUTED = "DRAFT_COMPUTED"
    PERSISTED = "PERSISTED"
    VIEWING = "VIEWING"


def _local_now() -> datetime:
    return datetime.now().astimezone()


def make_invoice_number(prefix: str, when: datetime) -> str:
    return f"{prefix}-{int(when.timestamp() * 1000)}"


class InvoiceService:
    """
    Cycle de vie d'une facture : NO_DRAFT -> DRAFT_COMPUTED -> PERSISTED (+ VIEWING).
    Seul propriétaire de la facture courante ; revient à NO_DRAFT à chaque
    changement d'opérateur (connexion / déconnexion).
    """

    def __init__(
        self,
        store: DocumentStore,
        session: OperatorSession,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _local_now,
    ) -> None:
        self.store = store
        self.session = session
        self.settings = settings or load_settings()
        self._clock = clock
        self._state = LifecycleState.NO_DRAFT
        self._current: Optional[Invoice] = None
        # incrémenté à chaque remplacement de la facture courante
        self._generation = 0
        self._lock = asyncio.Lock()
        self._unsubscribe = session.subscribe(self._on_operator_changed)

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def current(self) -> Optional[Invoice]:
        return self._current

    def close(self) -> None:
        self._unsubscribe()

    def _on_operator_changed(self, operator: Optional[Operator]) -> None:
        self.discard()

    def _replace(self, invoice: Optional[Invoice], state: LifecycleState) -> None:
        self._generation += 1
        self._current = invoice
        self._state = state
        logger.debug("Invoice state -> %s", state.value)

    # ----------- brouillon -----------
    def generate_draft(
        self, customer_name: str, customer_phone: str, line_items: Iterable[LineItem]
    ) -> Result[Invoice]:
        operator = self.session.current
        if operator is None:
            return Result.failure(Unauthorized("You must be logged in to generate a bill."))
        items = list(line_items)
        if not items:
            return Result.failure(ValidationError("Add at least one item to the bill."))

        totals = compute_totals(items, self.settings.tax_rate)
        now = self._clock()
        draft = Invoice(
            invoice_number=make_invoice_number(self.settings.invoice_prefix, now),
            date=now,
            customer_name=(customer_name or "").strip(),
            customer_phone=(customer_phone or "").strip(),
            items=items,
            subtotal=totals.subtotal,
            tax_amount=totals.tax_amount,
            grand_total=totals.grand_total,
            owner_id=operator.uid,
        )
        self._replace(draft, LifecycleState.DRAFT_COMPUTED)
        return Result.success(draft)

    async def save_draft(self, draft: Optional[Invoice] = None) -> Result[Invoice]:
        """
        Enregistre le brouillon courant avec un horodatage serveur.
        En cas d'échec, le brouillon reste en place : on peut relancer la même sauvegarde.
        """
        if not self.session.is_authenticated:
            return Result.failure(Unauthorized("You must be logged in to save a bill."))

        async with self._lock:
            if self._state is not LifecycleState.DRAFT_COMPUTED or self._current is None:
                return Result.failure(InvalidState("There is no unsaved draft to save."))
            if draft is not None and draft != self._current:
                return Result.failure(InvalidState("Only the current draft can be saved."))

            draft = self._current
            generation = self._generation
            try:
                ref = await self.store.create(INVOICES, draft.to_record(), server_timestamp_field="created_at")
            except StoreError as e:
                logger.warning("Error saving invoice %s: %s", draft.invoice_number, e)
                return Result.failure(RemoteWriteFailure("Failed to save the invoice. Please try again."))

            saved = draft.model_copy(update={"persisted_id": ref})
            if self._generation == generation:
                self._replace(saved, LifecycleState.PERSISTED)
            else:
                # brouillon abandonné (ou opérateur changé) pendant l'écriture
                logger.info("Invoice %s saved after its draft was dropped", saved.invoice_number)
            logger.info("Invoice %s saved as %s", saved.invoice_number, ref)
            return Result.success(saved)

    def discard(self) -> None:
        self._replace(None, LifecycleState.NO_DRAFT)

    def view(self, invoice: Invoice) -> Result[Invoice]:
        """Affiche une facture déjà enregistrée, telle quelle (aucun recalcul)."""
        if invoice.persisted_id is None:
            return Result.failure(InvalidState("Only saved invoices can be viewed from history."))
        self._replace(invoice, LifecycleState.VIEWING)
        return Result.success(invoice)
