"""Tests for the draft -> persisted invoice lifecycle."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError

from billing.errors import InvalidState, RemoteWriteFailure, Unauthorized, ValidationError
from billing.models.invoice import LineItem
from billing.models.product import Product
from billing.services.invoice_service import INVOICES, InvoiceService, LifecycleState, make_invoice_number
from billing.services.session_service import Operator, OperatorSession

NEW_YEAR = datetime(2026, 1, 1, tzinfo=timezone.utc)
OIL = Product(id=1, name="Groundnut Oil 1L", price=Decimal("250"))


def ticking_clock(start=NEW_YEAR, step=timedelta(seconds=1)):
    state = {"now": start - step}

    def clock():
        state["now"] += step
        return state["now"]

    return clock


def _items(qty=3):
    return [LineItem(product=OIL, quantity=qty, line_id="l1")]


def _service(store, session, settings):
    return InvoiceService(store, session, settings, clock=ticking_clock())


class TestGenerateDraft:
    def test_requires_operator(self, store, settings):
        svc = _service(store, OperatorSession(), settings)

        result = svc.generate_draft("Ramesh", "", _items())

        assert isinstance(result.error, Unauthorized)
        assert svc.state is LifecycleState.NO_DRAFT
        assert svc.current is None
        assert store.calls == []

    def test_computes_totals_and_identity(self, store, session, settings):
        svc = _service(store, session, settings)

        draft = svc.generate_draft(" Ramesh ", "98250 00000", _items()).unwrap()

        assert svc.state is LifecycleState.DRAFT_COMPUTED
        assert draft.is_draft
        assert draft.invoice_number == "BSMOM-1767225600000"
        assert draft.owner_id == "op-1"
        assert draft.customer_name == "Ramesh"
        assert (draft.subtotal, draft.tax_amount, draft.grand_total) == (
            Decimal("750.00"), Decimal("37.50"), Decimal("787.50"),
        )
        assert store.calls == []

    def test_regenerate_replaces_draft(self, store, session, settings):
        svc = _service(store, session, settings)
        first = svc.generate_draft("A", "", _items(1)).unwrap()

        second = svc.generate_draft("A", "", _items(2)).unwrap()

        assert svc.current == second
        assert second.invoice_number != first.invoice_number
        assert second.subtotal == Decimal("500")
        assert store.calls == []

    def test_empty_bill_rejected(self, store, session, settings):
        svc = _service(store, session, settings)

        assert isinstance(svc.generate_draft("A", "", []).error, ValidationError)
        assert svc.state is LifecycleState.NO_DRAFT

    def test_invoice_number_format(self):
        assert make_invoice_number("INV", NEW_YEAR + timedelta(milliseconds=42)) == "INV-1767225600042"


class TestSaveDraft:
    def test_save_persists_and_assigns_id(self, store, json_store, session, settings):
        svc = _service(store, session, settings)
        draft = svc.generate_draft("Ramesh", "", _items()).unwrap()

        saved = asyncio.run(svc.save_draft(draft)).unwrap()

        assert svc.state is LifecycleState.PERSISTED
        assert saved.persisted_id
        assert svc.current == saved
        assert saved.grand_total == draft.grand_total
        doc = asyncio.run(json_store.get(INVOICES, saved.persisted_id))
        assert doc.data["invoice_number"] == draft.invoice_number
        assert doc.data["owner_id"] == "op-1"
        assert doc.data["created_at"]
        assert Decimal(doc.data["grand_total"]) == Decimal("787.50")

    def test_saved_lines_cannot_change(self, store, session, settings):
        svc = _service(store, session, settings)
        draft = svc.generate_draft("Ramesh", "", _items()).unwrap()

        saved = asyncio.run(svc.save_draft(draft)).unwrap()

        assert isinstance(saved.items, tuple)
        with pytest.raises(AttributeError):
            saved.items.append(saved.items[0])
        with pytest.raises(PydanticValidationError):
            saved.items = ()
        assert len(saved.items) == len(draft.items) == 1

    def test_failure_keeps_draft_and_retry_succeeds(self, store, session, settings):
        svc = _service(store, session, settings)
        draft = svc.generate_draft("Ramesh", "", _items()).unwrap()
        store.fail_writes = True

        failed = asyncio.run(svc.save_draft(draft))

        assert isinstance(failed.error, RemoteWriteFailure)
        assert svc.state is LifecycleState.DRAFT_COMPUTED
        assert svc.current is draft

        store.fail_writes = False
        saved = asyncio.run(svc.save_draft(draft)).unwrap()

        assert saved.invoice_number == draft.invoice_number
        assert svc.state is LifecycleState.PERSISTED

    def test_requires_operator(self, store, session, settings):
        svc = _service(store, session, settings)
        svc.generate_draft("Ramesh", "", _items())
        session.logout()

        result = asyncio.run(svc.save_draft())

        assert isinstance(result.error, Unauthorized)
        assert "create" not in store.calls

    def test_nothing_to_save(self, store, session, settings):
        svc = _service(store, session, settings)

        assert isinstance(asyncio.run(svc.save_draft()).error, InvalidState)

    def test_second_save_rejected(self, store, session, settings):
        svc = _service(store, session, settings)
        draft = svc.generate_draft("Ramesh", "", _items()).unwrap()
        asyncio.run(svc.save_draft(draft))

        result = asyncio.run(svc.save_draft(draft))

        assert isinstance(result.error, InvalidState)
        assert store.calls.count("create") == 1

    def test_overlapping_saves_write_once(self, store, session, settings):
        svc = _service(store, session, settings)
        svc.generate_draft("Ramesh", "", _items())

        async def go():
            return await asyncio.gather(svc.save_draft(), svc.save_draft())

        first, second = asyncio.run(go())

        assert first.ok
        assert isinstance(second.error, InvalidState)
        assert store.calls.count("create") == 1

    def test_stale_draft_rejected(self, store, session, settings):
        svc = _service(store, session, settings)
        old = svc.generate_draft("A", "", _items(1)).unwrap()
        svc.generate_draft("A", "", _items(2))

        assert isinstance(asyncio.run(svc.save_draft(old)).error, InvalidState)

    def test_draft_replaced_while_saving(self, store, session, settings):
        svc = _service(store, session, settings)
        svc.generate_draft("A", "", _items(1))

        async def go():
            store.gate = asyncio.Event()
            task = asyncio.create_task(svc.save_draft())
            await asyncio.sleep(0)
            newer = svc.generate_draft("B", "", _items(2)).unwrap()
            store.gate.set()
            return newer, await task

        newer, result = asyncio.run(go())

        assert result.ok
        assert svc.state is LifecycleState.DRAFT_COMPUTED
        assert svc.current == newer


class TestTransitions:
    def test_discard(self, store, session, settings):
        svc = _service(store, session, settings)
        svc.generate_draft("A", "", _items())

        svc.discard()

        assert svc.state is LifecycleState.NO_DRAFT
        assert svc.current is None
        assert store.calls == []

    def test_view_keeps_stored_totals(self, store, session, settings):
        svc = _service(store, session, settings)
        draft = svc.generate_draft("A", "", _items()).unwrap()
        saved = asyncio.run(svc.save_draft()).unwrap()
        odd = saved.model_copy(update={"grand_total": Decimal("1.23")})
        svc.discard()

        viewed = svc.view(odd).unwrap()

        assert svc.state is LifecycleState.VIEWING
        assert viewed.grand_total == Decimal("1.23")
        assert svc.current is odd
        assert draft.grand_total == Decimal("787.50")

    def test_view_rejects_draft(self, store, session, settings):
        svc = _service(store, session, settings)
        draft = svc.generate_draft("A", "", _items()).unwrap()

        assert isinstance(svc.view(draft).error, InvalidState)

    def test_operator_change_resets(self, store, session, settings):
        svc = _service(store, session, settings)
        svc.generate_draft("A", "", _items())

        session.login(Operator(uid="op-2"))

        assert svc.state is LifecycleState.NO_DRAFT
        assert svc.current is None

    def test_close_unsubscribes(self, store, session, settings):
        svc = _service(store, session, settings)
        svc.generate_draft("A", "", _items())
        svc.close()

        session.logout()

        assert svc.state is LifecycleState.DRAFT_COMPUTED
