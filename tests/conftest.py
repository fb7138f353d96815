"""Shared fixtures: a JSON-backed store wrapped in a controllable failing double."""

import asyncio
from typing import Any, Dict, List, Optional, Sequence

import pytest

from billing.services.session_service import Operator, OperatorSession
from billing.services.settings_service import Settings
from billing.storage.document_store import Document, DocumentStore, JsonDocumentStore, StoreError, Where


class FlakyStore(DocumentStore):
    """Delegates to a real store; can refuse reads/writes or hold them behind a gate."""

    def __init__(self, inner: DocumentStore):
        self.inner = inner
        self.fail_reads = False
        self.fail_writes = False
        self.gate: Optional[asyncio.Event] = None
        self.read_gate: Optional[asyncio.Event] = None
        self.calls: List[str] = []

    async def _write(self, op: str) -> None:
        self.calls.append(op)
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_writes:
            raise StoreError(f"{op} refused")

    async def _read(self, op: str) -> None:
        self.calls.append(op)
        if self.read_gate is not None:
            await self.read_gate.wait()
        if self.fail_reads:
            raise StoreError(f"{op} refused")

    async def create(self, collection: str, fields: Dict[str, Any], *, server_timestamp_field=None) -> str:
        await self._write("create")
        return await self.inner.create(collection, fields, server_timestamp_field=server_timestamp_field)

    async def get(self, collection: str, ref: str) -> Optional[Document]:
        await self._read("get")
        return await self.inner.get(collection, ref)

    async def list(self, collection: str, *, order_by=None, descending=False) -> List[Document]:
        await self._read("list")
        return await self.inner.list(collection, order_by=order_by, descending=descending)

    async def query(
        self, collection: str, *, where: Sequence[Where] = (), order_by=None, descending=False
    ) -> List[Document]:
        await self._read("query")
        return await self.inner.query(collection, where=where, order_by=order_by, descending=descending)

    async def delete(self, collection: str, ref: str) -> None:
        await self._write("delete")
        await self.inner.delete(collection, ref)


@pytest.fixture
def json_store(tmp_path):
    return JsonDocumentStore(tmp_path / "data", backup_keep=0)


@pytest.fixture
def store(json_store):
    return FlakyStore(json_store)


@pytest.fixture
def settings():
    return Settings()


@pytest.fixture
def operator():
    return Operator(uid="op-1", display_name="Counter 1")


@pytest.fixture
def session(operator):
    return OperatorSession(operator)
