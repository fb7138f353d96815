from __future__ import annotations

import abc
import asyncio
import logging
import os
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union
from uuid import uuid4

from pydantic import BaseModel, Field

from billing.storage.repo import JsonRepository

logger = logging.getLogger(__name__)

REF_KEY = "_ref"
DATA_DIR = Path(__file__).resolve().parents[2] / "data"

Where = Tuple[str, str, Any]


class StoreError(Exception):
    """Échec côté magasin distant (réseau, droits, fichier illisible...)."""


class Document(BaseModel):
    ref: str
    data: Dict[str, Any] = Field(default_factory=dict)


class DocumentStore(abc.ABC):
    """
    Contrat du magasin de documents consommé par les services.
    Toutes les opérations sont des coroutines ; les échecs lèvent StoreError.
    """

    @abc.abstractmethod
    async def create(
        self, collection: str, fields: Dict[str, Any], *, server_timestamp_field: Optional[str] = None
    ) -> str: ...

    @abc.abstractmethod
    async def get(self, collection: str, ref: str) -> Optional[Document]: ...

    @abc.abstractmethod
    async def list(
        self, collection: str, *, order_by: Optional[str] = None, descending: bool = False
    ) -> List[Document]: ...

    @abc.abstractmethod
    async def query(
        self,
        collection: str,
        *,
        where: Sequence[Where] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Document]: ...

    @abc.abstractmethod
    async def delete(self, collection: str, ref: str) -> None: ...


def _matches(data: Dict[str, Any], where: Sequence[Where]) -> bool:
    for field, op, value in where:
        if op != "==":
            raise StoreError(f"Unsupported query operator {op!r}")
        if data.get(field) != value:
            return False
    return True


def _ordered(docs: List[Document], order_by: Optional[str], descending: bool) -> List[Document]:
    if not order_by:
        return docs
    # comme un index distant : les documents sans le champ ne sont pas renvoyés
    present = [d for d in docs if d.data.get(order_by) is not None]
    return sorted(present, key=lambda d: d.data[order_by], reverse=descending)


class JsonDocumentStore(DocumentStore):
    """
    Magasin de documents local : un fichier JSON par collection (data/<collection>.json).
    Les références sont des uuid hex ; l'horodatage serveur est en UTC et strictement croissant.
    """

    def __init__(
        self,
        data_dir: Optional[Union[str, Path]] = None,
        *,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
        backup_keep: int = 5,
    ) -> None:
        base = data_dir or os.environ.get("BILLING_DATA_DIR") or DATA_DIR
        self.data_dir = Path(base)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._now = now
        self._backup_keep = backup_keep
        self._repos: Dict[str, JsonRepository] = {}
        self._repos_lock = threading.Lock()
        self._last_ts: Optional[datetime] = None
        self._ts_lock = threading.Lock()

    # ---------- Helpers ---------- #

    def _repo(self, collection: str) -> JsonRepository:
        with self._repos_lock:
            repo = self._repos.get(collection)
            if repo is None:
                repo = JsonRepository(
                    self.data_dir / f"{collection}.json",
                    entity_name=collection,
                    key=REF_KEY,
                    backup_keep=self._backup_keep,
                )
                self._repos[collection] = repo
            return repo

    def _server_timestamp(self) -> datetime:
        with self._ts_lock:
            ts = self._now()
            if self._last_ts is not None and ts <= self._last_ts:
                ts = self._last_ts + timedelta(microseconds=1)
            self._last_ts = ts
            return ts

    @staticmethod
    def _to_document(row: Dict[str, Any]) -> Document:
        data = {k: v for k, v in row.items() if k != REF_KEY}
        return Document(ref=str(row[REF_KEY]), data=data)

    async def _run(self, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except StoreError:
            raise
        except (OSError, ValueError, TypeError, KeyError) as e:
            raise StoreError(str(e)) from e

    # ---------- Sync ---------- #

    def _create_sync(self, collection: str, fields: Dict[str, Any], ts_field: Optional[str]) -> str:
        record = dict(fields)
        ref = uuid4().hex
        record[REF_KEY] = ref
        if ts_field:
            ts = self._server_timestamp().astimezone(timezone.utc)
            record[ts_field] = ts.isoformat(timespec="microseconds")
        self._repo(collection).add(record)
        return ref

    def _get_sync(self, collection: str, ref: str) -> Optional[Document]:
        row = self._repo(collection).get_by_id(ref)
        return self._to_document(row) if row is not None else None

    def _query_sync(
        self, collection: str, where: Sequence[Where], order_by: Optional[str], descending: bool
    ) -> List[Document]:
        rows = self._repo(collection).find(lambda r: REF_KEY in r and _matches(r, where))
        docs = [self._to_document(r) for r in rows]
        return _ordered(docs, order_by, descending)

    def _delete_sync(self, collection: str, ref: str) -> None:
        # document déjà absent : succès, comme une suppression distante
        if not self._repo(collection).delete(ref):
            logger.debug("%s/%s already absent", collection, ref)

    # ---------- API ---------- #

    async def create(
        self, collection: str, fields: Dict[str, Any], *, server_timestamp_field: Optional[str] = None
    ) -> str:
        ref = await self._run(self._create_sync, collection, fields, server_timestamp_field)
        logger.debug("Created %s/%s", collection, ref)
        return ref

    async def get(self, collection: str, ref: str) -> Optional[Document]:
        return await self._run(self._get_sync, collection, ref)

    async def list(
        self, collection: str, *, order_by: Optional[str] = None, descending: bool = False
    ) -> List[Document]:
        return await self._run(self._query_sync, collection, (), order_by, descending)

    async def query(
        self,
        collection: str,
        *,
        where: Sequence[Where] = (),
        order_by: Optional[str] = None,
        descending: bool = False,
    ) -> List[Document]:
        return await self._run(self._query_sync, collection, tuple(where), order_by, descending)

    async def delete(self, collection: str, ref: str) -> None:
        await self._run(self._delete_sync, collection, ref)
        logger.debug("Deleted %s/%s", collection, ref)
