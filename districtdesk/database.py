"""
database.py — Document Store Connection (Firestore / in-memory)
District Data Console

The console talks to a hierarchical collection/document namespace:

    users/{id}
    userAllocations/{userId}/allocations/{allocationId}
    districts/{district}/villages/{village}/data/{recordId}

Paths are tuples of segments. Document paths have an even number of
segments, collection paths an odd number.
"""

import copy
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, NamedTuple, Optional, Sequence, Tuple

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1.base_query import FieldFilter
from loguru import logger

from districtdesk.config import settings
from districtdesk.errors import StoreUnavailable

Path = Tuple[str, ...]


class StoredDocument(NamedTuple):
    id: str
    data: Dict[str, Any]


def _check_document_path(path: Sequence[str]) -> Path:
    path = tuple(path)
    if not path or len(path) % 2 != 0:
        raise ValueError(f"Not a document path: {'/'.join(path)}")
    return path


def _check_collection_path(path: Sequence[str]) -> Path:
    path = tuple(path)
    if len(path) % 2 != 1:
        raise ValueError(f"Not a collection path: {'/'.join(path)}")
    return path


# ── Batched writes ────────────────────────────────────────────────────────────
class WriteBatch:
    """
    Collects set/delete operations and commits them atomically.
    Holds at most `limit` operations (the backing store's per-batch ceiling).
    """

    def __init__(self, store: "DocumentStore", limit: int):
        self._store = store
        self.limit = limit
        self._ops: List[Tuple[str, Path, Optional[dict]]] = []

    def __len__(self) -> int:
        return len(self._ops)

    def _reserve(self) -> None:
        if len(self._ops) >= self.limit:
            raise ValueError(f"Write batch is full ({self.limit} operations).")

    def set(self, path: Sequence[str], data: dict) -> None:
        self._reserve()
        self._ops.append(("set", _check_document_path(path), data))

    def delete(self, path: Sequence[str]) -> None:
        self._reserve()
        self._ops.append(("delete", _check_document_path(path), None))

    async def commit(self) -> int:
        if not self._ops:
            return 0
        await self._store._commit(self._ops)
        committed = len(self._ops)
        self._ops = []
        return committed


# ── Store interface ───────────────────────────────────────────────────────────
class DocumentStore:
    """CRUD, equality queries, counts and batched writes over the namespace."""

    def __init__(self, batch_limit: int = 500):
        self.batch_limit = batch_limit

    def batch(self) -> WriteBatch:
        return WriteBatch(self, self.batch_limit)

    async def get(self, path: Sequence[str]) -> Optional[dict]:
        raise NotImplementedError

    async def set(self, path: Sequence[str], data: dict, merge: bool = False) -> None:
        raise NotImplementedError

    async def delete(self, path: Sequence[str]) -> None:
        raise NotImplementedError

    async def stream(
        self,
        collection: Sequence[str],
        where: Optional[List[Tuple[str, Any]]] = None,
    ) -> List[StoredDocument]:
        raise NotImplementedError

    async def count(self, collection: Sequence[str]) -> int:
        raise NotImplementedError

    async def _commit(self, ops: List[Tuple[str, Path, Optional[dict]]]) -> None:
        raise NotImplementedError

    async def close(self) -> None:
        pass


# ── Firestore ─────────────────────────────────────────────────────────────────
@contextmanager
def _translate_errors(action: str) -> Iterator[None]:
    try:
        yield
    except gcp_exceptions.GoogleAPICallError as e:
        logger.error(f"Firestore {action} failed: {e}")
        raise StoreUnavailable(f"Document store error during {action}: {e.message}") from e
    except gcp_exceptions.RetryError as e:
        logger.error(f"Firestore {action} timed out: {e}")
        raise StoreUnavailable(f"Document store timed out during {action}.") from e


class FirestoreStore(DocumentStore):
    def __init__(
        self,
        project: Optional[str] = None,
        database: Optional[str] = None,
        batch_limit: int = 500,
    ):
        super().__init__(batch_limit)
        kwargs = {}
        if project:
            kwargs["project"] = project
        if database:
            kwargs["database"] = database
        try:
            self._client = firestore.AsyncClient(**kwargs)
        except auth_exceptions.DefaultCredentialsError as e:
            raise StoreUnavailable(f"Firestore credentials not configured: {e}") from e

    async def get(self, path: Sequence[str]) -> Optional[dict]:
        path = _check_document_path(path)
        with _translate_errors(f"get {'/'.join(path)}"):
            snapshot = await self._client.document(*path).get()
        return snapshot.to_dict() if snapshot.exists else None

    async def set(self, path: Sequence[str], data: dict, merge: bool = False) -> None:
        path = _check_document_path(path)
        with _translate_errors(f"set {'/'.join(path)}"):
            await self._client.document(*path).set(data, merge=merge)

    async def delete(self, path: Sequence[str]) -> None:
        path = _check_document_path(path)
        with _translate_errors(f"delete {'/'.join(path)}"):
            await self._client.document(*path).delete()

    async def stream(
        self,
        collection: Sequence[str],
        where: Optional[List[Tuple[str, Any]]] = None,
    ) -> List[StoredDocument]:
        collection = _check_collection_path(collection)
        query = self._client.collection(*collection)
        for field, value in where or []:
            query = query.where(filter=FieldFilter(field, "==", value))
        with _translate_errors(f"query {'/'.join(collection)}"):
            return [StoredDocument(snap.id, snap.to_dict() or {}) async for snap in query.stream()]

    async def count(self, collection: Sequence[str]) -> int:
        collection = _check_collection_path(collection)
        with _translate_errors(f"count {'/'.join(collection)}"):
            results = await self._client.collection(*collection).count(alias="total").get()
        return int(results[0][0].value) if results else 0

    async def _commit(self, ops: List[Tuple[str, Path, Optional[dict]]]) -> None:
        batch = self._client.batch()
        for op, path, data in ops:
            ref = self._client.document(*path)
            if op == "set":
                batch.set(ref, data)
            else:
                batch.delete(ref)
        with _translate_errors(f"batch commit ({len(ops)} ops)"):
            await batch.commit()


# ── In-memory ─────────────────────────────────────────────────────────────────
def _deep_merge(target: dict, update: dict) -> dict:
    for key, value in update.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _deep_merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)
    return target


class MemoryStore(DocumentStore):
    """
    Process-local store with Firestore's namespace semantics: deleting a
    document leaves its subcollections in place.
    """

    def __init__(self, batch_limit: int = 500):
        super().__init__(batch_limit)
        self._docs: Dict[Path, dict] = {}
        self.committed_batches: List[int] = []

    async def get(self, path: Sequence[str]) -> Optional[dict]:
        doc = self._docs.get(_check_document_path(path))
        return copy.deepcopy(doc) if doc is not None else None

    async def set(self, path: Sequence[str], data: dict, merge: bool = False) -> None:
        path = _check_document_path(path)
        if merge and path in self._docs:
            _deep_merge(self._docs[path], data)
        else:
            self._docs[path] = copy.deepcopy(data)

    async def delete(self, path: Sequence[str]) -> None:
        self._docs.pop(_check_document_path(path), None)

    async def stream(
        self,
        collection: Sequence[str],
        where: Optional[List[Tuple[str, Any]]] = None,
    ) -> List[StoredDocument]:
        collection = _check_collection_path(collection)
        depth = len(collection)
        docs = [
            StoredDocument(path[-1], copy.deepcopy(data))
            for path, data in sorted(self._docs.items())
            if len(path) == depth + 1 and path[:depth] == collection
        ]
        for field, value in where or []:
            docs = [d for d in docs if d.data.get(field) == value]
        return docs

    async def count(self, collection: Sequence[str]) -> int:
        return len(await self.stream(collection))

    async def _commit(self, ops: List[Tuple[str, Path, Optional[dict]]]) -> None:
        for op, path, data in ops:
            if op == "set":
                self._docs[path] = copy.deepcopy(data)
            else:
                self._docs.pop(path, None)
        self.committed_batches.append(len(ops))


# ── Lifecycle helpers ─────────────────────────────────────────────────────────
_store: Optional[DocumentStore] = None


def create_store(backend: Optional[str] = None) -> DocumentStore:
    backend = (backend or settings.STORE_BACKEND).lower()
    if backend == "memory":
        return MemoryStore(batch_limit=settings.BATCH_WRITE_LIMIT)
    if backend == "firestore":
        return FirestoreStore(
            project=settings.FIRESTORE_PROJECT,
            database=settings.FIRESTORE_DATABASE,
            batch_limit=settings.BATCH_WRITE_LIMIT,
        )
    raise ValueError(f"Unknown STORE_BACKEND: {backend!r}")


async def init_store() -> DocumentStore:
    global _store
    if _store is None:
        _store = create_store()
        logger.info(f"Document store initialised ({type(_store).__name__}).")
    return _store


async def get_store() -> DocumentStore:
    """FastAPI dependency: the process-wide document store."""
    if _store is None:
        raise StoreUnavailable("Document store is not initialised.")
    return _store


async def close_store() -> None:
    global _store
    if _store is not None:
        await _store.close()
        _store = None
        logger.info("Document store closed.")
