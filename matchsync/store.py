# matchsync/store.py
"""Document-store abstraction the matching engine is written against.

A store holds schemaless JSON documents grouped by collection name and keyed
by a string id. `SqlDocumentStore` persists them through SQLAlchemy;
`MemoryDocumentStore` keeps them in a dict and is used by tests and local
tooling.
"""
import copy
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, ContextManager, Dict, Iterable, Iterator, List, Optional, Tuple

from sqlalchemy import text
from sqlalchemy.orm import sessionmaker

from . import crud

Doc = Dict[str, Any]


class Transaction(ABC):
    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Doc]: ...

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Doc, merge: bool = True) -> None: ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> None: ...


class DocumentStore(ABC):
    @abstractmethod
    def get(self, collection: str, doc_id: str) -> Optional[Doc]:
        """Return a copy of the document or None when it doesn't exist."""

    @abstractmethod
    def set(self, collection: str, doc_id: str, data: Doc, merge: bool = True) -> None:
        """Upsert a document. With `merge`, keys missing from `data` are kept."""

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool: ...

    @abstractmethod
    def delete_many(self, collection: str, doc_ids: Iterable[str]) -> int:
        """Delete several documents in one atomic batch."""

    @abstractmethod
    def stream(self, collection: str) -> List[Tuple[str, Doc]]:
        """All documents of a collection ordered by id."""

    @abstractmethod
    def page(self, collection: str, limit: int, start_after: Optional[str] = None) -> List[Tuple[str, Doc]]:
        """Up to `limit` documents ordered by id, strictly after the cursor id."""

    @abstractmethod
    def transaction(self) -> ContextManager[Transaction]:
        """Atomic read-modify-write; writes apply on exit, none on error."""

    def where(self, collection: str, field: str, value: Any) -> List[Tuple[str, Doc]]:
        return [(doc_id, data) for doc_id, data in self.stream(collection) if data.get(field) == value]

    def list_ids(self, collection: str) -> List[str]:
        return [doc_id for doc_id, _ in self.stream(collection)]


class _MemoryTransaction(Transaction):
    def __init__(self, store: "MemoryDocumentStore"):
        self._store = store
        self._writes: List[Tuple[str, str, Optional[Doc], bool]] = []

    def get(self, collection, doc_id):
        return self._store._read(collection, doc_id)

    def set(self, collection, doc_id, data, merge=True):
        self._writes.append((collection, doc_id, copy.deepcopy(data), merge))

    def delete(self, collection, doc_id):
        self._writes.append((collection, doc_id, None, False))

    def commit(self):
        for collection, doc_id, data, merge in self._writes:
            if data is None:
                self._store._docs.get(collection, {}).pop(doc_id, None)
            else:
                self._store._write(collection, doc_id, data, merge)


class MemoryDocumentStore(DocumentStore):
    def __init__(self, initial: Optional[Dict[str, Dict[str, Doc]]] = None):
        self._lock = threading.RLock()
        self._docs: Dict[str, Dict[str, Doc]] = copy.deepcopy(initial) if initial else {}

    def _read(self, collection, doc_id):
        data = self._docs.get(collection, {}).get(doc_id)
        return copy.deepcopy(data) if data is not None else None

    def _write(self, collection, doc_id, data, merge):
        docs = self._docs.setdefault(collection, {})
        if merge and doc_id in docs:
            docs[doc_id] = {**docs[doc_id], **copy.deepcopy(data)}
        else:
            docs[doc_id] = copy.deepcopy(data)

    def get(self, collection, doc_id):
        with self._lock:
            return self._read(collection, doc_id)

    def set(self, collection, doc_id, data, merge=True):
        with self._lock:
            self._write(collection, doc_id, data, merge)

    def delete(self, collection, doc_id):
        with self._lock:
            return self._docs.get(collection, {}).pop(doc_id, None) is not None

    def delete_many(self, collection, doc_ids):
        with self._lock:
            docs = self._docs.get(collection, {})
            return sum(1 for doc_id in list(doc_ids) if docs.pop(doc_id, None) is not None)

    def stream(self, collection):
        with self._lock:
            docs = self._docs.get(collection, {})
            return [(doc_id, copy.deepcopy(docs[doc_id])) for doc_id in sorted(docs)]

    def page(self, collection, limit, start_after=None):
        rows = self.stream(collection)
        if start_after is not None:
            rows = [row for row in rows if row[0] > start_after]
        return rows[:limit]

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        with self._lock:
            tx = _MemoryTransaction(self)
            yield tx
            tx.commit()

    def dump(self) -> Dict[str, Dict[str, Doc]]:
        with self._lock:
            return copy.deepcopy(self._docs)


class _SqlTransaction(Transaction):
    def __init__(self, db):
        self._db = db

    def get(self, collection, doc_id):
        # row lock, held until the transaction ends
        obj = crud.get_document(self._db, collection, doc_id, for_update=True)
        return dict(obj.data or {}) if obj is not None else None

    def set(self, collection, doc_id, data, merge=True):
        crud.upsert_document(self._db, collection, doc_id, data, merge=merge)

    def delete(self, collection, doc_id):
        crud.delete_document(self._db, collection, doc_id)


class SqlDocumentStore(DocumentStore):
    """Store backed by the `documents` table, one session per operation."""

    def __init__(self, session_factory: sessionmaker):
        self._session_factory = session_factory

    @contextmanager
    def _session(self):
        db = self._session_factory()
        try:
            yield db
            db.commit()
        except Exception:
            db.rollback()
            raise
        finally:
            db.close()

    def get(self, collection, doc_id):
        with self._session() as db:
            obj = crud.get_document(db, collection, doc_id)
            return dict(obj.data or {}) if obj is not None else None

    def set(self, collection, doc_id, data, merge=True):
        with self._session() as db:
            crud.upsert_document(db, collection, doc_id, data, merge=merge)

    def delete(self, collection, doc_id):
        with self._session() as db:
            return crud.delete_document(db, collection, doc_id)

    def delete_many(self, collection, doc_ids):
        with self._session() as db:
            return crud.delete_documents(db, collection, doc_ids)

    def stream(self, collection):
        with self._session() as db:
            return crud.list_documents(db, collection)

    def page(self, collection, limit, start_after=None):
        with self._session() as db:
            return crud.page_documents(db, collection, limit, start_after=start_after)

    @contextmanager
    def transaction(self) -> Iterator[Transaction]:
        """Serialized read-modify-write.

        Postgres locks every row read through the transaction (`FOR UPDATE`).
        SQLite has no row locks, so the database write lock is taken up front
        and concurrent transactions wait for it.
        """
        with self._session() as db:
            if db.get_bind().dialect.name == "sqlite":
                db.execute(text("BEGIN IMMEDIATE"))
            yield _SqlTransaction(db)
