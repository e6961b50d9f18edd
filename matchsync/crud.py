# matchsync/crud.py
"""Session-level helpers for `Document` rows.

These functions stage changes on the given session and flush; committing is
left to the caller so several calls can share one transaction.
"""
from sqlalchemy import select, delete
from sqlalchemy.orm import Session
from .models import Document
from typing import Dict, Any, List, Optional, Iterable, Tuple


def get_document(db: Session, collection: str, doc_id: str, for_update: bool = False) -> Optional[Document]:
    stmt = select(Document).where(Document.collection == collection, Document.doc_id == doc_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.execute(stmt).scalars().first()


def upsert_document(db: Session, collection: str, doc_id: str, data: Dict[str, Any], merge: bool = True):
    obj = get_document(db, collection, doc_id)
    if obj is None:
        obj = Document(collection=collection, doc_id=doc_id, data=dict(data))
        db.add(obj)
    elif merge:
        # JSON columns aren't mutation-tracked; assign a new dict
        obj.data = {**(obj.data or {}), **data}
    else:
        obj.data = dict(data)
    db.flush()
    return obj


def delete_document(db: Session, collection: str, doc_id: str) -> bool:
    obj = get_document(db, collection, doc_id)
    if obj is None:
        return False
    db.delete(obj)
    db.flush()
    return True


def delete_documents(db: Session, collection: str, doc_ids: Iterable[str]) -> int:
    ids = list(doc_ids)
    if not ids:
        return 0
    stmt = delete(Document).where(Document.collection == collection, Document.doc_id.in_(ids))
    res = db.execute(stmt)
    db.flush()
    return res.rowcount or 0


def list_documents(db: Session, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
    stmt = select(Document).where(Document.collection == collection).order_by(Document.doc_id)
    return [(obj.doc_id, dict(obj.data or {})) for obj in db.execute(stmt).scalars()]


def page_documents(db: Session, collection: str, limit: int, start_after: Optional[str] = None):
    stmt = select(Document).where(Document.collection == collection)
    if start_after is not None:
        stmt = stmt.where(Document.doc_id > start_after)
    stmt = stmt.order_by(Document.doc_id).limit(limit)
    return [(obj.doc_id, dict(obj.data or {})) for obj in db.execute(stmt).scalars()]
