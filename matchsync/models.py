# matchsync/models.py
"""SQLAlchemy ORM model backing the document store.

Every collection (listings, buyers, match snapshots, stats) lives in the
same `documents` table, keyed by `(collection, doc_id)`.
"""
from sqlalchemy import Column, Integer, Text, JSON, TIMESTAMP, func, Index, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from .db import Base


class Document(Base):
    __tablename__ = "documents"
    __table_args__ = (UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc"),)

    id = Column(Integer, primary_key=True, index=True)
    collection = Column(Text, nullable=False)
    doc_id = Column(Text, nullable=False)
    data = Column(JSON().with_variant(JSONB, "postgresql"), nullable=False, default=dict)
    created_at = Column(TIMESTAMP(timezone=True), server_default=func.now())
    updated_at = Column(TIMESTAMP(timezone=True), server_default=func.now(), onupdate=func.now())

Index("idx_documents_collection", Document.collection)
