"""
SQLAlchemy ORM models.

Tables
------
* ``documents`` -- every ride and user document, one row each, payload
  stored as JSON.  ``version`` drives optimistic concurrency.

Indexes
-------
* **Unique** on ``(collection, doc_id)`` -- the document key.
* **B-Tree** on ``collection`` for the per-collection scans behind live
  queries.
"""

from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)

from .database import Base


class DocumentModel(Base):
    __tablename__ = "documents"

    # surrogate key also gives a stable insertion order
    pk = Column(Integer, primary_key=True, autoincrement=True)
    collection = Column(String(64), nullable=False)
    doc_id = Column(String(64), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    data = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        UniqueConstraint("collection", "doc_id", name="uq_documents_collection_doc"),
        Index("idx_documents_collection", "collection"),
    )
