"""
SQL-backed ``DocumentStore`` (PostgreSQL in production, SQLite in tests).

Each document is a row of ``documents``.  Transactions are optimistic:
reads happen in short sessions, and the commit runs in its own database
transaction that re-checks every version it read::

    UPDATE documents SET data = :data, version = :v + 1
     WHERE collection = :c AND doc_id = :id AND version = :v

A zero row-count means somebody else committed first -> ``WriteConflict``
and the base class re-runs the mutation.  No connection is held while the
mutation runs.

Query push-down
---------------
Top-level ``==`` / ``in`` filters on string values become JSON-path
comparisons (``data ->> 'status'`` on PostgreSQL, ``JSON_EXTRACT`` on
SQLite).  Everything is re-checked in Python afterwards, so push-down only
narrows the scan and never changes results.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .change_feed import ChangeFeed
from .models import DocumentModel
from .store import (
    Document,
    DocRef,
    DocumentStore,
    FieldFilter,
    Query,
    StoreError,
    WriteConflict,
    with_id,
)

logger = logging.getLogger(__name__)


class SqlDocumentStore(DocumentStore):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: Optional[ChangeFeed] = None,
        max_attempts: int = 5,
    ):
        super().__init__(feed, max_attempts)
        self.session_factory = session_factory

    async def _insert(self, ref: DocRef, data: Document) -> None:
        try:
            async with self._session() as session:
                session.add(
                    DocumentModel(
                        collection=ref.collection, doc_id=ref.id, version=1, data=data
                    )
                )
        except IntegrityError as exc:
            raise StoreError(
                f"Document {ref.collection}/{ref.id} already exists"
            ) from exc

    async def _read_versioned(
        self, ref: DocRef
    ) -> tuple[Optional[int], Optional[Document]]:
        async with self._session() as session:
            row = (
                await session.execute(
                    select(DocumentModel.version, DocumentModel.data).where(
                        DocumentModel.collection == ref.collection,
                        DocumentModel.doc_id == ref.id,
                    )
                )
            ).one_or_none()
        if row is None:
            return None, None
        return row.version, row.data

    async def _commit(
        self,
        reads: dict[DocRef, Optional[int]],
        writes: dict[DocRef, Document],
    ) -> None:
        try:
            async with self._session() as session:
                for ref, expected in reads.items():
                    if ref in writes:
                        continue
                    if await self._current_version(session, ref) != expected:
                        raise WriteConflict(f"{ref.collection}/{ref.id}")

                for ref, data in writes.items():
                    expected = reads[ref]
                    if expected is None:
                        session.add(
                            DocumentModel(
                                collection=ref.collection,
                                doc_id=ref.id,
                                version=1,
                                data=data,
                            )
                        )
                        await session.flush()
                        continue

                    result = await session.execute(
                        update(DocumentModel)
                        .where(
                            DocumentModel.collection == ref.collection,
                            DocumentModel.doc_id == ref.id,
                            DocumentModel.version == expected,
                        )
                        .values(data=data, version=expected + 1)
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        raise WriteConflict(f"{ref.collection}/{ref.id}")
        except IntegrityError as exc:
            # a concurrent insert of the same key won the race
            raise WriteConflict(str(exc.orig)) from exc

    async def query(self, query: Query) -> list[Document]:
        stmt = (
            select(DocumentModel.doc_id, DocumentModel.data)
            .where(DocumentModel.collection == query.collection)
            .order_by(DocumentModel.pk)
        )
        for f in query.filters:
            clause = _pushdown(f)
            if clause is not None:
                stmt = stmt.where(clause)

        async with self._session() as session:
            rows = (await session.execute(stmt)).all()

        docs = [with_id(DocRef(query.collection, row.doc_id), row.data) for row in rows]
        return [doc for doc in docs if query.matches(doc)]

    @asynccontextmanager
    async def _session(self):
        """Session in a transaction; commit on success, rollback on error."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield session
        except (WriteConflict, IntegrityError):
            raise
        except SQLAlchemyError as exc:
            logger.warning("Document store failure: %s", exc)
            raise StoreError(str(exc)) from exc

    @staticmethod
    async def _current_version(session: AsyncSession, ref: DocRef) -> Optional[int]:
        return (
            await session.execute(
                select(DocumentModel.version).where(
                    DocumentModel.collection == ref.collection,
                    DocumentModel.doc_id == ref.id,
                )
            )
        ).scalar_one_or_none()


def _pushdown(f: FieldFilter):
    if f.field == "id":
        column = DocumentModel.doc_id
    elif "." in f.field:
        return None
    else:
        column = DocumentModel.data[f.field].as_string()

    if f.op == "==" and isinstance(f.value, str):
        return column == f.value
    if f.op == "in" and f.value and all(isinstance(v, str) for v in f.value):
        return column.in_(f.value)
    return None
