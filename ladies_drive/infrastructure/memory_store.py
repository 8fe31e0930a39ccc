"""
In-memory ``DocumentStore``.

Used by the test-suite and by ``STORE_BACKEND=memory`` single-process
deployments.  Reads yield to the event loop, so concurrent transactions
interleave the way they do against a networked backend and the
optimistic version check is genuinely exercised.
"""

from __future__ import annotations

import asyncio
import copy
from collections import defaultdict
from typing import Optional

from .change_feed import ChangeFeed
from .store import Document, DocRef, DocumentStore, Query, StoreError, WriteConflict, with_id


class InMemoryDocumentStore(DocumentStore):
    def __init__(self, feed: Optional[ChangeFeed] = None, max_attempts: int = 5):
        super().__init__(feed, max_attempts)
        # collection -> doc id -> (version, data); dicts keep insertion order
        self._collections: dict[str, dict[str, tuple[int, Document]]] = defaultdict(dict)

    async def _insert(self, ref: DocRef, data: Document) -> None:
        bucket = self._collections[ref.collection]
        if ref.id in bucket:
            raise StoreError(f"Document {ref.collection}/{ref.id} already exists")
        bucket[ref.id] = (1, copy.deepcopy(data))

    async def _read_versioned(
        self, ref: DocRef
    ) -> tuple[Optional[int], Optional[Document]]:
        await asyncio.sleep(0)
        entry = self._collections.get(ref.collection, {}).get(ref.id)
        if entry is None:
            return None, None
        version, data = entry
        return version, copy.deepcopy(data)

    async def _commit(
        self,
        reads: dict[DocRef, Optional[int]],
        writes: dict[DocRef, Document],
    ) -> None:
        # no await between the check and the apply: atomic on the event loop
        for ref, expected in reads.items():
            if self._version_of(ref) != expected:
                raise WriteConflict(f"{ref.collection}/{ref.id}")
        for ref, data in writes.items():
            version = self._version_of(ref) or 0
            self._collections[ref.collection][ref.id] = (version + 1, copy.deepcopy(data))

    async def query(self, query: Query) -> list[Document]:
        await asyncio.sleep(0)
        bucket = self._collections.get(query.collection, {})
        docs = [with_id(DocRef(query.collection, doc_id), data) for doc_id, (_, data) in bucket.items()]
        return [doc for doc in docs if query.matches(doc)]

    def _version_of(self, ref: DocRef) -> Optional[int]:
        entry = self._collections.get(ref.collection, {}).get(ref.id)
        return None if entry is None else entry[0]
