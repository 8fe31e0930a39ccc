"""
Document store abstraction.

The ride core talks to persistence only through ``DocumentStore``:

* ``insert`` / ``get`` / ``query`` -- plain document access keyed by
  ``(collection, id)``.
* ``transact(read_refs, mutation)`` -- read-decide-write, all or nothing.
* ``watch(query)`` -- live query: yields the matching documents now and
  again after every write that changes the result.

Concurrency model
-----------------
Optimistic.  Every document carries a version.  A ``Transaction`` records
the version of each document it reads; commit succeeds only if none of
them changed in the meantime.  On a ``WriteConflict`` the whole mutation is
re-run against fresh reads, up to ``max_attempts`` times.  Exceptions
raised by the mutation itself (domain errors) abort the transaction with
no writes and are never retried.

Documents are plain JSON-compatible dicts.  The ``id`` key is injected on
read and stripped on write; it is never stored inside the payload.
"""

from __future__ import annotations

import copy
import enum
import logging
import uuid
from abc import ABC, abstractmethod
from collections import defaultdict
from collections.abc import AsyncIterator, Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass, replace
from typing import Any, NamedTuple, Optional, TypeVar

from ladies_drive.domain.errors import TransactionFailed

from .change_feed import ChangeFeed, InProcessChangeFeed

logger = logging.getLogger(__name__)

Document = dict[str, Any]
T = TypeVar("T")


class DocRef(NamedTuple):
    collection: str
    id: str


class WriteConflict(Exception):
    """A document read by the transaction changed before commit."""


class StoreError(Exception):
    """The backend failed for a reason other than a write conflict."""


# ── Queries ───────────────────────────────────────────────────────────

_OPS = ("==", "!=", "in")


def _plain(value: Any) -> Any:
    if isinstance(value, enum.Enum):
        return value.value
    if isinstance(value, (list, tuple, set, frozenset)):
        return tuple(_plain(v) for v in value)
    return value


def lookup(doc: Document, path: str) -> Any:
    """Resolve a dotted *path* (``driver.id``) inside *doc*; missing -> None."""
    current: Any = doc
    for part in path.split("."):
        if not isinstance(current, dict):
            return None
        current = current.get(part)
    return current


@dataclass(frozen=True)
class FieldFilter:
    field: str
    op: str
    value: Any

    def matches(self, doc: Document) -> bool:
        actual = lookup(doc, self.field)
        if self.op == "==":
            return actual == self.value
        if self.op == "!=":
            return actual != self.value
        return actual in self.value


@dataclass(frozen=True)
class Query:
    """A collection plus field filters, optionally narrowed by a predicate.

    Field filters may be pushed down to the backend; the predicate always
    runs in Python on the candidate documents.
    """

    collection: str
    filters: tuple[FieldFilter, ...] = ()
    predicate: Optional[Callable[[Document], bool]] = None

    def where(self, field: str, op: str, value: Any) -> "Query":
        if op not in _OPS:
            raise ValueError(f"Unsupported operator {op!r}")
        value = _plain(value)
        if op == "in" and not isinstance(value, tuple):
            raise ValueError("'in' expects a collection of values")
        return replace(self, filters=self.filters + (FieldFilter(field, op, value),))

    def matching(self, predicate: Callable[[Document], bool]) -> "Query":
        return replace(self, predicate=predicate)

    def matches(self, doc: Document) -> bool:
        if not all(f.matches(doc) for f in self.filters):
            return False
        return self.predicate is None or self.predicate(doc)


# ── Transactions ──────────────────────────────────────────────────────


def with_id(ref: DocRef, data: Document) -> Document:
    return {**copy.deepcopy(data), "id": ref.id}


def strip_id(data: Document) -> Document:
    return {k: copy.deepcopy(v) for k, v in data.items() if k != "id"}


class Transaction:
    """One attempt of a read-decide-write unit.

    Reads go through the store and are remembered with their version.
    Writes are buffered until commit.  Reading a document already written
    in this transaction returns the buffered value.
    """

    def __init__(self, store: "DocumentStore"):
        self._store = store
        self._reads: dict[DocRef, tuple[Optional[int], Optional[Document]]] = {}
        self._writes: dict[DocRef, Document] = {}

    async def get(self, ref: DocRef) -> Optional[Document]:
        if ref in self._writes:
            return with_id(ref, self._writes[ref])
        if ref not in self._reads:
            self._reads[ref] = await self._store._read_versioned(ref)
        _, data = self._reads[ref]
        return None if data is None else with_id(ref, data)

    def set(self, ref: DocRef, data: Document) -> None:
        """Replace the whole document.  *ref* must have been read first."""
        self._require_read(ref)
        self._writes[ref] = strip_id(data)

    def update(self, ref: DocRef, fields: Document) -> None:
        """Merge *fields* into an existing document read in this transaction."""
        self._require_read(ref)
        base = self._writes.get(ref)
        if base is None:
            base = self._reads[ref][1]
        if base is None:
            raise StoreError(f"Cannot update missing document {ref.collection}/{ref.id}")
        self._writes[ref] = {**base, **strip_id(fields)}

    @property
    def read_versions(self) -> dict[DocRef, Optional[int]]:
        return {ref: version for ref, (version, _) in self._reads.items()}

    @property
    def writes(self) -> dict[DocRef, Document]:
        return dict(self._writes)

    def _require_read(self, ref: DocRef) -> None:
        if ref not in self._reads:
            raise StoreError(
                f"Document {ref.collection}/{ref.id} must be read before it is written"
            )


# ── Store ─────────────────────────────────────────────────────────────


class DocumentStore(ABC):
    def __init__(
        self, feed: Optional[ChangeFeed] = None, max_attempts: int = 5
    ):
        self.feed = feed or InProcessChangeFeed()
        self.max_attempts = max_attempts

    # backend hooks

    @abstractmethod
    async def _insert(self, ref: DocRef, data: Document) -> None: ...

    @abstractmethod
    async def _read_versioned(
        self, ref: DocRef
    ) -> tuple[Optional[int], Optional[Document]]: ...

    @abstractmethod
    async def _commit(
        self,
        reads: dict[DocRef, Optional[int]],
        writes: dict[DocRef, Document],
    ) -> None:
        """Apply *writes* iff every version in *reads* is unchanged.

        Raises ``WriteConflict`` otherwise and ``StoreError`` on any other
        backend failure.  Must be all-or-nothing.
        """

    @abstractmethod
    async def query(self, query: Query) -> list[Document]: ...

    # public API

    async def insert(
        self, collection: str, data: Document, doc_id: Optional[str] = None
    ) -> str:
        ref = DocRef(collection, doc_id or new_id())
        try:
            await self._insert(ref, strip_id(data))
        except StoreError as exc:
            raise TransactionFailed(str(exc)) from exc
        await self._notify([ref])
        return ref.id

    async def get(self, ref: DocRef) -> Optional[Document]:
        _, data = await self._read_versioned(ref)
        return None if data is None else with_id(ref, data)

    async def transact(
        self,
        read_refs: Sequence[DocRef],
        mutation: Callable[[Transaction], Awaitable[T]],
    ) -> T:
        """Run *mutation* atomically, re-running it on write conflicts."""
        for attempt in range(1, self.max_attempts + 1):
            tx = Transaction(self)
            try:
                for ref in read_refs:
                    await tx.get(ref)
                result = await mutation(tx)
                writes = tx.writes
                if not writes:
                    return result
                await self._commit(tx.read_versions, writes)
            except WriteConflict as exc:
                logger.debug(
                    "Write conflict on %s (attempt %d/%d)",
                    exc,
                    attempt,
                    self.max_attempts,
                )
                continue
            except StoreError as exc:
                raise TransactionFailed(str(exc)) from exc

            await self._notify(writes)
            return result

        logger.warning("Transaction gave up after %d attempts", self.max_attempts)
        raise TransactionFailed(
            f"Transaction gave up after {self.max_attempts} conflicting attempts"
        )

    async def watch(self, query: Query) -> AsyncIterator[list[Document]]:
        """Yield the current result of *query*, then every changed result."""
        async with self.feed.listen(query.collection) as changes:
            previous: Optional[list[Document]] = None
            while True:
                docs = await self.query(query)
                if docs != previous:
                    previous = docs
                    yield docs
                await changes.wait()

    async def _notify(self, refs: Iterable[DocRef]) -> None:
        by_collection: dict[str, set[str]] = defaultdict(set)
        for ref in refs:
            by_collection[ref.collection].add(ref.id)
        for collection, ids in by_collection.items():
            try:
                await self.feed.publish(collection, ids)
            except Exception:
                # the write is committed; live views catch up on the next change
                logger.exception("Failed to publish change notice for %s", collection)


def new_id() -> str:
    return uuid.uuid4().hex
