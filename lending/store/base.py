"""Document store boundary used by the lending engine.

A store holds JSON-like documents addressed by (collection, id) and offers
optimistic multi-document transactions: reads remember the version they saw,
writes are buffered, and the commit applies every write only if none of the
documents read has changed in the meantime. Conflicting commits are retried
by re-running the whole callback against fresh state.
"""

import logging
import time
import uuid
from abc import ABC, abstractmethod
from collections import namedtuple
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from lending.config import settings
from lending.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")
DocKey = Tuple[str, str]
PendingWrite = namedtuple("PendingWrite", ["op", "collection", "doc_id", "data"])


class WriteConflict(Exception):
    """A document read by the transaction changed before it could commit."""


class DocumentMissing(LookupError):
    """An update targeted a document that does not exist."""


class DocumentExists(ValueError):
    """A create targeted an id that is already taken."""


class StoreTransaction:
    """Read-then-write scope handed to a `run_transaction` callback."""

    def __init__(self, store: "DocumentStore") -> None:
        self._store = store
        self.versions: Dict[DocKey, int] = {}
        self.writes: List[PendingWrite] = []

    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        if self.writes:
            raise RuntimeError("All reads must happen before the first write in a transaction.")
        data, version = self._store._read(collection, doc_id)
        self.versions.setdefault((collection, doc_id), version)
        return data

    def update(self, collection: str, doc_id: str, fields: Dict[str, Any]) -> None:
        self.writes.append(PendingWrite("update", collection, doc_id, dict(fields)))

    def create(self, collection: str, doc_id: str, data: Dict[str, Any]) -> None:
        self.writes.append(PendingWrite("create", collection, doc_id, dict(data)))

    def delete(self, collection: str, doc_id: str) -> None:
        self.writes.append(PendingWrite("delete", collection, doc_id, None))


class DocumentStore(ABC):
    def __init__(self, max_attempts: Optional[int] = None, retry_backoff: Optional[float] = None) -> None:
        self.max_attempts = max_attempts or settings.tx_max_attempts
        self.retry_backoff = settings.tx_retry_backoff if retry_backoff is None else retry_backoff

    # ------------------------- Adapter primitives ------------------------- #
    @abstractmethod
    def _read(self, collection: str, doc_id: str) -> Tuple[Optional[Dict[str, Any]], int]:
        """Returns (data, version); (None, 0) when the document is absent."""

    @abstractmethod
    def _commit(self, versions: Dict[DocKey, int], writes: List[PendingWrite]) -> None:
        """Atomically checks `versions` and applies `writes`, or raises WriteConflict."""

    @abstractmethod
    def create(self, collection: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        ...

    @abstractmethod
    def delete(self, collection: str, doc_id: str) -> bool:
        ...

    @abstractmethod
    def list_documents(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        ...

    # ------------------------- Shared behaviour ------------------------- #
    def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        return self._read(collection, doc_id)[0]

    def new_id(self) -> str:
        return uuid.uuid4().hex

    def run_transaction(self, callback: Callable[[StoreTransaction], T], max_attempts: Optional[int] = None) -> T:
        """Runs `callback` until its reads and writes commit together.

        Exceptions raised by the callback propagate untouched and nothing it
        buffered is written. Write conflicts are retried with exponential
        backoff; once the budget is spent a TransientStoreError is raised.
        """
        attempts = max_attempts or self.max_attempts
        last_conflict = None
        for attempt in range(attempts):
            txn = StoreTransaction(self)
            result = callback(txn)
            try:
                self._commit(txn.versions, txn.writes)
                return result
            except WriteConflict as exc:
                last_conflict = exc
                if attempt < attempts - 1:
                    delay = self.retry_backoff * (2 ** attempt)
                    logger.warning(f"Write conflict (attempt {attempt + 1}/{attempts}): {exc}; retrying in {delay:.3f}s")
                    time.sleep(delay)
        logger.error(f"Transaction abandoned after {attempts} conflicting attempts")
        raise TransientStoreError(attempts) from last_conflict
