import copy
import threading
from typing import Any, Dict, List, Optional, Tuple

from lending.store.base import (
    DocKey,
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    PendingWrite,
    WriteConflict,
)


class MemoryDocumentStore(DocumentStore):
    """Process-local store with the same transaction semantics as the SQLite one."""

    def __init__(self, max_attempts: Optional[int] = None, retry_backoff: Optional[float] = None) -> None:
        super().__init__(max_attempts=max_attempts, retry_backoff=retry_backoff)
        self._docs: Dict[DocKey, Tuple[Dict[str, Any], int]] = {}
        self._lock = threading.RLock()

    def _read(self, collection: str, doc_id: str) -> Tuple[Optional[Dict[str, Any]], int]:
        with self._lock:
            entry = self._docs.get((collection, doc_id))
            if entry is None:
                return None, 0
            return copy.deepcopy(entry[0]), entry[1]

    def _commit(self, versions: Dict[DocKey, int], writes: List[PendingWrite]) -> None:
        with self._lock:
            for key, seen in versions.items():
                entry = self._docs.get(key)
                current = entry[1] if entry else 0
                if current != seen:
                    raise WriteConflict(f"{key[0]}/{key[1]} changed since it was read")

            # Stage everything first so a failing write leaves no partial state.
            # A staged None marks a deleted document.
            staged: Dict[DocKey, Optional[Tuple[Dict[str, Any], int]]] = {}
            for write in writes:
                key = (write.collection, write.doc_id)
                entry = staged[key] if key in staged else self._docs.get(key)
                if write.op == "create":
                    if entry is not None:
                        raise DocumentExists(f"{write.collection}/{write.doc_id} already exists")
                    staged[key] = (copy.deepcopy(write.data), 1)
                    continue
                if entry is None:
                    raise DocumentMissing(f"{write.collection}/{write.doc_id} does not exist")
                if write.op == "delete":
                    staged[key] = None
                else:
                    data = copy.deepcopy(entry[0])
                    data.update(copy.deepcopy(write.data))
                    staged[key] = (data, entry[1] + 1)

            for key, entry in staged.items():
                if entry is None:
                    self._docs.pop(key, None)
                else:
                    self._docs[key] = entry

    def create(self, collection: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or self.new_id()
        with self._lock:
            if (collection, doc_id) in self._docs:
                raise DocumentExists(f"{collection}/{doc_id} already exists")
            self._docs[(collection, doc_id)] = (copy.deepcopy(data), 1)
        return doc_id

    def delete(self, collection: str, doc_id: str) -> bool:
        with self._lock:
            return self._docs.pop((collection, doc_id), None) is not None

    def list_documents(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        with self._lock:
            return [
                (doc_id, copy.deepcopy(data))
                for (coll, doc_id), (data, _) in self._docs.items()
                if coll == collection
            ]
