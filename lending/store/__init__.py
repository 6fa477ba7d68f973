from lending.store.base import (
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    StoreTransaction,
    WriteConflict,
)
from lending.store.memory_store import MemoryDocumentStore
from lending.store.sqlite_store import SQLiteDocumentStore

__all__ = [
    "DocumentExists",
    "DocumentMissing",
    "DocumentStore",
    "StoreTransaction",
    "WriteConflict",
    "MemoryDocumentStore",
    "SQLiteDocumentStore",
]
