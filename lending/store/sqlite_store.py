import json
import sqlite3
from typing import Any, Dict, List, Optional, Tuple

from lending.config import settings
from lending.database import get_db_connection, initialize_database
from lending.store.base import (
    DocKey,
    DocumentExists,
    DocumentMissing,
    DocumentStore,
    PendingWrite,
    WriteConflict,
)


def _is_lock_error(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return "locked" in message or "busy" in message


class SQLiteDocumentStore(DocumentStore):
    """Document store persisted in a single SQLite table.

    Every document row carries a version that is bumped on each update. A
    commit takes the database write lock (BEGIN IMMEDIATE), checks the
    versions its reads saw, applies the buffered writes and commits.
    """

    def __init__(
        self,
        db_file: Optional[str] = None,
        max_attempts: Optional[int] = None,
        retry_backoff: Optional[float] = None,
    ) -> None:
        super().__init__(max_attempts=max_attempts, retry_backoff=retry_backoff)
        self.db_file = db_file or settings.db_file
        initialize_database(self.db_file)

    def _read(self, collection: str, doc_id: str) -> Tuple[Optional[Dict[str, Any]], int]:
        conn = get_db_connection(self.db_file)
        try:
            row = conn.execute(
                "SELECT data, version FROM documents WHERE collection = ? AND id = ?",
                (collection, doc_id),
            ).fetchone()
        finally:
            conn.close()
        if row is None:
            return None, 0
        return json.loads(row["data"]), row["version"]

    def _commit(self, versions: Dict[DocKey, int], writes: List[PendingWrite]) -> None:
        conn = get_db_connection(self.db_file)
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for (collection, doc_id), seen in versions.items():
                    row = conn.execute(
                        "SELECT version FROM documents WHERE collection = ? AND id = ?",
                        (collection, doc_id),
                    ).fetchone()
                    current = row["version"] if row else 0
                    if current != seen:
                        raise WriteConflict(f"{collection}/{doc_id} changed since it was read")
                for write in writes:
                    self._apply(conn, write)
                conn.execute("COMMIT")
            except BaseException:
                if conn.in_transaction:
                    conn.execute("ROLLBACK")
                raise
        except sqlite3.OperationalError as exc:
            if _is_lock_error(exc):
                raise WriteConflict(f"database busy: {exc}") from exc
            raise
        finally:
            conn.close()

    @staticmethod
    def _apply(conn: sqlite3.Connection, write: PendingWrite) -> None:
        if write.op == "create":
            try:
                conn.execute(
                    "INSERT INTO documents (collection, id, data, version) VALUES (?, ?, ?, 1)",
                    (write.collection, write.doc_id, json.dumps(write.data, ensure_ascii=False)),
                )
            except sqlite3.IntegrityError as e:
                raise DocumentExists(f"{write.collection}/{write.doc_id} already exists") from e
            return

        if write.op == "delete":
            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?",
                (write.collection, write.doc_id),
            )
            if cursor.rowcount == 0:
                raise DocumentMissing(f"{write.collection}/{write.doc_id} does not exist")
            return

        row = conn.execute(
            "SELECT data FROM documents WHERE collection = ? AND id = ?",
            (write.collection, write.doc_id),
        ).fetchone()
        if row is None:
            raise DocumentMissing(f"{write.collection}/{write.doc_id} does not exist")
        data = json.loads(row["data"])
        data.update(write.data)
        conn.execute(
            """
            UPDATE documents
            SET data = ?, version = version + 1, updated_at = CURRENT_TIMESTAMP
            WHERE collection = ? AND id = ?
            """,
            (json.dumps(data, ensure_ascii=False), write.collection, write.doc_id),
        )

    def create(self, collection: str, data: Dict[str, Any], doc_id: Optional[str] = None) -> str:
        doc_id = doc_id or self.new_id()
        conn = get_db_connection(self.db_file)
        try:
            conn.execute(
                "INSERT INTO documents (collection, id, data, version) VALUES (?, ?, ?, 1)",
                (collection, doc_id, json.dumps(data, ensure_ascii=False)),
            )
        except sqlite3.IntegrityError as e:
            raise DocumentExists(f"{collection}/{doc_id} already exists") from e
        finally:
            conn.close()
        return doc_id

    def delete(self, collection: str, doc_id: str) -> bool:
        conn = get_db_connection(self.db_file)
        try:
            cursor = conn.execute(
                "DELETE FROM documents WHERE collection = ? AND id = ?", (collection, doc_id)
            )
            return cursor.rowcount > 0
        finally:
            conn.close()

    def list_documents(self, collection: str) -> List[Tuple[str, Dict[str, Any]]]:
        conn = get_db_connection(self.db_file)
        try:
            rows = conn.execute(
                "SELECT id, data FROM documents WHERE collection = ? ORDER BY created_at, id",
                (collection,),
            ).fetchall()
            return [(row["id"], json.loads(row["data"])) for row in rows]
        finally:
            conn.close()
