import sqlite3
from typing import Optional

from lending.config import settings


def get_db_connection(db_file: str, timeout: Optional[float] = None) -> sqlite3.Connection:
    """SQLite belge veritabanına bir bağlantı açar.

    Bağlantı autocommit modunda çalışır; çağıranlar kendi işlemlerini
    açık bir BEGIN ile başlatır.
    """
    conn = sqlite3.connect(
        db_file,
        timeout=settings.db_busy_timeout if timeout is None else timeout,
        isolation_level=None,
        check_same_thread=False,
    )
    conn.row_factory = sqlite3.Row
    # WAL modu, bir ödünç işlemi yazılırken okumaların devam etmesini sağlar
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def create_tables(db_file: str) -> None:
    """Veritabanında mevcut değilse belge tablosunu oluşturur."""
    conn = get_db_connection(db_file)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS documents (
                collection TEXT NOT NULL,
                id TEXT NOT NULL,
                data TEXT NOT NULL,
                version INTEGER NOT NULL DEFAULT 1,
                created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                PRIMARY KEY (collection, id)
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_collection ON documents(collection)")
    finally:
        conn.close()


def initialize_database(db_file: str) -> None:
    """Veritabanı dosyasını depo kullanımı için hazırlar."""
    create_tables(db_file)
