import json
import logging
import sqlite3
import threading
from contextlib import contextmanager
from typing import Iterable, Iterator, List, Mapping, Optional

from libraryau.config import settings
from libraryau.errors import ConcurrentModification, StorageUnavailable
from libraryau.models import ENTITY_TYPES, Document, EntityKind
from libraryau.repository import DocKey, Predicate, Repository, new_id

logger = logging.getLogger(__name__)


class SqliteRepository(Repository):
    """SQLite üzerinde belge deposu.

    Her varlık ``documents`` tablosunda JSON gövde ve sürüm numarasıyla
    saklanır. Koşullu yazmalar ``BEGIN IMMEDIATE`` işlemi içinde yapılır;
    böylece sürüm kontrolü ve yazma atomiktir.
    """

    def __init__(self, db_file: Optional[str] = None) -> None:
        super().__init__()
        self.db_file = db_file or settings.database_file
        self._write_lock = threading.Lock()
        self.create_tables()

    # ------------------------- Bağlantı ------------------------- #
    def get_db_connection(self) -> sqlite3.Connection:
        """SQLite veritabanına yeni bir bağlantı kurar."""
        try:
            conn = sqlite3.connect(self.db_file, timeout=10, isolation_level=None, check_same_thread=False)
            conn.row_factory = sqlite3.Row
            # Daha iyi eşzamanlı erişim için WAL modunu etkinleştir
            conn.execute("PRAGMA journal_mode=WAL;")
            conn.execute("PRAGMA synchronous=NORMAL;")
            return conn
        except sqlite3.Error as e:
            raise StorageUnavailable(f"cannot open {self.db_file}: {e}") from e

    @contextmanager
    def _connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.get_db_connection()
        try:
            yield conn
        except sqlite3.Error as e:
            raise StorageUnavailable(str(e)) from e
        finally:
            conn.close()

    def create_tables(self) -> None:
        """Veritabanında mevcut değilse gerekli tabloları oluşturur."""
        with self._connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS documents (
                    kind TEXT NOT NULL,
                    id TEXT NOT NULL,
                    body TEXT NOT NULL,
                    version INTEGER NOT NULL DEFAULT 1,
                    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    PRIMARY KEY (kind, id)
                )
            """)
            conn.execute("CREATE INDEX IF NOT EXISTS idx_documents_kind ON documents(kind)")

    # ------------------------- Okuma ------------------------- #
    @staticmethod
    def _row_to_entity(kind: EntityKind, row: sqlite3.Row) -> Document:
        data = json.loads(row["body"])
        data["id"] = row["id"]
        data["version"] = row["version"]
        return ENTITY_TYPES[kind].from_dict(data)

    def get(self, kind: EntityKind, entity_id: str) -> Optional[Document]:
        with self._connection() as conn:
            row = conn.execute(
                "SELECT id, body, version FROM documents WHERE kind = ? AND id = ?",
                (kind.value, entity_id),
            ).fetchone()
        return self._row_to_entity(kind, row) if row else None

    def query(self, kind: EntityKind, predicate: Optional[Predicate] = None) -> List[Document]:
        with self._connection() as conn:
            rows = conn.execute(
                "SELECT id, body, version FROM documents WHERE kind = ? ORDER BY rowid",
                (kind.value,),
            ).fetchall()
        items = [self._row_to_entity(kind, row) for row in rows]
        if predicate is None:
            return items
        return [item for item in items if predicate(item)]

    # ------------------------- Yazma ------------------------- #
    def create(self, entity: Document) -> str:
        return self.transactional_update({}, [entity])[0].id

    def transactional_update(self, reads: Mapping[DocKey, int], writes: Iterable[Document]) -> List[Document]:
        writes = list(writes)
        stored: List[Document] = []
        with self._write_lock, self._connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                for (kind, entity_id), seen in reads.items():
                    row = conn.execute(
                        "SELECT version FROM documents WHERE kind = ? AND id = ?",
                        (kind.value, entity_id),
                    ).fetchone()
                    current = row["version"] if row else 0
                    if current != seen:
                        raise ConcurrentModification("stale snapshot", entity_id)
                for entity in writes:
                    stored.append(self._upsert(conn, entity))
                conn.execute("COMMIT")
            except BaseException:
                conn.execute("ROLLBACK")
                raise
        self._notify(stored)
        return stored

    @staticmethod
    def _upsert(conn: sqlite3.Connection, entity: Document) -> Document:
        entity_id = entity.id or new_id()
        row = conn.execute(
            "SELECT version FROM documents WHERE kind = ? AND id = ?",
            (entity.kind.value, entity_id),
        ).fetchone()
        version = (row["version"] if row else 0) + 1
        stored = entity.evolve(id=entity_id, version=version)
        body = stored.to_dict()
        body.pop("id", None)
        body.pop("version", None)
        conn.execute(
            """
            INSERT INTO documents (kind, id, body, version) VALUES (?, ?, ?, ?)
            ON CONFLICT(kind, id) DO UPDATE SET
                body = excluded.body,
                version = excluded.version,
                updated_at = CURRENT_TIMESTAMP
            """,
            (entity.kind.value, entity_id, json.dumps(body, ensure_ascii=False), version),
        )
        return stored

    def close(self) -> None:
        """Bağlantılar işlem başına açıldığından kapatılacak bir şey yok."""
        return None
