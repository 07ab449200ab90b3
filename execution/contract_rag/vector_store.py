"""
Vector Store with PostgreSQL + pgvector

Stores embedded chunks keyed by (document id, chunk index) together with a
small registry of source documents so they can be reprocessed later.

Every write either commits completely or raises VectorStoreError. A
document's chunk set is replaced inside a single transaction, so readers
never see a half-deleted or duplicated set.
"""

import os
import json
import logging
from typing import Optional
from dataclasses import dataclass, field
from contextlib import contextmanager

import psycopg2
import psycopg2.pool
from psycopg2.extras import RealDictCursor, execute_values

from .exceptions import VectorStoreError
from .models import Document, DocumentType, EmbeddingRecord, missing_metadata_fields

logger = logging.getLogger(__name__)


@dataclass
class VectorStoreConfig:
    """Configuration for vector store."""
    connection_string: Optional[str] = None
    table_name: str = "contract_chunks"
    documents_table: str = "contract_documents"
    embedding_dimensions: int = 1024
    # Connection pooling settings
    pool_min_connections: int = 2
    pool_max_connections: int = 20
    use_pooling: bool = True


@dataclass
class SearchResult:
    """A single search hit with cosine similarity score."""
    chunk_id: str
    document_id: str
    chunk_index: int
    content: str
    score: float
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {
            "chunk_id": self.chunk_id,
            "document_id": self.document_id,
            "chunk_index": self.chunk_index,
            "content": self.content,
            "score": self.score,
            "metadata": self.metadata,
        }


def validate_record_metadata(metadata: dict) -> None:
    """Raise ValueError unless every required metadata field is populated."""
    missing = missing_metadata_fields(metadata)
    if missing:
        raise ValueError(f"Embedding record metadata missing required fields: {missing}")


class VectorStore:
    """
    PostgreSQL vector store with pgvector.

    Write contract:
        upsert(record_id, vector, metadata, content)
        delete_by_doc_id(doc_id)
        replace_document_chunks(doc_id, records)   # atomic delete + insert

    Read contract:
        search(vector, k)
    """

    def __init__(self, config: Optional[VectorStoreConfig] = None):
        """
        Initialize vector store.

        Args:
            config: Optional configuration. Uses env vars if not provided.
        """
        self.config = config or VectorStoreConfig()
        self._conn = None
        self._pool = None
        self._connection_string = (
            self.config.connection_string or
            os.getenv("POSTGRES_URL") or
            os.getenv("DATABASE_URL") or
            "postgresql://localhost:5432/contract_rag"
        )

    # =========================================================================
    # Connection Management
    # =========================================================================

    def connect(self) -> None:
        """Establish database connection (pooled or single)."""
        try:
            if self.config.use_pooling:
                self._pool = psycopg2.pool.ThreadedConnectionPool(
                    minconn=self.config.pool_min_connections,
                    maxconn=self.config.pool_max_connections,
                    dsn=self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                conn = self._pool.getconn()
                try:
                    self._ensure_extension(conn)
                finally:
                    self._pool.putconn(conn)
                logger.info(
                    f"Connection pool initialized (min={self.config.pool_min_connections}, "
                    f"max={self.config.pool_max_connections})"
                )
            else:
                self._conn = psycopg2.connect(
                    self._connection_string,
                    cursor_factory=RealDictCursor,
                )
                self._conn.autocommit = False
                self._ensure_extension(self._conn)
                logger.info("Connected to PostgreSQL with pgvector (single connection)")
        except psycopg2.Error as e:
            logger.error(f"Database connection failed: {e}")
            raise VectorStoreError(f"Database connection failed: {e}", operation="connect") from e

    @staticmethod
    def _ensure_extension(conn) -> None:
        with conn.cursor() as cur:
            cur.execute("CREATE EXTENSION IF NOT EXISTS vector")
        conn.commit()

    def _get_connection(self):
        """Get a connection from the pool, or the single connection."""
        if self._pool:
            return self._pool.getconn()

        if self._conn is None or self._conn.closed:
            logger.warning("Connection closed, reconnecting...")
            self.connect()
        return self._conn

    def _release_connection(self, conn) -> None:
        """Return a pooled connection. No-op in single-connection mode."""
        if self._pool and conn:
            self._pool.putconn(conn)

    def _ensure_connection(self):
        if not self._conn and not self._pool:
            self.connect()
        return self._get_connection()

    @contextmanager
    def get_connection(self):
        """
        Context manager for getting a database connection.

        Usage:
            with store.get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1")
        """
        conn = self._ensure_connection()
        try:
            yield conn
        finally:
            self._release_connection(conn)

    def _safe_rollback(self, conn) -> None:
        """Rollback a connection, ignoring errors if the connection is dead."""
        try:
            conn.rollback()
        except (psycopg2.InterfaceError, psycopg2.OperationalError):
            pass

    def _execute_with_retry(self, operation, label="db_operation"):
        """Execute a DB operation with one retry on a stale connection.

        Args:
            operation: Callable(conn) that performs the DB work and returns a result.
            label: Human-readable name for logging.

        Returns:
            Whatever ``operation`` returns.

        Raises:
            VectorStoreError: If the operation fails (after the retry, for
                connection-level errors).
        """
        for attempt in range(2):
            conn = self._ensure_connection()
            try:
                result = operation(conn)
                self._release_connection(conn)
                return result
            except (psycopg2.OperationalError, psycopg2.InterfaceError) as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                if attempt == 0:
                    logger.warning(f"{label}: stale conn, reconnecting: {e}")
                    self.connect()
                    continue
                logger.error(f"{label} failed after reconnect: {e}")
                raise VectorStoreError(f"{label} failed: {e}", operation=label) from e
            except psycopg2.Error as e:
                self._safe_rollback(conn)
                self._release_connection(conn)
                logger.error(f"{label} failed: {e}")
                raise VectorStoreError(f"{label} failed: {e}", operation=label) from e

    def close(self) -> None:
        """Close database connection(s)."""
        if self._pool:
            self._pool.closeall()
            self._pool = None
            logger.info("Connection pool closed")
        if self._conn:
            self._conn.close()
            self._conn = None

    # =========================================================================
    # Schema
    # =========================================================================

    def initialize_schema(self) -> None:
        """Create tables and indexes if they don't exist."""
        schema_sql = f"""
        CREATE TABLE IF NOT EXISTS {self.config.documents_table} (
            id TEXT PRIMARY KEY,
            filename TEXT NOT NULL,
            doc_type TEXT NOT NULL,
            content TEXT NOT NULL,
            metadata JSONB DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            last_reprocessed_at TIMESTAMPTZ
        );

        CREATE TABLE IF NOT EXISTS {self.config.table_name} (
            id UUID PRIMARY KEY,
            document_id TEXT NOT NULL,
            chunk_index INT NOT NULL,
            content TEXT NOT NULL,
            embedding VECTOR({self.config.embedding_dimensions}),
            metadata JSONB NOT NULL DEFAULT '{{}}',
            created_at TIMESTAMPTZ DEFAULT NOW(),
            UNIQUE (document_id, chunk_index)
        );

        CREATE INDEX IF NOT EXISTS idx_{self.config.table_name}_document
            ON {self.config.table_name}(document_id);
        CREATE INDEX IF NOT EXISTS idx_{self.config.table_name}_doc_type
            ON {self.config.table_name}((metadata->>'doc_type'));
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(schema_sql)
            conn.commit()
            logger.info("Schema initialized successfully")

        self._execute_with_retry(_op, "initialize_schema")

    def create_hnsw_index(self, m: int = 16, ef_construction: int = 64) -> None:
        """Create an HNSW cosine index on the embedding column."""
        sql = f"""
        CREATE INDEX IF NOT EXISTS idx_{self.config.table_name}_embedding_hnsw
            ON {self.config.table_name}
            USING hnsw (embedding vector_cosine_ops)
            WITH (m = {int(m)}, ef_construction = {int(ef_construction)})
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql)
            conn.commit()
            logger.info(f"HNSW index ready (m={m}, ef_construction={ef_construction})")

        self._execute_with_retry(_op, "create_hnsw_index")

    # =========================================================================
    # Document Registry
    # =========================================================================

    def register_document(self, document: Document) -> None:
        """Insert or update the source document so it can be reprocessed later."""
        sql = f"""
        INSERT INTO {self.config.documents_table}
            (id, filename, doc_type, content, metadata)
        VALUES (%s, %s, %s, %s, %s)
        ON CONFLICT (id) DO UPDATE SET
            filename = EXCLUDED.filename,
            doc_type = EXCLUDED.doc_type,
            content = EXCLUDED.content,
            metadata = EXCLUDED.metadata
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (
                    document.id,
                    document.filename,
                    document.doc_type.name,
                    document.text,
                    json.dumps(document.metadata or {}, ensure_ascii=False),
                ))
            conn.commit()

        self._execute_with_retry(_op, "register_document")

    def get_document(self, document_id: str) -> Optional[Document]:
        """Load a registered document, or None if unknown."""
        sql = f"""
        SELECT id, filename, doc_type, content, metadata
        FROM {self.config.documents_table}
        WHERE id = %s
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                return cur.fetchone()

        row = self._execute_with_retry(_op, "get_document")
        if not row:
            return None
        return Document(
            id=row["id"],
            text=row["content"],
            doc_type=DocumentType.parse(row["doc_type"]),
            filename=row["filename"],
            metadata=row.get("metadata") or {},
        )

    def list_documents(self) -> list[dict]:
        """Return registry rows (without content), oldest first."""
        sql = f"""
        SELECT id, filename, doc_type, created_at, last_reprocessed_at
        FROM {self.config.documents_table}
        ORDER BY created_at, id
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql)
                return [dict(row) for row in cur.fetchall()]

        return self._execute_with_retry(_op, "list_documents")

    def list_document_ids(self) -> list[str]:
        return [row["id"] for row in self.list_documents()]

    # =========================================================================
    # Chunk Writes
    # =========================================================================

    def upsert(
        self,
        record_id: str,
        vector: list[float],
        metadata: dict,
        content: str = "",
    ) -> None:
        """
        Insert or overwrite a single embedded chunk.

        Raises:
            ValueError: If metadata lacks a required field (record not persisted)
            VectorStoreError: If the write fails
        """
        validate_record_metadata(metadata)

        sql = f"""
        INSERT INTO {self.config.table_name}
            (id, document_id, chunk_index, content, embedding, metadata)
        VALUES (%s::uuid, %s, %s, %s, %s::vector, %s)
        ON CONFLICT (document_id, chunk_index) DO UPDATE SET
            id = EXCLUDED.id,
            content = EXCLUDED.content,
            embedding = EXCLUDED.embedding,
            metadata = EXCLUDED.metadata
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (
                    record_id,
                    metadata["doc_id"],
                    metadata["chunk_index"],
                    content,
                    list(vector),
                    json.dumps(metadata, ensure_ascii=False),
                ))
            conn.commit()

        self._execute_with_retry(_op, "upsert")

    def upsert_record(self, record: EmbeddingRecord) -> None:
        self.upsert(record.record_id, record.vector, record.metadata, record.content)

    def delete_by_doc_id(self, document_id: str) -> int:
        """Delete every chunk for a document. Returns the number of rows removed."""
        sql = f"DELETE FROM {self.config.table_name} WHERE document_id = %s"

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                deleted = cur.rowcount
            conn.commit()
            logger.info(f"Deleted {deleted} chunks for document {document_id}")
            return deleted

        return self._execute_with_retry(_op, "delete_by_doc_id")

    def replace_document_chunks(self, document_id: str, records: list[EmbeddingRecord]) -> int:
        """
        Atomically replace a document's chunk set.

        Deletes existing chunks and inserts ``records`` in one transaction;
        concurrent readers see either the old set or the new set.

        Returns:
            Number of chunks inserted
        """
        for record in records:
            validate_record_metadata(record.metadata)
            if record.doc_id != document_id:
                raise ValueError(
                    f"Record for document {record.doc_id} passed to replace of {document_id}"
                )

        delete_sql = f"DELETE FROM {self.config.table_name} WHERE document_id = %s"
        insert_sql = f"""
        INSERT INTO {self.config.table_name}
            (id, document_id, chunk_index, content, embedding, metadata)
        VALUES %s
        """
        touch_sql = f"""
        UPDATE {self.config.documents_table}
        SET last_reprocessed_at = NOW()
        WHERE id = %s
        """
        values = [
            (
                record.record_id,
                document_id,
                record.chunk_index,
                record.content,
                list(record.vector),
                json.dumps(record.metadata, ensure_ascii=False),
            )
            for record in records
        ]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(delete_sql, (document_id,))
                if values:
                    execute_values(
                        cur,
                        insert_sql,
                        values,
                        template="(%s::uuid, %s, %s, %s, %s::vector, %s)",
                        page_size=500,
                    )
                cur.execute(touch_sql, (document_id,))
            conn.commit()
            logger.info(f"Replaced chunk set for document {document_id} ({len(values)} chunks)")
            return len(values)

        return self._execute_with_retry(_op, "replace_document_chunks")

    # =========================================================================
    # Reads
    # =========================================================================

    def search(
        self,
        query_embedding: list[float],
        top_k: int = 10,
        doc_type: Optional[DocumentType] = None,
        min_score: float = 0.0,
    ) -> list[SearchResult]:
        """
        Semantic search using cosine similarity.

        Args:
            query_embedding: Query embedding vector
            top_k: Number of results to return
            doc_type: Optional filter on the chunk's document type
            min_score: Minimum similarity score (0-1)

        Returns:
            Ranked list of SearchResult objects
        """
        where_clause = ""
        filter_params = []
        if doc_type is not None:
            where_clause = "WHERE metadata->>'doc_type' = %s"
            filter_params.append(doc_type.name)

        sql = f"""
        SELECT
            id AS chunk_id,
            document_id,
            chunk_index,
            content,
            metadata,
            1 - (embedding <=> %s::vector) AS score
        FROM {self.config.table_name}
        {where_clause}
        ORDER BY embedding <=> %s::vector
        LIMIT %s
        """
        params = [list(query_embedding)] + filter_params + [list(query_embedding), top_k]

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, params)
                rows = cur.fetchall()

            results = []
            for row in rows:
                score = float(row["score"])
                if score < min_score:
                    continue
                results.append(SearchResult(
                    chunk_id=str(row["chunk_id"]),
                    document_id=row["document_id"],
                    chunk_index=row["chunk_index"],
                    content=row["content"],
                    score=score,
                    metadata=row.get("metadata") or {},
                ))
            return results

        return self._execute_with_retry(_op, "search")

    def get_document_chunks(self, document_id: str) -> list[dict]:
        """Get all chunks for a document ordered by chunk index."""
        sql = f"""
        SELECT id, document_id, chunk_index, content, metadata
        FROM {self.config.table_name}
        WHERE document_id = %s
        ORDER BY chunk_index
        """

        def _op(conn):
            with conn.cursor() as cur:
                cur.execute(sql, (document_id,))
                return [dict(row) for row in cur.fetchall()]

        return self._execute_with_retry(_op, "get_document_chunks")

