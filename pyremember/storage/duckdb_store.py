"""
DuckDB Vector Store - Relational-scan memory storage for pyremember.

Embeddings are kept as JSON text and scored in-process with numpy while the
candidate rows (narrowed by user/agent in SQL) are streamed in batches. This
is exact but O(n) per query; create_index is a capability no-op.
"""

import json
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import duckdb
import numpy as np

from pyremember.data.schemas.models import Memory, ScopeFilter, VectorIndexConfig
from pyremember.errors import (
    BackendUnavailableError,
    ConflictingIDError,
    PyRememberError,
    SerializationError,
)
from pyremember.storage.cancellation import Cancellation, check_cancelled
from pyremember.storage.filters import build_sql_where, matches_metadata
from pyremember.storage.interface import VectorStore, scope_of
from pyremember.storage.similarity import cosine_scores
from pyremember.utils.clock import Clock, ensure_utc, to_naive_utc
from pyremember.utils.ids import IdGenerator
from pyremember.utils.logger import get_logger

logger = get_logger(__name__)

IN_MEMORY = ":memory:"

COLUMNS = (
    "id, user_id, agent_id, content, embedding, metadata, "
    "created_at, updated_at, retention_strength, last_accessed_at"
)


class DuckDBVectorStore(VectorStore):
    """
    DuckDB-backed memory store.

    All access to the connection is serialized by a re-entrant lock; single
    row writes run inside an explicit transaction.
    """

    def __init__(
        self,
        db_path: str = IN_MEMORY,
        collection_name: str = "memories",
        embedding_dim: int = 384,
        scan_batch_size: int = 512,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        read_only: bool = False,
        **kwargs
    ):
        """
        Initialize the DuckDB store.

        Args:
            db_path: Path to DuckDB database file, or ":memory:"
            collection_name: Logical collection name
            embedding_dim: Fixed embedding length
            scan_batch_size: Rows fetched per batch during scans
            clock: Callable returning the current UTC datetime
            id_generator: Generator for store-assigned ids
            read_only: Open database in read-only mode
            **kwargs: Passed to VectorStore (default limits)
        """
        super().__init__(collection_name, embedding_dim, clock=clock, id_generator=id_generator, **kwargs)
        self._db_path = db_path
        self._scan_batch_size = max(1, scan_batch_size)
        self._read_only = read_only
        self._lock = threading.RLock()

        if db_path != IN_MEMORY:
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            self._conn = duckdb.connect(db_path, read_only=read_only)
        except duckdb.Error as e:
            raise BackendUnavailableError("connect", e) from e

        if not read_only:
            self._init_schema()

        logger.info(f"DuckDB vector store initialized: {db_path} ({self.table_name})")

    def _init_schema(self) -> None:
        """Create the memory table and its scope index."""
        with self._lock, self._translate_errors("init_schema"):
            self._conn.execute(f"""
                CREATE TABLE IF NOT EXISTS {self.table_name} (
                    id BIGINT PRIMARY KEY,
                    user_id VARCHAR NOT NULL,
                    agent_id VARCHAR,
                    content VARCHAR NOT NULL,
                    embedding VARCHAR NOT NULL,
                    metadata VARCHAR DEFAULT '{{}}',
                    created_at TIMESTAMP NOT NULL,
                    updated_at TIMESTAMP NOT NULL,
                    retention_strength DOUBLE DEFAULT 1.0,
                    last_accessed_at TIMESTAMP
                )
            """)
            self._conn.execute(f"""
                CREATE INDEX IF NOT EXISTS idx_{self.table_name}_user_agent
                ON {self.table_name}(user_id, agent_id)
            """)
        logger.debug(f"Schema ready: {self.table_name}")

    # =========================================================================
    # TRANSACTIONS & ERRORS
    # =========================================================================

    @contextmanager
    def _translate_errors(self, op: str, scope: Optional[ScopeFilter] = None) -> Iterator[None]:
        """Wrap native DuckDB errors with the operation name and scope."""
        try:
            yield
        except PyRememberError:
            raise
        except duckdb.ConstraintException as e:
            raise ConflictingIDError(op, e, scope) from e
        except duckdb.Error as e:
            raise BackendUnavailableError(op, e, scope) from e

    @contextmanager
    def _transaction(self, op: str, scope: Optional[ScopeFilter] = None) -> Iterator[duckdb.DuckDBPyConnection]:
        """Run a read-check-write sequence in one DuckDB transaction."""
        with self._lock, self._translate_errors(op, scope):
            self._conn.execute("BEGIN TRANSACTION")
            try:
                yield self._conn
            except Exception:
                self._conn.execute("ROLLBACK")
                raise
            self._conn.execute("COMMIT")

    # =========================================================================
    # ROW CONVERSION
    # =========================================================================

    def _row_to_memory(self, row: Tuple, op: str) -> Memory:
        (memory_id, user_id, agent_id, content, embedding, metadata,
         created_at, updated_at, retention_strength, last_accessed_at) = row
        scope = scope_of(user_id, agent_id)
        return Memory(
            id=memory_id,
            user_id=user_id,
            agent_id=agent_id,
            content=content,
            embedding=self._decode_embedding(embedding, op, scope),
            metadata=self._decode_metadata(metadata, op, scope),
            created_at=ensure_utc(created_at),
            updated_at=ensure_utc(updated_at),
            retention_strength=retention_strength,
            last_accessed_at=ensure_utc(last_accessed_at),
        )

    @staticmethod
    def _encode_embedding(embedding: List[float]) -> str:
        return json.dumps([float(x) for x in embedding])

    @staticmethod
    def _decode_embedding(raw: str, op: str, scope: Optional[ScopeFilter] = None) -> List[float]:
        try:
            values = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SerializationError(op, f"stored embedding is corrupt: {e}", scope) from e
        if not isinstance(values, list):
            raise SerializationError(op, "stored embedding is not a list", scope)
        return [float(x) for x in values]

    def _fetch_row(self, conn: duckdb.DuckDBPyConnection, memory_id: int) -> Optional[Tuple]:
        return conn.execute(
            f"SELECT {COLUMNS} FROM {self.table_name} WHERE id = ?",
            [memory_id]
        ).fetchone()

    # =========================================================================
    # CRUD
    # =========================================================================

    def insert(self, memory: Memory) -> Memory:
        stored = self._prepare_insert(memory)
        scope = scope_of(stored.user_id, stored.agent_id)
        metadata = self._encode_metadata(stored.metadata, "insert", scope)

        with self._transaction("insert", scope) as conn:
            if self._fetch_row(conn, stored.id) is not None:
                raise ConflictingIDError("insert", f"memory {stored.id} already exists", scope)
            conn.execute(f"""
                INSERT INTO {self.table_name} ({COLUMNS})
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, [
                stored.id,
                stored.user_id,
                stored.agent_id,
                stored.content,
                self._encode_embedding(stored.embedding),
                metadata,
                to_naive_utc(stored.created_at),
                to_naive_utc(stored.updated_at),
                stored.retention_strength,
                to_naive_utc(stored.last_accessed_at),
            ])

        logger.debug(f"Inserted memory {stored.id} [{scope}]")
        return stored

    def get(self, memory_id: int, scope: Optional[ScopeFilter] = None) -> Memory:
        with self._lock, self._translate_errors("get", scope):
            row = self._fetch_row(self._conn, memory_id)
        if row is None:
            raise self._not_found("get", memory_id, scope)
        memory = self._row_to_memory(row, "get")
        if not self._in_scope(memory, scope):
            raise self._not_found("get", memory_id, scope)
        return memory

    def modify(
        self,
        memory_id: int,
        changes: Callable[[Memory], Dict[str, Any]],
        scope: Optional[ScopeFilter] = None,
        op: str = "modify"
    ) -> Memory:
        with self._transaction(op, scope) as conn:
            row = self._fetch_row(conn, memory_id)
            if row is None:
                raise self._not_found(op, memory_id, scope)
            current = self._row_to_memory(row, op)
            if not self._in_scope(current, scope):
                raise self._not_found(op, memory_id, scope)

            updated = self._apply_changes(current, changes(current), op, scope)
            conn.execute(f"""
                UPDATE {self.table_name}
                SET content = ?, embedding = ?, updated_at = ?,
                    retention_strength = ?, last_accessed_at = ?
                WHERE id = ?
            """, [
                updated.content,
                self._encode_embedding(updated.embedding),
                to_naive_utc(updated.updated_at),
                updated.retention_strength,
                to_naive_utc(updated.last_accessed_at),
                memory_id,
            ])
        return updated

    def delete(self, memory_id: int, scope: Optional[ScopeFilter] = None) -> None:
        with self._transaction("delete", scope) as conn:
            row = self._fetch_row(conn, memory_id)
            if row is None:
                raise self._not_found("delete", memory_id, scope)
            if not self._in_scope(self._row_to_memory(row, "delete"), scope):
                raise self._not_found("delete", memory_id, scope)
            conn.execute(f"DELETE FROM {self.table_name} WHERE id = ?", [memory_id])
        logger.debug(f"Deleted memory {memory_id}")

    # =========================================================================
    # SCANS
    # =========================================================================

    def _scan(
        self,
        sql: str,
        params: List[Any],
        op: str,
        scope: ScopeFilter,
        cancellation: Optional[Cancellation]
    ) -> Iterator[List[Tuple]]:
        """Yield result batches, checking cancellation before each fetch."""
        cursor = self._conn.execute(sql, params)
        while True:
            check_cancelled(cancellation, op, scope)
            rows = cursor.fetchmany(self._scan_batch_size)
            if not rows:
                return
            yield rows

    def search(
        self,
        query_embedding: List[float],
        scope: Optional[ScopeFilter] = None,
        min_score: Optional[float] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        scope = self._prepare_scope(scope, "search")
        query = np.asarray(self._validate_embedding(query_embedding, "search", scope), dtype=np.float64)
        limit = self._search_limit(scope)
        if limit == 0:
            return []

        where, params = build_sql_where(scope)
        sql = f"SELECT {COLUMNS} FROM {self.table_name} {where}"
        candidates: List[Memory] = []

        with self._lock, self._translate_errors("search", scope):
            for rows in self._scan(sql, params, "search", scope, cancellation):
                batch = [self._row_to_memory(row, "search") for row in rows]
                if scope.filters:
                    batch = [m for m in batch if matches_metadata(m.metadata, scope.filters)]
                if not batch:
                    continue
                matrix = np.asarray([m.embedding for m in batch], dtype=np.float64)
                scores = cosine_scores(matrix, query)
                for memory, score in zip(batch, scores):
                    if min_score is not None and score < min_score:
                        continue
                    candidates.append(memory.model_copy(update={"score": float(score)}))
                # Keep memory bounded on large collections
                if len(candidates) > limit * 4:
                    candidates = self._rank(candidates, limit)

        results = self._rank(candidates, limit)
        logger.debug(f"Search returned {len(results)} of {len(candidates)} candidates [{scope}]")
        return results

    def get_all(
        self,
        scope: Optional[ScopeFilter] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        scope = self._prepare_scope(scope, "get_all")
        limit = self._get_all_limit(scope)
        if limit == 0:
            return []

        where, params = build_sql_where(scope)
        sql = f"SELECT {COLUMNS} FROM {self.table_name} {where} ORDER BY created_at DESC, id DESC"
        if not scope.filters:
            sql += f" LIMIT {int(limit)} OFFSET {int(scope.offset)}"
            to_skip = 0
        else:
            to_skip = scope.offset

        results: List[Memory] = []
        with self._lock, self._translate_errors("get_all", scope):
            for rows in self._scan(sql, params, "get_all", scope, cancellation):
                for row in rows:
                    memory = self._row_to_memory(row, "get_all")
                    if scope.filters and not matches_metadata(memory.metadata, scope.filters):
                        continue
                    if to_skip > 0:
                        to_skip -= 1
                        continue
                    results.append(memory)
                    if len(results) >= limit:
                        return results
        return results

    def _matching_ids(self, scope: ScopeFilter, op: str) -> List[int]:
        """Ids matching a filter that carries metadata conditions."""
        where, params = build_sql_where(scope)
        rows = self._conn.execute(
            f"SELECT id, metadata FROM {self.table_name} {where}", params
        ).fetchall()
        return [
            memory_id for memory_id, metadata in rows
            if matches_metadata(self._decode_metadata(metadata, op, scope), scope.filters)
        ]

    def delete_all(self, scope: Optional[ScopeFilter] = None) -> int:
        scope = self._prepare_scope(scope, "delete_all")

        with self._transaction("delete_all", scope) as conn:
            if scope.filters:
                ids = self._matching_ids(scope, "delete_all")
                if ids:
                    conn.executemany(
                        f"DELETE FROM {self.table_name} WHERE id = ?",
                        [[memory_id] for memory_id in ids]
                    )
                deleted = len(ids)
            else:
                where, params = build_sql_where(scope)
                deleted = conn.execute(
                    f"SELECT COUNT(*) FROM {self.table_name} {where}", params
                ).fetchone()[0]
                conn.execute(f"DELETE FROM {self.table_name} {where}", params)

        logger.info(f"Deleted {deleted} memories from {self.table_name} [{scope}]")
        return deleted

    def count(self, scope: Optional[ScopeFilter] = None) -> int:
        scope = self._prepare_scope(scope, "count")
        with self._lock, self._translate_errors("count", scope):
            if scope.filters:
                return len(self._matching_ids(scope, "count"))
            where, params = build_sql_where(scope)
            return self._conn.execute(
                f"SELECT COUNT(*) FROM {self.table_name} {where}", params
            ).fetchone()[0]

    # =========================================================================
    # MAINTENANCE
    # =========================================================================

    def create_index(self, config: Optional[VectorIndexConfig] = None) -> None:
        logger.info(
            f"create_index on {self.table_name}: relational scan backend has no "
            f"native vector index, nothing to build"
        )

    def reset(self) -> None:
        with self._lock, self._translate_errors("reset"):
            self._conn.execute(f"DROP TABLE IF EXISTS {self.table_name}")
            self._init_schema()
        logger.info(f"Collection reset: {self.table_name}")

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            self._conn.close()
        logger.info("DuckDB connection closed")
