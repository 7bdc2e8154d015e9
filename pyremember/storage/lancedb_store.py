"""
LanceDB Vector Store - Index-accelerated memory storage for pyremember.

Nearest-neighbor candidate selection is delegated to LanceDB (a flat scan, or
the ANN index once create_index has run). Candidates are re-scored exactly
from their stored vectors and ordered with the same tie-break rules as every
other backend.
"""

import math
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple

import lancedb
import numpy as np
import pyarrow as pa

from pyremember.data.schemas.models import (
    IndexType,
    Memory,
    MetricType,
    ScopeFilter,
    VectorIndexConfig,
)
from pyremember.errors import (
    BackendUnavailableError,
    ConflictingIDError,
    InvalidArgumentError,
    PyRememberError,
    SerializationError,
)
from pyremember.storage.cancellation import Cancellation, check_cancelled
from pyremember.storage.filters import build_lancedb_filter, matches_metadata
from pyremember.storage.interface import VectorStore, scope_of
from pyremember.storage.similarity import cosine_scores
from pyremember.utils.clock import Clock, ensure_utc
from pyremember.utils.ids import IdGenerator
from pyremember.utils.logger import get_logger

logger = get_logger(__name__)

# Product quantization trains 2^8 centroids per sub-vector
PQ_MIN_ROWS = 256
# Rows converted between cancellation checks
CHECK_EVERY = 256
# Ids per delete expression
DELETE_CHUNK = 500
# Exact scores closer than this count as tied at the search cut-off
SCORE_TIE_TOLERANCE = 1e-6

_INDEX_TYPES = {
    IndexType.HNSW: "IVF_HNSW_SQ",
    IndexType.IVF_FLAT: "IVF_FLAT",
    IndexType.IVF_PQ: "IVF_PQ",
}


def memory_schema(embedding_dim: int) -> pa.Schema:
    """Arrow schema of a memory table."""
    return pa.schema([
        pa.field("id", pa.int64(), nullable=False),
        pa.field("user_id", pa.string(), nullable=False),
        pa.field("agent_id", pa.string()),
        pa.field("content", pa.string(), nullable=False),
        pa.field("vector", pa.list_(pa.float32(), embedding_dim)),
        pa.field("metadata", pa.string()),
        pa.field("created_at", pa.timestamp("us", tz="UTC")),
        pa.field("updated_at", pa.timestamp("us", tz="UTC")),
        pa.field("retention_strength", pa.float64()),
        pa.field("last_accessed_at", pa.timestamp("us", tz="UTC")),
    ])


def _num_sub_vectors(dim: int) -> int:
    for dims_per_sub_vector in (8, 4, 2, 1):
        if dim % dims_per_sub_vector == 0:
            return dim // dims_per_sub_vector
    return 1


class LanceDBVectorStore(VectorStore):
    """
    LanceDB-backed memory store.

    Embeddings are stored as fixed-size float32 lists; the table is guarded by
    a re-entrant lock so read-check-write sequences are not interleaved.
    """

    def __init__(
        self,
        db_path: str,
        collection_name: str = "memories",
        embedding_dim: int = 384,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        **kwargs
    ):
        """
        Initialize the LanceDB store.

        Args:
            db_path: Directory holding the LanceDB database
            collection_name: Logical collection name
            embedding_dim: Fixed embedding length
            clock: Callable returning the current UTC datetime
            id_generator: Generator for store-assigned ids
            **kwargs: Passed to VectorStore (default limits)
        """
        super().__init__(collection_name, embedding_dim, clock=clock, id_generator=id_generator, **kwargs)
        self._db_path = str(db_path)
        self._schema = memory_schema(embedding_dim)
        self._lock = threading.RLock()
        self._nprobes: Optional[int] = None
        self._ef: Optional[int] = None

        Path(self._db_path).mkdir(parents=True, exist_ok=True)

        with self._translate_errors("connect"):
            self._db = lancedb.connect(self._db_path)
        self._init_table()

        logger.info(f"LanceDB vector store initialized: {self._db_path}/{self.table_name}")

    def _init_table(self) -> None:
        """Open the memory table, creating it if needed."""
        with self._lock, self._translate_errors("init_table"):
            self._table = self._db.create_table(self.table_name, schema=self._schema, exist_ok=True)
            vector_type = self._table.schema.field("vector").type
        if getattr(vector_type, "list_size", self._embedding_dim) != self._embedding_dim:
            raise InvalidArgumentError(
                "init_table",
                f"table {self.table_name} holds {vector_type.list_size}-d vectors, "
                f"expected {self._embedding_dim}"
            )

    # =========================================================================
    # ERRORS & CONVERSION
    # =========================================================================

    @contextmanager
    def _translate_errors(self, op: str, scope: Optional[ScopeFilter] = None) -> Iterator[None]:
        """Wrap native LanceDB / Arrow errors with the operation name and scope."""
        try:
            yield
        except PyRememberError:
            raise
        except pa.ArrowInvalid as e:
            raise SerializationError(op, e, scope) from e
        except ValueError as e:
            # LanceDB reports rejected queries, filters and index options as ValueError
            raise InvalidArgumentError(op, e, scope) from e
        except (OSError, RuntimeError) as e:
            raise BackendUnavailableError(op, e, scope) from e

    def _to_arrow(self, memories: List[Memory], op: str, scope: Optional[ScopeFilter]) -> pa.Table:
        rows = [{
            "id": m.id,
            "user_id": m.user_id,
            "agent_id": m.agent_id,
            "content": m.content,
            "vector": m.embedding,
            "metadata": self._encode_metadata(m.metadata, op, scope),
            "created_at": m.created_at,
            "updated_at": m.updated_at,
            "retention_strength": m.retention_strength,
            "last_accessed_at": m.last_accessed_at,
        } for m in memories]
        return pa.Table.from_pylist(rows, schema=self._schema)

    def _row_to_memory(self, row: Dict[str, Any], op: str) -> Memory:
        scope = scope_of(row["user_id"], row["agent_id"])
        vector = row["vector"]
        if vector is None:
            raise SerializationError(op, f"memory {row['id']} has no stored vector", scope)
        return Memory(
            id=row["id"],
            user_id=row["user_id"],
            agent_id=row["agent_id"],
            content=row["content"],
            embedding=[float(x) for x in vector],
            metadata=self._decode_metadata(row["metadata"], op, scope),
            created_at=ensure_utc(row["created_at"]),
            updated_at=ensure_utc(row["updated_at"]),
            retention_strength=row["retention_strength"],
            last_accessed_at=ensure_utc(row["last_accessed_at"]),
        )

    def _select(self, where: Optional[str]) -> List[Dict[str, Any]]:
        """All rows matching a filter expression."""
        total = self._table.count_rows(where)
        if total == 0:
            return []
        query = self._table.search()
        if where:
            query = query.where(where)
        return query.limit(total).to_list()

    def _fetch_one(self, memory_id: int, op: str) -> Optional[Memory]:
        rows = self._select(build_lancedb_filter(None, memory_id=memory_id))
        if not rows:
            return None
        return self._row_to_memory(rows[0], op)

    # =========================================================================
    # CRUD
    # =========================================================================

    def insert(self, memory: Memory) -> Memory:
        stored = self._prepare_insert(memory)
        scope = scope_of(stored.user_id, stored.agent_id)
        data = self._to_arrow([stored], "insert", scope)

        with self._lock, self._translate_errors("insert", scope):
            if self._table.count_rows(build_lancedb_filter(None, memory_id=stored.id)) > 0:
                raise ConflictingIDError("insert", f"memory {stored.id} already exists", scope)
            self._table.add(data)

        logger.debug(f"Inserted memory {stored.id} [{scope}]")
        return stored

    def get(self, memory_id: int, scope: Optional[ScopeFilter] = None) -> Memory:
        with self._lock, self._translate_errors("get", scope):
            memory = self._fetch_one(memory_id, "get")
        if memory is None or not self._in_scope(memory, scope):
            raise self._not_found("get", memory_id, scope)
        return memory

    def _replace(self, memory: Memory, op: str, scope: Optional[ScopeFilter]) -> None:
        """Atomically overwrite an existing row."""
        (
            self._table.merge_insert("id")
            .when_matched_update_all()
            .execute(self._to_arrow([memory], op, scope))
        )

    def modify(
        self,
        memory_id: int,
        changes: Callable[[Memory], Dict[str, Any]],
        scope: Optional[ScopeFilter] = None,
        op: str = "modify"
    ) -> Memory:
        with self._lock, self._translate_errors(op, scope):
            current = self._fetch_one(memory_id, op)
            if current is None or not self._in_scope(current, scope):
                raise self._not_found(op, memory_id, scope)
            updated = self._apply_changes(current, changes(current), op, scope)
            self._replace(updated, op, scope)
        return updated

    def delete(self, memory_id: int, scope: Optional[ScopeFilter] = None) -> None:
        with self._lock, self._translate_errors("delete", scope):
            current = self._fetch_one(memory_id, "delete")
            if current is None or not self._in_scope(current, scope):
                raise self._not_found("delete", memory_id, scope)
            self._table.delete(build_lancedb_filter(None, memory_id=memory_id))
        logger.debug(f"Deleted memory {memory_id}")

    # =========================================================================
    # SEARCH & SCANS
    # =========================================================================

    def _nearest_rows(self, query_vec: np.ndarray, where: Optional[str], fetch: int) -> List[Dict[str, Any]]:
        """Native nearest-neighbor query for the `fetch` closest rows."""
        query = (
            self._table.search(query_vec.tolist(), vector_column_name="vector")
            .distance_type("cosine")
        )
        if where:
            query = query.where(where, prefilter=True)
        if self._nprobes is not None:
            query = query.nprobes(self._nprobes)
        if self._ef is not None:
            query = query.ef(self._ef)
        return query.limit(fetch).to_list()

    def _score_rows(
        self,
        rows: List[Dict[str, Any]],
        query_vec: np.ndarray,
        scope: ScopeFilter,
        cancellation: Optional[Cancellation]
    ) -> Tuple[List[Memory], np.ndarray]:
        """Convert native rows and score them exactly against the query."""
        batch = []
        for i, row in enumerate(rows):
            if i % CHECK_EVERY == 0:
                check_cancelled(cancellation, "search", scope)
            memory = self._row_to_memory(row, "search")
            if scope.filters and not matches_metadata(memory.metadata, scope.filters):
                continue
            batch.append(memory)
        if not batch:
            return [], np.empty(0)
        matrix = np.asarray([m.embedding for m in batch], dtype=np.float64)
        return batch, cosine_scores(matrix, query_vec)

    @staticmethod
    def _tied_at_cutoff(scores: np.ndarray, limit: int) -> bool:
        """Whether the weakest fetched score ties the score ranked `limit`-th."""
        if len(scores) <= limit:
            return False
        cutoff = np.partition(scores, len(scores) - limit)[len(scores) - limit]
        return scores.min() >= cutoff - SCORE_TIE_TOLERANCE

    def search(
        self,
        query_embedding: List[float],
        scope: Optional[ScopeFilter] = None,
        min_score: Optional[float] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        scope = self._prepare_scope(scope, "search")
        query_vec = np.asarray(self._validate_embedding(query_embedding, "search", scope), dtype=np.float64)
        limit = self._search_limit(scope)
        if limit == 0:
            return []

        where = build_lancedb_filter(scope)
        check_cancelled(cancellation, "search", scope)

        with self._lock, self._translate_errors("search", scope):
            in_scope = self._table.count_rows(where)
            if in_scope == 0:
                return []
            # Metadata filters run after the native query, so fetch the whole scope
            fetch = in_scope if scope.filters else min(in_scope, limit * 2)
            while True:
                rows = self._nearest_rows(query_vec, where, fetch)
                batch, scores = self._score_rows(rows, query_vec, scope, cancellation)
                if fetch >= in_scope or len(rows) < fetch or not self._tied_at_cutoff(scores, limit):
                    break
                # Rows tied with the cut-off may lie past the window; LanceDB picks among them arbitrarily
                fetch = min(in_scope, fetch * 2)
                logger.debug(f"Score tie at search cut-off, widening to {fetch} candidates [{scope}]")

        check_cancelled(cancellation, "search", scope)

        candidates = [
            memory.model_copy(update={"score": float(score)})
            for memory, score in zip(batch, scores)
            if min_score is None or score >= min_score
        ]
        results = self._rank(candidates, limit)
        logger.debug(f"Search returned {len(results)} of {len(rows)} candidates [{scope}]")
        return results

    def _scan(
        self,
        scope: ScopeFilter,
        op: str,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        """Every memory matching the full filter, in no particular order."""
        check_cancelled(cancellation, op, scope)
        with self._lock, self._translate_errors(op, scope):
            rows = self._select(build_lancedb_filter(scope))

        memories = []
        for i, row in enumerate(rows):
            if i % CHECK_EVERY == 0:
                check_cancelled(cancellation, op, scope)
            memory = self._row_to_memory(row, op)
            if scope.filters and not matches_metadata(memory.metadata, scope.filters):
                continue
            memories.append(memory)
        return memories

    def get_all(
        self,
        scope: Optional[ScopeFilter] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        scope = self._prepare_scope(scope, "get_all")
        limit = self._get_all_limit(scope)
        if limit == 0:
            return []
        memories = sorted(self._scan(scope, "get_all", cancellation), key=self._recent_key)
        return memories[scope.offset:scope.offset + limit]

    def delete_all(self, scope: Optional[ScopeFilter] = None) -> int:
        scope = self._prepare_scope(scope, "delete_all")

        with self._lock, self._translate_errors("delete_all", scope):
            if scope.filters:
                ids = [m.id for m in self._scan(scope, "delete_all")]
                for start in range(0, len(ids), DELETE_CHUNK):
                    chunk = ", ".join(str(int(i)) for i in ids[start:start + DELETE_CHUNK])
                    self._table.delete(f"id IN ({chunk})")
                deleted = len(ids)
            else:
                where = build_lancedb_filter(scope)
                deleted = self._table.count_rows(where)
                if deleted:
                    self._table.delete(where or "true")

        logger.info(f"Deleted {deleted} memories from {self.table_name} [{scope}]")
        return deleted

    def count(self, scope: Optional[ScopeFilter] = None) -> int:
        scope = self._prepare_scope(scope, "count")
        if scope.filters:
            return len(self._scan(scope, "count"))
        with self._lock, self._translate_errors("count", scope):
            return self._table.count_rows(build_lancedb_filter(scope))

    # =========================================================================
    # INDEXING & MAINTENANCE
    # =========================================================================

    def _has_vector_index(self) -> bool:
        return any(
            "vector" in (getattr(index, "columns", None) or [])
            for index in self._table.list_indices()
        )

    def create_index(self, config: Optional[VectorIndexConfig] = None) -> None:
        """
        Build a cosine ANN index on the vector column.

        Args:
            config: Index type and tuning parameters (IVF_PQ defaults)

        Raises:
            InvalidArgumentError: Non-cosine metric, or too few rows to train the index
        """
        config = config or VectorIndexConfig()
        if config.metric_type != MetricType.COSINE:
            raise InvalidArgumentError(
                "create_index",
                f"search ranks by cosine similarity; metric {config.metric_type.value} is not supported"
            )

        with self._lock, self._translate_errors("create_index"):
            if self._has_vector_index():
                logger.info(f"Vector index already exists on {self.table_name}")
                return

            rows = self._table.count_rows()
            if config.ivf_params is not None:
                num_partitions = config.ivf_params.nlist
            else:
                num_partitions = max(1, int(math.sqrt(rows)))
            required = max(num_partitions, PQ_MIN_ROWS if config.index_type == IndexType.IVF_PQ else 1)
            if rows < required:
                raise InvalidArgumentError(
                    "create_index",
                    f"{config.index_type.value} index needs at least {required} rows, table has {rows}"
                )

            hnsw = config.hnsw_params
            kwargs: Dict[str, Any] = {}
            if hnsw is not None:
                kwargs.update(m=hnsw.m, ef_construction=hnsw.ef_construction)

            self._table.create_index(
                metric="cosine",
                num_partitions=num_partitions,
                num_sub_vectors=_num_sub_vectors(self._embedding_dim),
                vector_column_name="vector",
                replace=False,
                index_type=_INDEX_TYPES[config.index_type],
                **kwargs
            )

        if config.ivf_params is not None:
            self._nprobes = config.ivf_params.nprobe
        if hnsw is not None:
            self._ef = hnsw.ef_search
        logger.info(
            f"Created {config.index_type.value} index on {self.table_name} "
            f"({rows} rows, {num_partitions} partitions)"
        )

    def reset(self) -> None:
        """Drop and recreate the table."""
        with self._lock, self._translate_errors("reset"):
            self._db.drop_table(self.table_name)
            self._nprobes = None
            self._ef = None
            self._init_table()
        logger.info(f"Collection reset: {self.table_name}")

    def close(self) -> None:
        """LanceDB opens its files per operation, so there is nothing to release."""
        logger.info(f"LanceDB vector store closed: {self._db_path}/{self.table_name}")
