"""
Vector Store Interface - Abstract base class for memory store backends.

This module defines the contract every backend implements identically in
observable behavior (filtering, ordering, scoring, errors), plus the shared
validation, ranking and serialization helpers the backends build on.
"""

import heapq
import json
import re
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from pyremember.data.schemas.models import Memory, ScopeFilter, VectorIndexConfig
from pyremember.errors import InvalidArgumentError, NotFoundError, SerializationError
from pyremember.storage.cancellation import Cancellation
from pyremember.storage.filters import validate_scope_filter
from pyremember.storage.similarity import validate_embedding
from pyremember.utils.clock import Clock, ensure_utc, utc_now
from pyremember.utils.ids import IdGenerator
from pyremember.utils.logger import get_logger

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# Fields a modify() change set may write
MODIFIABLE_FIELDS = ("content", "embedding", "retention_strength", "last_accessed_at")


def scope_of(user_id: Optional[str], agent_id: Optional[str]) -> ScopeFilter:
    """ScopeFilter for a single (user_id, agent_id) pair."""
    return ScopeFilter(user_id=user_id, agent_id=agent_id)


class VectorStore(ABC):
    """
    Abstract base class for memory stores.

    A store holds one collection, keyed by collection name plus embedding
    dimension. Every record's embedding must have exactly that dimension.
    """

    DEFAULT_SEARCH_LIMIT = 10
    DEFAULT_GET_ALL_LIMIT = 100

    def __init__(
        self,
        collection_name: str,
        embedding_dim: int,
        clock: Optional[Clock] = None,
        id_generator: Optional[IdGenerator] = None,
        default_search_limit: Optional[int] = None,
        default_get_all_limit: Optional[int] = None
    ):
        """
        Initialize shared store state.

        Args:
            collection_name: Logical collection name (letters, digits, underscore)
            embedding_dim: Fixed embedding length for this collection
            clock: Callable returning the current UTC datetime
            id_generator: Generator for store-assigned ids
            default_search_limit: Limit used when a search filter leaves it unset
            default_get_all_limit: Limit used when a get_all filter leaves it unset
        """
        if not collection_name or not _IDENTIFIER.match(collection_name):
            raise InvalidArgumentError(
                "init",
                f"collection name must be a plain identifier, got {collection_name!r}"
            )
        if embedding_dim <= 0:
            raise InvalidArgumentError("init", f"embedding_dim must be positive, got {embedding_dim}")

        self._collection_name = collection_name
        self._embedding_dim = embedding_dim
        self._clock = clock or utc_now
        self._ids = id_generator or IdGenerator()
        self._default_search_limit = default_search_limit or self.DEFAULT_SEARCH_LIMIT
        self._default_get_all_limit = default_get_all_limit or self.DEFAULT_GET_ALL_LIMIT

    @property
    def collection_name(self) -> str:
        return self._collection_name

    @property
    def embedding_dim(self) -> int:
        return self._embedding_dim

    @property
    def table_name(self) -> str:
        """Physical table name: collection name plus dimension."""
        return f"{self._collection_name}_{self._embedding_dim}"

    # =========================================================================
    # CONTRACT
    # =========================================================================

    @abstractmethod
    def insert(self, memory: Memory) -> Memory:
        """
        Persist a new memory.

        The store assigns an id when `memory.id` is None and sets
        created_at / updated_at to now.

        Args:
            memory: The memory to insert

        Returns:
            The stored memory

        Raises:
            InvalidArgumentError: Empty content, missing user_id or bad embedding
            ConflictingIDError: The id already exists
        """
        pass

    @abstractmethod
    def get(self, memory_id: int, scope: Optional[ScopeFilter] = None) -> Memory:
        """
        Retrieve a memory by id.

        Args:
            memory_id: Memory id
            scope: Optional user/agent restriction; a record outside it is not found

        Raises:
            NotFoundError: No such record in scope
        """
        pass

    @abstractmethod
    def modify(
        self,
        memory_id: int,
        changes: Callable[[Memory], Dict[str, Any]],
        scope: Optional[ScopeFilter] = None,
        op: str = "modify"
    ) -> Memory:
        """
        Read a record, compute changes from it and write them atomically.

        `changes` receives the current record and returns a dict with any of
        content, embedding, retention_strength and last_accessed_at. No other
        write to the record can land between the read and the write.

        Args:
            memory_id: Memory id
            changes: Function of the current record returning the fields to write
            scope: Optional user/agent restriction; a record outside it is not found
            op: Operation name reported in errors

        Returns:
            The updated memory

        Raises:
            NotFoundError: No such record in scope
            InvalidArgumentError: A computed field is invalid
        """
        pass

    def update(
        self,
        memory_id: int,
        content: str,
        embedding: List[float],
        *,
        scope: Optional[ScopeFilter] = None,
        retention_strength: Optional[float] = None,
        last_accessed_at: Optional[datetime] = None
    ) -> Memory:
        """
        Replace content and embedding in a single transaction.

        Sets updated_at to now. Retention fields are only written when given.

        Returns:
            The updated memory

        Raises:
            NotFoundError: No such record in scope
            InvalidArgumentError: Empty content or bad embedding
        """
        fields: Dict[str, Any] = {
            "content": self._validate_content(content, "update", scope),
            "embedding": self._validate_embedding(embedding, "update", scope),
        }
        if retention_strength is not None:
            fields["retention_strength"] = self._validate_strength(retention_strength, "update", scope)
        if last_accessed_at is not None:
            fields["last_accessed_at"] = last_accessed_at

        updated = self.modify(memory_id, lambda current: fields, scope=scope, op="update")
        logger.debug(f"Updated memory {memory_id}")
        return updated

    def update_retention(
        self,
        memory_id: int,
        retention_strength: float,
        last_accessed_at: Optional[datetime]
    ) -> Memory:
        """
        Persist a retention change without touching content.

        Raises:
            NotFoundError: No such record
            InvalidArgumentError: retention_strength outside (0, 1]
        """
        fields = {
            "retention_strength": self._validate_strength(retention_strength, "update_retention"),
            "last_accessed_at": last_accessed_at,
        }
        return self.modify(memory_id, lambda current: fields, op="update_retention")

    def reinforce(
        self,
        memory_id: int,
        strength_of: Callable[[Memory], float],
        accessed_at: datetime,
        scope: Optional[ScopeFilter] = None
    ) -> Memory:
        """
        Reinforce a memory from its stored state.

        The new strength is computed from the record as read inside the
        write, so concurrent reinforcements each build on the previous one.

        Args:
            memory_id: Memory id
            strength_of: Function of the current record returning the new strength
            accessed_at: New last_accessed_at
            scope: Optional user/agent restriction
        """
        return self.modify(
            memory_id,
            lambda current: {"retention_strength": strength_of(current), "last_accessed_at": accessed_at},
            scope=scope,
            op="reinforce"
        )

    @abstractmethod
    def delete(self, memory_id: int, scope: Optional[ScopeFilter] = None) -> None:
        """
        Permanently remove a memory.

        Raises:
            NotFoundError: No such record in scope
        """
        pass

    @abstractmethod
    def search(
        self,
        query_embedding: List[float],
        scope: Optional[ScopeFilter] = None,
        min_score: Optional[float] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        """
        Rank memories in scope by cosine similarity to a query.

        Args:
            query_embedding: Query vector
            scope: Filter and limit (default limit applies when unset)
            min_score: Drop results below this similarity
            cancellation: Optional cancellation/deadline

        Returns:
            Memories with `score` set, by descending score then most recent updated_at
        """
        pass

    @abstractmethod
    def get_all(
        self,
        scope: Optional[ScopeFilter] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        """
        List memories in scope, newest first, paginated by limit/offset.
        """
        pass

    @abstractmethod
    def delete_all(self, scope: Optional[ScopeFilter] = None) -> int:
        """
        Delete every memory matching the filter; an empty filter deletes all.

        Returns:
            Number of deleted memories
        """
        pass

    @abstractmethod
    def count(self, scope: Optional[ScopeFilter] = None) -> int:
        """Number of memories matching the filter (limit/offset ignored)."""
        pass

    @abstractmethod
    def create_index(self, config: Optional[VectorIndexConfig] = None) -> None:
        """
        Build an approximate nearest-neighbor index.

        Succeeds without change when the index already exists; backends
        without native indexing treat the call as a no-op.
        """
        pass

    @abstractmethod
    def reset(self) -> None:
        """Drop and recreate the collection."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release backend resources."""
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    # =========================================================================
    # SHARED HELPERS
    # =========================================================================

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    def _validate_content(self, content: Any, op: str, scope: Optional[ScopeFilter]) -> str:
        if not isinstance(content, str) or not content.strip():
            raise InvalidArgumentError(op, "content must not be empty", scope)
        return content

    def _validate_embedding(self, embedding: Any, op: str, scope: Optional[ScopeFilter]) -> List[float]:
        return validate_embedding(embedding, self._embedding_dim, op, scope).tolist()

    @staticmethod
    def _validate_strength(strength: float, op: str, scope: Optional[ScopeFilter] = None) -> float:
        if not 0.0 < strength <= 1.0:
            raise InvalidArgumentError(op, f"retention_strength must be in (0, 1], got {strength}", scope)
        return float(strength)

    def _prepare_insert(self, memory: Memory) -> Memory:
        """Validate a memory and stamp id and timestamps."""
        scope = scope_of(memory.user_id, memory.agent_id)
        if not memory.user_id:
            raise InvalidArgumentError("insert", "user_id is required", scope)
        self._validate_content(memory.content, "insert", scope)
        embedding = self._validate_embedding(memory.embedding, "insert", scope)
        self._validate_strength(memory.retention_strength, "insert", scope)

        now = self._now()
        return memory.model_copy(update={
            "id": memory.id if memory.id is not None else self._ids.next_id(),
            "embedding": embedding,
            "metadata": dict(memory.metadata),
            "created_at": now,
            "updated_at": now,
            "last_accessed_at": ensure_utc(memory.last_accessed_at),
            "score": None,
        })

    def _apply_changes(
        self,
        current: Memory,
        changes: Dict[str, Any],
        op: str,
        scope: Optional[ScopeFilter]
    ) -> Memory:
        """Validate computed changes and apply them to a copy of `current`."""
        unknown = set(changes) - set(MODIFIABLE_FIELDS)
        if unknown:
            raise InvalidArgumentError(op, f"fields cannot be modified: {sorted(unknown)}", scope)

        update: Dict[str, Any] = {}
        if "content" in changes:
            update["content"] = self._validate_content(changes["content"], op, scope)
        if "embedding" in changes:
            update["embedding"] = self._validate_embedding(changes["embedding"], op, scope)
        if update:
            update["updated_at"] = self._now()
        if "retention_strength" in changes:
            update["retention_strength"] = self._validate_strength(changes["retention_strength"], op, scope)
        if "last_accessed_at" in changes:
            update["last_accessed_at"] = ensure_utc(changes["last_accessed_at"])
        return current.model_copy(update=update)

    def _prepare_scope(self, scope: Optional[ScopeFilter], op: str) -> ScopeFilter:
        scope = scope if scope is not None else ScopeFilter()
        validate_scope_filter(scope, op)
        return scope

    def _search_limit(self, scope: ScopeFilter) -> int:
        return self._default_search_limit if scope.limit is None else scope.limit

    def _get_all_limit(self, scope: ScopeFilter) -> int:
        return self._default_get_all_limit if scope.limit is None else scope.limit

    @staticmethod
    def _not_found(op: str, memory_id: int, scope: Optional[ScopeFilter]) -> NotFoundError:
        return NotFoundError(op, f"memory {memory_id} not found", scope)

    @staticmethod
    def _in_scope(memory: Memory, scope: Optional[ScopeFilter]) -> bool:
        return scope is None or scope.matches_scope(memory)

    @staticmethod
    def _rank_key(memory: Memory) -> Tuple[float, float, int]:
        return (-memory.score, -memory.updated_at.timestamp(), -memory.id)

    @classmethod
    def _rank(cls, candidates: Iterable[Memory], limit: int) -> List[Memory]:
        """Top `limit` by score, ties to the most recently updated."""
        if limit <= 0:
            return []
        return heapq.nsmallest(limit, candidates, key=cls._rank_key)

    @staticmethod
    def _recent_key(memory: Memory) -> Tuple[float, int]:
        return (-memory.created_at.timestamp(), -memory.id)

    # =========================================================================
    # SERIALIZATION
    # =========================================================================

    @staticmethod
    def _encode_metadata(metadata: Dict[str, Any], op: str, scope: Optional[ScopeFilter] = None) -> str:
        try:
            return json.dumps(metadata, sort_keys=True)
        except (TypeError, ValueError) as e:
            raise SerializationError(op, f"metadata is not JSON serializable: {e}", scope) from e

    @staticmethod
    def _decode_metadata(raw: Optional[str], op: str, scope: Optional[ScopeFilter] = None) -> Dict[str, Any]:
        if raw is None or raw == "":
            return {}
        try:
            value = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise SerializationError(op, f"stored metadata is corrupt: {e}", scope) from e
        if not isinstance(value, dict):
            raise SerializationError(op, "stored metadata is not an object", scope)
        return value
