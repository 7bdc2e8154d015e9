"""
Memory Client - Lifecycle coordinator for pyremember.

Composes the vector store, the dedup manager and the retention model into
the operations exposed to callers:

- add: dedup check, then insert (or reinforce the existing duplicate)
- get / search: optional reinforcement on access, per AccessPolicy
- update: content replacement, retention reset or preserved per policy
- delete / delete_all / reset: irreversible removal
- batch_* / iter_*: per-item batches and paged iteration over large scopes
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional, Sequence

from pyremember.config import PyRememberConfig
from pyremember.core.batch import BatchItemError, BatchResult, BatchUpdateItem
from pyremember.core.locks import ScopeLockRegistry
from pyremember.data.schemas.models import (
    AccessPolicy,
    Memory,
    MemoryTier,
    ScopeFilter,
    UpdateRetentionPolicy,
    VectorIndexConfig,
)
from pyremember.errors import InvalidArgumentError, PyRememberError
from pyremember.intelligence.dedup import DedupManager, DedupOutcome
from pyremember.intelligence.retention import RetentionManager
from pyremember.storage import create_vector_store
from pyremember.storage.cancellation import Cancellation, check_cancelled
from pyremember.storage.interface import VectorStore
from pyremember.utils.clock import Clock, ensure_utc, utc_now
from pyremember.utils.logger import get_logger, set_level

logger = get_logger(__name__)

# Result cap for iter_search when the scope sets no limit
STREAM_SEARCH_LIMIT = 1000


@dataclass
class AddResult:
    """
    Result of MemoryClient.add.

    Attributes:
        memory: The inserted record, or the existing record it duplicated
        duplicate: True when no new row was created
        outcome: The dedup decision (None when dedup was skipped)
    """
    memory: Memory
    duplicate: bool
    outcome: Optional[DedupOutcome] = None


class MemoryClient:
    """
    Entry point for storing and recalling memories.

    Memories move through Created -> Active -> Deleted. Active memories decay
    continuously; reinforcement happens on qualifying access.
    """

    def __init__(
        self,
        config: Optional[PyRememberConfig] = None,
        store: Optional[VectorStore] = None,
        clock: Optional[Clock] = None
    ):
        """
        Initialize the client.

        Args:
            config: Validated configuration (PyRememberConfig() if omitted)
            store: Vector store to use (built from config.store if omitted)
            clock: Callable returning the current UTC datetime
        """
        self.config = (config or PyRememberConfig()).validate()
        set_level(self.config.logging.level)

        self._clock = clock or utc_now
        self.store = store or create_vector_store(self.config.store, self.config.search, clock=self._clock)

        intel = self.config.intelligence
        self.retention = RetentionManager.from_config(intel)
        self.dedup = DedupManager(
            self.store,
            threshold=intel.duplicate_threshold,
            top_k=intel.dedup_top_k,
            merge_policy=intel.merge_policy,
            retention=self.retention,
            clock=self._clock,
        )
        self._locks = ScopeLockRegistry()

        logger.info(
            f"MemoryClient ready: {type(self.store).__name__} "
            f"(dedup={'on' if intel.dedup_enabled else 'off'}, access={intel.access_policy.value}, "
            f"merge={intel.merge_policy.value}, update={intel.update_retention_policy.value})"
        )

    def _now(self) -> datetime:
        return ensure_utc(self._clock())

    # =========================================================================
    # ADD
    # =========================================================================

    def add(
        self,
        content: str,
        embedding: List[float],
        user_id: str,
        agent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        memory_id: Optional[int] = None,
        dedup: Optional[bool] = None,
        cancellation: Optional[Cancellation] = None
    ) -> AddResult:
        """
        Add a memory, unless it duplicates one already in scope.

        Args:
            content: Memory text
            embedding: Embedding of the text
            user_id: Owning user
            agent_id: Owning agent
            metadata: Opaque metadata stored with a new memory
            memory_id: Caller-assigned id (store-assigned if omitted)
            dedup: Override config.intelligence.dedup_enabled
            cancellation: Optional cancellation for the dedup search

        Returns:
            AddResult with the new or the reinforced existing memory
        """
        scope = ScopeFilter(user_id=user_id, agent_id=agent_id)
        if not user_id:
            raise InvalidArgumentError("add", "user_id is required", scope)
        if not isinstance(content, str) or not content.strip():
            raise InvalidArgumentError("add", "content must not be empty", scope)

        use_dedup = self.config.intelligence.dedup_enabled if dedup is None else dedup

        with self._locks.hold(user_id):
            outcome = None
            if use_dedup:
                outcome = self.dedup.process(content, embedding, user_id, agent_id, cancellation=cancellation)
                if outcome.is_duplicate:
                    return AddResult(memory=outcome.memory, duplicate=True, outcome=outcome)

            stored = self.store.insert(Memory(
                id=memory_id,
                user_id=user_id,
                agent_id=agent_id,
                content=content,
                embedding=embedding,
                metadata=metadata or {},
                retention_strength=self.retention.initial_retention,
            ))

        logger.info(f"Added memory {stored.id} [{scope}]")
        return AddResult(memory=stored, duplicate=False, outcome=outcome)

    # =========================================================================
    # READS
    # =========================================================================

    def _reinforce(
        self,
        memory_id: int,
        scope: Optional[ScopeFilter] = None,
        score: Optional[float] = None
    ) -> Memory:
        # Strength is computed from the stored record inside the store's write
        now = self._now()
        updated = self.store.reinforce(
            memory_id,
            lambda current: self.retention.reinforce(self.retention.effective_strength(current, now)),
            now,
            scope=scope
        )
        return updated.model_copy(update={"score": score})

    def _reinforce_on_read(self, explicit: Optional[bool]) -> bool:
        if explicit is not None:
            return explicit
        return self.config.intelligence.access_policy == AccessPolicy.EVERY_READ

    def get(
        self,
        memory_id: int,
        scope: Optional[ScopeFilter] = None,
        reinforce: Optional[bool] = None
    ) -> Memory:
        """
        Retrieve a memory by id.

        Args:
            memory_id: Memory id
            scope: Optional user/agent restriction
            reinforce: Force (or suppress) reinforcement; defaults to the access policy
        """
        if self._reinforce_on_read(reinforce):
            return self._reinforce(memory_id, scope)
        return self.store.get(memory_id, scope)

    def mark_used(self, memory_id: int, scope: Optional[ScopeFilter] = None) -> Memory:
        """Record an explicit use of a memory and reinforce it."""
        memory = self._reinforce(memory_id, scope)
        logger.debug(f"Memory {memory_id} marked used, strength {memory.retention_strength:.4f}")
        return memory

    def search(
        self,
        query_embedding: List[float],
        scope: Optional[ScopeFilter] = None,
        min_score: Optional[float] = None,
        rank_by_retention: Optional[bool] = None,
        reinforce: Optional[bool] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        """
        Similarity search within a scope.

        Args:
            query_embedding: Query vector
            scope: Filter and limit (config.search.default_limit when unset)
            min_score: Drop results below this similarity
            rank_by_retention: Order by score * effective strength instead of raw score
            reinforce: Force (or suppress) reinforcement of the results
            cancellation: Optional cancellation/deadline

        Returns:
            Memories with `score` holding the raw similarity
        """
        scope = scope or ScopeFilter()
        limit = self.config.search.default_limit if scope.limit is None else scope.limit
        weighted = self.config.intelligence.rank_by_retention if rank_by_retention is None else rank_by_retention

        # Over-fetch so re-weighting can promote well-retained memories
        fetch = limit * 2 if weighted else limit
        results = self.store.search(query_embedding, scope.with_limit(fetch), min_score=min_score,
                                    cancellation=cancellation)

        if weighted:
            now = self._now()
            results = sorted(
                results,
                key=lambda m: m.score * self.retention.effective_strength(m, now),
                reverse=True
            )
        results = results[:limit]

        if self._reinforce_on_read(reinforce):
            results = [self._reinforce(m.id, score=m.score) for m in results]
        return results

    def iter_search(
        self,
        query_embedding: List[float],
        scope: Optional[ScopeFilter] = None,
        batch_size: int = 50,
        min_score: Optional[float] = None,
        reinforce: Optional[bool] = None,
        cancellation: Optional[Cancellation] = None
    ) -> Iterator[List[Memory]]:
        """
        Similarity search yielded in batches.

        Vector search has no stable offset, so one search runs for up to
        `scope.limit` results (STREAM_SEARCH_LIMIT when unset) and its ranked
        results are handed out `batch_size` at a time. Cancellation is checked
        before each batch.

        Args:
            query_embedding: Query vector
            scope: Filter; its limit caps the total number of results
            batch_size: Results per yielded batch
            min_score: Drop results below this similarity
            reinforce: Force (or suppress) reinforcement of the results
            cancellation: Optional cancellation/deadline

        Yields:
            Lists of at most `batch_size` memories in rank order
        """
        scope = scope or ScopeFilter()
        if batch_size <= 0:
            raise InvalidArgumentError("iter_search", f"batch_size must be positive, got {batch_size}", scope)
        if scope.limit is None:
            scope = scope.with_limit(STREAM_SEARCH_LIMIT)

        results = self.search(query_embedding, scope, min_score=min_score, reinforce=reinforce,
                              cancellation=cancellation)
        for start in range(0, len(results), batch_size):
            check_cancelled(cancellation, "iter_search", scope)
            yield results[start:start + batch_size]

    def iter_all(
        self,
        scope: Optional[ScopeFilter] = None,
        batch_size: Optional[int] = None,
        cancellation: Optional[Cancellation] = None
    ) -> Iterator[List[Memory]]:
        """
        Page through memories in scope, newest first.

        Each batch is one get_all call, so at most `batch_size` records are
        held at a time. Pages are taken by offset; records inserted while
        iterating can shift later pages.

        Args:
            scope: Filter; limit caps the total (unbounded when unset), offset is the start
            batch_size: Records per page (config.search.default_get_all_limit when unset)
            cancellation: Optional cancellation/deadline, checked before each page

        Yields:
            Non-empty lists of memories
        """
        scope = scope or ScopeFilter()
        batch_size = self.config.search.default_get_all_limit if batch_size is None else batch_size
        if batch_size <= 0:
            raise InvalidArgumentError("iter_all", f"batch_size must be positive, got {batch_size}", scope)

        remaining = scope.limit
        offset = scope.offset
        while remaining is None or remaining > 0:
            check_cancelled(cancellation, "iter_all", scope)
            size = batch_size if remaining is None else min(batch_size, remaining)
            page = self.store.get_all(
                scope.model_copy(update={"limit": size, "offset": offset}),
                cancellation=cancellation
            )
            if not page:
                return
            yield page
            if len(page) < size:
                return
            offset += len(page)
            if remaining is not None:
                remaining -= len(page)

    def get_all(
        self,
        scope: Optional[ScopeFilter] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        """List memories in scope, newest first (config.search.default_get_all_limit when unset)."""
        scope = scope or ScopeFilter()
        if scope.limit is None:
            scope = scope.with_limit(self.config.search.default_get_all_limit)
        return self.store.get_all(scope, cancellation=cancellation)

    def count(self, scope: Optional[ScopeFilter] = None) -> int:
        return self.store.count(scope)

    # =========================================================================
    # WRITES
    # =========================================================================

    def update(
        self,
        memory_id: int,
        content: str,
        embedding: List[float],
        scope: Optional[ScopeFilter] = None
    ) -> Memory:
        """
        Replace a memory's content and embedding.

        Under UpdateRetentionPolicy.RESET the strength returns to the initial
        value in the same write; under PRESERVE it is left untouched.
        """
        if self.config.intelligence.update_retention_policy == UpdateRetentionPolicy.RESET:
            return self.store.update(
                memory_id,
                content,
                embedding,
                scope=scope,
                retention_strength=self.retention.initial_retention,
                last_accessed_at=self._now(),
            )
        return self.store.update(memory_id, content, embedding, scope=scope)

    def delete(self, memory_id: int, scope: Optional[ScopeFilter] = None) -> None:
        """Permanently delete a memory."""
        self.store.delete(memory_id, scope)
        logger.info(f"Deleted memory {memory_id}")

    def delete_all(self, scope: Optional[ScopeFilter] = None) -> int:
        """Delete every memory matching the filter; an empty filter deletes all."""
        return self.store.delete_all(scope)

    def reset(self, scope: Optional[ScopeFilter] = None) -> int:
        """
        Clear memories.

        With no (or an empty) scope the collection is dropped and recreated;
        otherwise only the scope's memories are deleted. Nothing outside the
        memory collection is touched.

        Returns:
            Number of memories removed
        """
        if scope is None or scope.is_empty():
            removed = self.store.count()
            self.store.reset()
            logger.info(f"Reset memory collection ({removed} memories removed)")
            return removed
        return self.store.delete_all(scope)

    def create_index(self, config: Optional[VectorIndexConfig] = None) -> None:
        self.store.create_index(config)

    # =========================================================================
    # BATCHES
    # =========================================================================

    def batch_add(
        self,
        contents: Sequence[str],
        embeddings: Sequence[List[float]],
        user_id: str,
        agent_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        dedup: Optional[bool] = None,
        cancellation: Optional[Cancellation] = None
    ) -> BatchResult:
        """
        Add several memories for one scope.

        Items are added in order, so a later item is deduplicated against
        earlier items of the same batch. A failing item does not stop the rest.

        Args:
            contents: Memory texts
            embeddings: One embedding per text
            user_id: Owning user
            agent_id: Owning agent
            metadata: Metadata stored with every new memory
            dedup: Override config.intelligence.dedup_enabled
            cancellation: Once cancelled, the remaining items fail with OperationCancelledError

        Returns:
            BatchResult whose successes are AddResults
        """
        if len(contents) != len(embeddings):
            raise InvalidArgumentError(
                "batch_add",
                f"{len(contents)} contents but {len(embeddings)} embeddings",
                ScopeFilter(user_id=user_id, agent_id=agent_id)
            )

        result = BatchResult(total=len(contents))
        for index, (content, embedding) in enumerate(zip(contents, embeddings)):
            try:
                check_cancelled(cancellation, "batch_add")
                result.succeeded.append(self.add(
                    content, embedding, user_id, agent_id,
                    metadata=metadata, dedup=dedup, cancellation=cancellation
                ))
            except PyRememberError as e:
                result.failed.append(BatchItemError(index=index, error=e, content=content))

        logger.info(f"batch_add: {result}")
        return result

    def batch_update(
        self,
        items: Sequence[BatchUpdateItem],
        scope: Optional[ScopeFilter] = None,
        cancellation: Optional[Cancellation] = None
    ) -> BatchResult:
        """Replace content and embedding of several memories; successes are the updated Memories."""
        result = BatchResult(total=len(items))
        for index, item in enumerate(items):
            try:
                check_cancelled(cancellation, "batch_update", scope)
                result.succeeded.append(self.update(item.memory_id, item.content, item.embedding, scope))
            except PyRememberError as e:
                result.failed.append(BatchItemError(
                    index=index, error=e, memory_id=item.memory_id, content=item.content
                ))

        logger.info(f"batch_update: {result}")
        return result

    def batch_delete(
        self,
        memory_ids: Sequence[int],
        scope: Optional[ScopeFilter] = None,
        cancellation: Optional[Cancellation] = None
    ) -> BatchResult:
        """Delete several memories; successes are the deleted ids."""
        result = BatchResult(total=len(memory_ids))
        for index, memory_id in enumerate(memory_ids):
            try:
                check_cancelled(cancellation, "batch_delete", scope)
                self.store.delete(memory_id, scope)
                result.succeeded.append(memory_id)
            except PyRememberError as e:
                result.failed.append(BatchItemError(index=index, error=e, memory_id=memory_id))

        logger.info(f"batch_delete: {result}")
        return result

    # =========================================================================
    # RETENTION
    # =========================================================================

    def effective_strength(self, memory: Memory) -> float:
        """Decayed strength of a memory right now."""
        return self.retention.effective_strength(memory, self._now())

    def tier(self, memory: Memory) -> MemoryTier:
        return self.retention.classify(self.effective_strength(memory))

    def forgettable(
        self,
        scope: Optional[ScopeFilter] = None,
        cancellation: Optional[Cancellation] = None
    ) -> List[Memory]:
        """
        Memories in scope that the retention model says may be forgotten.

        Nothing is deleted; eviction is left to the caller.
        """
        now = self._now()
        return [
            memory
            for page in self.iter_all(scope, cancellation=cancellation)
            for memory in page
            if self.retention.should_forget(memory, now)
        ]

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def close(self) -> None:
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False
