"""
Deduplication - Similarity-based duplicate detection for pyremember.

Before a memory is inserted, its embedding is compared against the nearest
memories in the same scope. A match at or above the threshold is a duplicate:
no new row is created, the match is reinforced, and its content is handled
according to the configured merge policy.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional

from pyremember.data.schemas.models import MergePolicy, Memory, ScopeFilter
from pyremember.errors import InvalidArgumentError, NotFoundError
from pyremember.intelligence.retention import RetentionManager
from pyremember.storage.cancellation import Cancellation
from pyremember.storage.interface import VectorStore
from pyremember.storage.similarity import average_embedding
from pyremember.utils.clock import Clock, ensure_utc, utc_now
from pyremember.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_THRESHOLD = 0.95
DEFAULT_TOP_K = 5


class DedupAction(str, Enum):
    """What the dedup step did."""
    INSERT = "insert"          # Novel; the caller should insert
    REINFORCED = "reinforced"  # Duplicate; existing content kept
    REPLACED = "replaced"      # Duplicate; existing content superseded
    APPENDED = "appended"      # Duplicate; content concatenated


_POLICY_ACTIONS = {
    MergePolicy.KEEP_EXISTING: DedupAction.REINFORCED,
    MergePolicy.REPLACE: DedupAction.REPLACED,
    MergePolicy.APPEND: DedupAction.APPENDED,
}


@dataclass
class DedupOutcome:
    """
    Result of a dedup check.

    Attributes:
        is_duplicate: Whether a match at or above the threshold was found
        action: What was done about it
        memory: The matched record after reinforcement/merge (duplicates only)
        similarity: Similarity of the best match, if any match was found
        previous_strength: Effective strength of the match before reinforcement
        new_strength: Persisted strength after reinforcement
    """
    is_duplicate: bool
    action: DedupAction
    memory: Optional[Memory] = None
    similarity: Optional[float] = None
    previous_strength: Optional[float] = None
    new_strength: Optional[float] = None

    @property
    def should_insert(self) -> bool:
        return not self.is_duplicate

    @classmethod
    def novel(cls, similarity: Optional[float] = None) -> "DedupOutcome":
        return cls(is_duplicate=False, action=DedupAction.INSERT, similarity=similarity)


class DedupManager:
    """
    Detects duplicates with a scoped top-k similarity search.

    Only the duplicate path writes to the store, and only to the matched record.
    """

    def __init__(
        self,
        store: VectorStore,
        threshold: float = DEFAULT_THRESHOLD,
        top_k: int = DEFAULT_TOP_K,
        merge_policy: MergePolicy = MergePolicy.KEEP_EXISTING,
        retention: Optional[RetentionManager] = None,
        clock: Optional[Clock] = None
    ):
        """
        Initialize the dedup manager.

        Args:
            store: Vector store to search and reinforce
            threshold: Similarity at or above which a candidate is a duplicate
            top_k: Number of neighbors inspected
            merge_policy: Content handling for duplicates
            retention: Retention model used for reinforcement
            clock: Callable returning the current UTC datetime
        """
        if not 0.0 < threshold <= 1.0:
            raise InvalidArgumentError("dedup", f"threshold must be in (0, 1], got {threshold}")
        if top_k <= 0:
            raise InvalidArgumentError("dedup", f"top_k must be positive, got {top_k}")

        self.store = store
        self.threshold = threshold
        self.top_k = top_k
        self.merge_policy = MergePolicy(merge_policy)
        self.retention = retention or RetentionManager()
        self._clock = clock or utc_now

    def _nearest(
        self,
        embedding: List[float],
        scope: ScopeFilter,
        cancellation: Optional[Cancellation]
    ) -> Optional[Memory]:
        # Search results are ordered by similarity, then most recent update
        neighbors = self.store.search(embedding, scope, cancellation=cancellation)
        return neighbors[0] if neighbors else None

    def find_duplicate(
        self,
        embedding: List[float],
        user_id: str,
        agent_id: Optional[str] = None,
        cancellation: Optional[Cancellation] = None
    ) -> Optional[Memory]:
        """
        Best match at or above the threshold, without side effects.

        Returns:
            The matched memory (with `score`), or None if the candidate is novel
        """
        scope = ScopeFilter(user_id=user_id, agent_id=agent_id, limit=self.top_k)
        best = self._nearest(embedding, scope, cancellation)
        if best is not None and best.score >= self.threshold:
            return best
        return None

    def process(
        self,
        content: str,
        embedding: List[float],
        user_id: str,
        agent_id: Optional[str] = None,
        cancellation: Optional[Cancellation] = None
    ) -> DedupOutcome:
        """
        Classify a candidate and, if it is a duplicate, reinforce/merge the match.

        Args:
            content: Candidate content
            embedding: Candidate embedding
            user_id: Scope user
            agent_id: Scope agent
            cancellation: Optional cancellation for the neighbor search

        Returns:
            DedupOutcome describing the decision
        """
        scope = ScopeFilter(user_id=user_id, agent_id=agent_id, limit=self.top_k)
        best = self._nearest(embedding, scope, cancellation)

        if best is None or best.score < self.threshold:
            similarity = best.score if best is not None else None
            logger.debug(f"Novel memory (best similarity {similarity}) [{scope}]")
            return DedupOutcome.novel(similarity)

        now = ensure_utc(self._clock())
        strengths: Dict[str, float] = {}

        def merge(current: Memory) -> Dict[str, Any]:
            # Runs inside the store's write, against the record as stored now
            previous = self.retention.effective_strength(current, now)
            strengths["previous"] = previous
            strengths["new"] = self.retention.reinforce(previous)
            changes: Dict[str, Any] = {"retention_strength": strengths["new"], "last_accessed_at": now}
            if self.merge_policy == MergePolicy.REPLACE:
                changes.update(content=content, embedding=embedding)
            elif self.merge_policy == MergePolicy.APPEND:
                changes.update(
                    content=f"{current.content} {content}",
                    embedding=average_embedding(current.embedding, embedding)
                )
            return changes

        try:
            merged = self.store.modify(best.id, merge, op="dedup_merge")
        except NotFoundError:
            logger.info(f"Duplicate match {best.id} was deleted before the merge; treating as novel [{scope}]")
            return DedupOutcome.novel(best.score)

        action = _POLICY_ACTIONS[self.merge_policy]
        logger.info(
            f"Duplicate of memory {best.id} (similarity {best.score:.4f} >= {self.threshold}); "
            f"{action.value}, strength {strengths['previous']:.4f} -> {strengths['new']:.4f} [{scope}]"
        )
        return DedupOutcome(
            is_duplicate=True,
            action=action,
            memory=merged.model_copy(update={"score": best.score}),
            similarity=best.score,
            previous_strength=strengths["previous"],
            new_strength=strengths["new"],
        )
