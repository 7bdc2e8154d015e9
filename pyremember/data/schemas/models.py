"""
Pydantic Models for pyremember.

This module defines the data models shared by the stores, the intelligence
layer and the client:
- Memory: a stored piece of text with its embedding and retention state
- ScopeFilter: query-time user/agent/metadata filter with pagination
- VectorIndexConfig: parameters for building an approximate nearest-neighbor index
- Policy enums that name the configurable lifecycle choices
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field


class IndexType(str, Enum):
    """Approximate nearest-neighbor index algorithms."""
    HNSW = "hnsw"
    IVF_FLAT = "ivf_flat"
    IVF_PQ = "ivf_pq"


class MetricType(str, Enum):
    """Distance metrics an index can be built for."""
    COSINE = "cosine"
    L2 = "l2"
    INNER_PRODUCT = "ip"


class MergePolicy(str, Enum):
    """What happens to a duplicate's content when it matches an existing memory."""
    KEEP_EXISTING = "keep_existing"  # Reinforce only
    REPLACE = "replace"              # New content supersedes the existing record
    APPEND = "append"                # Concatenate content, average embeddings


class AccessPolicy(str, Enum):
    """Which reads count as a reinforcing access."""
    EVERY_READ = "every_read"
    EXPLICIT = "explicit"  # Only MemoryClient.mark_used


class UpdateRetentionPolicy(str, Enum):
    """Retention handling when a memory's content is edited."""
    PRESERVE = "preserve"
    RESET = "reset"


class MemoryTier(str, Enum):
    """Coarse retention tier derived from effective strength."""
    WORKING = "working"
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"


class Memory(BaseModel):
    """
    A stored memory.

    `score` is only populated on search results and is never persisted.
    Timestamps are assigned by the store on insert and update.
    """
    id: Optional[int] = Field(None, description="Unique id within the collection; assigned by the store if omitted")
    user_id: str = Field(..., description="Owning user")
    agent_id: Optional[str] = Field(None, description="Owning agent, if any")
    content: str = Field(..., description="Memory text")
    embedding: List[float] = Field(..., description="Fixed-length embedding vector")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Opaque key-value metadata")
    created_at: Optional[datetime] = Field(None, description="Creation time (UTC)")
    updated_at: Optional[datetime] = Field(None, description="Last content change (UTC)")
    retention_strength: float = Field(
        1.0,
        gt=0.0,
        le=1.0,
        description="Stored retention strength in (0, 1]"
    )
    last_accessed_at: Optional[datetime] = Field(None, description="Last reinforcing access (UTC)")
    score: Optional[float] = Field(None, description="Similarity to the query (search results only)")

    @property
    def scope(self) -> Tuple[str, Optional[str]]:
        """The (user_id, agent_id) pair this memory belongs to."""
        return (self.user_id, self.agent_id)


class ScopeFilter(BaseModel):
    """
    Query-time filter used by search, get_all and delete_all.

    Unset user_id / agent_id do not restrict; `filters` matches top-level
    metadata keys by equality, or by membership when the value is a list.
    An entirely empty filter matches the whole collection.
    """
    user_id: Optional[str] = Field(None, description="Restrict to this user")
    agent_id: Optional[str] = Field(None, description="Restrict to this agent")
    filters: Dict[str, Any] = Field(default_factory=dict, description="Metadata filters")
    limit: Optional[int] = Field(None, description="Maximum number of results (None uses the operation default)")
    offset: int = Field(0, description="Number of results to skip (get_all only)")

    def is_empty(self) -> bool:
        """True when nothing restricts the filter."""
        return self.user_id is None and self.agent_id is None and not self.filters

    def matches_scope(self, memory: Memory) -> bool:
        """Check only the user/agent part of the filter against a memory."""
        if self.user_id is not None and memory.user_id != self.user_id:
            return False
        if self.agent_id is not None and memory.agent_id != self.agent_id:
            return False
        return True

    def with_limit(self, limit: Optional[int]) -> "ScopeFilter":
        """Copy of this filter with a different limit."""
        return self.model_copy(update={"limit": limit})

    def __str__(self) -> str:
        parts = []
        if self.user_id is not None:
            parts.append(f"user_id={self.user_id}")
        if self.agent_id is not None:
            parts.append(f"agent_id={self.agent_id}")
        if self.filters:
            parts.append(f"filters={self.filters}")
        return ",".join(parts) if parts else "*"


class HNSWParams(BaseModel):
    """HNSW tuning parameters."""
    m: int = Field(16, description="Max connections per node")
    ef_construction: int = Field(200, description="Candidate list size while building")
    ef_search: int = Field(64, description="Candidate list size while searching")


class IVFParams(BaseModel):
    """IVF tuning parameters."""
    nlist: int = Field(100, description="Number of clusters")
    nprobe: int = Field(10, description="Clusters probed per query")


class VectorIndexConfig(BaseModel):
    """Configuration for CreateIndex."""
    index_name: Optional[str] = Field(None, description="Index name (backends may ignore)")
    index_type: IndexType = Field(IndexType.IVF_PQ, description="Index algorithm")
    metric_type: MetricType = Field(MetricType.COSINE, description="Distance metric")
    hnsw_params: Optional[HNSWParams] = Field(None, description="HNSW parameters")
    ivf_params: Optional[IVFParams] = Field(None, description="IVF parameters")
