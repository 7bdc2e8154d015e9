"""
Data schemas for pyremember.
"""

from pyremember.data.schemas.models import (
    AccessPolicy,
    HNSWParams,
    IndexType,
    IVFParams,
    Memory,
    MemoryTier,
    MergePolicy,
    MetricType,
    ScopeFilter,
    UpdateRetentionPolicy,
    VectorIndexConfig,
)

__all__ = [
    "AccessPolicy",
    "HNSWParams",
    "IndexType",
    "IVFParams",
    "Memory",
    "MemoryTier",
    "MergePolicy",
    "MetricType",
    "ScopeFilter",
    "UpdateRetentionPolicy",
    "VectorIndexConfig",
]
