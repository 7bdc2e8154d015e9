"""
pyremember - Memory store and retention engine.

Persists short text memories with embeddings per user/agent scope, searches
them by cosine similarity across interchangeable backends (DuckDB, LanceDB),
deduplicates new memories against existing ones and models their retained
importance with a forgetting curve.
"""

__version__ = "0.1.0"

from pyremember.config import PyRememberConfig, load_config
from pyremember.core.batch import BatchItemError, BatchResult, BatchUpdateItem
from pyremember.core.client import AddResult, MemoryClient
from pyremember.data.schemas.models import (
    AccessPolicy,
    IndexType,
    Memory,
    MemoryTier,
    MergePolicy,
    MetricType,
    ScopeFilter,
    UpdateRetentionPolicy,
    VectorIndexConfig,
)
from pyremember.errors import (
    BackendUnavailableError,
    ConflictingIDError,
    InvalidArgumentError,
    NotFoundError,
    OperationCancelledError,
    PyRememberError,
    SerializationError,
)
from pyremember.storage import create_vector_store

__all__ = [
    "AccessPolicy",
    "AddResult",
    "BackendUnavailableError",
    "BatchItemError",
    "BatchResult",
    "BatchUpdateItem",
    "ConflictingIDError",
    "IndexType",
    "InvalidArgumentError",
    "Memory",
    "MemoryClient",
    "MemoryTier",
    "MergePolicy",
    "MetricType",
    "NotFoundError",
    "OperationCancelledError",
    "PyRememberConfig",
    "PyRememberError",
    "ScopeFilter",
    "SerializationError",
    "UpdateRetentionPolicy",
    "VectorIndexConfig",
    "create_vector_store",
    "load_config",
]
