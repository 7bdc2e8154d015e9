"""
Storage module for pyremember.

Provides the VectorStore contract and its two backends:
- DuckDBVectorStore: relational scan, similarity computed in-process
- LanceDBVectorStore: similarity search delegated to LanceDB's vector index
"""

from typing import Optional

from pyremember.config import SearchConfig, StoreConfig
from pyremember.errors import InvalidArgumentError
from pyremember.storage.cancellation import Cancellation
from pyremember.storage.duckdb_store import DuckDBVectorStore
from pyremember.storage.interface import VectorStore
from pyremember.storage.lancedb_store import LanceDBVectorStore
from pyremember.utils.clock import Clock
from pyremember.utils.ids import IdGenerator
from pyremember.utils.logger import get_logger

logger = get_logger(__name__)


def create_vector_store(
    store_config: StoreConfig,
    search_config: Optional[SearchConfig] = None,
    clock: Optional[Clock] = None
) -> VectorStore:
    """
    Create the configured vector store backend.

    Args:
        store_config: Provider, location, collection and dimension
        search_config: Default limits (SearchConfig defaults if omitted)
        clock: Optional clock override

    Returns:
        A ready-to-use VectorStore
    """
    search_config = search_config or SearchConfig()
    common = dict(
        collection_name=store_config.collection_name,
        embedding_dim=store_config.embedding_dim,
        clock=clock,
        id_generator=IdGenerator(store_config.node_id),
        default_search_limit=search_config.default_limit,
        default_get_all_limit=search_config.default_get_all_limit,
    )

    provider = store_config.provider.lower()
    store_config.ensure_directories()
    logger.info(f"Creating {provider} vector store for collection '{store_config.collection_name}'")
    if provider == "duckdb":
        return DuckDBVectorStore(
            db_path=store_config.path,
            scan_batch_size=store_config.scan_batch_size,
            **common
        )
    if provider == "lancedb":
        return LanceDBVectorStore(db_path=store_config.path, **common)
    raise InvalidArgumentError("create_vector_store", f"unknown store provider '{store_config.provider}'")


__all__ = [
    "Cancellation",
    "DuckDBVectorStore",
    "LanceDBVectorStore",
    "VectorStore",
    "create_vector_store",
]
