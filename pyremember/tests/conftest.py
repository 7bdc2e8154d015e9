"""Shared fixtures and configuration for pyremember tests."""

import math
from datetime import datetime, timedelta, timezone
from typing import Generator, List

import pytest

from pyremember.config import (
    IntelligenceConfig,
    LoggingConfig,
    PyRememberConfig,
    SearchConfig,
    StoreConfig,
)
from pyremember.core.client import MemoryClient
from pyremember.data.schemas.models import Memory
from pyremember.storage.duckdb_store import DuckDBVectorStore
from pyremember.storage.interface import VectorStore
from pyremember.storage.lancedb_store import LanceDBVectorStore

# Small dimension keeps hand-written vectors readable
DIM = 4
START = datetime(2025, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock returning aware UTC datetimes."""

    def __init__(self, start: datetime = START):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        """Move forward by a timedelta given as keyword arguments (hours=..., days=...)."""
        self.now = self.now + timedelta(**kwargs)
        return self.now


# Test utilities
def unit(*values: float) -> List[float]:
    """Normalize a vector."""
    norm = math.sqrt(sum(v * v for v in values))
    return [v / norm for v in values]


def at_angle(cosine: float) -> List[float]:
    """Unit vector in the first plane whose cosine with [1, 0, 0, 0] is `cosine`."""
    return [cosine, math.sqrt(1.0 - cosine * cosine), 0.0, 0.0]


def make_memory(
    content: str = "Python programming",
    embedding: List[float] = None,
    user_id: str = "user_001",
    agent_id: str = None,
    **kwargs
) -> Memory:
    """Build an unsaved memory."""
    return Memory(
        content=content,
        embedding=embedding or [1.0, 0.0, 0.0, 0.0],
        user_id=user_id,
        agent_id=agent_id,
        **kwargs
    )


@pytest.fixture
def clock() -> FakeClock:
    """A clock frozen at START until advanced."""
    return FakeClock()


@pytest.fixture
def duckdb_store(clock: FakeClock) -> Generator[DuckDBVectorStore, None, None]:
    """In-memory DuckDB store; a tiny batch size exercises batched scans."""
    store = DuckDBVectorStore(
        db_path=":memory:",
        collection_name="test_memories",
        embedding_dim=DIM,
        scan_batch_size=2,
        clock=clock,
    )

    yield store

    store.close()


@pytest.fixture
def lancedb_store(tmp_path, clock: FakeClock) -> Generator[LanceDBVectorStore, None, None]:
    """LanceDB store in a temporary directory."""
    store = LanceDBVectorStore(
        db_path=str(tmp_path / "lancedb"),
        collection_name="test_memories",
        embedding_dim=DIM,
        clock=clock,
    )

    yield store

    store.close()


@pytest.fixture(params=["duckdb", "lancedb"])
def store(request) -> VectorStore:
    """Every contract test runs against both backends."""
    return request.getfixturevalue(f"{request.param}_store")


@pytest.fixture
def test_config() -> PyRememberConfig:
    """Configuration independent of the process environment."""
    return PyRememberConfig(
        store=StoreConfig(
            provider="duckdb",
            path=":memory:",
            collection_name="test_memories",
            embedding_dim=DIM,
            scan_batch_size=2,
            node_id=1,
        ),
        intelligence=IntelligenceConfig(
            dedup_enabled=True,
            duplicate_threshold=0.95,
            dedup_top_k=5,
            decay_rate=0.1 / 24,
            reinforcement_factor=0.3,
        ),
        search=SearchConfig(default_limit=10, default_get_all_limit=100),
        logging=LoggingConfig(level="DEBUG"),
    )


@pytest.fixture
def client(test_config: PyRememberConfig, store: VectorStore, clock: FakeClock) -> MemoryClient:
    """MemoryClient over the parametrized store."""
    return MemoryClient(config=test_config, store=store, clock=clock)
