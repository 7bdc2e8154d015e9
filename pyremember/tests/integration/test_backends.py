"""Backend-specific behavior: persistence, indexing and the store factory."""

import pytest

from pyremember.config import SearchConfig, StoreConfig
from pyremember.data.schemas.models import IndexType, IVFParams, MetricType, VectorIndexConfig
from pyremember.errors import BackendUnavailableError, InvalidArgumentError
from pyremember.storage import create_vector_store
from pyremember.storage.duckdb_store import DuckDBVectorStore
from pyremember.storage.lancedb_store import LanceDBVectorStore

from conftest import DIM, make_memory, unit

pytestmark = pytest.mark.integration

E = [1.0, 0.0, 0.0, 0.0]


class TestDuckDBStore:
    """Test DuckDB persistence and capability no-ops."""

    def test_persists_to_file(self, tmp_path, clock):
        db_path = str(tmp_path / "data" / "memories.duckdb")
        store = DuckDBVectorStore(db_path=db_path, collection_name="mem", embedding_dim=DIM, clock=clock)
        stored = store.insert(make_memory(metadata={"type": "fact"}))
        store.close()

        reopened = DuckDBVectorStore(db_path=db_path, collection_name="mem", embedding_dim=DIM, clock=clock)
        try:
            fetched = reopened.get(stored.id)
            assert fetched.content == "Python programming"
            assert fetched.metadata == {"type": "fact"}
            assert fetched.created_at == stored.created_at
        finally:
            reopened.close()

    def test_collections_are_keyed_by_dimension(self, tmp_path, clock):
        db_path = str(tmp_path / "memories.duckdb")
        small = DuckDBVectorStore(db_path=db_path, collection_name="mem", embedding_dim=DIM, clock=clock)
        small.insert(make_memory())
        assert small.table_name == "mem_4"
        small.close()

        large = DuckDBVectorStore(db_path=db_path, collection_name="mem", embedding_dim=8, clock=clock)
        try:
            assert large.table_name == "mem_8"
            assert large.count() == 0
        finally:
            large.close()

    def test_create_index_is_noop(self, duckdb_store):
        duckdb_store.insert(make_memory())
        duckdb_store.create_index(VectorIndexConfig(index_type=IndexType.HNSW))
        assert len(duckdb_store.search(E)) == 1

    @pytest.mark.parametrize("name", ["", "bad-name", "1starts_with_digit", "drop table; --"])
    def test_rejects_bad_collection_name(self, name):
        with pytest.raises(InvalidArgumentError):
            DuckDBVectorStore(collection_name=name, embedding_dim=DIM)


class TestLanceDBStore:
    """Test LanceDB persistence and indexing."""

    def test_persists_across_connections(self, tmp_path, clock):
        db_path = str(tmp_path / "lance")
        store = LanceDBVectorStore(db_path=db_path, collection_name="mem", embedding_dim=DIM, clock=clock)
        stored = store.insert(make_memory(agent_id="agent_1"))
        store.close()

        reopened = LanceDBVectorStore(db_path=db_path, collection_name="mem", embedding_dim=DIM, clock=clock)
        fetched = reopened.get(stored.id)
        assert fetched.agent_id == "agent_1"
        assert fetched.created_at == stored.created_at

    @pytest.mark.parametrize("native,expected", [
        (ValueError("invalid filter"), InvalidArgumentError),
        (OSError("disk gone"), BackendUnavailableError),
        (RuntimeError("lance panic"), BackendUnavailableError),
    ])
    def test_native_error_translation(self, lancedb_store, native, expected):
        """Test rejected arguments and unreachable storage map to different errors."""
        with pytest.raises(expected) as exc:
            with lancedb_store._translate_errors("search"):
                raise native
        assert exc.value.op == "search"
        assert exc.value.__cause__ is native

    def test_index_rejects_non_cosine_metric(self, lancedb_store):
        with pytest.raises(InvalidArgumentError):
            lancedb_store.create_index(VectorIndexConfig(metric_type=MetricType.L2))

    def test_index_needs_enough_rows(self, lancedb_store):
        for i in range(10):
            lancedb_store.insert(make_memory(f"memory {i}", unit(1.0, float(i), 0.0, 1.0)))
        with pytest.raises(InvalidArgumentError):
            lancedb_store.create_index(VectorIndexConfig(index_type=IndexType.IVF_PQ))

    def test_ivf_flat_index(self, lancedb_store):
        """Test an IVF_FLAT index builds, is idempotent and keeps search exact."""
        for i in range(64):
            lancedb_store.insert(make_memory(f"memory {i}", unit(1.0, float(i % 8), float(i // 8), 0.5)))
        target = lancedb_store.insert(make_memory("target", E))
        config = VectorIndexConfig(index_type=IndexType.IVF_FLAT, ivf_params=IVFParams(nlist=2, nprobe=2))

        lancedb_store.create_index(config)
        lancedb_store.create_index(config)

        results = lancedb_store.search(E)
        assert results[0].id == target.id
        assert results[0].score == pytest.approx(1.0, abs=1e-5)


class TestFactory:
    """Test create_vector_store."""

    def test_duckdb(self, clock):
        store = create_vector_store(
            StoreConfig(provider="duckdb", path=":memory:", collection_name="mem", embedding_dim=DIM,
                        scan_batch_size=8, node_id=3),
            SearchConfig(default_limit=2, default_get_all_limit=3),
            clock=clock,
        )
        try:
            assert isinstance(store, DuckDBVectorStore)
            for i in range(5):
                store.insert(make_memory(f"memory {i}", unit(1.0, float(i), 0.0, 0.0)))
            assert len(store.search(E)) == 2
            assert len(store.get_all()) == 3
        finally:
            store.close()

    def test_lancedb(self, tmp_path, clock):
        store = create_vector_store(
            StoreConfig(provider="lancedb", path=str(tmp_path / "lance"), collection_name="mem",
                        embedding_dim=DIM, scan_batch_size=8, node_id=1),
            clock=clock,
        )
        assert isinstance(store, LanceDBVectorStore)
        assert store.table_name == "mem_4"

    def test_unknown_provider(self):
        with pytest.raises(InvalidArgumentError):
            create_vector_store(StoreConfig(provider="chroma", path=":memory:", collection_name="mem",
                                            embedding_dim=DIM, scan_batch_size=8, node_id=1))

    def test_bad_node_id(self):
        with pytest.raises(InvalidArgumentError):
            create_vector_store(StoreConfig(provider="duckdb", path=":memory:", collection_name="mem",
                                            embedding_dim=DIM, scan_batch_size=8, node_id=4096))
