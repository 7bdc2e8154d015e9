"""Unit tests for the dedup manager (against the in-memory DuckDB store)."""

import math

import pytest

from pyremember.data.schemas.models import MergePolicy, ScopeFilter
from pyremember.errors import InvalidArgumentError
from pyremember.intelligence.dedup import DedupAction, DedupManager
from pyremember.intelligence.retention import RetentionManager
from pyremember.storage.similarity import average_embedding

from conftest import at_angle, make_memory

E = [1.0, 0.0, 0.0, 0.0]


@pytest.fixture
def retention() -> RetentionManager:
    return RetentionManager(decay_rate=0.1 / 24, reinforcement_factor=0.3)


@pytest.fixture
def dedup(duckdb_store, retention, clock) -> DedupManager:
    return DedupManager(duckdb_store, threshold=0.95, top_k=5, retention=retention, clock=clock)


class TestDedupDecision:
    """Test duplicate vs. novel classification."""

    def test_empty_store_is_novel(self, dedup, duckdb_store):
        """Test a candidate with no neighbors is novel and nothing is written."""
        outcome = dedup.process("Python programming", E, "user_001")
        assert outcome.should_insert
        assert outcome.action == DedupAction.INSERT
        assert outcome.similarity is None
        assert duckdb_store.count() == 0

    def test_dissimilar_is_novel_without_side_effects(self, dedup, duckdb_store):
        """Test the novel path never touches the existing record."""
        existing = duckdb_store.insert(make_memory())
        outcome = dedup.process("Cooking pasta", [0.0, 1.0, 0.0, 0.0], "user_001")

        assert not outcome.is_duplicate
        assert outcome.similarity == pytest.approx(0.0)
        after = duckdb_store.get(existing.id)
        assert after.retention_strength == existing.retention_strength
        assert after.last_accessed_at is None
        assert after.content == existing.content

    def test_below_threshold_is_novel(self, dedup, duckdb_store):
        duckdb_store.insert(make_memory())
        outcome = dedup.process("Python snakes", at_angle(0.94), "user_001")
        assert not outcome.is_duplicate
        assert outcome.similarity == pytest.approx(0.94)

    def test_duplicate_reinforces_single_record(self, dedup, duckdb_store, retention, clock):
        """Test the dedup scenario: one record remains, with a higher strength."""
        original = duckdb_store.insert(make_memory("Python programming", E))
        clock.advance(hours=24)
        before = retention.effective_strength(duckdb_store.get(original.id), clock())

        outcome = dedup.process("Python coding", at_angle(0.97), "user_001")

        assert outcome.is_duplicate
        assert outcome.action == DedupAction.REINFORCED
        assert outcome.similarity == pytest.approx(0.97)
        assert outcome.memory.id == original.id
        assert outcome.previous_strength == pytest.approx(math.exp(-0.1))
        assert outcome.new_strength > outcome.previous_strength

        assert duckdb_store.count(ScopeFilter(user_id="user_001")) == 1
        stored = duckdb_store.get(original.id)
        assert stored.content == "Python programming"
        assert stored.last_accessed_at == clock()
        assert retention.effective_strength(stored, clock()) > before

    def test_highest_similarity_wins(self, dedup, duckdb_store):
        """Test the best match above the threshold is chosen."""
        duckdb_store.insert(make_memory("close", at_angle(0.96)))
        closest = duckdb_store.insert(make_memory("closest", at_angle(0.99)))
        outcome = dedup.process("candidate", E, "user_001")
        assert outcome.memory.id == closest.id

    def test_exact_tie_prefers_most_recently_updated(self, dedup, duckdb_store, clock):
        """Test identical similarities resolve to the most recent update."""
        older = duckdb_store.insert(make_memory("first", E))
        clock.advance(hours=1)
        newer = duckdb_store.insert(make_memory("second", E))
        clock.advance(hours=1)
        # Touch the older record so it becomes the most recently updated
        duckdb_store.update(older.id, "first, edited", E)

        outcome = dedup.process("candidate", E, "user_001")
        assert outcome.memory.id == older.id
        assert outcome.memory.id != newer.id

    def test_other_scope_is_not_a_duplicate(self, dedup, duckdb_store):
        """Test dedup only considers the candidate's own scope."""
        duckdb_store.insert(make_memory(user_id="user_002"))
        outcome = dedup.process("Python programming", E, "user_001")
        assert not outcome.is_duplicate

    def test_agent_scope(self, dedup, duckdb_store):
        duckdb_store.insert(make_memory(agent_id="agent_a"))
        assert not dedup.process("x", E, "user_001", agent_id="agent_b").is_duplicate
        assert dedup.process("x", E, "user_001", agent_id="agent_a").is_duplicate

    def test_find_duplicate_has_no_side_effects(self, dedup, duckdb_store, clock):
        original = duckdb_store.insert(make_memory())
        clock.advance(hours=5)
        match = dedup.find_duplicate(at_angle(0.97), "user_001")
        assert match.id == original.id
        assert duckdb_store.get(original.id).last_accessed_at is None
        assert dedup.find_duplicate([0.0, 0.0, 1.0, 0.0], "user_001") is None


class TestMergePolicies:
    """Test content handling for duplicates."""

    def test_replace(self, duckdb_store, retention, clock):
        dedup = DedupManager(duckdb_store, merge_policy=MergePolicy.REPLACE, retention=retention, clock=clock)
        original = duckdb_store.insert(make_memory("Python programming", E))
        clock.advance(hours=2)
        new_embedding = at_angle(0.97)

        outcome = dedup.process("Python coding", new_embedding, "user_001")

        assert outcome.action == DedupAction.REPLACED
        stored = duckdb_store.get(original.id)
        assert stored.content == "Python coding"
        assert stored.embedding == pytest.approx(new_embedding)
        assert stored.updated_at == clock()
        assert stored.last_accessed_at == clock()
        assert duckdb_store.count() == 1

    def test_append(self, duckdb_store, retention, clock):
        dedup = DedupManager(duckdb_store, merge_policy="append", retention=retention, clock=clock)
        original = duckdb_store.insert(make_memory("Python programming", E))
        new_embedding = at_angle(0.97)

        outcome = dedup.process("Python coding", new_embedding, "user_001")

        assert outcome.action == DedupAction.APPENDED
        stored = duckdb_store.get(original.id)
        assert stored.content == "Python programming Python coding"
        assert stored.embedding == pytest.approx(average_embedding(E, new_embedding))
        assert math.sqrt(sum(x * x for x in stored.embedding)) == pytest.approx(1.0)

    def test_append_merges_with_stored_content(self, duckdb_store, retention, clock, monkeypatch):
        """Test an edit landing between the neighbor search and the merge is kept."""
        dedup = DedupManager(duckdb_store, merge_policy="append", retention=retention, clock=clock)
        original = duckdb_store.insert(make_memory("Python programming", E))
        search = duckdb_store.search

        def search_then_edit(*args, **kwargs):
            results = search(*args, **kwargs)
            duckdb_store.update(original.id, "Python 3 programming", E)
            return results

        monkeypatch.setattr(duckdb_store, "search", search_then_edit)
        outcome = dedup.process("Python coding", at_angle(0.97), "user_001")

        assert outcome.memory.content == "Python 3 programming Python coding"
        assert duckdb_store.get(original.id).content == "Python 3 programming Python coding"

    def test_reinforcement_uses_stored_strength(self, dedup, duckdb_store, retention, clock, monkeypatch):
        original = duckdb_store.insert(make_memory("Python programming", E))
        search = duckdb_store.search

        def search_then_weaken(*args, **kwargs):
            results = search(*args, **kwargs)
            duckdb_store.update_retention(original.id, 0.5, clock())
            return results

        monkeypatch.setattr(duckdb_store, "search", search_then_weaken)
        outcome = dedup.process("Python programming", E, "user_001")

        assert outcome.previous_strength == pytest.approx(0.5)
        assert outcome.new_strength == pytest.approx(retention.reinforce(0.5))
        assert duckdb_store.get(original.id).retention_strength == pytest.approx(retention.reinforce(0.5))

    def test_match_deleted_before_merge_is_novel(self, dedup, duckdb_store, monkeypatch):
        original = duckdb_store.insert(make_memory("Python programming", E))
        search = duckdb_store.search

        def search_then_delete(*args, **kwargs):
            results = search(*args, **kwargs)
            duckdb_store.delete(original.id)
            return results

        monkeypatch.setattr(duckdb_store, "search", search_then_delete)
        outcome = dedup.process("Python programming", E, "user_001")

        assert outcome.should_insert
        assert outcome.similarity == pytest.approx(1.0)


class TestDedupValidation:
    """Test constructor validation."""

    @pytest.mark.parametrize("kwargs", [{"threshold": 0.0}, {"threshold": 1.5}, {"top_k": 0}])
    def test_rejects_bad_parameters(self, duckdb_store, kwargs):
        with pytest.raises(InvalidArgumentError):
            DedupManager(duckdb_store, **kwargs)
