"""Unit tests for the retention (decay / reinforcement) model."""

import math
from datetime import timedelta

import pytest

from pyremember.data.schemas.models import Memory, MemoryTier
from pyremember.errors import InvalidArgumentError
from pyremember.intelligence.retention import MIN_STRENGTH, RetentionManager

from conftest import START


@pytest.fixture
def retention() -> RetentionManager:
    return RetentionManager(decay_rate=0.1 / 24, reinforcement_factor=0.3)


def stored(created_hours_ago: float, strength: float = 1.0, accessed_hours_ago: float = None, **kwargs) -> Memory:
    return Memory(
        id=1,
        user_id="user_001",
        content="Python programming",
        embedding=[1.0, 0.0, 0.0, 0.0],
        created_at=START - timedelta(hours=created_hours_ago),
        updated_at=START - timedelta(hours=created_hours_ago),
        retention_strength=strength,
        last_accessed_at=None if accessed_hours_ago is None else START - timedelta(hours=accessed_hours_ago),
        **kwargs
    )


class TestCalculateRetention:
    """Test the exponential decay curve."""

    def test_no_elapsed_time_is_full_strength(self, retention):
        """Test strength is exactly 1 at zero elapsed time."""
        assert retention.calculate_retention(START, None, now=START) == 1.0

    def test_one_day_decay(self, retention):
        """Test a day of decay loses about 10% at the default rate."""
        value = retention.calculate_retention(START - timedelta(hours=24), None, now=START)
        assert value == pytest.approx(math.exp(-0.1))
        assert value < retention.calculate_retention(START, None, now=START)

    def test_strictly_decreasing(self, retention):
        """Test strength falls as elapsed time grows."""
        values = [
            retention.calculate_retention(START - timedelta(hours=h), None, now=START)
            for h in (0, 1, 6, 24, 72, 168, 720)
        ]
        assert all(a > b for a, b in zip(values, values[1:]))

    def test_never_reaches_zero(self, retention):
        """Test decades of decay stay strictly positive."""
        value = retention.calculate_retention(START - timedelta(days=365 * 1000), None, now=START)
        assert value > 0.0
        assert value >= MIN_STRENGTH

    def test_last_access_resets_anchor(self, retention):
        """Test a recent access measures elapsed time from the access."""
        created = START - timedelta(days=10)
        accessed = START - timedelta(hours=1)
        from_access = retention.calculate_retention(created, accessed, now=START)
        from_creation = retention.calculate_retention(created, None, now=START)
        assert from_access == pytest.approx(math.exp(-0.1 / 24))
        assert from_access > from_creation

    def test_older_access_is_ignored(self, retention):
        """Test an access before creation does not extend the elapsed time."""
        created = START - timedelta(hours=2)
        value = retention.calculate_retention(created, created - timedelta(days=5), now=START)
        assert value == pytest.approx(math.exp(-0.2 / 24))

    def test_future_anchor_clamps_to_one(self, retention):
        """Test clock skew never produces strength above 1."""
        assert retention.calculate_retention(START + timedelta(hours=3), None, now=START) == 1.0


class TestReinforce:
    """Test the saturating reinforcement step."""

    def test_formula(self, retention):
        """Test new = s + f * (1 - s)."""
        assert retention.reinforce(0.5) == pytest.approx(0.65)
        assert retention.reinforce(0.0) == pytest.approx(0.3)

    @pytest.mark.parametrize("strength", [0.0, 1e-300, 0.1, 0.5, 0.9, 0.999, 1.0 - 1e-12, 1.0 - 2 ** -53])
    def test_strictly_increasing_below_one(self, retention, strength):
        """Test reinforcement always increases a strength below 1."""
        result = retention.reinforce(strength)
        assert result > strength
        assert result <= 1.0

    def test_ceiling(self, retention):
        """Test reinforcement at 1 is a no-op."""
        assert retention.reinforce(1.0) == 1.0

    def test_full_factor_saturates(self):
        """Test a factor of 1 jumps straight to full strength."""
        assert RetentionManager(reinforcement_factor=1.0).reinforce(0.2) == 1.0


class TestEffectiveStrength:
    """Test stored strength combined with decay."""

    def test_decays_stored_strength(self, retention):
        """Test effective strength scales the stored value by decay."""
        memory = stored(created_hours_ago=24, strength=0.8)
        assert retention.effective_strength(memory, START) == pytest.approx(0.8 * math.exp(-0.1))

    def test_fresh_memory(self, retention):
        """Test a just-created memory keeps its stored strength."""
        assert retention.effective_strength(stored(0, strength=0.7), START) == pytest.approx(0.7)


class TestClassification:
    """Test tiers, forgetting and archiving decisions."""

    @pytest.mark.parametrize("strength,tier", [
        (0.95, MemoryTier.LONG_TERM),
        (0.8, MemoryTier.LONG_TERM),
        (0.7, MemoryTier.SHORT_TERM),
        (0.6, MemoryTier.SHORT_TERM),
        (0.4, MemoryTier.WORKING),
        (0.1, MemoryTier.WORKING),
    ])
    def test_classify(self, retention, strength, tier):
        """Test thresholds map strengths to tiers."""
        assert retention.classify(strength) == tier

    def test_decay_rate_for_tier(self, retention):
        """Test weaker tiers decay faster."""
        assert retention.decay_rate_for(MemoryTier.WORKING) == pytest.approx(retention.decay_rate * 2)
        assert retention.decay_rate_for(MemoryTier.SHORT_TERM) == pytest.approx(retention.decay_rate * 1.5)
        assert retention.decay_rate_for(MemoryTier.LONG_TERM) == pytest.approx(retention.decay_rate)

    def test_should_forget_weak_memory(self, retention):
        """Test a memory below the working threshold is a forgetting candidate."""
        assert retention.should_forget(stored(1, strength=0.2, accessed_hours_ago=1), START)

    def test_should_forget_unused_old_memory(self, retention):
        """Test never-accessed memories older than a week are candidates."""
        memory = stored(created_hours_ago=24 * 8, strength=1.0)
        # exp(-0.1 * 8) ~ 0.45 is above the working threshold
        assert retention.effective_strength(memory, START) > retention.working_threshold
        assert retention.should_forget(memory, START)

    def test_should_not_forget_recent_memory(self, retention):
        """Test fresh memories are kept."""
        assert not retention.should_forget(stored(created_hours_ago=2), START)

    def test_should_archive(self, retention):
        """Test old or unimportant memories are archive candidates."""
        assert retention.should_archive(stored(created_hours_ago=24 * 31), START)
        assert retention.should_archive(stored(1, metadata={"importance_score": 0.1}), START)
        assert not retention.should_archive(stored(1, metadata={"importance_score": 0.9}), START)


class TestSchedules:
    """Test review scheduling."""

    def test_review_schedule_default_importance(self, retention):
        """Test intervals shrink by importance * 0.3."""
        schedule = retention.review_schedule(START, importance=0.5)
        expected_hours = [h * 0.85 for h in (1, 6, 24, 72, 168)]
        assert [(t - START).total_seconds() / 3600 for t in schedule] == pytest.approx(expected_hours)

    def test_review_schedule_is_chronological(self, retention):
        """Test review times are increasing."""
        schedule = retention.review_schedule(START, importance=1.0)
        assert schedule == sorted(schedule)
        assert schedule[0] - START >= timedelta(minutes=30)

    def test_next_review(self, retention):
        """Test stronger memories are reviewed later."""
        assert retention.next_review(0.0, START) == START + timedelta(hours=24)
        assert retention.next_review(1.0, START) == START + timedelta(hours=264)


class TestValidation:
    """Test parameter validation."""

    @pytest.mark.parametrize("kwargs", [
        {"decay_rate": 0.0},
        {"decay_rate": -1.0},
        {"reinforcement_factor": 0.0},
        {"reinforcement_factor": 1.5},
        {"initial_retention": 0.0},
    ])
    def test_rejects_bad_parameters(self, kwargs):
        """Test out-of-range parameters raise InvalidArgumentError."""
        with pytest.raises(InvalidArgumentError):
            RetentionManager(**kwargs)
