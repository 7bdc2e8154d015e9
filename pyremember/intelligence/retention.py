"""
Retention - Forgetting-curve decay and reinforcement for pyremember.

Memories lose retained importance exponentially with the time since they were
created or last reinforced, and gain a saturating boost whenever they are
used. The model is consulted by the client for ranking and for reporting
forgetting candidates; it never deletes anything on its own.
"""

import math
import sys
from datetime import datetime, timedelta
from typing import Any, List, Optional

from pyremember.data.schemas.models import Memory, MemoryTier
from pyremember.errors import InvalidArgumentError
from pyremember.utils.clock import ensure_utc, hours_between, utc_now

# Smallest positive normal float; strengths are floored here instead of reaching 0
MIN_STRENGTH = sys.float_info.min

DEFAULT_DECAY_RATE = 0.1 / 24
DEFAULT_REINFORCEMENT_FACTOR = 0.3

# Spaced-repetition review intervals, in hours
REVIEW_INTERVALS = (1.0, 6.0, 24.0, 72.0, 168.0)
MIN_REVIEW_INTERVAL = 0.5

FORGET_UNUSED_AFTER = timedelta(days=7)
ARCHIVE_AFTER = timedelta(days=30)


class RetentionManager:
    """
    Stateless decay / reinforcement calculator.

    Attributes:
        decay_rate: Exponential decay rate per hour (> 0)
        reinforcement_factor: Share of the remaining gap to 1.0 closed per access, in (0, 1]
        working_threshold: Below this a memory is a forgetting candidate
        short_term_threshold: At or above this a memory is short-term
        long_term_threshold: At or above this a memory is long-term
        initial_retention: Strength assigned to new memories
    """

    def __init__(
        self,
        decay_rate: float = DEFAULT_DECAY_RATE,
        reinforcement_factor: float = DEFAULT_REINFORCEMENT_FACTOR,
        working_threshold: float = 0.3,
        short_term_threshold: float = 0.6,
        long_term_threshold: float = 0.8,
        initial_retention: float = 1.0
    ):
        if decay_rate <= 0:
            raise InvalidArgumentError("retention", f"decay_rate must be positive, got {decay_rate}")
        if not 0.0 < reinforcement_factor <= 1.0:
            raise InvalidArgumentError(
                "retention",
                f"reinforcement_factor must be in (0, 1], got {reinforcement_factor}"
            )
        if not 0.0 < initial_retention <= 1.0:
            raise InvalidArgumentError("retention", f"initial_retention must be in (0, 1], got {initial_retention}")

        self.decay_rate = decay_rate
        self.reinforcement_factor = reinforcement_factor
        self.working_threshold = working_threshold
        self.short_term_threshold = short_term_threshold
        self.long_term_threshold = long_term_threshold
        self.initial_retention = initial_retention

    @classmethod
    def from_config(cls, config: Any) -> "RetentionManager":
        """Build from an IntelligenceConfig."""
        return cls(
            decay_rate=config.decay_rate,
            reinforcement_factor=config.reinforcement_factor,
            working_threshold=config.working_threshold,
            short_term_threshold=config.short_term_threshold,
            long_term_threshold=config.long_term_threshold,
            initial_retention=config.initial_retention,
        )

    # =========================================================================
    # CORE MODEL
    # =========================================================================

    def calculate_retention(
        self,
        created_at: datetime,
        last_accessed_at: Optional[datetime] = None,
        now: Optional[datetime] = None
    ) -> float:
        """
        Decayed strength since the later of creation and last access.

        strength = exp(-decay_rate * elapsed_hours)

        Args:
            created_at: When the memory was created
            last_accessed_at: Last reinforcing access, if any
            now: Evaluation time (defaults to the current time)

        Returns:
            Strength in (0, 1]; exactly 1.0 at zero elapsed time
        """
        now = utc_now() if now is None else now
        anchor = ensure_utc(created_at)
        if last_accessed_at is not None:
            anchor = max(anchor, ensure_utc(last_accessed_at))

        # Anchors in the future count as no elapsed time
        elapsed = max(0.0, hours_between(anchor, now))
        return max(math.exp(-self.decay_rate * elapsed), MIN_STRENGTH)

    def reinforce(self, current_strength: float) -> float:
        """
        Strengthen a memory on access.

        new = current + reinforcement_factor * (1 - current), capped at 1.0.
        Always strictly greater than the input when the input is below 1.0.
        """
        if current_strength >= 1.0:
            return 1.0
        current = max(current_strength, 0.0)
        boosted = current + self.reinforcement_factor * (1.0 - current)
        # Rounding can swallow tiny boosts near 1.0
        return min(1.0, max(boosted, math.nextafter(current, 2.0)))

    def effective_strength(self, memory: Memory, now: Optional[datetime] = None) -> float:
        """Stored strength scaled by the decay since the last anchor."""
        if memory.created_at is None:
            return memory.retention_strength
        decay = self.calculate_retention(memory.created_at, memory.last_accessed_at, now)
        return max(memory.retention_strength * decay, MIN_STRENGTH)

    # =========================================================================
    # CLASSIFICATION & SCHEDULING
    # =========================================================================

    def classify(self, strength: float) -> MemoryTier:
        """Map a strength to a memory tier."""
        if strength >= self.long_term_threshold:
            return MemoryTier.LONG_TERM
        if strength >= self.short_term_threshold:
            return MemoryTier.SHORT_TERM
        return MemoryTier.WORKING

    def decay_rate_for(self, tier: MemoryTier) -> float:
        """Working memories decay twice as fast, short-term 1.5x."""
        if tier == MemoryTier.WORKING:
            return self.decay_rate * 2.0
        if tier == MemoryTier.SHORT_TERM:
            return self.decay_rate * 1.5
        return self.decay_rate

    def should_forget(self, memory: Memory, now: Optional[datetime] = None) -> bool:
        """
        True for weak memories, or never-used memories older than a week.
        """
        now = utc_now() if now is None else now
        if self.effective_strength(memory, now) < self.working_threshold:
            return True
        if memory.last_accessed_at is None and memory.created_at is not None:
            return ensure_utc(now) - ensure_utc(memory.created_at) > FORGET_UNUSED_AFTER
        return False

    def should_archive(self, memory: Memory, now: Optional[datetime] = None) -> bool:
        """
        True for memories older than 30 days, or whose metadata
        `importance_score` is below the working threshold.
        """
        now = utc_now() if now is None else now
        if memory.created_at is not None and ensure_utc(now) - ensure_utc(memory.created_at) > ARCHIVE_AFTER:
            return True
        importance = memory.metadata.get("importance_score")
        if isinstance(importance, (int, float)) and not isinstance(importance, bool):
            return importance < self.working_threshold
        return False

    def review_schedule(self, created_at: datetime, importance: float = 0.5) -> List[datetime]:
        """
        Spaced-repetition review times.

        Intervals shrink by up to 30% for important memories, never below half an hour.
        """
        start = ensure_utc(created_at)
        schedule = []
        for interval in REVIEW_INTERVALS:
            hours = max(interval * (1.0 - importance * 0.3), MIN_REVIEW_INTERVAL)
            schedule.append(start + timedelta(hours=hours))
        return schedule

    def next_review(self, strength: float, now: Optional[datetime] = None) -> datetime:
        """Next review time: 24 * (1 + 10 * strength) hours from now."""
        now = utc_now() if now is None else ensure_utc(now)
        return now + timedelta(hours=24.0 * (1.0 + strength * 10.0))
