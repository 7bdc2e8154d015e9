"""
Intelligence module for pyremember: retention modelling and deduplication.
"""

from pyremember.intelligence.dedup import DedupAction, DedupManager, DedupOutcome
from pyremember.intelligence.retention import RetentionManager

__all__ = [
    "DedupAction",
    "DedupManager",
    "DedupOutcome",
    "RetentionManager",
]
