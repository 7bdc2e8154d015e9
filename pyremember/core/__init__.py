"""
Core module for pyremember: the MemoryClient lifecycle coordinator.
"""

from pyremember.core.batch import BatchItemError, BatchResult, BatchUpdateItem
from pyremember.core.client import AddResult, MemoryClient
from pyremember.core.locks import ScopeLockRegistry

__all__ = [
    "AddResult",
    "BatchItemError",
    "BatchResult",
    "BatchUpdateItem",
    "MemoryClient",
    "ScopeLockRegistry",
]
