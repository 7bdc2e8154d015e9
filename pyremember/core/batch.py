"""
Batch results for multi-item MemoryClient operations.

A batch never stops at the first bad item: each item succeeds or fails on
its own, and the result reports both sides with the item's position in the
input.
"""

from dataclasses import dataclass, field
from typing import Any, List, Optional

from pyremember.errors import PyRememberError


@dataclass
class BatchUpdateItem:
    """One replacement in MemoryClient.batch_update."""
    memory_id: int
    content: str
    embedding: List[float]


@dataclass
class BatchItemError:
    """
    A failed batch item.

    Attributes:
        index: Position of the item in the input
        error: Why it failed
        memory_id: Target id, for update and delete batches
        content: Submitted content, for add and update batches
    """
    index: int
    error: PyRememberError
    memory_id: Optional[int] = None
    content: Optional[str] = None


@dataclass
class BatchResult:
    """
    Outcome of a batch operation.

    Attributes:
        total: Number of items submitted
        succeeded: Per-item results in input order (AddResult, Memory or deleted id)
        failed: Failed items in input order
    """
    total: int = 0
    succeeded: List[Any] = field(default_factory=list)
    failed: List[BatchItemError] = field(default_factory=list)

    @property
    def succeeded_count(self) -> int:
        return len(self.succeeded)

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def __str__(self) -> str:
        return f"{self.succeeded_count}/{self.total} succeeded, {self.failed_count} failed"
