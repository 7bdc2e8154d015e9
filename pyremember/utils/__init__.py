"""
Utilities for pyremember: logging, clock helpers and id generation.
"""

from pyremember.utils.logger import get_logger
from pyremember.utils.clock import utc_now, ensure_utc
from pyremember.utils.ids import IdGenerator

__all__ = [
    "get_logger",
    "utc_now",
    "ensure_utc",
    "IdGenerator",
]
