"""
Snowflake-style id generation for store-assigned memory ids.

Layout of the 63-bit id: 41 bits of milliseconds since EPOCH_MS,
10 bits of node id and a 12 bit per-millisecond sequence.
"""

import threading
import time

from pyremember.errors import InvalidArgumentError

# 2010-11-04T01:42:54.657Z, the conventional snowflake epoch
EPOCH_MS = 1288834974657

NODE_BITS = 10
SEQUENCE_BITS = 12
MAX_NODE = (1 << NODE_BITS) - 1
MAX_SEQUENCE = (1 << SEQUENCE_BITS) - 1


class IdGenerator:
    """Thread-safe, monotonically increasing integer id generator."""

    def __init__(self, node_id: int = 1):
        if not 0 <= node_id <= MAX_NODE:
            raise InvalidArgumentError("id_generator", f"node_id must be between 0 and {MAX_NODE}, got {node_id}")
        self._node_id = node_id
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    @staticmethod
    def _now_ms() -> int:
        return int(time.time() * 1000)

    def next_id(self) -> int:
        """Generate the next id."""
        with self._lock:
            now = self._now_ms()
            # Never go backwards, even if the wall clock does
            if now < self._last_ms:
                now = self._last_ms

            if now == self._last_ms:
                self._sequence = (self._sequence + 1) & MAX_SEQUENCE
                if self._sequence == 0:
                    while now <= self._last_ms:
                        now = self._now_ms()
            else:
                self._sequence = 0

            self._last_ms = now
            return (
                ((now - EPOCH_MS) << (NODE_BITS + SEQUENCE_BITS))
                | (self._node_id << SEQUENCE_BITS)
                | self._sequence
            )

    __call__ = next_id
