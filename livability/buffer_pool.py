"""
Size-keyed pool of float buffers reused across renders.

Pan/zoom re-renders the same raster sizes many times per second; drawing the
accumulators from a pool avoids reallocating them each frame. Buffers are
zero-filled when released so a later acquire never sees stale values.
"""

import logging

import numpy as np

from livability import config

logger = logging.getLogger(__name__)


class BufferPool:
    """
    Free list of 1-D numpy buffers, matched by length and dtype.

    Attributes:
        max_size: Most buffers retained; extra releases are dropped
        allocations: Buffers created because no free one matched
        reuses: Acquires served from the free list
    """

    def __init__(self, max_size: int = config.MAX_POOL_SIZE):
        self.max_size = max_size
        self.allocations = 0
        self.reuses = 0
        self._free: list[np.ndarray] = []

    def __len__(self) -> int:
        return len(self._free)

    def acquire(self, length: int, dtype=np.float64) -> np.ndarray:
        """Zeroed buffer of ``length`` elements."""
        dtype = np.dtype(dtype)
        for i, buf in enumerate(self._free):
            if buf.size == length and buf.dtype == dtype:
                self.reuses += 1
                return self._free.pop(i)
        self.allocations += 1
        return np.zeros(length, dtype=dtype)

    def release(self, *buffers: np.ndarray) -> None:
        """Zero and return buffers to the pool."""
        for buf in buffers:
            if len(self._free) >= self.max_size:
                logger.debug(f"Buffer pool full ({self.max_size}), dropping buffer of {buf.size}")
                continue
            buf.fill(0)
            self._free.append(buf)

    def clear(self) -> None:
        self._free.clear()
