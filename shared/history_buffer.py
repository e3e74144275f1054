from __future__ import annotations

from collections import deque
from threading import RLock
from typing import Deque, Iterable, Sequence, Union

import numpy as np

Sample = Union[float, Sequence[float]]


class HistoryBuffer:
    """
    Thread-safe bounded FIFO of scalar or paired samples.

    `width` is 1 for scalar samples and 2 for (x, y) pairs. Eviction is not
    automatic: writers call `enforce_capacity()` after a batch so a reader can
    never observe a partially trimmed history.
    """

    def __init__(self, capacity: int, width: int = 1) -> None:
        if width not in (1, 2):
            raise ValueError("width must be 1 (scalar) or 2 (paired)")
        self._width = width
        self._capacity = self._validate_capacity(capacity)
        self._items: Deque[tuple[float, ...]] = deque()
        self._lock = RLock()
        self._total_enqueued = 0
        self._total_evicted = 0

    @staticmethod
    def _validate_capacity(capacity: int) -> int:
        capacity = int(capacity)
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        return capacity

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def width(self) -> int:
        return self._width

    @property
    def total_enqueued(self) -> int:
        with self._lock:
            return self._total_enqueued

    @property
    def total_evicted(self) -> int:
        with self._lock:
            return self._total_evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def set_capacity(self, capacity: int) -> None:
        """Change the capacity; takes effect on the next `enforce_capacity()`."""
        capacity = self._validate_capacity(capacity)
        with self._lock:
            self._capacity = capacity

    def _coerce(self, sample: Sample) -> tuple[float, ...]:
        values = tuple(float(v) for v in np.atleast_1d(np.asarray(sample, dtype=np.float64)))
        if len(values) != self._width:
            raise ValueError(f"sample must have {self._width} value(s), got {len(values)}")
        return values

    def enqueue(self, sample: Sample) -> None:
        item = self._coerce(sample)
        with self._lock:
            self._items.append(item)
            self._total_enqueued += 1

    def extend(self, samples: Iterable[Sample]) -> int:
        """Append a batch in order. Returns the number appended."""
        items = [self._coerce(s) for s in samples]
        with self._lock:
            self._items.extend(items)
            self._total_enqueued += len(items)
        return len(items)

    def enforce_capacity(self) -> int:
        """Drop from the head while over capacity. Returns the number evicted."""
        with self._lock:
            evicted = 0
            while len(self._items) > self._capacity:
                self._items.popleft()
                evicted += 1
            self._total_evicted += evicted
            return evicted

    def snapshot(self) -> np.ndarray:
        """
        Return a copy of the contents, oldest first.

        Shape is ``(n,)`` for scalar buffers and ``(n, 2)`` for paired ones.
        """
        with self._lock:
            rows = list(self._items)
        if self._width == 1:
            return np.fromiter((r[0] for r in rows), dtype=np.float64, count=len(rows))
        if not rows:
            return np.empty((0, 2), dtype=np.float64)
        return np.asarray(rows, dtype=np.float64)

    def clear(self) -> None:
        with self._lock:
            self._items.clear()


__all__ = ["HistoryBuffer", "Sample"]
