"""Fixed-capacity FIFO history of vertical-axis acceleration values."""

from __future__ import annotations

from collections import deque


class SlidingWindowBuffer:
    """Keeps the most recent ``capacity`` values in arrival order."""

    def __init__(self, capacity: int = 50):
        if capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        self._values: deque[float] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._values.maxlen

    def push(self, value: float) -> None:
        """Append a value, evicting the oldest one when full."""
        self._values.append(value)

    def snapshot(self) -> tuple[float, ...]:
        """Return an immutable, oldest-first copy of the buffered values."""
        return tuple(self._values)

    def tail(self, n: int) -> list[float]:
        """Return the newest ``n`` values (fewer if the buffer is shorter)."""
        if n <= 0:
            return []
        start = max(0, len(self._values) - n)
        return [self._values[i] for i in range(start, len(self._values))]

    def clear(self) -> None:
        self._values.clear()

    def __len__(self) -> int:
        return len(self._values)
