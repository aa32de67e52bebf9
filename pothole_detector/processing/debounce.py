"""Cooldown gate between accepted detections."""

from __future__ import annotations


class DebounceGate:
    """Rejects candidates that arrive within ``cooldown_ms`` of the last detection.

    One physical pothole rings the vertical axis for several samples; the
    gate collapses that oscillation into a single event. The gate holds no
    state: the caller owns ``last_detection_time`` and only advances it on
    a confirmed emission.
    """

    def __init__(self, cooldown_ms: int = 3000):
        if cooldown_ms < 0:
            raise ValueError(f"cooldown_ms must be >= 0, got {cooldown_ms}")
        self._cooldown_ms = cooldown_ms

    @property
    def cooldown_ms(self) -> int:
        return self._cooldown_ms

    def allow(self, now: float, last_detection_time: float | None,
              cooldown_ms: int | None = None) -> bool:
        """True iff strictly more than the cooldown has elapsed since the last detection.

        Times are in seconds; ``None`` means no detection yet this session.
        """
        if last_detection_time is None:
            return True
        if cooldown_ms is None:
            cooldown_ms = self._cooldown_ms
        # Rounded so that an exact cooldown is not pushed over by float error
        elapsed_ms = round((now - last_detection_time) * 1000.0, 6)
        return elapsed_ms > cooldown_ms
