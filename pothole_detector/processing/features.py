"""Feature extraction around a threshold crossing."""

from __future__ import annotations

from typing import Sequence

import numpy as np

from pothole_detector.recording.models import PotholeFeatures


def local_extremum(values: Sequence[float]) -> float:
    """Return the value with the largest magnitude, sign preserved.

    On ties the earliest value wins.
    """
    arr = np.asarray(values, dtype=np.float64)
    return float(arr[int(np.argmax(np.abs(arr)))])


class FeatureExtractor:
    """Derives peak, preceding/following extrema and timing for a candidate."""

    def __init__(self, window: int = 5, enabled: bool = True):
        if window < 1:
            raise ValueError(f"window must be >= 1, got {window}")
        self._window = window
        self._enabled = enabled

    @property
    def window(self) -> int:
        return self._window

    @property
    def enabled(self) -> bool:
        return self._enabled

    def extract(self, buffer: Sequence[float], peak_index: int,
                current_speed: float, last_detection_time: float | None,
                now: float) -> PotholeFeatures | None:
        """Extract features for the sample at ``peak_index``.

        The preceding sub-window spans ``[peak - window, peak]`` and must lie
        fully inside the buffer; the following sub-window spans
        ``[peak, peak + window]`` clamped to the newest sample, so a peak at
        the head of the buffer yields the peak itself. Returns None when the
        history is too short; the candidate is dropped, not retried.
        """
        n = len(buffer)
        if peak_index < 0 or peak_index >= n:
            return None
        start = peak_index - self._window
        if start < 0:
            return None

        peak = float(buffer[peak_index])
        if self._enabled:
            prev_extremum = local_extremum(buffer[start:peak_index + 1])
            end = min(peak_index + self._window, n - 1)
            next_extremum = local_extremum(buffer[peak_index:end + 1])
        else:
            prev_extremum = next_extremum = peak

        if last_detection_time is None:
            interval_ms = None
        else:
            interval_ms = int(round((now - last_detection_time) * 1000.0))

        return PotholeFeatures(
            peak_z=peak,
            prev_extremum=prev_extremum,
            next_extremum=next_extremum,
            interval_since_last_ms=interval_ms,
            speed_kmh=current_speed,
        )
