"""Speed-adaptive detection threshold."""

from __future__ import annotations

from dataclasses import dataclass

from pothole_detector.config import DetectionConfig


@dataclass(frozen=True)
class ThresholdParameters:
    base: float = 8.0           # T0, m/s^2
    speed_scale: float = 0.1    # S, (m/s^2) per km/h
    speed_offset: float = 5.0   # L, km/h

    @classmethod
    def from_config(cls, config: DetectionConfig) -> ThresholdParameters:
        return cls(
            base=config.base_threshold,
            speed_scale=config.speed_scale,
            speed_offset=config.speed_offset,
        )


class ThresholdModel:
    """Linear threshold T = T0 + S * (v - L).

    The vertical-axis noise floor rises with vehicle speed, so a fixed
    threshold misses potholes at low speed and over-triggers at high speed.
    With ``speed_scale == 0`` this reduces to the fixed-threshold detector.
    """

    def __init__(self, params: ThresholdParameters | None = None):
        self._params = params or ThresholdParameters()

    @property
    def params(self) -> ThresholdParameters:
        return self._params

    @property
    def base(self) -> float:
        return self._params.base

    def threshold(self, speed_kmh: float) -> float:
        p = self._params
        return p.base + p.speed_scale * (speed_kmh - p.speed_offset)
