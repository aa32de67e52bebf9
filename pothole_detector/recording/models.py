"""Shared data models for the detection pipeline."""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Callable, Optional


class DetectionType(str, Enum):
    SENSOR = "SENSOR"
    IMAGE = "IMAGE"


@dataclass(frozen=True)
class Sample:
    """A single accelerometer reading with the vehicle speed at that instant."""
    timestamp: float          # monotonic seconds
    accel_x: float
    accel_y: float
    accel_z: float            # vertical axis, m/s^2
    speed_kmh: float


@dataclass(frozen=True)
class Location:
    """A GPS fix. Stored as the current location and copied into events."""
    latitude: float
    longitude: float
    altitude: Optional[float] = None
    accuracy: Optional[float] = None   # metres


@dataclass(frozen=True)
class SessionContext:
    """One continuous detection run, bounded by start/stop."""
    session_id: str
    started_at: float         # wall-clock seconds since epoch

    @classmethod
    def new(cls, clock: Callable[[], float] = time.time) -> SessionContext:
        return cls(session_id=str(uuid.uuid4()), started_at=clock())


@dataclass(frozen=True)
class PotholeFeatures:
    """Features extracted around a threshold crossing."""
    peak_z: float
    prev_extremum: float
    next_extremum: float
    interval_since_last_ms: Optional[int]   # None for the first detection of a session
    speed_kmh: float


@dataclass(frozen=True)
class AccelerometerData:
    x: float
    y: float
    z: float


@dataclass
class DetectionEvent:
    """Unified detection record handed to the event sink.

    SENSOR events fill the signal fields and leave the image fields as None;
    IMAGE events do the opposite. ``accelerometer_data`` is always present.
    """
    timestamp: float
    user_id: str
    session_id: str
    detection_type: DetectionType
    device_model: str
    device_manufacturer: str
    accelerometer_data: AccelerometerData
    speed: float = 0.0
    vehicle_type: str = "unknown"
    phone_placement: str = "unknown"
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    altitude: Optional[float] = None
    gps_accuracy: Optional[float] = None
    # sensor-only
    zt_peak: Optional[float] = None
    z_prev_extrema: Optional[float] = None
    z_next_extrema: Optional[float] = None
    interval_since_last_detection_ms: Optional[int] = None
    dynamic_threshold: Optional[float] = None
    base_threshold: Optional[float] = None
    raw_signature_window: Optional[list[float]] = None
    # image-only
    image_url: Optional[str] = None
    confidence: Optional[int] = None
    event_id: Optional[int] = None

    def to_dict(self) -> dict[str, Any]:
        """Return the record with its canonical field names."""
        data = asdict(self)
        data["detection_type"] = self.detection_type.value
        data["imageUrl"] = data.pop("image_url")
        return data


@dataclass
class EngineState:
    """All mutable state of one DetectionEngine."""
    active: bool = False
    driving: bool = False
    phone_in_use: bool = False
    last_detection_time: Optional[float] = None
    detection_count: int = 0
    session: Optional[SessionContext] = None
    location: Optional[Location] = None
    last_sample: Optional[Sample] = None
    samples_seen: int = 0
    rejected_samples: int = 0
