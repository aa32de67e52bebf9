"""Streaming pothole detection engine: buffer → gate → threshold → debounce → features."""

from __future__ import annotations

import dataclasses
import logging
import math
import threading
import time
from typing import Callable, Protocol

from pothole_detector.config import ConfigError, DetectionConfig, DeviceConfig, validate_detection_config
from pothole_detector.processing.buffer import SlidingWindowBuffer
from pothole_detector.processing.debounce import DebounceGate
from pothole_detector.processing.features import FeatureExtractor
from pothole_detector.processing.threshold import ThresholdModel, ThresholdParameters
from pothole_detector.recording.models import (
    AccelerometerData,
    DetectionEvent,
    DetectionType,
    EngineState,
    Location,
    PotholeFeatures,
    Sample,
    SessionContext,
)

logger = logging.getLogger(__name__)


class EventSink(Protocol):
    """Receives completed events. Must not block the caller."""

    def submit(self, event: DetectionEvent, session: SessionContext) -> None: ...


class DetectionEngine:
    """Per-sample pothole detector with an explicit, lock-guarded state.

    Samples must be delivered serially in arrival order. ``start``, ``stop``
    and ``on_sample`` share one lock so a restart never interleaves with a
    sample from the previous session.
    """

    def __init__(self, config: DetectionConfig, device: DeviceConfig | None = None,
                 sink: EventSink | None = None,
                 clock: Callable[[], float] = time.time):
        self._device = device or DeviceConfig()
        self._sink = sink
        self._clock = clock
        self._lock = threading.Lock()
        self._state = EngineState()
        self._configure(config)

    def _configure(self, config: DetectionConfig) -> None:
        validate_detection_config(config)
        self._cfg = config
        self._buffer = SlidingWindowBuffer(config.buffer_size)
        self._threshold = ThresholdModel(ThresholdParameters.from_config(config))
        self._gate = DebounceGate(config.cooldown_ms)
        self._extractor = FeatureExtractor(config.extrema_window,
                                           enabled=config.extract_features)

    # --- read side (safe from other threads) ---

    @property
    def active(self) -> bool:
        with self._lock:
            return self._state.active

    @property
    def detection_count(self) -> int:
        with self._lock:
            return self._state.detection_count

    @property
    def session(self) -> SessionContext | None:
        with self._lock:
            return self._state.session

    @property
    def state(self) -> EngineState:
        """A copy of the current engine state."""
        with self._lock:
            return dataclasses.replace(self._state)

    @property
    def buffer_size(self) -> int:
        with self._lock:
            return len(self._buffer)

    @property
    def config(self) -> DetectionConfig:
        return self._cfg

    @property
    def threshold_model(self) -> ThresholdModel:
        return self._threshold

    def set_sink(self, sink: EventSink | None) -> None:
        self._sink = sink

    def current_threshold(self) -> float:
        """Dynamic threshold at the most recently seen speed."""
        with self._lock:
            sample = self._state.last_sample
        return self._threshold.threshold(sample.speed_kmh if sample else 0.0)

    # --- transitions ---

    def start(self, permission_granted: bool = True) -> SessionContext | None:
        """Begin (or restart) a detection session.

        Returns the new session, or None when the location permission
        precondition is not met.
        """
        if not permission_granted:
            logger.warning("Location permission required for detection; not starting")
            return None
        with self._lock:
            restarted = self._state.active
            session = SessionContext.new(self._clock)
            self._buffer.clear()
            self._state.session = session
            self._state.last_detection_time = None
            self._state.driving = False
            self._state.active = True
        logger.info("Detection %s (session %s)",
                    "restarted" if restarted else "started", session.session_id)
        return session

    def stop(self) -> None:
        """Stop detection. Idempotent; detection_count is kept."""
        with self._lock:
            was_active = self._state.active
            self._state.active = False
            self._state.driving = False
            self._buffer.clear()
        if was_active:
            logger.info("Detection stopped")

    def reconfigure(self, config: DetectionConfig) -> None:
        """Swap detection parameters. Only allowed while no session is active."""
        with self._lock:
            if self._state.active:
                raise ConfigError("detection parameters cannot change during an active session")
            self._configure(config)
        logger.info("Detection parameters updated")

    def set_phone_in_use(self, in_use: bool) -> None:
        with self._lock:
            self._state.phone_in_use = in_use

    # --- inputs ---

    def update_location(self, location: Location) -> None:
        with self._lock:
            self._state.location = location

    def on_sample(self, sample: Sample) -> DetectionEvent | None:
        """Process one sample. Returns the emitted event, if any."""
        with self._lock:
            state = self._state
            if not state.active:
                return None
            if not _is_finite(sample):
                state.rejected_samples += 1
                logger.debug("Rejected non-finite sample at t=%s", sample.timestamp)
                return None

            state.samples_seen += 1
            state.last_sample = sample
            self._buffer.push(sample.accel_z)

            # Cheapest and most common rejections first
            state.driving = sample.speed_kmh > self._cfg.driving_speed_kmh
            if not state.driving or state.phone_in_use:
                return None
            if len(self._buffer) < self._cfg.min_history:
                return None

            threshold = self._threshold.threshold(sample.speed_kmh)
            if abs(sample.accel_z) <= threshold:
                return None

            now = sample.timestamp
            if not self._gate.allow(now, state.last_detection_time):
                return None

            window = self._buffer.snapshot()
            features = self._extractor.extract(
                window, len(window) - 1, sample.speed_kmh,
                state.last_detection_time, now,
            )
            if features is None:
                logger.debug("Dropped crossing at t=%.3f: not enough history", now)
                return None

            state.last_detection_time = now
            state.detection_count += 1
            event = self._build_sensor_event(features, threshold)
            session = state.session

        logger.info("Pothole detected: z=%.2f threshold=%.2f speed=%.1f km/h",
                    features.peak_z, threshold, features.speed_kmh)
        if self._sink is not None:
            self._sink.submit(event, session)
        return event

    def report_image(self, image_url: str, confidence: int | None = None) -> DetectionEvent | None:
        """Emit an IMAGE event for an already-uploaded photo.

        Returns None when no location fix is available yet.
        """
        if confidence is not None and not 0 <= confidence <= 100:
            raise ValueError(f"confidence must be within 0-100, got {confidence}")
        with self._lock:
            state = self._state
            if state.location is None:
                logger.warning("Could not get location; image report dropped")
                return None
            if state.session is None:
                # Image reports are allowed before the first detection run
                state.session = SessionContext.new(self._clock)
            event = self._base_event(DetectionType.IMAGE)
            event.image_url = image_url
            event.confidence = confidence
            session = state.session

        logger.info("Image report queued: %s", image_url)
        if self._sink is not None:
            self._sink.submit(event, session)
        return event

    # --- event assembly (caller holds the lock) ---

    def _base_event(self, detection_type: DetectionType) -> DetectionEvent:
        state = self._state
        sample = state.last_sample
        location = state.location
        if sample is not None:
            accel = AccelerometerData(sample.accel_x, sample.accel_y, sample.accel_z)
            speed = sample.speed_kmh
        else:
            accel = AccelerometerData(0.0, 0.0, 0.0)
            speed = 0.0
        return DetectionEvent(
            timestamp=self._clock(),
            user_id=self._device.user_id,
            session_id=state.session.session_id,
            detection_type=detection_type,
            device_model=self._device.device_model,
            device_manufacturer=self._device.device_manufacturer,
            vehicle_type=self._device.vehicle_type,
            phone_placement=self._device.phone_placement,
            accelerometer_data=accel,
            speed=speed,
            latitude=location.latitude if location else None,
            longitude=location.longitude if location else None,
            altitude=location.altitude if location else None,
            gps_accuracy=location.accuracy if location else None,
        )

    def _build_sensor_event(self, features: PotholeFeatures,
                            threshold: float) -> DetectionEvent:
        event = self._base_event(DetectionType.SENSOR)
        event.speed = features.speed_kmh
        event.zt_peak = features.peak_z
        event.z_prev_extrema = features.prev_extremum
        event.z_next_extrema = features.next_extremum
        event.interval_since_last_detection_ms = features.interval_since_last_ms
        event.dynamic_threshold = threshold
        event.base_threshold = self._threshold.base
        event.raw_signature_window = self._buffer.tail(self._cfg.signature_window)
        return event


def _is_finite(sample: Sample) -> bool:
    return all(math.isfinite(v) for v in (
        sample.timestamp, sample.accel_x, sample.accel_y,
        sample.accel_z, sample.speed_kmh,
    ))
